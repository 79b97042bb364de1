import asyncio, argparse, sys, threading
from ble_csv_recorder.app import RecorderApp, run
from ble_csv_recorder.faults import RecorderStopped

HELP = "commands: list | select N | name NAME | start | stop | status | recent | quit"

def start_stdin_reader(loop: asyncio.AbstractEventLoop) -> "asyncio.Queue[str]":
    """Read stdin on a daemon thread so a blocked read never holds up exit."""
    lines: "asyncio.Queue[str]" = asyncio.Queue()

    def pump():
        while True:
            line = sys.stdin.readline()
            try:
                loop.call_soon_threadsafe(lines.put_nowait, line)
            except RuntimeError:
                return
            if not line:
                return

    threading.Thread(target=pump, name="stdin-reader", daemon=True).start()
    return lines

async def console(app: RecorderApp):
    lines = start_stdin_reader(asyncio.get_running_loop())
    print(HELP)
    while True:
        line = await lines.get()
        if not line:
            app.stop()
            return
        cmd, _, arg = line.strip().partition(" ")
        try:
            if cmd == "list":
                for i, name in enumerate(app.list_discovered_devices()):
                    print(f"{i:3d}  {name}")
            elif cmd == "select":
                p = await asyncio.wrap_future(app.select_device(int(arg)))
                print(f"selected {p.name} ({p.identity})")
            elif cmd == "name":
                print("log name:", await asyncio.wrap_future(app.set_log_name(arg)))
            elif cmd == "start":
                await asyncio.wrap_future(app.start_recording())
                print(f"recording -> {app.log_name}")
            elif cmd == "stop":
                await asyncio.wrap_future(app.stop_recording())
                print("stopped")
            elif cmd == "status":
                print(f"phase={app.phase.value} device={app.selected_device_name} "
                      f"recording={app.is_recording} log={app.log_name} rows={app.pipeline.rows_written}")
            elif cmd == "recent":
                for v in app.recent_values()[-10:]:
                    print(v)
            elif cmd in ("quit", "exit"):
                app.stop()
                return
            elif cmd:
                print(HELP)
        except (ValueError, IndexError) as e:
            print(f"error: {e}")
        except RecorderStopped:
            return

def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", default=None)
    args = ap.parse_args()
    try:
        asyncio.run(run(args.config, shell=console))
    except KeyboardInterrupt:
        pass

if __name__ == "__main__":
    main()

from __future__ import annotations
import asyncio, collections, concurrent.futures
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional
from .config import AppCfg, load_config
from .logs import NdjsonLogger
from .events import (
    AdapterStateChanged, Command, Connected, ConnectFailed, DeviceDiscovered, Disconnected,
    EventQueue, RetryDue, ScanTimeout, ServicesDiscovered, ValueUpdated,
)
from .faults import Fault, RecorderError, RecorderStopped
from .manager import ConnectionManager, Phase, RetryPolicy
from .pipeline import NotificationPipeline, Sink
from .recorder import LineRecorder
from .session import RecordingSession
from .ble.central import BleakCentral


class RecorderApp:
    """Composition root: owns the queue, the session and both state machines.

    The shell talks to it through the command methods, which marshal onto the
    event queue and return a future, and reads the observable properties.
    """

    def __init__(
        self,
        cfg: AppCfg,
        *,
        central: Any = None,
        sink: Optional[Sink] = None,
        logger: Optional[NdjsonLogger] = None,
        queue: Optional[EventQueue] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.cfg = cfg
        self.logger = logger or NdjsonLogger(
            cfg.logging.dir,
            cfg.logging.file_prefix,
            mode=cfg.logging.mode,
            verbose_whitelist=cfg.logging.verbose_whitelist,
            dual_file=cfg.logging.dual_file,
            debug_subdir=cfg.logging.debug_subdir,
        )
        self.queue = queue or EventQueue()
        self.faults: Deque[Fault] = collections.deque(maxlen=20)
        self._error: Optional[RecorderError] = None
        self.session = RecordingSession(cfg.recording.default_name)
        self.sink = sink or LineRecorder(
            cfg.recording.resolved_dir(), cfg.recording.extension, self.logger, self._on_fault
        )
        self.central = central or BleakCentral(
            self.queue, cfg.adapter.adapter, cfg.connect.timeout_sec, self.logger
        )
        self.manager = ConnectionManager(
            self.central,
            self.queue,
            cfg.scan,
            RetryPolicy.from_cfg(cfg.connect),
            self.logger,
            self._on_fault,
        )
        self.pipeline = NotificationPipeline(
            self.central,
            self.session,
            self.sink,
            clock=clock,
            timestamp_format=cfg.recording.timestamp_format,
            recent_values=cfg.recording.recent_values,
            accept=self._is_selected,
            logger=self.logger,
            on_fault=self._on_fault,
        )
        if self.queue.on_drop is None:
            self.queue.on_drop = self._on_dropped
        self._handlers: Dict[type, Callable[[Any], Any]] = {
            AdapterStateChanged: self.manager.on_adapter_state,
            DeviceDiscovered: self.manager.on_discovered,
            ScanTimeout: self.manager.on_scan_timeout,
            Connected: self._on_connected,
            ConnectFailed: self.manager.on_connect_failed,
            Disconnected: self.manager.on_disconnected,
            RetryDue: self.manager.on_retry_due,
            ServicesDiscovered: self._on_services,
            ValueUpdated: self.pipeline.on_value,
            Command: self._on_command,
        }

    # --- observable state ---

    @property
    def is_recording(self) -> bool:
        return self.session.is_recording

    @property
    def log_name(self) -> str:
        return self.session.log_name

    @property
    def selected_device_name(self) -> str:
        sel = self.manager.selected
        return sel.name if sel is not None else self.cfg.scan.fallback_name

    @property
    def phase(self) -> Phase:
        return self.manager.phase

    def list_discovered_devices(self) -> List[str]:
        return self.manager.device_names()

    def recent_values(self) -> List[str]:
        return list(self.pipeline.recent)

    # --- commands ---

    def submit(self, fn: Callable[[], Any]) -> "concurrent.futures.Future[Any]":
        """Run `fn` on the event queue; safe to call from any thread.

        Once the queue has stopped the future fails with RecorderStopped.
        """
        fut: "concurrent.futures.Future[Any]" = concurrent.futures.Future()
        if self.queue.closed:
            fut.set_exception(RecorderStopped("recorder is stopped"))
            return fut
        try:
            self.queue.post_threadsafe(Command(fn, fut))
        except RuntimeError as e:
            # loop not running or already closed
            fut.set_exception(RecorderStopped(str(e)))
        return fut

    def select_device(self, index: int):
        if not isinstance(index, int) or not 0 <= index < len(self.manager.peripherals):
            raise IndexError(f"no discovered device at index {index!r}")
        return self.submit(lambda: self.manager.select(index))

    def set_log_name(self, name: str):
        def apply():
            value = self.session.set_log_name(name)
            self.logger.info("log_name_set", name=value)
            return value
        return self.submit(apply)

    def start_recording(self):
        def apply():
            if self.session.start():
                path = self.sink.path_for(self.session.log_name)
                self.logger.info("recording_started", name=self.session.log_name, path=str(path))
            return True
        return self.submit(apply)

    def stop_recording(self):
        def apply():
            if self.session.stop():
                self.logger.info("recording_stopped", rows=self.pipeline.rows_written)
            return False
        return self.submit(apply)

    def stop(self):
        if self.queue.closed:
            return
        try:
            self.queue.post_threadsafe(_Shutdown())
        except RuntimeError:
            # loop already gone
            pass

    # --- dispatch ---

    def _is_selected(self, identity: str) -> bool:
        sel = self.manager.selected
        return sel is not None and sel.identity == identity

    def _on_connected(self, ev: Connected):
        if self.manager.on_connected(ev):
            self.central.discover_services(ev.identity)

    def _on_services(self, ev: ServicesDiscovered):
        if self._is_selected(ev.identity):
            self.pipeline.on_services(ev)

    def _on_command(self, cmd: Command):
        fut = cmd.future
        try:
            result = cmd.fn()
        except Exception as e:
            if fut is not None:
                fut.set_exception(e)
            else:
                self.logger.error("command_failed", error=repr(e))
            return
        if fut is not None:
            fut.set_result(result)

    def _on_dropped(self, ev: Any):
        if isinstance(ev, Command) and ev.future is not None and not ev.future.done():
            ev.future.set_exception(RecorderStopped("recorder stopped before the command ran"))

    def _on_fault(self, fault: Fault):
        self.faults.append(fault)
        if self.cfg.strict and self._error is None:
            self.logger.error("strict_stop", kind=fault.kind.value, message=fault.message)
            self._error = RecorderError(fault)
            self.queue.stop()

    def dispatch(self, ev: Any):
        if isinstance(ev, _Shutdown):
            self.queue.stop()
            return
        handler = self._handlers.get(type(ev))
        if handler is None:
            self.logger.warn("unhandled_event", event=type(ev).__name__)
            return
        try:
            handler(ev)
        except Exception as e:
            self.logger.error("dispatch_failed", event=type(ev).__name__, error=repr(e))

    async def run(self):
        """Drive the event queue until stop() (or a strict-mode fault)."""
        self.queue.bind(asyncio.get_running_loop())
        self.logger.info("app_start", adapter=self.cfg.adapter.adapter, log_dir=self.cfg.recording.resolved_dir())
        watcher = asyncio.create_task(self.central.watch_adapter(self.cfg.adapter.probe_interval_sec))
        try:
            await self.queue.run(self.dispatch)
        finally:
            watcher.cancel()
            await asyncio.gather(watcher, return_exceptions=True)
            self.manager.shutdown()
            await self.central.aclose()
            self.logger.info("app_stop", rows=self.pipeline.rows_written)
            self.logger.close()
        if self._error is not None:
            raise self._error


class _Shutdown:
    pass


async def run(config_path: Optional[str] = None, shell: Optional[Callable[[RecorderApp], Any]] = None):
    cfg = load_config(config_path)
    app = RecorderApp(cfg)
    shell_task = asyncio.create_task(shell(app)) if shell else None
    try:
        await app.run()
    finally:
        if shell_task is not None:
            shell_task.cancel()

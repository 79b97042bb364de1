import asyncio
from typing import Any, List, Optional, Tuple

from ble_csv_recorder.events import (
    AdapterState, AdapterStateChanged, Connected, ConnectFailed, DeviceDiscovered, ServicesDiscovered,
)


class FakeTimer:
    def __init__(self, delay: float, ev: Any):
        self.delay = delay
        self.ev = ev
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Records timers; tests fire them by hand."""

    def __init__(self):
        self.timers: List[FakeTimer] = []

    def call_later(self, delay: float, ev: Any) -> FakeTimer:
        t = FakeTimer(delay, ev)
        self.timers.append(t)
        return t

    def live(self) -> List[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]


class FakeCentral:
    """Records every request the state machines make of the radio."""

    def __init__(self):
        self.calls: List[Tuple[str, Any]] = []

    def _names(self, op: str):
        return [arg for name, arg in self.calls if name == op]

    def start_scan(self):
        self.calls.append(("start_scan", None))

    def stop_scan(self):
        self.calls.append(("stop_scan", None))

    def connect(self, identity: str):
        self.calls.append(("connect", identity))

    def disconnect(self, identity: str):
        self.calls.append(("disconnect", identity))

    def discover_services(self, identity: str):
        self.calls.append(("discover_services", identity))

    def read(self, identity: str, char):
        self.calls.append(("read", char.uuid))

    def subscribe(self, identity: str, char):
        self.calls.append(("subscribe", char.uuid))

    @property
    def connects(self):
        return self._names("connect")

    @property
    def disconnects(self):
        return self._names("disconnect")


def seen(identity: str, rssi: int = -50, name: Optional[str] = "Sensor") -> DeviceDiscovered:
    return DeviceDiscovered(identity, name, rssi)


class LoopbackCentral(FakeCentral):
    """FakeCentral that answers on the event queue like the bleak central does."""

    def __init__(self, queue, services=(), fail_connects: int = 0):
        super().__init__()
        self.queue = queue
        self.services = tuple(services)
        self.fail_connects = fail_connects
        self.closed = False

    def connect(self, identity: str):
        super().connect(identity)
        if self.fail_connects > 0:
            self.fail_connects -= 1
            self.queue.post(ConnectFailed(identity, "TimeoutError: connect"))
        else:
            self.queue.post(Connected(identity))

    def discover_services(self, identity: str):
        super().discover_services(identity)
        self.queue.post(ServicesDiscovered(identity, self.services))

    async def watch_adapter(self, interval: float):
        self.queue.post(AdapterStateChanged(AdapterState.READY))
        await asyncio.Event().wait()

    async def aclose(self):
        self.closed = True


async def settle(queue, rounds: int = 5):
    for _ in range(rounds):
        await asyncio.sleep(0)
    while queue.pending():
        await asyncio.sleep(0)

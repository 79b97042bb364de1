from __future__ import annotations
import asyncio, concurrent.futures, enum
from dataclasses import dataclass, field
from typing import Any, Callable, FrozenSet, Optional, Tuple


class AdapterState(str, enum.Enum):
    READY = "ready"
    POWERED_OFF = "powered_off"
    RESETTING = "resetting"
    UNAUTHORIZED = "unauthorized"
    UNSUPPORTED = "unsupported"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class CharacteristicInfo:
    uuid: str
    properties: FrozenSet[str]
    # bleak handle; uuids are not unique across services
    handle: Optional[int] = None

    @property
    def can_read(self) -> bool:
        return "read" in self.properties

    @property
    def can_notify(self) -> bool:
        return "notify" in self.properties


@dataclass(frozen=True)
class ServiceInfo:
    uuid: str
    characteristics: Tuple[CharacteristicInfo, ...] = ()


# --- events delivered on the queue ---

@dataclass(frozen=True)
class AdapterStateChanged:
    state: AdapterState
    detail: Optional[str] = None

@dataclass(frozen=True)
class DeviceDiscovered:
    identity: str
    name: Optional[str]
    rssi: int

@dataclass(frozen=True)
class ScanTimeout:
    scan_id: int

@dataclass(frozen=True)
class Connected:
    identity: str

@dataclass(frozen=True)
class ConnectFailed:
    identity: str
    error: str

@dataclass(frozen=True)
class Disconnected:
    identity: str
    error: Optional[str] = None

@dataclass(frozen=True)
class RetryDue:
    identity: str
    generation: int

@dataclass(frozen=True)
class ServicesDiscovered:
    identity: str
    services: Tuple[ServiceInfo, ...]

@dataclass(frozen=True)
class ValueUpdated:
    identity: str
    characteristic: CharacteristicInfo
    data: Optional[bytes] = None
    error: Optional[str] = None

@dataclass(frozen=True)
class Command:
    """A callable marshalled onto the queue from the shell."""
    fn: Callable[[], Any]
    future: Optional[concurrent.futures.Future] = field(default=None, compare=False)


class _Stop:
    pass

_STOP = _Stop()


class EventQueue:
    """Single ordered event stream; one dispatcher handles events one at a time."""

    def __init__(self, on_drop: Optional[Callable[[Any], None]] = None):
        self._q: "asyncio.Queue[Any]" = asyncio.Queue()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        # called for each event that arrives after the queue closed
        self.on_drop = on_drop
        self.closed = False

    def bind(self, loop: asyncio.AbstractEventLoop):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def post(self, ev: Any):
        if self.closed:
            self._drop(ev)
            return
        self._q.put_nowait(ev)

    def post_threadsafe(self, ev: Any):
        """Post from any thread. Raises RuntimeError once the loop is closed."""
        self.loop.call_soon_threadsafe(self.post, ev)

    def _drop(self, ev: Any):
        if self.on_drop is not None and ev is not _STOP:
            self.on_drop(ev)

    def call_later(self, delay: float, ev: Any) -> asyncio.TimerHandle:
        return self.loop.call_later(delay, self.post, ev)

    def stop(self):
        if not self.closed:
            self._q.put_nowait(_STOP)

    def pending(self) -> int:
        return self._q.qsize()

    async def run(self, dispatch: Callable[[Any], None]):
        self.bind(asyncio.get_running_loop())
        while True:
            ev = await self._q.get()
            if ev is _STOP:
                break
            dispatch(ev)
        # nothing is dispatched after stop; hand leftovers to on_drop
        self.closed = True
        while not self._q.empty():
            self._drop(self._q.get_nowait())

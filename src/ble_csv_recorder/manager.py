from __future__ import annotations
import enum
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Protocol
from .config import ConnectCfg, ScanCfg
from .events import (
    AdapterState, AdapterStateChanged, Connected, ConnectFailed, DeviceDiscovered,
    Disconnected, RetryDue, ScanTimeout,
)
from .faults import Fault, FaultKind, FaultSink, ignore_fault
from .logs import NdjsonLogger


class Phase(str, enum.Enum):
    ADAPTER_UNREADY = "adapter_unready"
    IDLE = "idle"
    SCANNING = "scanning"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    # retry budget exhausted or connection abandoned
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class Peripheral:
    identity: str
    name: str
    rssi: int


class Cancellable(Protocol):
    def cancel(self) -> Any: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, ev: Any) -> Cancellable: ...


class Central(Protocol):
    """Platform side of the radio. Results come back as queue events."""

    def start_scan(self) -> None: ...
    def stop_scan(self) -> None: ...
    def connect(self, identity: str) -> None: ...
    def disconnect(self, identity: str) -> None: ...


@dataclass
class RetryPolicy:
    initial_sec: float = 2.0
    backoff: float = 1.0
    max_sec: float = 20.0
    max_attempts: Optional[int] = None

    @classmethod
    def from_cfg(cls, cfg: ConnectCfg) -> "RetryPolicy":
        return cls(cfg.reconnect_initial_sec, cfg.reconnect_backoff, cfg.reconnect_max_sec, cfg.reconnect_max_attempts)

    def delay(self, attempt: int) -> Optional[float]:
        """Delay before retry number `attempt` (1-based), or None once the budget is spent."""
        if self.max_attempts is not None and attempt > self.max_attempts:
            return None
        d = self.initial_sec * (self.backoff ** (attempt - 1))
        return min(d, max(self.max_sec, self.initial_sec))


class ConnectionManager:
    """Scan / select / connect / reconnect state machine for one peripheral.

    All handlers run on the event queue. Timers are scheduled through
    `scheduler` and tagged (scan id, retry generation) so a handle that fires
    after being superseded is ignored.
    """

    def __init__(
        self,
        central: Central,
        scheduler: Scheduler,
        scan_cfg: Optional[ScanCfg] = None,
        retry: Optional[RetryPolicy] = None,
        logger: Optional[NdjsonLogger] = None,
        on_fault: FaultSink = ignore_fault,
    ):
        self.central = central
        self.scheduler = scheduler
        self.scan_cfg = scan_cfg or ScanCfg()
        self.retry = retry or RetryPolicy()
        self.logger = logger
        self.on_fault = on_fault

        self.phase = Phase.ADAPTER_UNREADY
        self.adapter_state = AdapterState.UNKNOWN
        self.peripherals: List[Peripheral] = []
        self._known = set()
        self.selected: Optional[Peripheral] = None
        self.attempts = 0

        self._scan_id = 0
        self._scan_timer: Optional[Cancellable] = None
        self._generation = 0
        self._retry_timer: Optional[Cancellable] = None
        self._listeners: List[Callable[["ConnectionManager"], None]] = []

    # --- observable state ---

    @property
    def scanning(self) -> bool:
        return self.phase == Phase.SCANNING

    def device_names(self) -> List[str]:
        return [p.name for p in self.peripherals]

    def subscribe(self, fn: Callable[["ConnectionManager"], None]):
        self._listeners.append(fn)

    def _changed(self):
        for fn in self._listeners:
            fn(self)

    def _log(self, typ: str, msg: str, **data):
        if self.logger:
            self.logger.event(typ, msg, **data)

    def _set_phase(self, phase: Phase):
        if phase != self.phase:
            self._log("status", "phase", old=self.phase.value, new=phase.value)
            self.phase = phase
            self._changed()

    # --- scanning ---

    def start_scanning(self):
        self._cancel_scan_timer()
        self._scan_id += 1
        self.central.start_scan()
        self._scan_timer = self.scheduler.call_later(self.scan_cfg.duration_sec, ScanTimeout(self._scan_id))
        self._log("info", "scan_started", duration_sec=self.scan_cfg.duration_sec, rssi_min=self.scan_cfg.rssi_min)
        self._set_phase(Phase.SCANNING)

    def stop_scanning(self):
        self._cancel_scan_timer()
        if self.phase == Phase.SCANNING:
            self.central.stop_scan()
            self._log("info", "scan_stopped")
            self._set_phase(Phase.IDLE)

    def _cancel_scan_timer(self):
        if self._scan_timer is not None:
            self._scan_timer.cancel()
            self._scan_timer = None

    # --- event handlers ---

    def on_adapter_state(self, ev: AdapterStateChanged):
        self.adapter_state = ev.state
        if ev.state != AdapterState.READY:
            self._log("warn", "adapter_unready", state=ev.state.value, detail=ev.detail)
            self.on_fault(Fault(FaultKind.ADAPTER_UNAVAILABLE, ev.state.value, {"detail": ev.detail}))
            self.stop_scanning()
            self._cancel_retry()
            self._set_phase(Phase.ADAPTER_UNREADY)
            return
        if self.phase != Phase.ADAPTER_UNREADY:
            return
        self._log("info", "adapter_ready")
        if self.selected is not None:
            # restore the user's chosen connection rather than scanning again
            self._connect_selected()
        else:
            self.start_scanning()

    def on_discovered(self, ev: DeviceDiscovered) -> bool:
        """Track a new peripheral. Returns True if the list grew."""
        if ev.rssi <= self.scan_cfg.rssi_min:
            self._log("debug", "weak_signal_ignored", identity=ev.identity, name=ev.name, rssi=ev.rssi)
            return False
        if not ev.name and self.scan_cfg.named_only:
            self._log("debug", "unnamed_ignored", identity=ev.identity, rssi=ev.rssi)
            return False
        if ev.identity in self._known:
            return False
        p = Peripheral(ev.identity, ev.name or self.scan_cfg.fallback_name, ev.rssi)
        self._known.add(p.identity)
        self.peripherals.append(p)
        self._log("info", "peripheral_found", identity=p.identity, name=p.name, rssi=p.rssi)
        self._changed()
        return True

    def on_scan_timeout(self, ev: ScanTimeout):
        if ev.scan_id != self._scan_id or self._scan_timer is None:
            return
        self._scan_timer = None
        self._log("info", "scan_timeout", found=len(self.peripherals))
        self.stop_scanning()

    def select(self, index: int) -> Peripheral:
        """Select the peripheral at `index` in discovery order and connect to it.

        A previously selected peripheral is disconnected first; re-selecting
        the one already connecting or connected is a no-op. Raises
        IndexError for an index outside the discovered list.
        """
        if not isinstance(index, int) or index < 0 or index >= len(self.peripherals):
            raise IndexError(f"no discovered peripheral at index {index!r}")
        p = self.peripherals[index]
        self.stop_scanning()
        prior = self.selected
        if prior is not None and prior.identity == p.identity and self.phase in (Phase.CONNECTING, Phase.CONNECTED):
            # already connecting or connected to this one
            return p
        self._cancel_retry()
        if prior is not None and prior.identity != p.identity:
            self._log("info", "prior_disconnect", identity=prior.identity, name=prior.name)
            self.central.disconnect(prior.identity)
        self.selected = p
        self.attempts = 0
        self._log("info", "peripheral_selected", identity=p.identity, name=p.name)
        self._changed()
        if self.adapter_state != AdapterState.READY:
            # connects once the adapter reports ready
            return p
        self._connect_selected()
        return p

    def _connect_selected(self):
        assert self.selected is not None
        self._set_phase(Phase.CONNECTING)
        self.central.connect(self.selected.identity)

    def _is_selected(self, identity: str) -> bool:
        return self.selected is not None and self.selected.identity == identity

    def on_connected(self, ev: Connected) -> bool:
        if not self._is_selected(ev.identity):
            # late success for a peripheral we moved away from
            self.central.disconnect(ev.identity)
            return False
        self._cancel_retry()
        self.attempts = 0
        self._log("info", "connected", identity=ev.identity, name=self.selected.name)
        self._set_phase(Phase.CONNECTED)
        return True

    def on_connect_failed(self, ev: ConnectFailed):
        if self._is_selected(ev.identity) and self.phase == Phase.CONNECTED:
            # stale failure from an earlier request; the link is up
            self._log("debug", "stale_connect_failure", identity=ev.identity, error=ev.error)
            return
        self._log("error", "connect_failed", identity=ev.identity, error=ev.error)
        self.on_fault(Fault(FaultKind.CONNECTION, "connect_failed", {"identity": ev.identity, "error": ev.error}))
        if self._is_selected(ev.identity):
            self._schedule_retry(ev.identity)

    def on_disconnected(self, ev: Disconnected):
        self._log("warn", "disconnected", identity=ev.identity, error=ev.error)
        if not self._is_selected(ev.identity) or self.phase == Phase.ADAPTER_UNREADY:
            return
        self.on_fault(Fault(FaultKind.CONNECTION, "disconnected", {"identity": ev.identity, "error": ev.error}))
        self._schedule_retry(ev.identity)

    def on_retry_due(self, ev: RetryDue):
        if ev.generation != self._generation or not self._is_selected(ev.identity):
            return
        self._retry_timer = None
        self._log("info", "reconnect_attempt", identity=ev.identity, attempt=self.attempts)
        self._connect_selected()

    # --- retry supervision ---

    def _schedule_retry(self, identity: str):
        self._cancel_retry()
        self.attempts += 1
        delay = self.retry.delay(self.attempts)
        if delay is None:
            self._log("error", "reconnect_exhausted", identity=identity, attempts=self.attempts - 1)
            self._set_phase(Phase.DISCONNECTED)
            return
        self._retry_timer = self.scheduler.call_later(delay, RetryDue(identity, self._generation))
        self._log("info", "reconnect_scheduled", identity=identity, delay_sec=delay, attempt=self.attempts)
        self._set_phase(Phase.RECONNECTING)

    def _cancel_retry(self):
        # bumping the generation invalidates a RetryDue already sitting in the queue
        self._generation += 1
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None

    def shutdown(self):
        self.stop_scanning()
        self._cancel_retry()
        if self.selected is not None:
            self.central.disconnect(self.selected.identity)
        self.selected = None
        self._set_phase(Phase.DISCONNECTED)

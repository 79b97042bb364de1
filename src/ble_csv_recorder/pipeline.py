from __future__ import annotations
import collections
from datetime import datetime
import pathlib
from typing import Callable, Deque, Optional, Protocol, Sequence
from .events import CharacteristicInfo, ServicesDiscovered, ValueUpdated
from .faults import Fault, FaultKind, FaultSink, ignore_fault
from .logs import NdjsonLogger
from .recorder import AppendResult
from .session import LogRow, RecordingSession, format_timestamp


class Gatt(Protocol):
    def read(self, identity: str, char: CharacteristicInfo) -> None: ...
    def subscribe(self, identity: str, char: CharacteristicInfo) -> None: ...


class Sink(Protocol):
    def path_for(self, log_name: str) -> pathlib.Path: ...
    def append(self, log_name: str, row: Sequence[str]) -> AppendResult: ...


class NotificationPipeline:
    """Subscribes to every readable/notifiable characteristic and turns
    value updates into timestamped rows while recording is on.

    Payloads are opaque UTF-8 text. Values are decoded whether or not the
    session is recording (the last few are kept in `recent`), but rows are
    only handed to the sink while the flag is set; nothing is buffered for
    later.
    """

    def __init__(
        self,
        gatt: Gatt,
        session: RecordingSession,
        sink: Sink,
        *,
        clock: Callable[[], datetime] = datetime.now,
        timestamp_format: str = "%Y-%m-%d %H:%M:%S.%f",
        recent_values: int = 50,
        accept: Optional[Callable[[str], bool]] = None,
        logger: Optional[NdjsonLogger] = None,
        on_fault: FaultSink = ignore_fault,
    ):
        self.gatt = gatt
        self.session = session
        self.sink = sink
        self.clock = clock
        self.timestamp_format = timestamp_format
        self.recent: Deque[str] = collections.deque(maxlen=max(1, recent_values))
        self.accept = accept
        self.logger = logger
        self.on_fault = on_fault
        self.rows_written = 0

    def _log(self, typ: str, msg: str, **data):
        if self.logger:
            self.logger.event(typ, msg, **data)

    def on_services(self, ev: ServicesDiscovered):
        for svc in ev.services:
            self._log("debug", "service_discovered", identity=ev.identity, service=svc.uuid,
                      characteristics=len(svc.characteristics))
            for ch in svc.characteristics:
                self._log("debug", "characteristic_found", service=svc.uuid, uuid=ch.uuid,
                          properties=sorted(ch.properties))
                if ch.can_read:
                    self.gatt.read(ev.identity, ch)
                if ch.can_notify:
                    self.gatt.subscribe(ev.identity, ch)
                    self._log("info", "notify_enabled", identity=ev.identity, uuid=ch.uuid)

    def on_value(self, ev: ValueUpdated) -> Optional[AppendResult]:
        """Handle one value update. Returns the sink's result when a row was produced."""
        if self.accept is not None and not self.accept(ev.identity):
            return None
        if ev.error is not None:
            self._log("error", "value_update_error", identity=ev.identity, uuid=ev.characteristic.uuid, error=ev.error)
            self.on_fault(Fault(FaultKind.DELIVERY, "value_update_error",
                                {"uuid": ev.characteristic.uuid, "error": ev.error}))
            return None
        if ev.data is None:
            return None
        try:
            text = bytes(ev.data).decode("utf-8")
        except UnicodeDecodeError as e:
            self._log("warn", "decode_failed", uuid=ev.characteristic.uuid, raw=bytes(ev.data).hex(), error=str(e))
            self.on_fault(Fault(FaultKind.DECODE, "decode_failed", {"uuid": ev.characteristic.uuid}))
            return None
        self.recent.append(text)
        self._log("debug", "value_received", uuid=ev.characteristic.uuid, value=text)
        if not self.session.is_recording:
            return None
        row = LogRow(format_timestamp(self.clock(), self.timestamp_format), text)
        result = self.sink.append(self.session.log_name, row.fields())
        if result.ok:
            self.rows_written += 1
        return result

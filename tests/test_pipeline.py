from datetime import datetime, timedelta

from ble_csv_recorder.events import CharacteristicInfo, ServiceInfo, ServicesDiscovered, ValueUpdated
from ble_csv_recorder.faults import FaultKind
from ble_csv_recorder.pipeline import NotificationPipeline
from ble_csv_recorder.recorder import MemoryRecorder
from ble_csv_recorder.session import RecordingSession

NOTIFY = CharacteristicInfo("6e400003-b5a3-f393-e0a9-e50e24dcca9e", frozenset({"notify"}), 12)
READ = CharacteristicInfo("00002a19-0000-1000-8000-00805f9b34fb", frozenset({"read"}), 20)
BOTH = CharacteristicInfo("0000fff1-0000-1000-8000-00805f9b34fb", frozenset({"read", "notify", "write"}), 30)
WRITE = CharacteristicInfo("6e400002-b5a3-f393-e0a9-e50e24dcca9e", frozenset({"write"}), 14)


class Clock:
    def __init__(self):
        self.now = datetime(2025, 1, 15, 10, 0, 0)

    def __call__(self):
        t = self.now
        self.now += timedelta(milliseconds=50)
        return t


def make(central, **kw):
    session = RecordingSession()
    sink = MemoryRecorder()
    faults = []
    p = NotificationPipeline(central, session, sink, clock=Clock(), on_fault=faults.append, **kw)
    return p, session, sink, faults


def value(data=None, error=None, char=NOTIFY, identity="A"):
    return ValueUpdated(identity, char, data, error)


def test_services_read_and_subscribe_by_capability(central, logger):
    p, *_ = make(central, logger=logger)
    p.on_services(ServicesDiscovered("A", (
        ServiceInfo("svc-1", (NOTIFY, WRITE)),
        ServiceInfo("svc-2", (READ, BOTH)),
        ServiceInfo("svc-3", ()),
    )))
    assert central.calls == [
        ("subscribe", NOTIFY.uuid),
        ("read", READ.uuid),
        ("read", BOTH.uuid),
        ("subscribe", BOTH.uuid),
    ]


def test_rows_only_while_recording(central):
    p, session, sink, _ = make(central)
    p.on_value(value(b"ignored"))
    assert sink.calls == 0

    session.start()
    p.on_value(value(b"A"))
    p.on_value(value(b"B", char=READ))
    session.stop()
    for _ in range(10):
        p.on_value(value(b"late"))
    assert sink.calls == 2

    session.start()
    p.on_value(value(b"C"))
    assert [r[1] for r in sink.rows["ReceivedData"]] == ["A", "B", "C"]
    assert p.rows_written == 3


def test_row_timestamp_format(central):
    p, session, sink, _ = make(central)
    session.start()
    p.on_value(value(b"A"))
    p.on_value(value(b"B"))
    assert sink.text("ReceivedData") == "2025-01-15 10:00:00.000,A\n2025-01-15 10:00:00.050,B\n"


def test_rows_follow_current_log_name(central):
    p, session, sink, _ = make(central)
    session.start()
    p.on_value(value(b"1"))
    session.set_log_name("  run2 ")
    p.on_value(value(b"2"))
    assert sink.rows["ReceivedData"] == [["2025-01-15 10:00:00.000", "1"]]
    assert sink.rows["run2"] == [["2025-01-15 10:00:00.050", "2"]]


def test_decode_failure_is_dropped(central, logger):
    p, session, sink, faults = make(central, logger=logger)
    session.start()
    assert p.on_value(value(b"\xff\xfe\x00")) is None
    assert sink.calls == 0
    assert faults[-1].kind == FaultKind.DECODE
    # next valid value still goes through
    assert p.on_value(value("héllo".encode("utf-8"))).ok
    assert sink.rows["ReceivedData"][0][1] == "héllo"


def test_delivery_error_writes_nothing(central):
    p, session, sink, faults = make(central)
    session.start()
    assert p.on_value(value(b"A", error="GATT error 0x0e")) is None
    assert sink.calls == 0
    assert faults[-1].kind == FaultKind.DELIVERY


def test_recent_values_kept_regardless_of_flag(central):
    p, session, _, _ = make(central, recent_values=2)
    for v in (b"1", b"2", b"3"):
        p.on_value(value(v))
    assert list(p.recent) == ["2", "3"]


def test_values_from_other_peripherals_ignored(central):
    p, session, sink, _ = make(central, accept=lambda ident: ident == "A")
    session.start()
    p.on_value(value(b"x", identity="B"))
    p.on_value(value(b"y", identity="A"))
    assert sink.rows["ReceivedData"] == [["2025-01-15 10:00:00.000", "y"]]


def test_payload_with_comma_is_not_escaped(central):
    p, session, sink, _ = make(central)
    session.start()
    p.on_value(value(b"1.0,2.0"))
    assert sink.text("ReceivedData") == "2025-01-15 10:00:00.000,1.0,2.0\n"

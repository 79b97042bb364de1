from types import SimpleNamespace

from ble_csv_recorder.ble.central import BleakCentral, classify_adapter_error
from ble_csv_recorder.ble.util import parse_powered
from ble_csv_recorder.events import (
    AdapterState, CharacteristicInfo, DeviceDiscovered, EventQueue, ServicesDiscovered,
)


def drain(queue):
    out = []
    while queue.pending():
        out.append(queue._q.get_nowait())
    return out


def test_classify_adapter_errors():
    assert classify_adapter_error(Exception("Bluetooth device is turned off")) == AdapterState.POWERED_OFF
    assert classify_adapter_error(Exception("org.bluez.Error.NotReady: Resource Not Ready (not powered)")) == AdapterState.POWERED_OFF
    assert classify_adapter_error(PermissionError("Permission denied")) == AdapterState.UNAUTHORIZED
    assert classify_adapter_error(Exception("No Bluetooth adapters found.")) == AdapterState.UNSUPPORTED
    assert classify_adapter_error(Exception("adapter is resetting")) == AdapterState.RESETTING
    assert classify_adapter_error(TimeoutError("connect timed out")) is None


def test_classify_uses_reason_attribute():
    e = Exception("bluetooth not available")
    e.reason = SimpleNamespace(name="POWERED_OFF")
    assert classify_adapter_error(e) == AdapterState.POWERED_OFF


def test_parse_powered():
    show = "Controller 00:1A:7D:DA:71:13 (public)\n\tName: pi\n\tPowered: yes\n\tDiscoverable: no\n"
    assert parse_powered(show) is True
    assert parse_powered(show.replace("Powered: yes", "Powered: no")) is False
    assert parse_powered("No default controller available") is None


def test_detection_posts_discovery():
    queue = EventQueue()
    central = BleakCentral(queue)
    dev = SimpleNamespace(address="AA:BB:CC:DD:EE:FF", name="dev-name")
    central._on_detect(dev, SimpleNamespace(local_name="Adv Name", rssi=-61))
    central._on_detect(dev, SimpleNamespace(local_name=None, rssi=-62))
    assert drain(queue) == [
        DeviceDiscovered("AA:BB:CC:DD:EE:FF", "Adv Name", -61),
        DeviceDiscovered("AA:BB:CC:DD:EE:FF", "dev-name", -62),
    ]


def test_discover_services_publishes_characteristics():
    queue = EventQueue()
    central = BleakCentral(queue)
    ch = SimpleNamespace(uuid="6e400003-b5a3-f393-e0a9-e50e24dcca9e", properties=["notify"], handle=12)
    svc = SimpleNamespace(uuid="6e400001-b5a3-f393-e0a9-e50e24dcca9e", characteristics=[ch])
    central._clients["AA"] = SimpleNamespace(services=[svc])
    central.discover_services("AA")
    [ev] = drain(queue)
    assert isinstance(ev, ServicesDiscovered)
    info = ev.services[0].characteristics[0]
    assert info == CharacteristicInfo(ch.uuid, frozenset({"notify"}), 12)
    assert central._resolve("AA", info) is ch

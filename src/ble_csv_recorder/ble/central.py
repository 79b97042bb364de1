from __future__ import annotations
import asyncio, sys
from typing import Any, Awaitable, Dict, Optional, Set, Tuple
from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from ..events import (
    AdapterState, AdapterStateChanged, CharacteristicInfo, Connected, ConnectFailed,
    DeviceDiscovered, Disconnected, EventQueue, ServiceInfo, ServicesDiscovered, ValueUpdated,
)
from ..logs import NdjsonLogger
from .util import scan_lock, bluez_scan_off, bluetoothctl, parse_powered


def classify_adapter_error(e: BaseException) -> Optional[AdapterState]:
    """Map a bleak/backend error to an adapter state, or None if it is not adapter-related."""
    reason = getattr(e, "reason", None)
    text = f"{getattr(reason, 'name', '')} {e}".lower()
    if "powered off" in text or "powered_off" in text or "not powered" in text or "turned off" in text:
        return AdapterState.POWERED_OFF
    if "unauthorized" in text or "permission" in text or "denied" in text:
        return AdapterState.UNAUTHORIZED
    if "resetting" in text:
        return AdapterState.RESETTING
    if "unsupported" in text or "not supported" in text or "no bluetooth" in text or "no such adapter" in text:
        return AdapterState.UNSUPPORTED
    return None


class BleakCentral:
    """bleak-backed radio. Every operation runs as a task and reports back by
    posting events on the queue; bleak callbacks do the same.
    """

    def __init__(self, queue: EventQueue, adapter: str = "hci0", connect_timeout: float = 20.0,
                 logger: Optional[NdjsonLogger] = None):
        self.queue = queue
        self.adapter = adapter
        self.connect_timeout = connect_timeout
        self.logger = logger
        self._scanner: Optional[BleakScanner] = None
        self._devices: Dict[str, BLEDevice] = {}
        self._clients: Dict[str, BleakClient] = {}
        self._chars: Dict[Tuple[str, int], Any] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._last_state: Optional[AdapterState] = None

    def _log(self, typ: str, msg: str, **data):
        if self.logger:
            self.logger.event(typ, msg, **data)

    def _spawn(self, coro: Awaitable[Any], name: str):
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)

        def done(t: asyncio.Task):
            self._tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                self._log("error", "task_failed", task=name, error=repr(t.exception()))
        task.add_done_callback(done)
        return task

    def _report_adapter(self, e: BaseException) -> bool:
        state = classify_adapter_error(e)
        if state is None:
            return False
        self._last_state = state
        self.queue.post(AdapterStateChanged(state, str(e)))
        return True

    # --- scanning ---

    def _on_detect(self, device: BLEDevice, adv: AdvertisementData):
        self._devices.setdefault(device.address, device)
        self.queue.post(DeviceDiscovered(device.address, adv.local_name or device.name, adv.rssi))

    def start_scan(self):
        self._spawn(self._start_scan(), "start_scan")

    async def _start_scan(self):
        async with scan_lock:
            if self._scanner is not None:
                return
            if sys.platform.startswith("linux"):
                await bluez_scan_off()
            # duplicate advertisements are reported so RSSI stays current
            scanner = BleakScanner(
                detection_callback=self._on_detect,
                adapter=self.adapter,
                bluez={"filters": {"DuplicateData": True}},
            )
            try:
                await scanner.start()
            except Exception as e:
                if not self._report_adapter(e):
                    self._log("error", "scan_start_failed", error=repr(e))
                return
            self._scanner = scanner

    def stop_scan(self):
        self._spawn(self._stop_scan(), "stop_scan")

    async def _stop_scan(self):
        async with scan_lock:
            scanner, self._scanner = self._scanner, None
            if scanner is None:
                return
            try:
                await scanner.stop()
            except Exception as e:
                self._log("warn", "scan_stop_failed", error=repr(e))

    # --- connection ---

    def connect(self, identity: str):
        self._spawn(self._connect(identity), "connect")

    async def _connect(self, identity: str):
        old = self._clients.pop(identity, None)
        if old is not None:
            try:
                await old.disconnect()
            except Exception:
                pass
        target = self._devices.get(identity) or identity
        client = BleakClient(
            target,
            disconnected_callback=lambda _c: self._on_disconnect(identity, client),
            adapter=self.adapter,
        )
        try:
            await client.connect(timeout=self.connect_timeout)
        except Exception as e:
            if self._report_adapter(e):
                return
            self.queue.post(ConnectFailed(identity, f"{type(e).__name__}: {e}"))
            return
        self._clients[identity] = client
        self.queue.post(Connected(identity))

    def _on_disconnect(self, identity: str, client: BleakClient):
        if self._clients.get(identity) is client:
            del self._clients[identity]
            self.queue.post(Disconnected(identity))

    def disconnect(self, identity: str):
        client = self._clients.pop(identity, None)
        if client is not None:
            self._spawn(self._disconnect(identity, client), "disconnect")

    async def _disconnect(self, identity: str, client: BleakClient):
        try:
            await client.disconnect()
        except Exception as e:
            self._log("warn", "disconnect_failed", identity=identity, error=repr(e))
        self._log("info", "disconnect_done", identity=identity)

    # --- GATT ---

    def discover_services(self, identity: str):
        """bleak resolves services during connect; publish them as one event."""
        client = self._clients.get(identity)
        if client is None:
            return
        services = []
        for s in client.services:
            chars = []
            for c in s.characteristics:
                self._chars[(identity, c.handle)] = c
                chars.append(CharacteristicInfo(c.uuid, frozenset(c.properties), c.handle))
            services.append(ServiceInfo(s.uuid, tuple(chars)))
        self.queue.post(ServicesDiscovered(identity, tuple(services)))

    def _resolve(self, identity: str, char: CharacteristicInfo):
        if char.handle is not None:
            found = self._chars.get((identity, char.handle))
            if found is not None:
                return found
        return char.uuid

    def read(self, identity: str, char: CharacteristicInfo):
        self._spawn(self._read(identity, char), "read")

    async def _read(self, identity: str, char: CharacteristicInfo):
        client = self._clients.get(identity)
        if client is None:
            return
        try:
            data = await client.read_gatt_char(self._resolve(identity, char))
        except Exception as e:
            self.queue.post(ValueUpdated(identity, char, error=f"{type(e).__name__}: {e}"))
            return
        self.queue.post(ValueUpdated(identity, char, bytes(data)))

    def subscribe(self, identity: str, char: CharacteristicInfo):
        self._spawn(self._subscribe(identity, char), "subscribe")

    async def _subscribe(self, identity: str, char: CharacteristicInfo):
        client = self._clients.get(identity)
        if client is None:
            return

        def cb(_, data: bytearray):
            self.queue.post(ValueUpdated(identity, char, bytes(data)))

        try:
            await client.start_notify(self._resolve(identity, char), cb)
        except Exception as e:
            self.queue.post(ValueUpdated(identity, char, error=f"{type(e).__name__}: {e}"))

    # --- adapter readiness ---

    async def probe(self) -> Tuple[AdapterState, Optional[str]]:
        """Current adapter state. BlueZ is asked directly; elsewhere a short
        scanner start/stop is used, and only while not known to be ready."""
        if sys.platform.startswith("linux"):
            rc, out = await bluetoothctl("show", self.adapter)
            if rc is not None:
                if rc != 0 or "not available" in out.lower():
                    return AdapterState.UNSUPPORTED, out.strip() or None
                powered = parse_powered(out)
                if powered is True:
                    return AdapterState.READY, None
                if powered is False:
                    return AdapterState.POWERED_OFF, None
        if self._last_state == AdapterState.READY:
            return AdapterState.READY, None
        try:
            async with scan_lock:
                async with BleakScanner(adapter=self.adapter):
                    await asyncio.sleep(0.1)
        except Exception as e:
            return classify_adapter_error(e) or AdapterState.UNKNOWN, str(e)
        return AdapterState.READY, None

    async def watch_adapter(self, interval: float = 5.0):
        """Post AdapterStateChanged whenever the probed state changes."""
        while True:
            state, detail = await self.probe()
            if state != self._last_state:
                self._last_state = state
                self.queue.post(AdapterStateChanged(state, detail))
            await asyncio.sleep(interval)

    async def aclose(self):
        await self._stop_scan()
        for identity, client in list(self._clients.items()):
            self._clients.pop(identity, None)
            try:
                await client.disconnect()
            except Exception:
                pass
        # let queued disconnects finish before cancelling the rest
        if self._tasks:
            await asyncio.wait(list(self._tasks), timeout=5.0)
        for t in list(self._tasks):
            t.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

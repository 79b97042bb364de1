from __future__ import annotations
import os, yaml
from dataclasses import dataclass, field
from typing import Optional, List, Any, Dict

@dataclass
class AdapterCfg:
    adapter: str = "hci0"
    # How often to probe the adapter while it is not ready
    probe_interval_sec: float = 5.0

@dataclass
class ScanCfg:
    # Advertisements at or below this RSSI are discarded
    rssi_min: int = -80
    duration_sec: float = 30.0
    # Ignore advertisements that carry no name at all
    named_only: bool = False
    fallback_name: str = "Unnamed Device"

@dataclass
class ConnectCfg:
    timeout_sec: float = 20.0
    # Reconnect/backoff tuning. backoff 1.0 keeps a fixed delay; a None
    # max_attempts retries until success or a new selection.
    reconnect_initial_sec: float = 2.0
    reconnect_backoff: float = 1.0
    reconnect_max_sec: float = 20.0
    reconnect_max_attempts: Optional[int] = None

@dataclass
class RecordingCfg:
    dir: str = "~/Documents"
    default_name: str = "ReceivedData"
    extension: str = ".csv"
    # strftime format; the trailing %f is cut to milliseconds
    timestamp_format: str = "%Y-%m-%d %H:%M:%S.%f"
    # Size of the last-values buffer shown by the shell
    recent_values: int = 50

    def resolved_dir(self) -> str:
        return os.path.expanduser(self.dir)

@dataclass
class LoggingCfg:
    dir: str = "./logs"
    file_prefix: str = "recorder"
    # 'regular' drops debug records unless whitelisted; 'verbose' emits everything.
    mode: str = "regular"
    verbose_whitelist: Optional[List[str]] = None
    # When enabled, a full debug log is written to `dir/debug_subdir` as well.
    dual_file: bool = False
    debug_subdir: Optional[str] = "debug"

@dataclass
class AppCfg:
    adapter: AdapterCfg = field(default_factory=AdapterCfg)
    scan: ScanCfg = field(default_factory=ScanCfg)
    connect: ConnectCfg = field(default_factory=ConnectCfg)
    recording: RecordingCfg = field(default_factory=RecordingCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)
    # Stop on the first fault instead of logging and continuing
    strict: bool = False


def _as_float(d: Dict[str, Any], key: str, default: float) -> float:
    v = d.get(key, default)
    try:
        return float(v)
    except (TypeError, ValueError):
        return default

def _as_int(d: Dict[str, Any], key: str, default: Optional[int], nullable: bool = False) -> Optional[int]:
    v = d.get(key, default)
    if v is None:
        return None if nullable else default
    try:
        return int(v)
    except (TypeError, ValueError):
        return default

def _as_bool(d: Dict[str, Any], key: str, default: bool) -> bool:
    v = d.get(key, default)
    if v is None:
        return default
    if isinstance(v, str):
        return v.strip().lower() in ("1", "true", "yes", "on")
    return bool(v)

def _as_str(d: Dict[str, Any], key: str, default: Optional[str]) -> Optional[str]:
    v = d.get(key, default)
    if v is None:
        return default
    return str(v)

def _as_str_list(d: Dict[str, Any], key: str) -> Optional[List[str]]:
    # accepts a YAML list or a comma-separated string
    v = d.get(key)
    if v is None:
        return None
    if isinstance(v, str):
        v = v.split(",")
    if not isinstance(v, (list, tuple, set)):
        return None
    return [str(s).strip() for s in v if str(s).strip()]


def parse_config(raw: Optional[Dict[str, Any]]) -> AppCfg:
    """Build an AppCfg from an already-parsed mapping.

    Missing sections, missing keys and null values use defaults; unknown keys
    are ignored.
    """
    raw = raw or {}
    ad_raw = dict(raw.get("adapter") or {})
    adapter = AdapterCfg(
        adapter=_as_str(ad_raw, "adapter", AdapterCfg.adapter),
        probe_interval_sec=_as_float(ad_raw, "probe_interval_sec", AdapterCfg.probe_interval_sec),
    )
    sc_raw = dict(raw.get("scan") or {})
    scan = ScanCfg(
        rssi_min=_as_int(sc_raw, "rssi_min", ScanCfg.rssi_min),
        duration_sec=_as_float(sc_raw, "duration_sec", ScanCfg.duration_sec),
        named_only=_as_bool(sc_raw, "named_only", ScanCfg.named_only),
        fallback_name=_as_str(sc_raw, "fallback_name", ScanCfg.fallback_name),
    )
    co_raw = dict(raw.get("connect") or {})
    connect = ConnectCfg(
        timeout_sec=_as_float(co_raw, "timeout_sec", ConnectCfg.timeout_sec),
        reconnect_initial_sec=_as_float(co_raw, "reconnect_initial_sec", ConnectCfg.reconnect_initial_sec),
        reconnect_backoff=_as_float(co_raw, "reconnect_backoff", ConnectCfg.reconnect_backoff),
        reconnect_max_sec=_as_float(co_raw, "reconnect_max_sec", ConnectCfg.reconnect_max_sec),
        reconnect_max_attempts=_as_int(co_raw, "reconnect_max_attempts", ConnectCfg.reconnect_max_attempts, nullable=True),
    )
    rec_raw = dict(raw.get("recording") or {})
    recording = RecordingCfg(
        dir=_as_str(rec_raw, "dir", RecordingCfg.dir),
        default_name=_as_str(rec_raw, "default_name", RecordingCfg.default_name),
        extension=_as_str(rec_raw, "extension", RecordingCfg.extension),
        timestamp_format=_as_str(rec_raw, "timestamp_format", RecordingCfg.timestamp_format),
        recent_values=_as_int(rec_raw, "recent_values", RecordingCfg.recent_values),
    )
    lg_raw = dict(raw.get("logging") or {})
    log = LoggingCfg(
        dir=_as_str(lg_raw, "dir", LoggingCfg.dir),
        file_prefix=_as_str(lg_raw, "file_prefix", LoggingCfg.file_prefix),
        mode=_as_str(lg_raw, "mode", LoggingCfg.mode),
        verbose_whitelist=_as_str_list(lg_raw, "verbose_whitelist"),
        dual_file=_as_bool(lg_raw, "dual_file", LoggingCfg.dual_file),
        debug_subdir=_as_str(lg_raw, "debug_subdir", LoggingCfg.debug_subdir),
    )
    return AppCfg(
        adapter=adapter,
        scan=scan,
        connect=connect,
        recording=recording,
        logging=log,
        strict=_as_bool(raw, "strict", False),
    )


def load_config(path: Optional[str]) -> AppCfg:
    if not path:
        return AppCfg()
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)
    return parse_config(raw)

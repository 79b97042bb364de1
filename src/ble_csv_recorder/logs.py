from __future__ import annotations
import os, json, time, pathlib, uuid
from typing import Any, Iterable, Optional, IO

class NdjsonLogger:
    """Diagnostic event log, one JSON object per line.

    Records carry ``type`` (info/debug/warn/error/status/event), ``msg`` and a
    ``data`` dict. The logger stamps ``hms``, ``seq``, ``schema``,
    ``session_id`` and ``pid``. Files are time-coded and rotate at day change.
    Write failures are swallowed; diagnostics must never break recording.
    """

    def __init__(
        self,
        directory: str,
        file_prefix: str,
        *,
        mode: str = "regular",
        verbose_whitelist: Optional[Iterable[str]] = None,
        dual_file: bool = False,
        debug_subdir: Optional[str] = None,
    ):
        self.dir = pathlib.Path(directory)
        self.dir.mkdir(parents=True, exist_ok=True)
        self.prefix = file_prefix
        # 'regular' drops debug records unless whitelisted; 'verbose' keeps all
        self.mode = mode
        self.verbose_whitelist = set(verbose_whitelist or ())
        self.dual_file = bool(dual_file)
        self.debug_subdir = debug_subdir or "debug"
        self._debug_dir: Optional[pathlib.Path] = None
        self.seq = 0
        self._fh: Optional[IO[str]] = None
        self._rot_day: Optional[str] = None
        self._path: Optional[pathlib.Path] = None
        self._debug_fh: Optional[IO[str]] = None
        self._debug_path: Optional[pathlib.Path] = None
        self.session_id: str = uuid.uuid4().hex[:12]
        self.pid: int = os.getpid()
        self.rotate()

    @property
    def path(self) -> Optional[pathlib.Path]:
        return self._path

    @property
    def debug_path(self) -> Optional[pathlib.Path]:
        return self._debug_path

    def rotate(self):
        self.close()
        # Time-coded filename, e.g. recorder_YYYYMMDD_HHMMSS.ndjson
        now = time.time()
        stamp = time.strftime("%Y%m%d_%H%M%S", time.localtime(now))
        path = self.dir / f"{self.prefix}_{stamp}.ndjson"
        self._fh = open(path, "a", buffering=1, encoding="utf-8")
        self._path = path
        if self.dual_file:
            self._debug_dir = self.dir / self.debug_subdir
            try:
                self._debug_dir.mkdir(parents=True, exist_ok=True)
            except OSError:
                self._debug_dir = self.dir
            dpath = self._debug_dir / f"{self.prefix}_debug_{stamp}.ndjson"
            try:
                self._debug_fh = open(dpath, "a", buffering=1, encoding="utf-8")
                self._debug_path = dpath
            except OSError:
                self._debug_fh = None
        self._rot_day = stamp[:8]

    def close(self):
        for fh in (self._fh, self._debug_fh):
            if fh:
                try:
                    fh.close()
                except OSError:
                    pass
        self._fh = None
        self._debug_fh = None

    def _allowed_in_main(self, obj: dict) -> bool:
        if self.mode != "regular":
            return True
        if obj.get("type") == "debug":
            return obj.get("msg") in self.verbose_whitelist
        return True

    def write(self, obj: dict):
        self.seq += 1
        now = time.time()
        lt = time.localtime(now)
        msec = int((now % 1.0) * 1000)
        obj.setdefault("hms", time.strftime("%H:%M:%S", lt) + f".{msec:03d}")
        obj.setdefault("seq", self.seq)
        obj.setdefault("schema", "v1")
        obj.setdefault("session_id", self.session_id)
        obj.setdefault("pid", self.pid)
        if time.strftime("%Y%m%d", lt) != self._rot_day:
            try:
                self.rotate()
            except OSError:
                pass

        try:
            line = json.dumps(obj, default=str) + "\n"
        except (TypeError, ValueError):
            return
        # Debug file gets the full record regardless of mode
        try:
            if self.dual_file and self._debug_fh:
                self._debug_fh.write(line)
        except OSError:
            pass
        if not self._allowed_in_main(obj):
            return
        try:
            if self._fh:
                self._fh.write(line)
        except OSError:
            pass

    def event(self, typ: str, msg: str, **data: Any):
        self.write({"type": typ, "msg": msg, "data": data})

    def debug(self, msg: str, **data: Any):
        self.event("debug", msg, **data)

    def info(self, msg: str, **data: Any):
        self.event("info", msg, **data)

    def warn(self, msg: str, **data: Any):
        self.event("warn", msg, **data)

    def error(self, msg: str, **data: Any):
        self.event("error", msg, **data)

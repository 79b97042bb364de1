from __future__ import annotations
import os, pathlib, tempfile
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence
from .faults import Fault, FaultKind, FaultSink, ignore_fault
from .logs import NdjsonLogger


@dataclass(frozen=True)
class AppendResult:
    ok: bool
    path: Optional[pathlib.Path] = None
    error: Optional[str] = None


def join_row(row: Sequence[str]) -> str:
    # Bare comma, no quoting: a payload containing a comma shifts columns.
    return ",".join(row) + "\n"


class LineRecorder:
    """Appends one comma-joined row per call to `<directory>/<log_name><extension>`.

    A missing file is created atomically (temp file + rename) with the first
    row and no header; an existing one is opened for append. Nothing is kept
    open between calls. Failures are logged, reported to the fault sink and
    returned as a failed AppendResult; they never raise.
    """

    def __init__(
        self,
        directory: str,
        extension: str = ".csv",
        logger: Optional[NdjsonLogger] = None,
        on_fault: FaultSink = ignore_fault,
    ):
        self.directory = directory
        self.extension = extension
        self.logger = logger
        self.on_fault = on_fault

    def path_for(self, log_name: str) -> pathlib.Path:
        return pathlib.Path(self.directory) / f"{log_name}{self.extension}"

    def contains(self, path: pathlib.Path) -> bool:
        """True if `path` sits directly in the recording directory."""
        return path.parent.resolve() == pathlib.Path(self.directory).resolve()

    def _fail(self, msg: str, path: Optional[pathlib.Path], err: Exception) -> AppendResult:
        text = f"{type(err).__name__}: {err}"
        if self.logger:
            self.logger.error(msg, path=str(path) if path else None, error=text)
        self.on_fault(Fault(FaultKind.STORAGE, msg, {"path": str(path) if path else None, "error": text}))
        return AppendResult(False, path, text)

    def append(self, log_name: str, row: Sequence[str]) -> AppendResult:
        try:
            d = pathlib.Path(self.directory)
            d.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            return self._fail("log_dir_unavailable", None, e)

        path = self.path_for(log_name)
        if not self.contains(path):
            return self._fail("log_name_outside_dir", path, ValueError(f"log name {log_name!r} leaves {self.directory}"))
        line = join_row(row)
        if not path.exists():
            try:
                self._create(path, line)
            except OSError as e:
                return self._fail("log_create_failed", path, e)
            if self.logger:
                self.logger.info("log_created", path=str(path))
            return AppendResult(True, path)

        try:
            with open(path, "a", encoding="utf-8", newline="") as fh:
                fh.seek(0, os.SEEK_END)
                fh.write(line)
        except OSError as e:
            return self._fail("log_append_failed", path, e)
        if self.logger:
            self.logger.debug("row_appended", path=str(path), row=list(row))
        return AppendResult(True, path)

    @staticmethod
    def _create(path: pathlib.Path, line: str):
        fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
                fh.write(line)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, path)
        except BaseException:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise


class MemoryRecorder:
    """In-memory stand-in for LineRecorder; keeps rows per log name."""

    def __init__(self):
        self.rows: Dict[str, List[List[str]]] = {}
        self.calls = 0

    def path_for(self, log_name: str) -> pathlib.Path:
        return pathlib.Path(f"{log_name}.csv")

    def append(self, log_name: str, row: Sequence[str]) -> AppendResult:
        self.calls += 1
        self.rows.setdefault(log_name, []).append(list(row))
        return AppendResult(True, None)

    def text(self, log_name: str) -> str:
        return "".join(join_row(r) for r in self.rows.get(log_name, []))

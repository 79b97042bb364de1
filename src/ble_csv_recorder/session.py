from __future__ import annotations
from datetime import datetime
from typing import NamedTuple, Optional


class LogRow(NamedTuple):
    timestamp: str
    payload: str

    def fields(self):
        return [self.timestamp, self.payload]


def format_timestamp(when: datetime, fmt: str = "%Y-%m-%d %H:%M:%S.%f") -> str:
    """Format `when` with millisecond precision (yyyy-MM-dd HH:mm:ss.SSS by default)."""
    s = when.strftime(fmt)
    # %f renders microseconds; keep three digits
    if fmt.endswith("%f"):
        s = s[:-3]
    return s


class RecordingSession:
    """Recording flag plus the target log name.

    While ``is_recording`` is False nothing is written, however much data arrives.
    """

    def __init__(self, default_name: str = "ReceivedData"):
        self.default_name = default_name
        self.log_name: str = default_name
        self.is_recording: bool = False

    def set_log_name(self, name: Optional[str]) -> str:
        # one file name, never a path
        name = (name or "").strip().replace("/", "_").replace("\\", "_")
        self.log_name = name or self.default_name
        return self.log_name

    def start(self) -> bool:
        """Returns True if the flag changed."""
        changed = not self.is_recording
        self.is_recording = True
        return changed

    def stop(self) -> bool:
        changed = self.is_recording
        self.is_recording = False
        return changed

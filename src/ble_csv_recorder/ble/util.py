from __future__ import annotations
import asyncio
from asyncio.subprocess import PIPE
from typing import Optional, Tuple

# Global lock to serialize BlueZ discovery/scanning
scan_lock = asyncio.Lock()

async def bluetoothctl(*args: str) -> Tuple[Optional[int], str]:
    """Best-effort call to bluetoothctl.

    Returns (returncode, stdout); returncode is None when the tool is missing.
    """
    try:
        proc = await asyncio.create_subprocess_exec("bluetoothctl", *args, stdout=PIPE, stderr=PIPE)
        out, _ = await proc.communicate()
    except (OSError, asyncio.SubprocessError):
        return None, ""
    return proc.returncode or 0, out.decode("utf-8", "replace")

async def bluez_scan_off():
    """Best-effort: stop any bluetoothctl discovery to avoid BlueZ InProgress."""
    await bluetoothctl("--timeout", "1", "scan", "off")

def parse_powered(show_output: str) -> Optional[bool]:
    """Read the `Powered:` line of `bluetoothctl show`; None if absent."""
    for line in show_output.splitlines():
        line = line.strip()
        if line.startswith("Powered:"):
            return line.split(":", 1)[1].strip().lower() == "yes"
    return None

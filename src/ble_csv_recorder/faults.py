from __future__ import annotations
import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict


class FaultKind(str, enum.Enum):
    ADAPTER_UNAVAILABLE = "adapter_unavailable"
    CONNECTION = "connection"
    DELIVERY = "delivery"
    DECODE = "decode"
    STORAGE = "storage"


@dataclass(frozen=True)
class Fault:
    kind: FaultKind
    message: str
    detail: Dict[str, Any] = field(default_factory=dict)


class RecorderError(RuntimeError):
    """Raised when a fault is escalated (strict mode)."""

    def __init__(self, fault: Fault):
        super().__init__(f"{fault.kind.value}: {fault.message}")
        self.fault = fault


FaultSink = Callable[[Fault], None]


def ignore_fault(_fault: Fault) -> None:
    return None


class RecorderStopped(RuntimeError):
    """A command arrived after the event queue stopped."""

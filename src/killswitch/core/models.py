"""Core data models for killswitch.

Defines the process snapshot, resource sample, threshold policy and the
death receipt, plus the result objects returned by the monitor, the wrap
supervisor and the verifier.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

RECEIPT_TYPE = "AI_TERMINATION"
UNKNOWN = "unknown"
BYTES_PER_MB = 1024 * 1024


class KillStatus(str, Enum):
    """Outcome of a forced kill, as recorded in the receipt."""

    KILLED = "KILLED"
    KILL_FAILED = "KILL_FAILED"


class TriggerKind(str, Enum):
    """Condition that ended a monitor run."""

    NATURAL_EXIT = "natural_exit"
    TIMEOUT = "timeout"
    CPU = "cpu"
    MEMORY = "memory"

    @property
    def is_kill(self) -> bool:
        return self is not TriggerKind.NATURAL_EXIT


class MonitorState(str, Enum):
    """Lifecycle of a single monitor run."""

    IDLE = "idle"
    WATCHING = "watching"
    NATURAL_EXIT = "natural_exit"
    TIMEOUT_TRIGGERED = "timeout_triggered"
    THRESHOLD_TRIGGERED = "threshold_triggered"
    TERMINATED = "terminated"


_TRIGGER_STATES: dict[TriggerKind, MonitorState] = {
    TriggerKind.NATURAL_EXIT: MonitorState.NATURAL_EXIT,
    TriggerKind.TIMEOUT: MonitorState.TIMEOUT_TRIGGERED,
    TriggerKind.CPU: MonitorState.THRESHOLD_TRIGGERED,
    TriggerKind.MEMORY: MonitorState.THRESHOLD_TRIGGERED,
}


def state_for_trigger(trigger: TriggerKind) -> MonitorState:
    """Map a trigger to the monitor state it enters."""
    return _TRIGGER_STATES[trigger]


# ---------------------------------------------------------------------------
# Process and resource snapshots
# ---------------------------------------------------------------------------


def is_valid_pid(pid: Any) -> bool:
    """True for a positive ``int`` (``bool`` excluded)."""
    return isinstance(pid, int) and not isinstance(pid, bool) and pid > 0


@dataclass(frozen=True)
class ProcessHandle:
    """Identity of a target process, captured once before termination.

    ``"unknown"`` for name or command line is a valid value, not an error.
    """

    pid: int
    name: str = UNKNOWN
    command_line: str = UNKNOWN

    def __post_init__(self) -> None:
        if not is_valid_pid(self.pid):
            raise ValueError(f"pid must be a positive integer (got {self.pid!r})")

    def to_dict(self) -> dict[str, Any]:
        return {"pid": self.pid, "name": self.name, "cmd": self.command_line}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> ProcessHandle:
        return cls(pid=d["pid"], name=d["name"], command_line=d["cmd"])


@dataclass(frozen=True)
class ResourceSample:
    """CPU and resident memory of a process at one poll tick."""

    cpu_percent: float
    memory_bytes: int
    sampled_at: float = field(default_factory=time.time)

    @property
    def memory_mb(self) -> float:
        return self.memory_bytes / BYTES_PER_MB


@dataclass(frozen=True)
class ThresholdPolicy:
    """Limits applied for the whole of one monitor run."""

    cpu_limit_percent: float
    memory_limit_bytes: int
    timeout_seconds: float

    def __post_init__(self) -> None:
        if self.cpu_limit_percent < 0:
            raise ValueError("cpu_limit_percent must be >= 0")
        if self.memory_limit_bytes < 0:
            raise ValueError("memory_limit_bytes must be >= 0")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

    @classmethod
    def from_megabytes(
        cls, cpu_percent: float, memory_mb: float, timeout_seconds: float,
    ) -> ThresholdPolicy:
        return cls(
            cpu_limit_percent=float(cpu_percent),
            memory_limit_bytes=int(memory_mb * BYTES_PER_MB),
            timeout_seconds=float(timeout_seconds),
        )

    @property
    def memory_limit_mb(self) -> float:
        return self.memory_limit_bytes / BYTES_PER_MB


# ---------------------------------------------------------------------------
# Death receipt
# ---------------------------------------------------------------------------


@dataclass
class DeathReceipt:
    """Record of a forced termination.

    ``status`` is attached once the kill outcome is known, ``signer`` and
    ``signature`` once the receipt is signed.  ``extra`` holds fields found
    in a parsed file that this version does not know about; they stay part
    of the signed payload.
    """

    process: ProcessHandle
    reason: str
    timestamp: str
    killer: str
    status: KillStatus | None = None
    signer: str | None = None
    signature: str | None = None
    type: str = RECEIPT_TYPE
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_signed(self) -> bool:
        return bool(self.signer and self.signature)

    def payload_dict(self) -> dict[str, Any]:
        """Every field except ``signer``/``signature``, in signing order."""
        d: dict[str, Any] = {
            "type": self.type,
            "process": self.process.to_dict(),
            "reason": self.reason,
            "timestamp": self.timestamp,
            "killer": self.killer,
        }
        if self.status is not None:
            d["status"] = self.status.value
        for key, value in self.extra.items():
            d[key] = value
        return d

    def to_dict(self) -> dict[str, Any]:
        d = self.payload_dict()
        if self.signer is not None:
            d["signer"] = self.signer
        if self.signature is not None:
            d["signature"] = self.signature
        return d


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


@dataclass
class TerminationResult:
    """What happened when a trigger fired against a process."""

    pid: int
    status: KillStatus
    handle: ProcessHandle
    receipt: DeathReceipt | None = None
    receipt_path: Path | None = None
    message: str = ""

    @property
    def killed(self) -> bool:
        return self.status is KillStatus.KILLED


@dataclass
class MonitorOutcome:
    """Single terminal transition of a monitor run."""

    trigger: TriggerKind
    reason: str
    ticks: int
    sample: ResourceSample | None = None
    termination: TerminationResult | None = None


@dataclass
class WrapOutcome:
    """Result of a wrapped execution."""

    trigger: TriggerKind
    exit_code: int
    pid: int
    termination: TerminationResult | None = None


@dataclass
class VerificationResult:
    """Outcome of checking a receipt signature."""

    valid: bool
    signer: str
    recovered: str | None
    message: str = ""

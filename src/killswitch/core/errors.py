"""Error kinds raised by killswitch components."""

from __future__ import annotations


class KillswitchError(Exception):
    """Base class for all killswitch errors."""


class MissingSigningKey(KillswitchError):
    """No private key was supplied by flag or environment."""


class InvalidSigningKey(KillswitchError):
    """A private key was supplied but could not be loaded."""


class ProcessNotFound(KillswitchError):
    """The target process no longer exists (or cannot be read)."""

    def __init__(self, pid: int, message: str = "") -> None:
        self.pid = pid
        super().__init__(message or f"Process {pid} not found")


class KillFailed(KillswitchError):
    """Forced termination failed, including the OS-specific fallback."""

    def __init__(self, pid: int, message: str = "") -> None:
        self.pid = pid
        super().__init__(message or f"Could not kill process {pid}")


class ReceiptParseError(KillswitchError):
    """A receipt file is not valid JSON or lacks required fields."""

"""Process sensors: identity, resource usage and liveness of one PID.

- :class:`ProcessInspector` captures name and command line for the receipt.
  It is advisory: lookup errors give ``"unknown"``, and only a PID that
  cannot exist (zero or negative) is rejected.
- :class:`ResourceSampler` reads CPU percent (relative to one core) and
  resident memory, raising :class:`ProcessNotFound` once the process is
  gone.
- :class:`ProcessLiveness` implementations answer "does the PID still
  exist?".  :func:`default_liveness` picks one for the running platform.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Protocol

import psutil

from killswitch.core.errors import ProcessNotFound
from killswitch.core.models import (
    UNKNOWN,
    ProcessHandle,
    ResourceSample,
    is_valid_pid,
)

logger = logging.getLogger(__name__)


class ProcessInspector:
    """Best-effort lookup of a process's display name and command line."""

    def inspect(self, pid: int) -> ProcessHandle:
        """Raises :class:`ProcessNotFound` only for a PID that cannot exist."""
        if not is_valid_pid(pid):
            raise ProcessNotFound(pid, f"Invalid pid: {pid!r}")
        try:
            proc = psutil.Process(pid)
            with proc.oneshot():
                name = proc.name() or UNKNOWN
                cmdline = " ".join(proc.cmdline()) or name
        except (psutil.Error, OSError):
            logger.debug("Could not inspect process %d", pid, exc_info=True)
            return ProcessHandle(pid=pid)
        return ProcessHandle(pid=pid, name=name, command_line=cmdline)


class ResourceSampler:
    """Sample CPU and memory for a single process.

    Parameters
    ----------
    sample_window:
        Seconds over which CPU usage is measured.  Kept short so a tick
        never blocks much longer than the window.
    """

    def __init__(self, sample_window: float = 0.1) -> None:
        self._window = sample_window

    def sample(self, pid: int) -> ResourceSample:
        if not is_valid_pid(pid):
            raise ProcessNotFound(pid, f"Invalid pid: {pid!r}")
        try:
            proc = psutil.Process(pid)
            cpu = proc.cpu_percent(interval=self._window)
            rss = proc.memory_info().rss
        except psutil.NoSuchProcess as exc:
            # ZombieProcess is a NoSuchProcess subclass
            raise ProcessNotFound(pid, f"Process {pid} ended") from exc
        except psutil.AccessDenied as exc:
            raise ProcessNotFound(pid, f"Process {pid} inaccessible") from exc
        return ResourceSample(cpu_percent=float(cpu), memory_bytes=int(rss))


# ---------------------------------------------------------------------------
# Liveness
# ---------------------------------------------------------------------------


class ProcessLiveness(Protocol):
    def is_alive(self, pid: int) -> bool: ...


class PosixLiveness:
    """Signal-0 probe.  A zombie is reported as dead."""

    def is_alive(self, pid: int) -> bool:
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            # Exists but owned by someone else
            return True
        try:
            return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            return True


class PsutilLiveness:
    """Liveness via :func:`psutil.pid_exists`, used where signal 0 is absent."""

    def is_alive(self, pid: int) -> bool:
        return psutil.pid_exists(pid)


def default_liveness() -> ProcessLiveness:
    if sys.platform == "win32":
        return PsutilLiveness()
    return PosixLiveness()

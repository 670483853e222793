"""Wrap mode: spawn a command and kill it if it outlives its timeout.

Only the timeout is watched; there is no resource sampling.  The child's
own exit and the timeout race, and whichever is observed first claims the
run.  A child that exits in the instant the timeout expires is treated as
a natural exit and is not killed.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import threading
from collections.abc import Callable, Sequence

from killswitch.core.engine import TerminationEngine
from killswitch.core.models import (
    MonitorState,
    ProcessHandle,
    TriggerKind,
    WrapOutcome,
    state_for_trigger,
)

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
SYSTEM_KILLER = "system"


def command_string(argv: Sequence[str]) -> str:
    """Join *argv* into a single shell command line."""
    if len(argv) == 1:
        return argv[0]
    if os.name == "nt":
        return subprocess.list2cmdline(list(argv))
    return shlex.join(argv)


def exit_code_for(returncode: int) -> int:
    """Map a Popen return code to a process exit status."""
    if returncode < 0:
        return 128 + (-returncode)
    return returncode


class WrapSupervisor:
    """Run *command* through the shell with inherited stdio and a deadline.

    Parameters
    ----------
    command:
        Argument vector; joined into one shell command line.
    timeout_seconds:
        Wall-clock limit measured from spawn.
    engine:
        Performs the kill and receipt on timeout.
    reason:
        Receipt reason prefix; ``" (timeout)"`` is appended.
    popen:
        Process factory, injectable for tests.
    """

    def __init__(
        self,
        command: Sequence[str],
        timeout_seconds: float,
        engine: TerminationEngine,
        reason: str = "wrapped execution",
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
    ) -> None:
        if not command:
            raise ValueError("command must not be empty")
        self._argv = list(command)
        self._command = command_string(self._argv)
        self._timeout = timeout_seconds
        self._engine = engine
        self._reason = reason
        self._popen = popen
        self._state = MonitorState.IDLE
        self._completed = False
        self._lock = threading.Lock()

    @property
    def command(self) -> str:
        return self._command

    @property
    def state(self) -> MonitorState:
        return self._state

    def _claim(self, trigger: TriggerKind) -> bool:
        with self._lock:
            if self._completed:
                return False
            self._completed = True
            self._state = state_for_trigger(trigger)
            return True

    def run(self) -> WrapOutcome:
        child = self._popen(self._command, shell=True)
        self._state = MonitorState.WATCHING
        logger.info("Wrapped PID %d: %s", child.pid, self._command)

        try:
            returncode = child.wait(timeout=self._timeout)
        except subprocess.TimeoutExpired:
            returncode = child.poll()
            if returncode is None and self._claim(TriggerKind.TIMEOUT):
                return self._kill_on_timeout(child)
            # The child won the race
            returncode = child.wait()

        self._claim(TriggerKind.NATURAL_EXIT)
        self._state = MonitorState.TERMINATED
        logger.info("Wrapped PID %d exited with code %d", child.pid, returncode)
        return WrapOutcome(
            trigger=TriggerKind.NATURAL_EXIT,
            exit_code=exit_code_for(returncode),
            pid=child.pid,
        )

    def _kill_on_timeout(self, child: subprocess.Popen) -> WrapOutcome:
        handle = ProcessHandle(
            pid=child.pid, name=self._argv[0], command_line=self._command,
        )
        termination = self._engine.terminate(
            child.pid,
            f"{self._reason} (timeout)",
            killer=SYSTEM_KILLER,
            handle=handle,
            include_children=True,
        )
        if termination.killed:
            child.wait()
        self._state = MonitorState.TERMINATED
        return WrapOutcome(
            trigger=TriggerKind.TIMEOUT,
            exit_code=TIMEOUT_EXIT_CODE,
            pid=child.pid,
            termination=termination,
        )

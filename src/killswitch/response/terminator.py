"""Forced process termination.

The primary path is :meth:`psutil.Process.kill` (SIGKILL on POSIX,
TerminateProcess on Windows).  If that fails for any reason other than the
process already being gone, an OS command is tried instead:
``taskkill /F /T /PID`` on Windows, ``kill -9`` elsewhere.
"""

from __future__ import annotations

import logging
import subprocess
import sys

import psutil

from killswitch.core.errors import KillFailed

logger = logging.getLogger(__name__)


class ProcessTerminator:
    """Kill a process, falling back to an OS command when psutil fails."""

    def kill(self, pid: int, include_children: bool = False) -> str:
        """Kill *pid*.  Returns the method that worked.

        Parameters
        ----------
        pid:
            Target process ID.
        include_children:
            Also kill every descendant (used for shell-wrapped commands).

        Raises
        ------
        KillFailed
            If neither psutil nor the fallback command succeeded.
        """
        try:
            self._kill_with_psutil(pid, include_children)
            logger.info("Process %d killed", pid)
            return "psutil"
        except psutil.NoSuchProcess as exc:
            raise KillFailed(pid, f"Process {pid} does not exist") from exc
        except (psutil.Error, OSError) as exc:
            logger.warning(
                "psutil kill of %d failed (%s), trying fallback", pid, exc,
            )

        try:
            self._kill_with_command(pid)
        except (subprocess.CalledProcessError, OSError) as exc:
            raise KillFailed(pid, f"Kill failed: {exc}") from exc
        logger.info("Process %d killed via fallback command", pid)
        return "command"

    @staticmethod
    def _kill_with_psutil(pid: int, include_children: bool) -> None:
        proc = psutil.Process(pid)
        if include_children:
            for child in proc.children(recursive=True):
                try:
                    child.kill()
                except psutil.NoSuchProcess:
                    continue
        proc.kill()

    @staticmethod
    def _kill_with_command(pid: int) -> None:
        if sys.platform == "win32":
            cmd = ["taskkill", "/F", "/T", "/PID", str(pid)]
        else:
            cmd = ["kill", "-9", str(pid)]
        subprocess.run(cmd, check=True, capture_output=True)

"""Termination engine: the terminal action of every kill path.

On a trigger the engine:
  1. captures a :class:`ProcessHandle` snapshot (unless one is given),
  2. builds an unsigned receipt when a signing key is configured,
  3. force-kills the target and records ``KILLED`` or ``KILL_FAILED``,
  4. signs the receipt, writes it to disk and pings the counter.

Without a key the process is still killed but no receipt is produced.
Signing and write errors propagate to the caller; a failed kill does not,
it is recorded in the receipt instead.
"""

from __future__ import annotations

import logging
from pathlib import Path

from killswitch.core.config import SigningConfig
from killswitch.core.errors import KillFailed, ProcessNotFound
from killswitch.core.models import (
    KillStatus,
    ProcessHandle,
    TerminationResult,
    is_valid_pid,
)
from killswitch.receipts.codec import build_receipt, write_receipt
from killswitch.response.notifier import CounterNotifier
from killswitch.response.terminator import ProcessTerminator
from killswitch.sensors.process import ProcessInspector

logger = logging.getLogger(__name__)


class TerminationEngine:
    """Kill a process and, when keyed, emit a signed death receipt.

    Parameters
    ----------
    signing:
        Resolved signing configuration.  An invalid key raises
        :class:`InvalidSigningKey` here, before anything is killed.
    output_path:
        Where the receipt file is written.
    inspector, terminator, notifier:
        Collaborators; defaults are the real implementations.
    """

    def __init__(
        self,
        signing: SigningConfig,
        output_path: str | Path = "death-receipt.json",
        inspector: ProcessInspector | None = None,
        terminator: ProcessTerminator | None = None,
        notifier: CounterNotifier | None = None,
    ) -> None:
        self._signer = signing.signer()
        self._output_path = Path(output_path)
        self._inspector = inspector or ProcessInspector()
        self._terminator = terminator or ProcessTerminator()
        self._notifier = notifier or CounterNotifier(enabled=False)

    @property
    def signing_enabled(self) -> bool:
        return self._signer is not None

    @property
    def signer_address(self) -> str | None:
        return self._signer.address if self._signer else None

    @property
    def output_path(self) -> Path:
        return self._output_path

    def terminate(
        self,
        pid: int,
        reason: str,
        killer: str | None = None,
        handle: ProcessHandle | None = None,
        include_children: bool = False,
    ) -> TerminationResult:
        """Kill *pid* and record the outcome.

        A PID that cannot exist raises :class:`ProcessNotFound` before
        anything is killed or written.
        """
        if not is_valid_pid(pid):
            raise ProcessNotFound(pid, f"Invalid pid: {pid!r}")
        if handle is None:
            handle = self._inspector.inspect(pid)
        logger.info("Terminating %d (%s): %s", pid, handle.name, reason)

        receipt = None
        if self._signer is not None:
            receipt = build_receipt(
                handle, reason, killer or self._signer.address,
            )

        try:
            self._terminator.kill(pid, include_children=include_children)
            status = KillStatus.KILLED
            message = f"Process {pid} terminated."
        except KillFailed as exc:
            logger.error("Kill of %d failed: %s", pid, exc)
            status = KillStatus.KILL_FAILED
            message = f"Kill failed: {exc}"

        result = TerminationResult(
            pid=pid, status=status, handle=handle, message=message,
        )
        if receipt is None:
            return result

        receipt.status = status
        signed = self._signer.sign(receipt)
        result.receipt = signed
        result.receipt_path = write_receipt(signed, self._output_path)
        self._notifier.notify(signed)
        return result

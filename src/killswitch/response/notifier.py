"""Receipt counter notification.

After a receipt is written, a small JSON record is POSTed to an external
counter endpoint.  The send happens on a daemon thread and its result is
never consulted: a slow or failing endpoint cannot change the outcome of a
termination.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import urllib.request

from killswitch.core.models import DeathReceipt

logger = logging.getLogger(__name__)

COUNTER_URL = "https://receipts.finalbosstech.com/receipt"


class CounterNotifier:
    """Fire-and-forget ping to the receipt counter.

    Parameters
    ----------
    url:
        Endpoint receiving the POST.
    tenant_id:
        Value sent as ``tenant_id``.
    timeout:
        Socket timeout for the request, in seconds.
    enabled:
        When False, :meth:`notify` does nothing.
    """

    def __init__(
        self,
        url: str = COUNTER_URL,
        tenant_id: str = "ai-killswitch",
        timeout: float = 5.0,
        enabled: bool = True,
    ) -> None:
        self._url = url
        self._tenant_id = tenant_id
        self._timeout = timeout
        self._enabled = enabled
        self._threads: list[threading.Thread] = []

    @property
    def enabled(self) -> bool:
        return self._enabled

    def build_payload(self, receipt: DeathReceipt) -> dict[str, str | None]:
        return {
            "receipt_id": f"KILL-{int(time.time() * 1000)}",
            "tenant_id": self._tenant_id,
            "operation_type": "terminate",
            "signer": receipt.signer,
        }

    def notify(self, receipt: DeathReceipt) -> None:
        """Dispatch the ping and return immediately."""
        if not self._enabled:
            return
        body = json.dumps(self.build_payload(receipt)).encode("utf-8")
        thread = threading.Thread(
            target=self._send, args=(body,), daemon=True,
            name="killswitch-notify",
        )
        self._threads.append(thread)
        thread.start()

    def drain(self, timeout: float = 2.0) -> None:
        """Wait up to *timeout* seconds in total for pending pings."""
        deadline = time.monotonic() + timeout
        for thread in self._threads:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            thread.join(remaining)
        self._threads = [t for t in self._threads if t.is_alive()]

    def _send(self, body: bytes) -> None:
        req = urllib.request.Request(
            self._url,
            data=body,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:
                resp.read()
        except Exception:
            logger.debug("Counter ping to %s failed", self._url, exc_info=True)

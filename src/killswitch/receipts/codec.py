"""Death receipt codec.

Builds receipts, produces the canonical bytes that get signed, and parses
receipt files back into :class:`DeathReceipt` objects.

The canonical form is compact JSON with keys in a fixed order::

    type, process{pid, name, cmd}, reason, timestamp, killer, status

followed by any extra keys carried over from a parsed file.  ``signer`` and
``signature`` are never part of it.  Non-ASCII text is emitted as UTF-8,
not ``\\u`` escapes, and integral floats in carried-over fields are written
as integers, so the bytes match what a JavaScript ``JSON.stringify`` of the
same object would produce.  Non-integral floats whose Python and JavaScript
renderings differ (``1e-05`` against ``0.00001``) are not rewritten.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from killswitch.core.errors import ReceiptParseError
from killswitch.core.models import (
    RECEIPT_TYPE,
    DeathReceipt,
    KillStatus,
    ProcessHandle,
    is_valid_pid,
)

logger = logging.getLogger(__name__)

PAYLOAD_FIELDS = ("type", "process", "reason", "timestamp", "killer", "status")
SIGNATURE_FIELDS = ("signer", "signature")
_REQUIRED_TEXT_FIELDS = ("reason", "timestamp", "killer")


def iso_timestamp(now: datetime | None = None) -> str:
    """UTC timestamp with millisecond precision, e.g. ``...T12:00:00.000Z``."""
    now = now or datetime.now(timezone.utc)
    now = now.astimezone(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_receipt(
    handle: ProcessHandle,
    reason: str,
    killer: str,
    now: datetime | None = None,
) -> DeathReceipt:
    """Create an unsigned receipt.  ``status`` stays unset."""
    return DeathReceipt(
        process=handle,
        reason=reason,
        timestamp=iso_timestamp(now),
        killer=killer,
    )


def _js_numbers(value: Any) -> Any:
    """Write integral floats as integers, as ``JSON.stringify`` does (``1.0`` is ``1``)."""
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return int(value)
    if isinstance(value, dict):
        return {k: _js_numbers(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_js_numbers(v) for v in value]
    return value


def canonicalize(receipt: DeathReceipt) -> bytes:
    """Deterministic signing payload for *receipt*."""
    return json.dumps(
        _js_numbers(receipt.payload_dict()),
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def dumps_receipt(receipt: DeathReceipt) -> str:
    """Pretty-printed receipt file contents."""
    return json.dumps(receipt.to_dict(), indent=2, ensure_ascii=False)


def write_receipt(receipt: DeathReceipt, path: str | Path) -> Path:
    """Write *receipt* to *path* as UTF-8 JSON.  Returns the path."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dumps_receipt(receipt) + "\n", encoding="utf-8")
    logger.info("Death receipt written to %s", path)
    return path


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _parse_process(raw: Any) -> ProcessHandle:
    if not isinstance(raw, dict):
        raise ReceiptParseError("Receipt has no 'process' object")
    pid = raw.get("pid")
    if not is_valid_pid(pid):
        raise ReceiptParseError(f"Invalid process pid: {pid!r}")
    for key in ("name", "cmd"):
        if not isinstance(raw.get(key), str):
            raise ReceiptParseError(f"Process field '{key}' missing or not a string")
    extra = set(raw) - {"pid", "name", "cmd"}
    if extra:
        # Extra process keys cannot be represented and would change the payload.
        raise ReceiptParseError(f"Unexpected process fields: {sorted(extra)}")
    return ProcessHandle.from_dict(raw)


def receipt_from_dict(
    data: Any, require_signature: bool = True,
) -> DeathReceipt:
    """Validate a decoded JSON object and build a :class:`DeathReceipt`."""
    if not isinstance(data, dict):
        raise ReceiptParseError("Receipt must be a JSON object")

    if data.get("type") != RECEIPT_TYPE:
        raise ReceiptParseError(f"Unexpected receipt type: {data.get('type')!r}")

    process = _parse_process(data.get("process"))

    for key in _REQUIRED_TEXT_FIELDS:
        if not isinstance(data.get(key), str):
            raise ReceiptParseError(f"Receipt field '{key}' missing or not a string")

    status = None
    if "status" in data:
        try:
            status = KillStatus(data["status"])
        except ValueError:
            raise ReceiptParseError(
                f"Unknown receipt status: {data['status']!r}"
            ) from None

    signer = data.get("signer")
    signature = data.get("signature")
    if require_signature:
        if not isinstance(signer, str) or not signer:
            raise ReceiptParseError("Receipt is missing 'signer'")
        if not isinstance(signature, str) or not signature:
            raise ReceiptParseError("Receipt is missing 'signature'")

    known = set(PAYLOAD_FIELDS) | set(SIGNATURE_FIELDS)
    extra = {k: v for k, v in data.items() if k not in known}

    return DeathReceipt(
        process=process,
        reason=data["reason"],
        timestamp=data["timestamp"],
        killer=data["killer"],
        status=status,
        signer=signer,
        signature=signature,
        extra=extra,
    )


def parse_receipt(
    raw: bytes | str, require_signature: bool = True,
) -> DeathReceipt:
    """Decode receipt JSON.  Raises :class:`ReceiptParseError`."""
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ReceiptParseError(f"Receipt is not UTF-8: {exc}") from exc
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ReceiptParseError(f"Malformed receipt JSON: {exc}") from exc
    return receipt_from_dict(data, require_signature=require_signature)


def read_receipt(
    path: str | Path, require_signature: bool = True,
) -> DeathReceipt:
    """Read and parse a receipt file."""
    path = Path(path)
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise ReceiptParseError(f"Cannot read receipt {path}: {exc}") from exc
    return parse_receipt(raw, require_signature=require_signature)

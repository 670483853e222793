"""Receipt signing and verification.

Signatures are Ethereum personal-message signatures (EIP-191): the payload
is prefixed with ``"\\x19Ethereum Signed Message:\\n" + len(payload)``,
hashed with keccak-256 and signed with secp256k1.  The signature is
recoverable, so verification needs only the payload and the signature to
compute the signer address; a receipt is valid when that address matches
the ``signer`` field.  This framing is a wire-format contract: receipts
signed elsewhere with ``ethers`` ``Wallet.signMessage`` verify here and
vice versa.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from pathlib import Path

from eth_account import Account
from eth_account.messages import encode_defunct

from killswitch.core.errors import InvalidSigningKey
from killswitch.core.models import DeathReceipt, VerificationResult
from killswitch.receipts.codec import canonicalize, read_receipt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignatureBundle:
    """Signer address and hex signature over one payload."""

    signer: str
    signature: str


class ReceiptSigner:
    """Sign receipt payloads with a secp256k1 private key.

    Parameters
    ----------
    private_key:
        Hex private key, with or without the ``0x`` prefix.
    """

    def __init__(self, private_key: str) -> None:
        try:
            self._account = Account.from_key(private_key)
        except Exception as exc:
            raise InvalidSigningKey(f"Unusable private key: {exc}") from exc

    @property
    def address(self) -> str:
        """EIP-55 checksummed address derived from the key."""
        return self._account.address

    def sign_payload(self, payload: bytes) -> SignatureBundle:
        signed = self._account.sign_message(encode_defunct(primitive=payload))
        return SignatureBundle(
            signer=self._account.address,
            signature="0x" + bytes(signed.signature).hex(),
        )

    def sign(self, receipt: DeathReceipt) -> DeathReceipt:
        """Return a copy of *receipt* with ``signer``/``signature`` attached."""
        bundle = self.sign_payload(canonicalize(receipt))
        return dataclasses.replace(
            receipt, signer=bundle.signer, signature=bundle.signature,
        )


def recover_signer(payload: bytes, signature: str) -> str:
    """Address that produced *signature* over *payload*."""
    return Account.recover_message(
        encode_defunct(primitive=payload), signature=signature,
    )


def verify_receipt(receipt: DeathReceipt) -> VerificationResult:
    """Check a signed receipt.  Never raises on a bad signature."""
    signer = receipt.signer or ""
    if not receipt.signature or not signer:
        return VerificationResult(
            valid=False, signer=signer, recovered=None,
            message="Receipt is not signed",
        )

    try:
        recovered = recover_signer(canonicalize(receipt), receipt.signature)
    except Exception as exc:
        logger.debug("Signature recovery failed", exc_info=True)
        return VerificationResult(
            valid=False, signer=signer, recovered=None,
            message=f"Malformed signature: {exc}",
        )

    if recovered.lower() != signer.lower():
        return VerificationResult(
            valid=False, signer=signer, recovered=recovered,
            message="signature mismatch",
        )
    return VerificationResult(
        valid=True, signer=signer, recovered=recovered, message="OK",
    )


def verify_file(path: str | Path) -> tuple[DeathReceipt, VerificationResult]:
    """Parse and verify a receipt file.

    Raises :class:`ReceiptParseError` if the file is unreadable or malformed.
    """
    receipt = read_receipt(path, require_signature=True)
    return receipt, verify_receipt(receipt)

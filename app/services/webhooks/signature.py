"""
HMAC-SHA256 webhook signature verification.

Signature header value: "sha256=<hex>" or bare "<hex>", case-insensitive.
The digest is computed over the raw request bytes exactly as received.
"""

import hashlib
import hmac
from dataclasses import dataclass
from typing import Optional, Union

SIGNATURE_PREFIX = "sha256="


@dataclass(frozen=True)
class SignatureVerification:
    valid: bool
    reason: Optional[str] = None


def _as_bytes(value: Union[bytes, str]) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def sign_payload(raw_payload: Union[bytes, str], secret: Union[bytes, str]) -> str:
    """Lowercase hex HMAC-SHA256 digest of the payload."""
    return hmac.new(_as_bytes(secret), _as_bytes(raw_payload), hashlib.sha256).hexdigest()


def verify_signature(
    raw_payload: Union[bytes, str],
    signature_header: str,
    secret: Union[bytes, str],
) -> SignatureVerification:
    """
    Verify a webhook signature.

    Args:
        raw_payload: Request body bytes (str is UTF-8 encoded)
        signature_header: Header value, with or without the "sha256=" tag
        secret: Shared secret

    Returns:
        SignatureVerification(valid=True) or valid=False with reason
        "Signature length mismatch" / "Invalid signature"
    """
    expected = sign_payload(raw_payload, secret)

    provided = (signature_header or "").strip()
    if provided[:len(SIGNATURE_PREFIX)].lower() == SIGNATURE_PREFIX:
        provided = provided[len(SIGNATURE_PREFIX):]
    provided = provided.lower()

    if len(provided) != len(expected):
        return SignatureVerification(valid=False, reason="Signature length mismatch")

    # compare_digest examines every byte regardless of where a mismatch occurs
    if not hmac.compare_digest(provided.encode("ascii", "replace"), expected.encode("ascii")):
        return SignatureVerification(valid=False, reason="Invalid signature")

    return SignatureVerification(valid=True)

"""GitHub webhook signature verification.

GitHub signs every delivery with HMAC-SHA256 over the raw request body using
the App's webhook secret and sends the result as ``sha256=<hex digest>`` in
the ``X-Hub-Signature-256`` header.

``verify_signature`` returns the body it was given so callers can only
reach the verified bytes through a successful verification.
"""

import hashlib
import hmac
from enum import Enum
from typing import Optional, Union

SIGNATURE_PREFIX = "sha256="


class VerificationFailure(str, Enum):
    """Why a delivery signature was rejected."""

    MISSING_SIGNATURE = "missing_signature"
    MISSING_PREFIX = "missing_prefix"
    BAD_HEX_ENCODING = "bad_hex_encoding"
    MISMATCH = "mismatch"


class VerificationError(Exception):
    """Raised when a webhook signature does not verify.

    Attributes:
        reason: Which check failed.
    """

    def __init__(self, reason: VerificationFailure, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or f"Webhook signature verification failed: {reason.value}")


def _secret_bytes(secret: Union[str, bytes]) -> bytes:
    return secret.encode("utf-8") if isinstance(secret, str) else secret


def compute_signature(body: bytes, secret: Union[str, bytes]) -> str:
    """Compute the ``sha256=<hex>`` signature GitHub would send for ``body``."""
    digest = hmac.new(_secret_bytes(secret), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(
    body: bytes,
    signature_header: Optional[str],
    secret: Union[str, bytes],
) -> bytes:
    """Verify a delivery signature.

    Args:
        body: Raw request body exactly as received.
        signature_header: Value of the signature header, if present.
        secret: The webhook secret.

    Returns:
        ``body`` unchanged.

    Raises:
        VerificationError: If the header is missing, malformed or does not
                           match the body.
    """
    if signature_header is None or not signature_header.strip():
        raise VerificationError(VerificationFailure.MISSING_SIGNATURE)

    signature_header = signature_header.strip()
    if not signature_header.startswith(SIGNATURE_PREFIX):
        raise VerificationError(VerificationFailure.MISSING_PREFIX)

    try:
        provided = bytes.fromhex(signature_header[len(SIGNATURE_PREFIX):])
    except ValueError as e:
        raise VerificationError(VerificationFailure.BAD_HEX_ENCODING) from e

    expected = hmac.new(_secret_bytes(secret), body, hashlib.sha256).digest()
    if not hmac.compare_digest(expected, provided):
        raise VerificationError(VerificationFailure.MISMATCH)

    return body

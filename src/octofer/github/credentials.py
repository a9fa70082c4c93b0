"""GitHub App credential loading.

Turns an App ID and a private key source into an in-memory ``Credential``.
The key can come from a PEM file on disk or from a base64 encoded PEM
payload (convenient for container secrets). Exactly one source must be
given.

Errors are raised as ``ConfigError`` subclasses so startup code can treat
every credential problem as fatal with a single ``except``.
"""

import base64
import binascii
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

PEM_ARMOUR_PREFIX = b"-----BEGIN"


class ConfigError(Exception):
    """Raised when application configuration is missing or invalid.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying exception, if any.
    """

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
    ):
        self.message = message
        self.original_error = original_error
        super().__init__(message)


class MissingCredentialError(ConfigError):
    """Raised when the App ID or both private key sources are missing."""


class AmbiguousCredentialError(ConfigError):
    """Raised when both a key path and a base64 key are supplied."""


class UnreadableKeyError(ConfigError):
    """Raised when the private key file cannot be read."""


class InvalidKeyEncodingError(ConfigError):
    """Raised when the key payload is not valid base64 or not PEM."""


@dataclass(frozen=True)
class Credential:
    """GitHub App identity used to sign app-level assertions.

    Attributes:
        app_id: The numeric GitHub App ID.
        private_key: PEM-encoded RSA private key bytes.
    """

    app_id: int
    private_key: bytes = field(repr=False)


def _read_key_file(path: Union[str, Path]) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise UnreadableKeyError(
            f"Failed to read private key from {path}: {e}",
            original_error=e,
        ) from e


def _decode_key_base64(payload: str) -> bytes:
    # Secrets pasted into env vars often carry line breaks.
    compact = "".join(payload.split())
    try:
        return base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidKeyEncodingError(
            f"Failed to decode private key from base64: {e}",
            original_error=e,
        ) from e


def load_credential(
    app_id: Optional[int],
    private_key_path: Optional[Union[str, Path]] = None,
    private_key_base64: Optional[str] = None,
) -> Credential:
    """Build a Credential from an App ID and one private key source.

    Args:
        app_id: The GitHub App ID. Must be a positive integer.
        private_key_path: Path to a PEM file holding the private key.
        private_key_base64: Base64 encoding of the PEM private key.

    Returns:
        The loaded Credential.

    Raises:
        MissingCredentialError: If the App ID is missing or not positive,
            or if neither key source is supplied.
        AmbiguousCredentialError: If both key sources are supplied.
        UnreadableKeyError: If the key file cannot be read.
        InvalidKeyEncodingError: If the base64 payload is malformed or the
            key material is not PEM.
    """
    if app_id is None or app_id <= 0:
        raise MissingCredentialError(
            "GitHub App ID is required and must be a positive integer"
        )

    has_path = bool(private_key_path)
    has_base64 = bool(private_key_base64 and private_key_base64.strip())

    if has_path and has_base64:
        raise AmbiguousCredentialError(
            "Only one of private key path or base64 private key may be provided"
        )

    if has_path:
        private_key = _read_key_file(private_key_path)
        source = "path"
    elif has_base64:
        private_key = _decode_key_base64(private_key_base64)
        source = "base64"
    else:
        raise MissingCredentialError(
            "Either a private key path or a base64 private key must be provided"
        )

    if not private_key.lstrip().startswith(PEM_ARMOUR_PREFIX):
        raise InvalidKeyEncodingError(
            f"Private key loaded from {source} is not PEM encoded"
        )

    logger.debug(
        "Loaded GitHub App credential",
        extra={"app_id": app_id, "key_source": source},
    )
    return Credential(app_id=app_id, private_key=private_key)

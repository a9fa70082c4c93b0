"""GitHub App JWT authentication.

A GitHub App authenticates as itself with a short-lived RS256 JWT signed by
its private key. App-level requests (listing installations, minting
installation tokens) carry that JWT as a bearer token.

``AppJWTAuth`` plugs into httpx as an ``httpx.Auth`` so every request made
by the app-level client is signed, and the JWT is re-signed shortly before
it expires.

JWT claims:
- iat: issued-at, backdated 60 seconds to tolerate clock drift
- exp: expiry, at most 10 minutes after iat (GitHub's limit)
- iss: the App ID
"""

import logging
import threading
import time
from typing import Generator, Optional

import httpx
import jwt
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from octofer.github.credentials import Credential

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "RS256"
JWT_CLOCK_DRIFT_SECONDS = 60
JWT_LIFETIME_SECONDS = 9 * 60
# Re-sign when the cached JWT has less than this many seconds left.
JWT_REFRESH_MARGIN_SECONDS = 60


class AuthError(Exception):
    """Raised when the App cannot authenticate as itself.

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


def load_signing_key(private_key: bytes) -> RSAPrivateKey:
    """Parse PEM bytes into an RSA private key.

    Args:
        private_key: PEM-encoded private key bytes.

    Returns:
        The parsed RSA private key.

    Raises:
        AuthError: If the bytes are not an unencrypted RSA PEM key.
    """
    try:
        key = serialization.load_pem_private_key(private_key, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise AuthError(
            f"Failed to create signing key from PEM: {e}",
            original_error=e,
        ) from e

    if not isinstance(key, RSAPrivateKey):
        raise AuthError(
            f"GitHub App private key must be RSA, got {type(key).__name__}"
        )
    return key


class AppJWTSigner:
    """Mints and caches the App's JWT.

    Attributes:
        app_id: The GitHub App ID placed in the ``iss`` claim.
        lifetime: JWT lifetime in seconds after the issued-at claim.
    """

    def __init__(
        self,
        credential: Credential,
        lifetime: int = JWT_LIFETIME_SECONDS,
    ):
        self.app_id = credential.app_id
        self.lifetime = lifetime
        self._key = load_signing_key(credential.private_key)
        self._token: Optional[str] = None
        self._expires_at = 0.0
        self._lock = threading.Lock()

    def build_claims(self, now: Optional[float] = None) -> dict:
        issued = int(now if now is not None else time.time())
        return {
            "iat": issued - JWT_CLOCK_DRIFT_SECONDS,
            "exp": issued + self.lifetime,
            "iss": str(self.app_id),
        }

    def sign(self, now: Optional[float] = None) -> str:
        """Sign a fresh JWT.

        Raises:
            AuthError: If signing fails.
        """
        claims = self.build_claims(now)
        try:
            return jwt.encode(claims, self._key, algorithm=JWT_ALGORITHM)
        except jwt.PyJWTError as e:
            raise AuthError(f"Failed to sign app JWT: {e}", original_error=e) from e

    def token(self) -> str:
        """Return a JWT valid for at least the refresh margin."""
        now = time.time()
        with self._lock:
            if (
                self._token is None
                or self._expires_at - now < JWT_REFRESH_MARGIN_SECONDS
            ):
                self._token = self.sign(now)
                self._expires_at = int(now) + self.lifetime
                logger.debug("Signed new app JWT", extra={"app_id": self.app_id})
            return self._token


class AppJWTAuth(httpx.Auth):
    """httpx auth flow that signs requests as the GitHub App."""

    def __init__(self, signer: AppJWTSigner):
        self.signer = signer

    def auth_flow(
        self, request: httpx.Request
    ) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = f"Bearer {self.signer.token()}"
        yield request

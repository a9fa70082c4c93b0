"""GitHub App authentication and installation client management.

``GitHubAppAuthenticator`` is the single entry point handlers use to talk to
GitHub on behalf of an installation. It holds:

- an application-level ``GitHubClient`` signed with the App's JWT, used to
  list installations and mint installation access tokens, and
- an ``InstallationTokenCache`` of installation clients keyed by
  installation ID.

Installation clients are reused until their token is within five minutes of
expiry. The lookup is check-then-act: two concurrent cache misses for the
same installation may both mint a token and the last write wins. Both tokens
are valid, so the only cost is an extra API call, and lookups for different
installations never queue behind a single writer.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import httpx

from octofer.github.auth import AppJWTAuth, AppJWTSigner
from octofer.github.client import DEFAULT_BASE_URL, GitHubAPIError, GitHubClient
from octofer.github.credentials import Credential
from octofer.github.models import Installation, InstallationToken
from octofer.github.token_cache import CachedInstallationClient, InstallationTokenCache
from octofer.metrics import OctoferMetrics

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InstallationNotFoundError(GitHubAPIError):
    """Raised when an installation ID is not installed for this App."""

    def __init__(self, installation_id: int):
        super().__init__(
            message=f"Installation with ID {installation_id} not found",
            status_code=404,
            installation_id=installation_id,
        )


class GitHubAppAuthenticator:
    """Authenticates as a GitHub App and hands out installation clients.

    Attributes:
        app_id: The GitHub App ID.
        base_url: Base URL for GitHub API.
        app_client: Client authenticated as the App itself.
        cache: Installation clients keyed by installation ID.

    Example:
        >>> auth = GitHubAppAuthenticator(load_credential(123, "key.pem"))
        >>> client = await auth.installation_client(555)
        >>> await client.create_comment("octo", "repo", 1, "Hi!")
        >>> await auth.close()
    """

    def __init__(
        self,
        credential: Credential,
        base_url: str = DEFAULT_BASE_URL,
        max_retries: int = 3,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        metrics: Optional[OctoferMetrics] = None,
    ):
        """Initialize the authenticator.

        Args:
            credential: App ID and PEM private key.
            base_url: Base URL for GitHub API.
            max_retries: Retry budget for transient transport failures.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport shared by every client this
                       authenticator builds (used by tests).
            metrics: Optional metrics sink for mint/hit counters.

        Raises:
            AuthError: If the private key is not a valid RSA PEM key.
        """
        self.app_id = credential.app_id
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.timeout = timeout
        self.metrics = metrics
        self._transport = transport

        self.signer = AppJWTSigner(credential)
        self.app_client = GitHubClient(
            auth=AppJWTAuth(self.signer),
            base_url=self.base_url,
            max_retries=max_retries,
            timeout=timeout,
            transport=transport,
        )
        self.cache = InstallationTokenCache()

    def __repr__(self) -> str:
        return f"GitHubAppAuthenticator(app_id={self.app_id!r}, base_url={self.base_url!r})"

    async def list_installations(self) -> List[Installation]:
        """List every installation of this App.

        Returns:
            All installations across every page.

        Raises:
            GitHubAPIError: If the request fails.
        """
        installations = [
            Installation.model_validate(item)
            async for item in self.app_client.paginate("/app/installations")
        ]
        logger.info(
            "Fetched installations",
            extra={"app_id": self.app_id, "count": len(installations)},
        )
        return installations

    async def get_installation(self, installation_id: int) -> Installation:
        """Find one installation of this App.

        Raises:
            InstallationNotFoundError: If the App is not installed there.
            GitHubAPIError: If listing installations fails.
        """
        for installation in await self.list_installations():
            if installation.id == installation_id:
                return installation
        raise InstallationNotFoundError(installation_id)

    async def create_installation_token(
        self,
        installation_id: int,
        repositories: Optional[List[str]] = None,
    ) -> InstallationToken:
        """Mint a new installation access token.

        Args:
            installation_id: Installation to mint the token for.
            repositories: Optional repository names to scope the token to.

        Returns:
            The new installation token.

        Raises:
            InstallationNotFoundError: If the installation does not exist.
            GitHubAPIError: If the installation has no token URL or the
                            token request fails.
        """
        installation = await self.get_installation(installation_id)
        if not installation.access_tokens_url:
            raise GitHubAPIError(
                message=f"No access tokens URL for installation {installation_id}",
                installation_id=installation_id,
            )

        body: Optional[Dict[str, Any]] = None
        if repositories:
            body = {"repositories": list(repositories)}

        try:
            data = await self.app_client.post(
                installation.access_tokens_url, json_data=body
            )
        except GitHubAPIError as e:
            e.installation_id = installation_id
            raise

        token = InstallationToken.model_validate({**data, "installation_id": installation_id})
        if self.metrics is not None:
            self.metrics.record_token_minted()

        logger.info(
            "Created installation token",
            extra={
                "installation_id": installation_id,
                "expires_at": token.expires_at.isoformat() if token.expires_at else None,
                "scoped_repositories": len(repositories or []),
            },
        )
        return token

    def _build_installation_client(
        self,
        installation_id: int,
        token: InstallationToken,
    ) -> GitHubClient:
        return GitHubClient(
            token=token.token,
            base_url=self.base_url,
            installation_id=installation_id,
            max_retries=self.max_retries,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def installation_client(self, installation_id: int) -> GitHubClient:
        """Return a client authenticated as an installation.

        Reuses the cached client while its token is valid; otherwise mints
        a new token and replaces the cache entry.

        Raises:
            InstallationNotFoundError: If the installation does not exist.
            GitHubAPIError: If minting the token fails.
        """
        cached = await self.cache.get_valid(installation_id)
        if cached is not None:
            logger.debug(
                "Using cached installation client",
                extra={"installation_id": installation_id},
            )
            if self.metrics is not None:
                self.metrics.record_cache_hit()
            return cached.client

        logger.info(
            "Creating new installation client",
            extra={"installation_id": installation_id},
        )
        token = await self.create_installation_token(installation_id)
        client = self._build_installation_client(installation_id, token)

        await self.cache.put(
            installation_id,
            CachedInstallationClient(
                client=client,
                token=token,
                created_at=datetime.now(timezone.utc),
            ),
        )
        return client

    async def get_installation_repositories(
        self,
        installation_id: int,
    ) -> List[Dict[str, Any]]:
        """List the repositories an installation can access."""
        client = await self.installation_client(installation_id)
        repositories = [
            repo
            async for repo in client.paginate(
                "/installation/repositories", items_key="repositories"
            )
        ]
        logger.info(
            "Fetched installation repositories",
            extra={"installation_id": installation_id, "count": len(repositories)},
        )
        return repositories

    async def with_installation(
        self,
        installation_id: int,
        func: Callable[[GitHubClient], Awaitable[T]],
    ) -> T:
        """Await ``func`` with the installation's client."""
        client = await self.installation_client(installation_id)
        return await func(client)

    async def clear_cache(self, installation_id: Optional[int] = None) -> None:
        """Drop one cached installation client, or all of them.

        Cleared clients are not closed; handlers may still hold them.
        """
        removed = await self.cache.invalidate(installation_id)
        if installation_id is None:
            logger.info("Cleared all installation caches", extra={"removed": removed})
        else:
            logger.info(
                "Cleared cache for installation",
                extra={"installation_id": installation_id, "removed": removed},
            )

    async def close(self) -> None:
        """Close the App client and every cached installation client."""
        for entry in await self.cache.drain():
            await entry.client.close()
        await self.app_client.close()

    async def __aenter__(self) -> "GitHubAppAuthenticator":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

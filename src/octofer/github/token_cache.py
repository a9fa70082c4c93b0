"""Installation token cache.

Maps installation IDs to the client built from their most recent access
token. Entries are created lazily, replaced wholesale when they expire and
removed only by explicit invalidation.

An entry is usable while ``now + SAFETY_BUFFER < effective_expiry`` where
``effective_expiry`` is the token's ``expires_at`` or, when GitHub did not
send one, ``created_at + DEFAULT_TOKEN_LIFETIME``.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterator, List, Optional

from octofer.github.client import GitHubClient
from octofer.github.models import InstallationToken
from octofer.locks import AsyncReadWriteLock

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)
SAFETY_BUFFER = timedelta(minutes=5)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # GitHub timestamps are UTC; treat naive values the same way
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class CachedInstallationClient:
    """An installation client together with the token backing it.

    Attributes:
        client: Client authenticated with ``token``.
        token: The installation access token.
        created_at: When the token was minted.
    """

    client: GitHubClient
    token: InstallationToken
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def effective_expiry(self) -> datetime:
        if self.token.expires_at is not None:
            return _as_utc(self.token.expires_at)
        return _as_utc(self.created_at) + DEFAULT_TOKEN_LIFETIME

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Whether the token is expired or within the safety buffer."""
        current = _as_utc(now) if now is not None else _utcnow()
        return current + SAFETY_BUFFER >= self.effective_expiry


class InstallationTokenCache:
    """Concurrent installation ID to cached client map.

    Reads take the shared side of an ``AsyncReadWriteLock`` so cache hits
    from concurrent deliveries never wait on each other; inserts and
    invalidations take the exclusive side.
    """

    def __init__(self) -> None:
        self._entries: Dict[int, CachedInstallationClient] = {}
        self._lock = AsyncReadWriteLock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, installation_id: object) -> bool:
        return installation_id in self._entries

    def __iter__(self) -> Iterator[int]:
        return iter(list(self._entries))

    async def get(self, installation_id: int) -> Optional[CachedInstallationClient]:
        """Return the entry for an installation, expired or not."""
        async with self._lock.read():
            return self._entries.get(installation_id)

    async def get_valid(
        self,
        installation_id: int,
        now: Optional[datetime] = None,
    ) -> Optional[CachedInstallationClient]:
        """Return the entry for an installation only if it is still usable."""
        async with self._lock.read():
            entry = self._entries.get(installation_id)
            if entry is None:
                return None
            if entry.is_expired(now):
                logger.debug(
                    "Cached installation token expired",
                    extra={
                        "installation_id": installation_id,
                        "expires_at": entry.effective_expiry.isoformat(),
                    },
                )
                return None
            return entry

    async def put(
        self,
        installation_id: int,
        entry: CachedInstallationClient,
    ) -> None:
        """Insert or overwrite the entry for an installation."""
        async with self._lock.write():
            self._entries[installation_id] = entry

    async def invalidate(self, installation_id: Optional[int] = None) -> int:
        """Remove one entry, or every entry when no ID is given.

        Returns:
            Number of entries removed.
        """
        async with self._lock.write():
            if installation_id is None:
                removed = len(self._entries)
                self._entries.clear()
                return removed
            return 0 if self._entries.pop(installation_id, None) is None else 1

    async def drain(self) -> List[CachedInstallationClient]:
        """Remove and return every cached entry."""
        async with self._lock.write():
            entries = list(self._entries.values())
            self._entries.clear()
            return entries

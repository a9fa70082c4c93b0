"""Per-delivery handler context.

A ``Context`` is built once per delivery and handed to every handler
registered for the event. It is immutable and shared by reference.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from octofer.github.app import GitHubAppAuthenticator
from octofer.github.client import GitHubClient
from octofer.webhook.events import WebhookEvent, WebhookEventType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Context:
    """What a handler knows about the delivery it is handling.

    Attributes:
        event: The classified delivery, or ``None`` for contexts built by hand.
        installation_id: Installation the delivery came from, if any.
        github: Authenticator for installation clients, or ``None`` when the
                app runs without GitHub App credentials.
    """

    event: Optional[WebhookEvent] = None
    installation_id: Optional[int] = None
    github: Optional[GitHubAppAuthenticator] = None

    @property
    def payload(self) -> Dict[str, Any]:
        return self.event.payload if self.event is not None else {}

    @property
    def kind(self) -> WebhookEventType:
        return self.event.kind if self.event is not None else WebhookEventType.UNKNOWN

    @property
    def event_name(self) -> str:
        return self.event.event_name if self.event is not None else ""

    @property
    def action(self) -> Optional[str]:
        return self.event.action if self.event is not None else None

    @property
    def delivery_id(self) -> Optional[str]:
        return self.event.delivery_id if self.event is not None else None

    async def installation_client(self) -> Optional[GitHubClient]:
        """Return a client scoped to this delivery's installation.

        Returns ``None`` when there is no authenticator or the payload did
        not name an installation.

        Raises:
            GitHubAPIError: If minting the installation token fails.
        """
        if self.github is None or self.installation_id is None:
            logger.debug(
                "No installation client available",
                extra={
                    "has_authenticator": self.github is not None,
                    "installation_id": self.installation_id,
                },
            )
            return None
        return await self.github.installation_client(self.installation_id)

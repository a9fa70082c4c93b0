"""Octofer application facade.

Wires settings, GitHub App authentication, the handler registry, the
dispatcher and the HTTP server together.

Example:
    >>> async def on_comment(context, extra):
    ...     client = await context.installation_client()
    ...     ...
    >>> async def main():
    ...     app = Octofer.from_env()
    ...     await app.on_issue_comment(on_comment)
    ...     await app.start()
"""

import logging
from typing import Any, Optional, Union

import httpx
import uvicorn
from fastapi import FastAPI

from octofer.config import OctoferSettings, configure_logging, get_settings, log_configuration
from octofer.github.app import GitHubAppAuthenticator
from octofer.metrics import OctoferMetrics
from octofer.webhook.dispatcher import Dispatcher
from octofer.webhook.events import WebhookEventType
from octofer.webhook.registry import Handler, HandlerRegistry, RegisteredHandler
from octofer.webhook.server import create_app

logger = logging.getLogger(__name__)


class Octofer:
    """A GitHub App: configuration, handlers and a webhook server.

    Attributes:
        config: The settings the app was built from.
        github: Installation client authenticator, or ``None`` when the app
                runs without GitHub App credentials.
        registry: Registered handlers.
        dispatcher: Routes deliveries to handlers.
        metrics: Prometheus metrics for this app.
    """

    def __init__(
        self,
        settings: Optional[OctoferSettings] = None,
        use_github_app: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the app.

        Args:
            settings: Settings to use; read from the environment if omitted.
            use_github_app: Build an authenticator from the settings'
                            credentials. When the settings have no
                            credentials the app runs without one.
            transport: Optional httpx transport for GitHub API calls.

        Raises:
            ConfigError: If credentials are configured but cannot be loaded.
            AuthError: If the private key is not a valid RSA key.
        """
        self.config = settings if settings is not None else get_settings()
        self.metrics = OctoferMetrics()
        self.registry = HandlerRegistry()

        self.github: Optional[GitHubAppAuthenticator] = None
        if use_github_app and self.config.has_app_credentials:
            self.github = GitHubAppAuthenticator(
                self.config.load_credential(),
                base_url=self.config.github_api_url,
                max_retries=self.config.github_max_retries,
                transport=transport,
                metrics=self.metrics,
            )
        else:
            logger.info("GitHub App credentials not configured; installation clients disabled")

        self.dispatcher = Dispatcher(
            registry=self.registry,
            webhook_secret=self.config.github_webhook_secret,
            authenticator=self.github,
            metrics=self.metrics,
            signature_header=self.config.github_webhook_header,
            handler_timeout=self.config.handler_timeout,
            max_body_bytes=self.config.max_body_bytes,
        )
        self._asgi_app: Optional[FastAPI] = None

    @classmethod
    def from_env(cls) -> "Octofer":
        """Build an app from environment variables and configure logging."""
        settings = get_settings()
        configure_logging(settings.log_level, settings.log_format)
        log_configuration(settings)
        return cls(settings)

    @classmethod
    def default(cls) -> "Octofer":
        """Build an app with default settings and no GitHub App auth."""
        return cls(OctoferSettings(), use_github_app=False)

    @property
    def asgi_app(self) -> FastAPI:
        """The FastAPI application serving this app's webhooks."""
        if self._asgi_app is None:
            self._asgi_app = create_app(self.dispatcher, metrics=self.metrics)
        return self._asgi_app

    async def start(self) -> None:
        """Serve webhooks with uvicorn until shutdown."""
        logger.info(
            "Starting Octofer",
            extra={"host": self.config.host, "port": self.config.port},
        )
        server = uvicorn.Server(
            uvicorn.Config(
                self.asgi_app,
                host=self.config.host,
                port=self.config.port,
                log_level=self.config.log_level.lower(),
                log_config=None,
            )
        )
        await server.serve()

    async def on(
        self,
        event_type: Union[str, WebhookEventType],
        handler: Handler,
        extra: Any = None,
    ) -> RegisteredHandler:
        """Register a handler for any event name."""
        return await self.registry.register(event_type, handler, extra)

    async def on_issues(self, handler: Handler, extra: Any = None) -> RegisteredHandler:
        return await self.on(WebhookEventType.ISSUES, handler, extra)

    async def on_issue_comment(self, handler: Handler, extra: Any = None) -> RegisteredHandler:
        return await self.on(WebhookEventType.ISSUE_COMMENT, handler, extra)

    async def on_pull_request(self, handler: Handler, extra: Any = None) -> RegisteredHandler:
        return await self.on(WebhookEventType.PULL_REQUEST, handler, extra)

    async def on_pull_request_review(
        self, handler: Handler, extra: Any = None
    ) -> RegisteredHandler:
        return await self.on(WebhookEventType.PULL_REQUEST_REVIEW, handler, extra)

    async def on_pull_request_review_comment(
        self, handler: Handler, extra: Any = None
    ) -> RegisteredHandler:
        return await self.on(WebhookEventType.PULL_REQUEST_REVIEW_COMMENT, handler, extra)

    async def on_pull_request_review_thread(
        self, handler: Handler, extra: Any = None
    ) -> RegisteredHandler:
        return await self.on(WebhookEventType.PULL_REQUEST_REVIEW_THREAD, handler, extra)

    async def on_push(self, handler: Handler, extra: Any = None) -> RegisteredHandler:
        return await self.on(WebhookEventType.PUSH, handler, extra)

    async def on_release(self, handler: Handler, extra: Any = None) -> RegisteredHandler:
        return await self.on(WebhookEventType.RELEASE, handler, extra)

    async def on_installation(self, handler: Handler, extra: Any = None) -> RegisteredHandler:
        return await self.on(WebhookEventType.INSTALLATION, handler, extra)

    async def on_installation_repositories(
        self, handler: Handler, extra: Any = None
    ) -> RegisteredHandler:
        return await self.on(WebhookEventType.INSTALLATION_REPOSITORIES, handler, extra)

    async def on_check_run(self, handler: Handler, extra: Any = None) -> RegisteredHandler:
        return await self.on(WebhookEventType.CHECK_RUN, handler, extra)

    async def on_check_suite(self, handler: Handler, extra: Any = None) -> RegisteredHandler:
        return await self.on(WebhookEventType.CHECK_SUITE, handler, extra)

    async def on_workflow_run(self, handler: Handler, extra: Any = None) -> RegisteredHandler:
        return await self.on(WebhookEventType.WORKFLOW_RUN, handler, extra)

    async def on_create(self, handler: Handler, extra: Any = None) -> RegisteredHandler:
        return await self.on(WebhookEventType.CREATE, handler, extra)

    async def on_delete(self, handler: Handler, extra: Any = None) -> RegisteredHandler:
        return await self.on(WebhookEventType.DELETE, handler, extra)

    async def on_repository(self, handler: Handler, extra: Any = None) -> RegisteredHandler:
        return await self.on(WebhookEventType.REPOSITORY, handler, extra)

    async def on_deployment(self, handler: Handler, extra: Any = None) -> RegisteredHandler:
        return await self.on(WebhookEventType.DEPLOYMENT, handler, extra)

    async def on_deployment_status(
        self, handler: Handler, extra: Any = None
    ) -> RegisteredHandler:
        return await self.on(WebhookEventType.DEPLOYMENT_STATUS, handler, extra)

    async def close(self) -> None:
        """Close GitHub clients owned by this app."""
        if self.github is not None:
            await self.github.close()

"""Octofer: a framework for building GitHub Apps.

This package provides:
- Webhook signature verification and event classification
- A handler registry with fail-fast sequential dispatch
- GitHub App authentication with cached installation clients
- A FastAPI webhook server with health and Prometheus endpoints
"""

from octofer.app import Octofer
from octofer.config import OctoferSettings, configure_logging, get_settings
from octofer.context import Context
from octofer.github import GitHubAppAuthenticator, GitHubClient
from octofer.webhook.dispatcher import DispatchOutcome, DispatchResult, Dispatcher, HandlerError
from octofer.webhook.events import WebhookEvent, WebhookEventType
from octofer.webhook.registry import EventHandler, HandlerRegistry

__version__ = "0.1.0"

__all__ = [
    "Context",
    "DispatchOutcome",
    "DispatchResult",
    "Dispatcher",
    "EventHandler",
    "GitHubAppAuthenticator",
    "GitHubClient",
    "HandlerError",
    "HandlerRegistry",
    "Octofer",
    "OctoferSettings",
    "WebhookEvent",
    "WebhookEventType",
    "configure_logging",
    "get_settings",
]

"""GitHub webhook handling.

This module verifies and classifies GitHub webhook deliveries:
- HMAC-SHA256 signature verification (``X-Hub-Signature-256``)
- Event classification from ``X-GitHub-Event`` and the JSON payload

Handler registration, dispatch and the HTTP server live in the
``registry``, ``dispatcher`` and ``server`` submodules.
"""

from octofer.webhook.events import (
    ClassificationError,
    WebhookEvent,
    WebhookEventType,
    classify_event,
)
from octofer.webhook.signature import (
    VerificationError,
    VerificationFailure,
    compute_signature,
    verify_signature,
)

__all__ = [
    "ClassificationError",
    "VerificationError",
    "VerificationFailure",
    "WebhookEvent",
    "WebhookEventType",
    "classify_event",
    "compute_signature",
    "verify_signature",
]

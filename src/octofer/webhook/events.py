"""GitHub webhook event classification.

Turns the ``X-GitHub-Event`` header and a verified request body into an
immutable ``WebhookEvent``. Classification only checks that the body is a
JSON object; payload schemas differ per event and are left to handlers.

Event names GitHub adds after this list was written classify as
``WebhookEventType.UNKNOWN`` but keep their raw ``event_name``, which is
what the registry dispatches on, so handlers can still be registered for
them.
"""

import json
import logging
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class WebhookEventType(str, Enum):
    """GitHub webhook event names, as sent in ``X-GitHub-Event``."""

    BRANCH_PROTECTION_CONFIGURATION = "branch_protection_configuration"
    BRANCH_PROTECTION_RULE = "branch_protection_rule"
    CHECK_RUN = "check_run"
    CHECK_SUITE = "check_suite"
    CODE_SCANNING_ALERT = "code_scanning_alert"
    COMMIT_COMMENT = "commit_comment"
    CREATE = "create"
    CUSTOM_PROPERTY = "custom_property"
    CUSTOM_PROPERTY_VALUES = "custom_property_values"
    DELETE = "delete"
    DEPENDABOT_ALERT = "dependabot_alert"
    DEPLOY_KEY = "deploy_key"
    DEPLOYMENT = "deployment"
    DEPLOYMENT_PROTECTION_RULE = "deployment_protection_rule"
    DEPLOYMENT_REVIEW = "deployment_review"
    DEPLOYMENT_STATUS = "deployment_status"
    DISCUSSION = "discussion"
    DISCUSSION_COMMENT = "discussion_comment"
    FORK = "fork"
    GITHUB_APP_AUTHORIZATION = "github_app_authorization"
    GOLLUM = "gollum"
    INSTALLATION = "installation"
    INSTALLATION_REPOSITORIES = "installation_repositories"
    INSTALLATION_TARGET = "installation_target"
    ISSUE_COMMENT = "issue_comment"
    ISSUES = "issues"
    LABEL = "label"
    MARKETPLACE_PURCHASE = "marketplace_purchase"
    MEMBER = "member"
    MEMBERSHIP = "membership"
    MERGE_GROUP = "merge_group"
    META = "meta"
    MILESTONE = "milestone"
    ORG_BLOCK = "org_block"
    ORGANIZATION = "organization"
    PACKAGE = "package"
    PAGE_BUILD = "page_build"
    PERSONAL_ACCESS_TOKEN_REQUEST = "personal_access_token_request"
    PING = "ping"
    PROJECT = "project"
    PROJECT_CARD = "project_card"
    PROJECT_COLUMN = "project_column"
    PROJECTS_V2 = "projects_v2"
    PROJECTS_V2_ITEM = "projects_v2_item"
    PUBLIC = "public"
    PULL_REQUEST = "pull_request"
    PULL_REQUEST_REVIEW = "pull_request_review"
    PULL_REQUEST_REVIEW_COMMENT = "pull_request_review_comment"
    PULL_REQUEST_REVIEW_THREAD = "pull_request_review_thread"
    PUSH = "push"
    REGISTRY_PACKAGE = "registry_package"
    RELEASE = "release"
    REPOSITORY = "repository"
    REPOSITORY_ADVISORY = "repository_advisory"
    REPOSITORY_DISPATCH = "repository_dispatch"
    REPOSITORY_IMPORT = "repository_import"
    REPOSITORY_RULESET = "repository_ruleset"
    REPOSITORY_VULNERABILITY_ALERT = "repository_vulnerability_alert"
    SECRET_SCANNING_ALERT = "secret_scanning_alert"
    SECRET_SCANNING_ALERT_LOCATION = "secret_scanning_alert_location"
    SECURITY_ADVISORY = "security_advisory"
    SECURITY_AND_ANALYSIS = "security_and_analysis"
    SPONSORSHIP = "sponsorship"
    STAR = "star"
    STATUS = "status"
    TEAM = "team"
    TEAM_ADD = "team_add"
    WATCH = "watch"
    WORKFLOW_DISPATCH = "workflow_dispatch"
    WORKFLOW_JOB = "workflow_job"
    WORKFLOW_RUN = "workflow_run"
    UNKNOWN = "unknown"

    @classmethod
    def from_name(cls, name: str) -> "WebhookEventType":
        """Map an event name to its member, or ``UNKNOWN``."""
        try:
            return cls(name)
        except ValueError:
            return cls.UNKNOWN


class ClassificationError(Exception):
    """Raised when a delivery cannot be turned into a ``WebhookEvent``.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying exception, if any.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.message = message
        self.original_error = original_error
        super().__init__(message)


class WebhookEvent(BaseModel):
    """A classified webhook delivery.

    Attributes:
        kind: The recognised event type, or ``UNKNOWN``.
        event_name: The header value as received, stripped and lower-cased.
        installation_id: ``installation.id`` from the payload, if present.
        payload: The decoded JSON object.
        raw_body: The verified request body.
        delivery_id: The ``X-GitHub-Delivery`` GUID, if sent.
        action: The payload's ``action`` field, if present.
    """

    model_config = ConfigDict(frozen=True)

    kind: WebhookEventType
    event_name: str = Field(..., min_length=1)
    installation_id: Optional[int] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    raw_body: bytes = Field(default=b"", repr=False)
    delivery_id: Optional[str] = None
    action: Optional[str] = None

    @property
    def qualified_name(self) -> str:
        """``event.action`` when the payload has an action, else the event name."""
        if self.action:
            return f"{self.event_name}.{self.action}"
        return self.event_name


def _extract_installation_id(payload: Dict[str, Any]) -> Optional[int]:
    installation = payload.get("installation")
    if not isinstance(installation, dict):
        return None
    installation_id = installation.get("id")
    # bool is an int subclass
    if isinstance(installation_id, int) and not isinstance(installation_id, bool):
        return installation_id
    return None


def classify_event(
    event_type_header: Optional[str],
    body: bytes,
    delivery_id: Optional[str] = None,
) -> WebhookEvent:
    """Classify a verified delivery.

    Args:
        event_type_header: Value of ``X-GitHub-Event``.
        body: The verified request body.
        delivery_id: Value of ``X-GitHub-Delivery``, if sent.

    Returns:
        The classified event.

    Raises:
        ClassificationError: If the header is missing or blank, or the body
                             is not a UTF-8 JSON object.
    """
    if event_type_header is None or not event_type_header.strip():
        raise ClassificationError("Missing X-GitHub-Event header")

    event_name = event_type_header.strip().lower()

    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError, RecursionError) as e:
        raise ClassificationError(f"Invalid JSON payload for {event_name} event", e) from e

    if not isinstance(payload, dict):
        raise ClassificationError(
            f"Expected JSON object for {event_name} event, got {type(payload).__name__}"
        )

    action = payload.get("action")
    kind = WebhookEventType.from_name(event_name)
    if kind is WebhookEventType.UNKNOWN:
        logger.debug("Unrecognised event type", extra={"event_name": event_name})

    return WebhookEvent(
        kind=kind,
        event_name=event_name,
        installation_id=_extract_installation_id(payload),
        payload=payload,
        raw_body=body,
        delivery_id=delivery_id,
        action=action if isinstance(action, str) else None,
    )

"""Helpers for testing Octofer handlers.

- ``MockWebhookEvent`` builds realistic deliveries without a GitHub
  round-trip. ``sign_payload`` and ``MockWebhookEvent.headers`` produce the
  headers GitHub would send, so deliveries can go through the full HTTP
  surface.
- ``MockGitHubClient`` stands in for the App authenticator. Handlers get
  real ``GitHubClient`` instances whose requests are recorded and answered
  in-process.
- ``TestApp`` registers handlers and dispatches events without a server.
- ``assert_api`` and ``assert_context`` (plus the ``assert_*`` functions
  behind them) check what a handler did.

Example:
    >>> app = TestApp()
    >>> await app.on_issues(greet)
    >>> await app.handle_event(MockWebhookEvent.issue_opened("octo/repo", 7).build())
    >>> assert_api(app.github).comment_created("octo/repo", 7).total_calls(1)
"""

import json
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

import httpx

from octofer.config import OctoferSettings
from octofer.context import Context
from octofer.github.app import GitHubAppAuthenticator
from octofer.github.client import DEFAULT_BASE_URL, GitHubClient
from octofer.webhook.dispatcher import (
    DELIVERY_HEADER,
    DEFAULT_SIGNATURE_HEADER,
    EVENT_HEADER,
    DispatchOutcome,
    DispatchResult,
    Dispatcher,
)
from octofer.webhook.events import WebhookEvent, WebhookEventType, classify_event
from octofer.webhook.registry import Handler, HandlerRegistry, RegisteredHandler
from octofer.webhook.signature import compute_signature

DEFAULT_INSTALLATION_ID = 12345


def sign_payload(body: bytes, secret: Union[str, bytes]) -> str:
    """Signature header value for ``body``."""
    return compute_signature(body, secret)


def _repository(full_name: str) -> Dict[str, Any]:
    owner, _, name = full_name.rpartition("/")
    return {
        "full_name": full_name,
        "name": name,
        "owner": {"login": owner or "unknown"},
    }


class MockWebhookEvent:
    """Builder for webhook deliveries.

    Every builder method returns ``self`` so calls can be chained.
    """

    def __init__(self, event_name: str, action: Optional[str] = None):
        self.event_name = event_name
        self.payload: Dict[str, Any] = {
            "installation": {"id": DEFAULT_INSTALLATION_ID},
            "sender": {"login": "test-sender", "id": 789},
        }
        if action is not None:
            self.payload["action"] = action
        self.delivery_id = str(uuid.uuid4())

    @classmethod
    def issue_opened(cls, repo: str, number: int) -> "MockWebhookEvent":
        return cls._issue("opened", repo, number)

    @classmethod
    def issue_closed(cls, repo: str, number: int) -> "MockWebhookEvent":
        return cls._issue("closed", repo, number)

    @classmethod
    def _issue(cls, action: str, repo: str, number: int) -> "MockWebhookEvent":
        event = cls("issues", action)
        event.payload["issue"] = {
            "number": number,
            "title": f"Issue #{number}",
            "body": f"Body for issue #{number}",
            "state": "closed" if action == "closed" else "open",
            "user": {"login": "test-author"},
            "labels": [],
        }
        event.payload["repository"] = _repository(repo)
        return event

    @classmethod
    def issue_comment_created(
        cls, repo: str, number: int, comment_id: int
    ) -> "MockWebhookEvent":
        event = cls("issue_comment", "created")
        event.payload["issue"] = {
            "number": number,
            "title": f"Issue #{number}",
            "state": "open",
        }
        event.payload["comment"] = {
            "id": comment_id,
            "body": f"Comment {comment_id}",
            "user": {"login": "test-commenter"},
        }
        event.payload["repository"] = _repository(repo)
        return event

    @classmethod
    def pull_request_opened(cls, repo: str, number: int) -> "MockWebhookEvent":
        event = cls("pull_request", "opened")
        event.payload["number"] = number
        event.payload["pull_request"] = {
            "number": number,
            "title": f"Pull request #{number}",
            "body": f"Body for pull request #{number}",
            "state": "open",
            "head": {"ref": f"feature-{number}"},
            "base": {"ref": "main"},
        }
        event.payload["repository"] = _repository(repo)
        return event

    @classmethod
    def push(cls, repo: str, ref: str = "refs/heads/main") -> "MockWebhookEvent":
        event = cls("push")
        event.payload.update(
            {
                "ref": ref,
                "before": "0" * 40,
                "after": "1" * 40,
                "commits": [],
                "repository": _repository(repo),
            }
        )
        return event

    def title(self, title: str) -> "MockWebhookEvent":
        for key in ("issue", "pull_request"):
            if key in self.payload:
                self.payload[key]["title"] = title
        return self

    def body(self, body: str) -> "MockWebhookEvent":
        if "comment" in self.payload:
            self.payload["comment"]["body"] = body
        else:
            for key in ("issue", "pull_request"):
                if key in self.payload:
                    self.payload[key]["body"] = body
        return self

    def installation_id(self, installation_id: Optional[int]) -> "MockWebhookEvent":
        if installation_id is None:
            self.payload.pop("installation", None)
        else:
            self.payload["installation"] = {"id": installation_id}
        return self

    def with_field(self, key: str, value: Any) -> "MockWebhookEvent":
        self.payload[key] = value
        return self

    def to_bytes(self) -> bytes:
        return json.dumps(self.payload).encode("utf-8")

    def headers(
        self,
        secret: Union[str, bytes],
        signature_header: str = DEFAULT_SIGNATURE_HEADER,
    ) -> Dict[str, str]:
        """Headers GitHub would send with this delivery."""
        return {
            EVENT_HEADER: self.event_name,
            DELIVERY_HEADER: self.delivery_id,
            signature_header: sign_payload(self.to_bytes(), secret),
            "content-type": "application/json",
        }

    def build(self) -> WebhookEvent:
        return classify_event(self.event_name, self.to_bytes(), delivery_id=self.delivery_id)


def make_context(
    event: Optional[WebhookEvent] = None,
    github: Optional[GitHubAppAuthenticator] = None,
) -> Context:
    """Context for calling a handler directly."""
    return Context(
        event=event,
        installation_id=event.installation_id if event is not None else None,
        github=github,
    )


def mock_event_from_json(
    event_type: str,
    payload: Union[str, bytes],
    delivery_id: Optional[str] = None,
) -> WebhookEvent:
    """Classify a raw JSON payload, such as one saved from a real delivery.

    Raises:
        ClassificationError: If the payload is not a JSON object.
    """
    raw = payload.encode("utf-8") if isinstance(payload, str) else payload
    return classify_event(event_type, raw, delivery_id=delivery_id)


@dataclass(frozen=True)
class ApiCall:
    """One request a handler sent to the mock GitHub API."""

    method: str
    path: str
    body: Any = None


def _default_response(method: str, path: str, body: Any, call_number: int) -> Tuple[int, Any]:
    payload = body if isinstance(body, dict) else {}
    if method == "DELETE":
        return 204, None
    if method == "POST" and path.endswith("/comments"):
        return 201, {
            "id": call_number,
            "body": payload.get("body"),
            "user": {"login": "test-bot"},
        }
    if method == "POST" and path.endswith("/labels"):
        return 200, [{"name": name} for name in payload.get("labels", [])]
    parts = path.strip("/").split("/")
    if method == "GET" and len(parts) == 3 and parts[0] == "repos":
        owner, name = parts[1], parts[2]
        return 200, {
            "name": name,
            "full_name": f"{owner}/{name}",
            "owner": {"login": owner},
            "private": False,
            "default_branch": "main",
        }
    if method == "POST":
        return 201, body if body is not None else {}
    return 200, body if body is not None else {}


class MockGitHubClient:
    """Records the GitHub API calls handlers make and answers them in-process.

    Use it wherever a ``GitHubAppAuthenticator`` is expected. Paths are
    recorded relative to the API root, e.g.
    ``/repos/octo/repo/issues/1/comments``. Unset responses get a small
    plausible default; ``set_response`` overrides one method and path,
    including with an error status.

    Attributes:
        calls: Every request received, in order.
        transport: The ``httpx.MockTransport`` behind every client.
    """

    def __init__(self, base_url: str = DEFAULT_BASE_URL):
        self.base_url = base_url.rstrip("/")
        self.calls: List[ApiCall] = []
        self.transport = httpx.MockTransport(self._handle)
        self._base_path = httpx.URL(self.base_url).path.rstrip("/")
        self._responses: Dict[Tuple[str, str], Tuple[int, Any]] = {}
        self._clients: Dict[int, GitHubClient] = {}

    def set_response(
        self,
        method: str,
        path: str,
        body: Any,
        status_code: int = 200,
    ) -> None:
        self._responses[(method.upper(), path)] = (status_code, body)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        method = request.method.upper()
        path = request.url.path
        if self._base_path and path.startswith(self._base_path):
            path = path[len(self._base_path):]
        body = json.loads(request.content) if request.content else None
        self.calls.append(ApiCall(method=method, path=path, body=body))

        status_code, content = self._responses.get(
            (method, path)
        ) or _default_response(method, path, body, len(self.calls))
        if content is None:
            return httpx.Response(status_code)
        return httpx.Response(status_code, json=content)

    async def installation_client(self, installation_id: int) -> GitHubClient:
        client = self._clients.get(installation_id)
        if client is None:
            client = GitHubClient(
                token=f"ghs_test_{installation_id}",
                base_url=self.base_url,
                installation_id=installation_id,
                max_retries=0,
                transport=self.transport,
            )
            self._clients[installation_id] = client
        return client

    def was_called(self, method: str, path: str) -> bool:
        return self.call_count(method, path) > 0

    def call_count(self, method: str, path: str) -> int:
        method = method.upper()
        return sum(1 for call in self.calls if call.method == method and call.path == path)

    @property
    def last_call(self) -> Optional[ApiCall]:
        return self.calls[-1] if self.calls else None

    def clear_calls(self) -> None:
        self.calls.clear()

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()


class TestApp:
    """Registers handlers and dispatches events in-process.

    Events go through the same ``Dispatcher`` a served app uses, so handler
    order, fail-fast and timeouts behave the same. A handler failure is
    raised as ``HandlerError`` instead of becoming a 500.

    Attributes:
        config: Settings the app was built from.
        github: The ``MockGitHubClient`` handed to every context.
        registry: Registered handlers.
        dispatcher: Dispatcher running the handlers.
    """

    __test__ = False

    def __init__(
        self,
        config: Optional[OctoferSettings] = None,
        github: Optional[MockGitHubClient] = None,
    ):
        self.config = config if config is not None else OctoferSettings()
        self.github = github if github is not None else MockGitHubClient(self.config.github_api_url)
        self.registry = HandlerRegistry()
        self.dispatcher = Dispatcher(
            registry=self.registry,
            webhook_secret=self.config.github_webhook_secret,
            authenticator=self.github,
            signature_header=self.config.github_webhook_header,
            handler_timeout=self.config.handler_timeout,
        )

    async def on(
        self,
        event_type: Union[str, WebhookEventType],
        handler: Handler,
        extra: Any = None,
    ) -> RegisteredHandler:
        return await self.registry.register(event_type, handler, extra)

    async def on_issues(self, handler: Handler, extra: Any = None) -> RegisteredHandler:
        return await self.on(WebhookEventType.ISSUES, handler, extra)

    async def on_issue_comment(self, handler: Handler, extra: Any = None) -> RegisteredHandler:
        return await self.on(WebhookEventType.ISSUE_COMMENT, handler, extra)

    async def on_pull_request(self, handler: Handler, extra: Any = None) -> RegisteredHandler:
        return await self.on(WebhookEventType.PULL_REQUEST, handler, extra)

    async def on_push(self, handler: Handler, extra: Any = None) -> RegisteredHandler:
        return await self.on(WebhookEventType.PUSH, handler, extra)

    async def handle_event(self, event: WebhookEvent) -> DispatchResult:
        """Run the handlers for a classified event.

        Raises:
            HandlerError: If a handler raised or timed out.
        """
        return _raise_for_failure(await self.dispatcher.dispatch_event(event))

    async def handle_context(self, event_type: str, context: Context) -> DispatchResult:
        """Run the handlers for ``event_type`` with a context built by hand.

        Raises:
            HandlerError: If a handler raised or timed out.
        """
        return _raise_for_failure(await self.dispatcher.dispatch_context(event_type, context))

    async def handle_delivery(self, delivery: MockWebhookEvent) -> DispatchResult:
        """Sign and dispatch a delivery exactly as the webhook endpoint would.

        Rejections are returned rather than raised, so signature and
        payload handling can be asserted on.
        """
        headers = delivery.headers(
            self.config.github_webhook_secret,
            signature_header=self.config.github_webhook_header,
        )
        return await self.dispatcher.dispatch_request(delivery.to_bytes(), headers)

    async def clear_handlers(self) -> None:
        await self.registry.clear()

    async def handler_count(
        self, event_type: Optional[Union[str, WebhookEventType]] = None
    ) -> int:
        return await self.registry.handler_count(event_type)

    async def has_handlers(self, event_type: Union[str, WebhookEventType]) -> bool:
        return await self.registry.has_handlers(event_type)


def _raise_for_failure(result: DispatchResult) -> DispatchResult:
    if result.outcome is DispatchOutcome.HANDLER_FAILED and result.error is not None:
        raise result.error
    return result


def _check(condition: bool, message: str) -> None:
    if not condition:
        raise AssertionError(message)


def assert_event_type(event: WebhookEvent, expected: WebhookEventType) -> None:
    _check(
        event.kind is expected,
        f"Event type mismatch: expected {expected.value}, got {event.kind.value}",
    )


def assert_context_event_type(context: Context, expected: WebhookEventType) -> None:
    _check(context.event is not None, f"Context has no event, expected {expected.value}")
    assert_event_type(context.event, expected)


def assert_installation_id(context: Context, expected: int) -> None:
    _check(
        context.installation_id is not None,
        f"Context has no installation ID, expected {expected}",
    )
    _check(
        context.installation_id == expected,
        f"Installation ID mismatch: expected {expected}, got {context.installation_id}",
    )


def assert_has_installation_id(context: Context) -> None:
    _check(context.installation_id is not None, "Context should have an installation ID")


def assert_no_installation_id(context: Context) -> None:
    _check(
        context.installation_id is None,
        f"Context should not have an installation ID, got {context.installation_id}",
    )


def assert_has_github_client(context: Context) -> None:
    _check(context.github is not None, "Context should have a GitHub client")


def assert_no_github_client(context: Context) -> None:
    _check(context.github is None, "Context should not have a GitHub client")


def assert_api_call_made(client: MockGitHubClient, method: str, path: str) -> None:
    _check(
        client.was_called(method, path),
        f"Expected API call not made: {method.upper()} {path}; calls: {client.calls}",
    )


def assert_api_call_count(
    client: MockGitHubClient, method: str, path: str, expected: int
) -> None:
    actual = client.call_count(method, path)
    _check(
        actual == expected,
        f"API call count mismatch for {method.upper()} {path}: "
        f"expected {expected}, got {actual}",
    )


def assert_no_api_calls(client: MockGitHubClient) -> None:
    _check(
        not client.calls,
        f"Expected no API calls, but {len(client.calls)} were made: {client.calls}",
    )


def assert_total_api_calls(client: MockGitHubClient, expected: int) -> None:
    _check(
        len(client.calls) == expected,
        f"Total API call count mismatch: expected {expected}, got {len(client.calls)}",
    )


class ApiAssertions:
    """Chainable checks on a ``MockGitHubClient``."""

    def __init__(self, client: MockGitHubClient):
        self.client = client

    def called(self, method: str, path: str) -> "ApiAssertions":
        assert_api_call_made(self.client, method, path)
        return self

    def called_times(self, method: str, path: str, count: int) -> "ApiAssertions":
        assert_api_call_count(self.client, method, path, count)
        return self

    def no_calls(self) -> "ApiAssertions":
        assert_no_api_calls(self.client)
        return self

    def total_calls(self, count: int) -> "ApiAssertions":
        assert_total_api_calls(self.client, count)
        return self

    def comment_created(self, repo: str, issue_number: int) -> "ApiAssertions":
        return self.called("POST", f"/repos/{repo}/issues/{issue_number}/comments")

    def issue_updated(self, repo: str, issue_number: int) -> "ApiAssertions":
        return self.called("PATCH", f"/repos/{repo}/issues/{issue_number}")

    def labels_added(self, repo: str, issue_number: int) -> "ApiAssertions":
        return self.called("POST", f"/repos/{repo}/issues/{issue_number}/labels")

    def repository_fetched(self, repo: str) -> "ApiAssertions":
        return self.called("GET", f"/repos/{repo}")


class ContextAssertions:
    """Chainable checks on a ``Context``."""

    def __init__(self, context: Context):
        self.context = context

    def event_type(self, expected: WebhookEventType) -> "ContextAssertions":
        assert_context_event_type(self.context, expected)
        return self

    def installation_id(self, expected: int) -> "ContextAssertions":
        assert_installation_id(self.context, expected)
        return self

    def has_installation_id(self) -> "ContextAssertions":
        assert_has_installation_id(self.context)
        return self

    def no_installation_id(self) -> "ContextAssertions":
        assert_no_installation_id(self.context)
        return self

    def has_github_client(self) -> "ContextAssertions":
        assert_has_github_client(self.context)
        return self

    def no_github_client(self) -> "ContextAssertions":
        assert_no_github_client(self.context)
        return self


def assert_api(client: MockGitHubClient) -> ApiAssertions:
    return ApiAssertions(client)


def assert_context(context: Context) -> ContextAssertions:
    return ContextAssertions(context)

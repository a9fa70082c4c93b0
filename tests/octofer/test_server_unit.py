"""HTTP surface tests through FastAPI's TestClient."""

import asyncio
import json
from unittest.mock import AsyncMock

from fastapi.testclient import TestClient

from octofer.metrics import OctoferMetrics
from octofer.testing import MockWebhookEvent, sign_payload
from octofer.webhook.dispatcher import Dispatcher
from octofer.webhook.registry import HandlerRegistry
from octofer.webhook.server import create_app

SECRET = "server-secret"


def run_async(coro):
    return asyncio.run(coro)


def build_app(*handlers, event="issues", **dispatcher_kwargs):
    registry = HandlerRegistry()

    async def register():
        for handler in handlers:
            await registry.register(event, handler)

    run_async(register())
    dispatcher = Dispatcher(registry=registry, webhook_secret=SECRET, **dispatcher_kwargs)
    return create_app(dispatcher)


def test_health():
    with TestClient(build_app()) as client:
        response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_delivery_dispatched():
    handler = AsyncMock()
    delivery = MockWebhookEvent.issue_opened("octo/repo", 7)

    with TestClient(build_app(handler)) as client:
        response = client.post(
            "/webhook",
            content=delivery.to_bytes(),
            headers=delivery.headers(SECRET),
        )

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "delivery_id": delivery.delivery_id}
    context, _ = handler.await_args.args
    assert context.payload["issue"]["number"] == 7


def test_no_handlers_returns_ok():
    delivery = MockWebhookEvent.push("octo/repo")

    with TestClient(build_app()) as client:
        response = client.post(
            "/webhook", content=delivery.to_bytes(), headers=delivery.headers(SECRET)
        )

    assert response.status_code == 200
    assert response.json()["status"] == "no_handlers"


def test_stripped_signature_rejected_before_handlers():
    handler = AsyncMock()
    delivery = MockWebhookEvent.issue_opened("octo/repo", 7)
    headers = delivery.headers(SECRET)
    del headers["x-hub-signature-256"]

    with TestClient(build_app(handler)) as client:
        response = client.post("/webhook", content=delivery.to_bytes(), headers=headers)

    assert response.status_code == 400
    handler.assert_not_awaited()


def test_wrong_signature_unauthorized():
    handler = AsyncMock()
    delivery = MockWebhookEvent.issue_opened("octo/repo", 7)

    with TestClient(build_app(handler)) as client:
        response = client.post(
            "/webhook",
            content=delivery.to_bytes(),
            headers=delivery.headers("another-secret"),
        )

    assert response.status_code == 401
    assert response.json()["status"] == "unauthorized"
    handler.assert_not_awaited()


def test_handler_failure_hides_details():
    handler = AsyncMock(side_effect=RuntimeError("database password is hunter2"))
    delivery = MockWebhookEvent.issue_opened("octo/repo", 7)

    with TestClient(build_app(handler)) as client:
        response = client.post(
            "/webhook", content=delivery.to_bytes(), headers=delivery.headers(SECRET)
        )

    assert response.status_code == 500
    assert "hunter2" not in response.text


def test_oversized_payload():
    delivery = MockWebhookEvent.issue_opened("octo/repo", 7).body("x" * 500)

    with TestClient(build_app(max_body_bytes=100)) as client:
        response = client.post(
            "/webhook", content=delivery.to_bytes(), headers=delivery.headers(SECRET)
        )

    assert response.status_code == 413


def test_invalid_json_bad_request():
    raw = b"not json"
    headers = MockWebhookEvent.push("octo/repo").headers(SECRET)
    headers["x-hub-signature-256"] = sign_payload(raw, SECRET)

    with TestClient(build_app()) as client:
        response = client.post("/webhook", content=raw, headers=headers)

    assert response.status_code == 400
    assert response.json()["status"] == "invalid_payload"


def test_metrics_endpoint():
    delivery = MockWebhookEvent.issue_opened("octo/repo", 7)
    app = build_app(AsyncMock())

    with TestClient(app) as client:
        client.post("/webhook", content=delivery.to_bytes(), headers=delivery.headers(SECRET))
        response = client.get("/metrics")

    assert response.status_code == 200
    assert 'octofer_webhook_deliveries_total{event="issues",outcome="ok"} 1.0' in response.text
    assert isinstance(app.state.metrics, OctoferMetrics)


def test_state_exposes_components():
    app = build_app()
    assert app.state.registry is app.state.dispatcher.registry
    assert app.state.authenticator is None


def test_issue_delivery_records_installation_id():
    recorded = []

    async def record(context, extra):
        recorded.append(context.installation_id)

    raw = b'{"action":"opened","issue":{"number":42,"title":"Test"},"installation":{"id":555}}'
    headers = {
        "X-GitHub-Event": "issues",
        "X-Hub-Signature-256": sign_payload(raw, SECRET),
        "Content-Type": "application/json",
    }

    with TestClient(build_app(record)) as client:
        response = client.post("/webhook", content=raw, headers=headers)

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert recorded == [555]


def post_chunks(app, chunks, headers):
    """Send a chunked POST straight to the ASGI app, counting body reads."""
    pending = list(chunks)
    reads = 0
    sent = []

    async def receive():
        nonlocal reads
        if not pending:
            return {"type": "http.disconnect"}
        reads += 1
        chunk = pending.pop(0)
        return {"type": "http.request", "body": chunk, "more_body": bool(pending)}

    async def send(message):
        sent.append(message)

    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "POST",
        "scheme": "http",
        "path": "/webhook",
        "raw_path": b"/webhook",
        "root_path": "",
        "query_string": b"",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        "client": ("testclient", 50000),
        "server": ("testserver", 80),
    }
    run_async(app(scope, receive, send))
    status = next(m["status"] for m in sent if m["type"] == "http.response.start")
    return status, reads


def test_declared_oversized_body_is_not_read():
    chunks = [b"x" * 1000] * 5000
    headers = {"x-github-event": "issues", "content-length": str(1000 * 5000)}

    status, reads = post_chunks(build_app(max_body_bytes=10), chunks, headers)

    assert status == 413
    assert reads == 0


def test_streamed_oversized_body_stops_reading_at_cap():
    chunks = [b"x" * 1000] * 5000

    status, reads = post_chunks(build_app(max_body_bytes=10), chunks, {"x-github-event": "issues"})

    assert status == 413
    assert reads == 1


def test_streamed_body_under_cap_is_dispatched():
    handler = AsyncMock()
    delivery = MockWebhookEvent.issue_opened("octo/repo", 3)
    body = delivery.to_bytes()
    chunks = [body[:10], body[10:]]

    status, reads = post_chunks(
        build_app(handler, max_body_bytes=len(body)), chunks, delivery.headers(SECRET)
    )

    assert status == 200
    assert reads == 2
    handler.assert_awaited_once()

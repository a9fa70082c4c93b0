"""Unit tests for webhook dispatch."""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from octofer.metrics import OctoferMetrics
from octofer.webhook.dispatcher import (
    DispatchOutcome,
    Dispatcher,
    HandlerError,
)
from octofer.webhook.events import classify_event
from octofer.webhook.registry import HandlerRegistry
from octofer.webhook.signature import compute_signature

SECRET = "test-secret"


def run_async(coro):
    return asyncio.run(coro)


def signed_headers(raw: bytes, event: str = "issues", secret: str = SECRET) -> dict:
    return {
        "X-GitHub-Event": event,
        "X-GitHub-Delivery": "delivery-1",
        "X-Hub-Signature-256": compute_signature(raw, secret),
    }


def issue_body(installation_id=555) -> bytes:
    return json.dumps(
        {"action": "opened", "installation": {"id": installation_id}, "issue": {"number": 1}}
    ).encode()


def make_dispatcher(registry=None, **kwargs) -> Dispatcher:
    return Dispatcher(
        registry=registry if registry is not None else HandlerRegistry(),
        webhook_secret=SECRET,
        **kwargs,
    )


class TestOutcomeStatusCodes:
    @pytest.mark.parametrize(
        "outcome,status",
        [
            (DispatchOutcome.OK, 200),
            (DispatchOutcome.NO_HANDLERS, 200),
            (DispatchOutcome.MISSING_HEADER, 400),
            (DispatchOutcome.INVALID_PAYLOAD, 400),
            (DispatchOutcome.PAYLOAD_TOO_LARGE, 413),
            (DispatchOutcome.UNAUTHORIZED, 401),
            (DispatchOutcome.HANDLER_FAILED, 500),
        ],
    )
    def test_status_code(self, outcome, status):
        assert outcome.status_code == status


class TestDispatchOrdering:
    def test_handlers_run_in_registration_order(self):
        calls = []

        def recording(name):
            async def handler(context, extra):
                calls.append((name, extra, context.installation_id))
            return handler

        async def scenario():
            registry = HandlerRegistry()
            await registry.register("issues", recording("H1"), extra="a")
            await registry.register("issues", recording("H2"), extra="b")
            await registry.register("issues", recording("H3"), extra="c")
            raw = issue_body()
            return await make_dispatcher(registry).dispatch_request(raw, signed_headers(raw))

        result = run_async(scenario())
        assert result.outcome is DispatchOutcome.OK
        assert result.status_code == 200
        assert result.handlers_run == 3
        assert calls == [("H1", "a", 555), ("H2", "b", 555), ("H3", "c", 555)]

    def test_handlers_share_one_context(self):
        contexts = []

        async def capture(context, extra):
            contexts.append(context)

        async def scenario():
            registry = HandlerRegistry()
            await registry.register("issues", capture)
            await registry.register("issues", capture)
            raw = issue_body()
            await make_dispatcher(registry).dispatch_request(raw, signed_headers(raw))

        run_async(scenario())
        assert contexts[0] is contexts[1]
        assert contexts[0].event_name == "issues"
        assert contexts[0].action == "opened"

    def test_fail_fast_stops_remaining_handlers(self):
        h1 = AsyncMock()
        h2 = AsyncMock(side_effect=RuntimeError("boom"))
        h3 = AsyncMock()

        async def scenario():
            registry = HandlerRegistry()
            for handler in (h1, h2, h3):
                await registry.register("issues", handler)
            raw = issue_body()
            return await make_dispatcher(registry).dispatch_request(raw, signed_headers(raw))

        result = run_async(scenario())
        assert result.outcome is DispatchOutcome.HANDLER_FAILED
        assert result.status_code == 500
        assert result.handlers_run == 1
        h1.assert_awaited_once()
        h2.assert_awaited_once()
        h3.assert_not_awaited()
        assert isinstance(result.error, HandlerError)
        assert isinstance(result.error.original_error, RuntimeError)
        assert result.error.delivery_id == "delivery-1"

    def test_no_handlers_is_success(self):
        async def scenario():
            raw = issue_body()
            return await make_dispatcher().dispatch_request(raw, signed_headers(raw, "push"))

        result = run_async(scenario())
        assert result.outcome is DispatchOutcome.NO_HANDLERS
        assert result.status_code == 200

    def test_unknown_event_dispatches_by_raw_name(self):
        handler = AsyncMock()

        async def scenario():
            registry = HandlerRegistry()
            await registry.register("brand_new_event", handler)
            raw = b'{"action": "created"}'
            return await make_dispatcher(registry).dispatch_request(
                raw, signed_headers(raw, "brand_new_event")
            )

        assert run_async(scenario()).outcome is DispatchOutcome.OK
        handler.assert_awaited_once()

    def test_handler_timeout_is_failure(self):
        after_slow = AsyncMock()

        async def slow(context, extra):
            await asyncio.sleep(5)

        async def scenario():
            registry = HandlerRegistry()
            await registry.register("issues", slow)
            await registry.register("issues", after_slow)
            raw = issue_body()
            dispatcher = make_dispatcher(registry, handler_timeout=0.05)
            return await dispatcher.dispatch_request(raw, signed_headers(raw))

        result = run_async(scenario())
        assert result.outcome is DispatchOutcome.HANDLER_FAILED
        assert isinstance(result.error.original_error, asyncio.TimeoutError)
        after_slow.assert_not_awaited()


class TestRejectedDeliveries:
    def _dispatch(self, raw, headers, **kwargs):
        handler = AsyncMock()

        async def scenario():
            registry = HandlerRegistry()
            await registry.register("issues", handler)
            return await make_dispatcher(registry, **kwargs).dispatch_request(raw, headers)

        return run_async(scenario()), handler

    def test_missing_signature_is_bad_request(self):
        raw = issue_body()
        headers = signed_headers(raw)
        del headers["X-Hub-Signature-256"]

        result, handler = self._dispatch(raw, headers)

        assert result.outcome is DispatchOutcome.MISSING_HEADER
        assert result.status_code == 400
        handler.assert_not_awaited()

    def test_bad_signature_is_unauthorized(self):
        raw = issue_body()
        headers = signed_headers(raw, secret="wrong-secret")

        result, handler = self._dispatch(raw, headers)

        assert result.outcome is DispatchOutcome.UNAUTHORIZED
        assert result.status_code == 401
        handler.assert_not_awaited()

    def test_tampered_body_is_unauthorized(self):
        raw = issue_body()
        headers = signed_headers(raw)

        result, handler = self._dispatch(issue_body(installation_id=556), headers)

        assert result.outcome is DispatchOutcome.UNAUTHORIZED
        handler.assert_not_awaited()

    def test_missing_event_header(self):
        raw = issue_body()
        headers = signed_headers(raw)
        del headers["X-GitHub-Event"]

        result, handler = self._dispatch(raw, headers)

        assert result.outcome is DispatchOutcome.MISSING_HEADER
        handler.assert_not_awaited()

    def test_invalid_json(self):
        raw = b"{not json"
        result, handler = self._dispatch(raw, signed_headers(raw))

        assert result.outcome is DispatchOutcome.INVALID_PAYLOAD
        assert result.status_code == 400
        handler.assert_not_awaited()

    def test_oversized_body(self):
        raw = issue_body()
        result, handler = self._dispatch(raw, signed_headers(raw), max_body_bytes=10)

        assert result.outcome is DispatchOutcome.PAYLOAD_TOO_LARGE
        assert result.status_code == 413
        handler.assert_not_awaited()

    def test_deeply_nested_json(self):
        raw = b"[" * 200000 + b"]" * 200000
        result, handler = self._dispatch(raw, signed_headers(raw))

        assert result.outcome is DispatchOutcome.INVALID_PAYLOAD
        assert result.status_code == 400
        handler.assert_not_awaited()

    def test_custom_signature_header(self):
        raw = issue_body()
        headers = signed_headers(raw)
        headers["X-Custom-Signature"] = headers.pop("X-Hub-Signature-256")

        result, handler = self._dispatch(raw, headers, signature_header="X-Custom-Signature")

        assert result.outcome is DispatchOutcome.OK
        handler.assert_awaited_once()

    def test_lower_case_headers(self):
        raw = issue_body()
        headers = {key.lower(): value for key, value in signed_headers(raw).items()}

        result, _ = self._dispatch(raw, headers)

        assert result.outcome is DispatchOutcome.OK


def test_dispatch_event_directly():
    handler = AsyncMock()

    async def scenario():
        registry = HandlerRegistry()
        await registry.register("issues", handler, extra="x")
        event = classify_event("issues", issue_body())
        return await make_dispatcher(registry).dispatch_event(event)

    result = run_async(scenario())
    assert result.outcome is DispatchOutcome.OK
    context, extra = handler.await_args.args
    assert context.installation_id == 555
    assert extra == "x"


def test_metrics_recorded():
    metrics = OctoferMetrics()

    async def scenario():
        registry = HandlerRegistry()
        await registry.register("issues", AsyncMock())
        dispatcher = make_dispatcher(registry, metrics=metrics)
        raw = issue_body()
        await dispatcher.dispatch_request(raw, signed_headers(raw))
        await dispatcher.dispatch_request(raw, signed_headers(raw, secret="nope"))

    run_async(scenario())
    registry = metrics.registry
    assert registry.get_sample_value(
        "octofer_webhook_deliveries_total", {"event": "issues", "outcome": "ok"}
    ) == 1
    assert registry.get_sample_value(
        "octofer_webhook_deliveries_total", {"event": "unverified", "outcome": "unauthorized"}
    ) == 1
    assert registry.get_sample_value(
        "octofer_handler_duration_seconds_count", {"event": "issues"}
    ) == 1


def test_empty_secret_rejected():
    with pytest.raises(ValueError):
        Dispatcher(registry=HandlerRegistry(), webhook_secret="")

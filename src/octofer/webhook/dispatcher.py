"""Webhook dispatch.

The dispatcher is the one place where webhook failures become transport
outcomes. ``dispatch_request`` runs a raw delivery through:

1. size check
2. signature verification
3. classification
4. context construction
5. handler lookup by event name
6. sequential handler invocation

Handlers run in registration order. The first handler that raises (or
exceeds the handler timeout) stops the rest and the delivery is reported
as failed, so GitHub records the failure and can redeliver.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional, Union

from octofer.context import Context
from octofer.github.app import GitHubAppAuthenticator
from octofer.metrics import OctoferMetrics
from octofer.webhook.events import ClassificationError, WebhookEvent, classify_event
from octofer.webhook.registry import HandlerRegistry, RegisteredHandler
from octofer.webhook.signature import (
    VerificationError,
    VerificationFailure,
    verify_signature,
)

logger = logging.getLogger(__name__)

EVENT_HEADER = "x-github-event"
DELIVERY_HEADER = "x-github-delivery"
DEFAULT_SIGNATURE_HEADER = "x-hub-signature-256"


class DispatchOutcome(str, Enum):
    """Result of handling one delivery, with its HTTP status."""

    OK = "ok"
    NO_HANDLERS = "no_handlers"
    MISSING_HEADER = "missing_header"
    INVALID_PAYLOAD = "invalid_payload"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    UNAUTHORIZED = "unauthorized"
    HANDLER_FAILED = "handler_failed"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]


_STATUS_CODES = {
    DispatchOutcome.OK: 200,
    DispatchOutcome.NO_HANDLERS: 200,
    DispatchOutcome.MISSING_HEADER: 400,
    DispatchOutcome.INVALID_PAYLOAD: 400,
    DispatchOutcome.PAYLOAD_TOO_LARGE: 413,
    DispatchOutcome.UNAUTHORIZED: 401,
    DispatchOutcome.HANDLER_FAILED: 500,
}


class HandlerError(Exception):
    """Raised when a handler fails or times out.

    Attributes:
        event_name: Event the handler was registered for.
        handler_name: Name of the failing handler.
        delivery_id: Delivery GUID, if known.
        original_error: The exception the handler raised.
    """

    def __init__(
        self,
        event_name: str,
        handler_name: str,
        original_error: BaseException,
        delivery_id: Optional[str] = None,
    ):
        self.event_name = event_name
        self.handler_name = handler_name
        self.delivery_id = delivery_id
        self.original_error = original_error
        super().__init__(
            f"Handler {handler_name} failed for {event_name} event: {original_error!r}"
        )


@dataclass(frozen=True)
class DispatchResult:
    """What happened to a delivery.

    Attributes:
        outcome: The dispatch outcome.
        event_name: Event name, when the delivery got far enough to have one.
        delivery_id: Delivery GUID, if sent.
        handlers_run: Handlers that completed successfully.
        error: The failure, for non-OK outcomes. Never sent to the caller.
    """

    outcome: DispatchOutcome
    event_name: Optional[str] = None
    delivery_id: Optional[str] = None
    handlers_run: int = 0
    error: Optional[Exception] = None

    @property
    def status_code(self) -> int:
        return self.outcome.status_code

    @property
    def ok(self) -> bool:
        return self.status_code < 400


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is not None:
        return value
    # Plain dicts are case sensitive; Starlette headers are not
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None


def _event_label(raw_event: Optional[str]) -> Optional[str]:
    if raw_event is None or not raw_event.strip():
        return None
    return raw_event.strip().lower()


class Dispatcher:
    """Routes verified deliveries to registered handlers.

    Attributes:
        registry: Handlers by event name.
        authenticator: Passed to every context, or ``None`` without App auth.
        signature_header: Header carrying the delivery signature.
        handler_timeout: Per-handler timeout in seconds, ``None`` to disable.
        max_body_bytes: Largest accepted body, ``None`` to disable.
    """

    def __init__(
        self,
        registry: HandlerRegistry,
        webhook_secret: Union[str, bytes],
        authenticator: Optional[GitHubAppAuthenticator] = None,
        metrics: Optional[OctoferMetrics] = None,
        signature_header: str = DEFAULT_SIGNATURE_HEADER,
        handler_timeout: Optional[float] = None,
        max_body_bytes: Optional[int] = None,
    ):
        if not webhook_secret:
            raise ValueError("webhook_secret must not be empty")
        self.registry = registry
        self.authenticator = authenticator
        self.metrics = metrics
        self.signature_header = signature_header.lower()
        self.handler_timeout = handler_timeout
        self.max_body_bytes = max_body_bytes
        self._webhook_secret = webhook_secret

    def _finish(self, result: DispatchResult, verified: bool = True) -> DispatchResult:
        if self.metrics is not None:
            # Unverified header values must not create label series
            event = (result.event_name or "unknown") if verified else "unverified"
            self.metrics.record_delivery(event, result.outcome.value)
        return result

    def reject_oversized(self, headers: Mapping[str, str], size: int) -> DispatchResult:
        """Result for a body larger than ``max_body_bytes``.

        ``size`` is the declared or received byte count, which may be less
        than the full body when reading stopped early.
        """
        delivery_id = _header(headers, DELIVERY_HEADER)
        event_label = _event_label(_header(headers, EVENT_HEADER))
        logger.warning(
            "Rejected oversized webhook payload",
            extra={
                "delivery_id": delivery_id,
                "event": event_label,
                "size": size,
                "max_body_bytes": self.max_body_bytes,
            },
        )
        return self._finish(
            DispatchResult(
                outcome=DispatchOutcome.PAYLOAD_TOO_LARGE,
                event_name=event_label,
                delivery_id=delivery_id,
            ),
            verified=False,
        )

    async def dispatch_request(
        self,
        body: bytes,
        headers: Mapping[str, str],
    ) -> DispatchResult:
        """Handle a raw delivery.

        Args:
            body: The request body exactly as received.
            headers: Request headers.

        Returns:
            The dispatch result. Never raises for bad input or handler
            failures.
        """
        if self.max_body_bytes is not None and len(body) > self.max_body_bytes:
            return self.reject_oversized(headers, len(body))

        delivery_id = _header(headers, DELIVERY_HEADER)
        raw_event = _header(headers, EVENT_HEADER)
        event_label = _event_label(raw_event)

        try:
            verified = verify_signature(
                body, _header(headers, self.signature_header), self._webhook_secret
            )
        except VerificationError as e:
            outcome = (
                DispatchOutcome.MISSING_HEADER
                if e.reason is VerificationFailure.MISSING_SIGNATURE
                else DispatchOutcome.UNAUTHORIZED
            )
            logger.warning(
                "Webhook signature verification failed",
                extra={
                    "delivery_id": delivery_id,
                    "event": event_label,
                    "reason": e.reason.value,
                },
            )
            return self._finish(
                DispatchResult(
                    outcome=outcome,
                    event_name=event_label,
                    delivery_id=delivery_id,
                    error=e,
                ),
                verified=False,
            )

        try:
            event = classify_event(raw_event, verified, delivery_id=delivery_id)
        except ClassificationError as e:
            outcome = (
                DispatchOutcome.MISSING_HEADER
                if event_label is None
                else DispatchOutcome.INVALID_PAYLOAD
            )
            logger.warning(
                "Rejected webhook delivery",
                extra={
                    "delivery_id": delivery_id,
                    "event": event_label,
                    "error": e.message,
                },
            )
            return self._finish(
                DispatchResult(
                    outcome=outcome,
                    event_name=event_label,
                    delivery_id=delivery_id,
                    error=e,
                )
            )

        return await self.dispatch_event(event)

    async def _run_handler(
        self,
        handler: RegisteredHandler,
        event_name: str,
        context: Context,
    ) -> None:
        started = time.perf_counter()
        try:
            if self.handler_timeout is None:
                await handler(context)
            else:
                await asyncio.wait_for(handler(context), timeout=self.handler_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise HandlerError(
                event_name=event_name,
                handler_name=handler.name,
                original_error=e,
                delivery_id=context.delivery_id,
            ) from e
        finally:
            if self.metrics is not None:
                self.metrics.record_handler_duration(
                    event_name, time.perf_counter() - started
                )

    async def dispatch_event(self, event: WebhookEvent) -> DispatchResult:
        """Run the handlers registered for an already classified event."""
        context = Context(
            event=event,
            installation_id=event.installation_id,
            github=self.authenticator,
        )
        return await self.dispatch_context(event.event_name, context)

    async def dispatch_context(self, event_name: str, context: Context) -> DispatchResult:
        """Run the handlers registered for ``event_name`` with a prepared context.

        Args:
            event_name: Event name used for the handler lookup.
            context: Context handed to every handler.
        """
        event_name = event_name.strip().lower()
        handlers = await self.registry.handlers_for(event_name)

        if not handlers:
            logger.info(
                "No handlers registered for event",
                extra={"event": event_name, "delivery_id": context.delivery_id},
            )
            return self._finish(
                DispatchResult(
                    outcome=DispatchOutcome.NO_HANDLERS,
                    event_name=event_name,
                    delivery_id=context.delivery_id,
                )
            )

        logger.info(
            "Dispatching webhook event",
            extra={
                "event": event_name,
                "action": context.action,
                "delivery_id": context.delivery_id,
                "installation_id": context.installation_id,
                "handlers": len(handlers),
            },
        )

        completed = 0
        for handler in handlers:
            try:
                await self._run_handler(handler, event_name, context)
            except HandlerError as e:
                logger.error(
                    "Event handler failed",
                    extra={
                        "event": e.event_name,
                        "handler": e.handler_name,
                        "delivery_id": e.delivery_id,
                        "error": repr(e.original_error),
                        "skipped_handlers": len(handlers) - completed - 1,
                    },
                    exc_info=e.original_error,
                )
                return self._finish(
                    DispatchResult(
                        outcome=DispatchOutcome.HANDLER_FAILED,
                        event_name=event_name,
                        delivery_id=context.delivery_id,
                        handlers_run=completed,
                        error=e,
                    )
                )
            completed += 1

        return self._finish(
            DispatchResult(
                outcome=DispatchOutcome.OK,
                event_name=event_name,
                delivery_id=context.delivery_id,
                handlers_run=completed,
            )
        )

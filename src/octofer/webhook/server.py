"""HTTP surface for webhook deliveries.

``create_app`` builds a FastAPI application around a ``Dispatcher``:

- ``POST /webhook``: verify, classify and dispatch a delivery
- ``GET /health``: liveness probe
- ``GET /metrics``: Prometheus exposition of the app's registry

Responses carry a minimal JSON status. Error details stay in the logs.
"""

import logging
from contextlib import asynccontextmanager
from typing import List, Optional, Tuple

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST

from octofer.metrics import OctoferMetrics
from octofer.webhook.dispatcher import Dispatcher

logger = logging.getLogger(__name__)

DEFAULT_WEBHOOK_PATH = "/webhook"


async def _read_body(request: Request, limit: Optional[int]) -> Tuple[Optional[bytes], int]:
    """Read the request body, giving up once it exceeds ``limit`` bytes.

    Returns:
        ``(body, size)``. ``body`` is ``None`` when the declared
        ``Content-Length`` or the bytes received so far exceed the limit.
    """
    if limit is None:
        body = await request.body()
        return body, len(body)

    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > limit:
        return None, int(declared)

    chunks: List[bytes] = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > limit:
            return None, received
        chunks.append(chunk)
    return b"".join(chunks), received


def create_app(
    dispatcher: Dispatcher,
    metrics: Optional[OctoferMetrics] = None,
    webhook_path: str = DEFAULT_WEBHOOK_PATH,
    title: str = "Octofer",
) -> FastAPI:
    """Build the FastAPI application.

    The dispatcher, its registry and authenticator, and the metrics are
    stored on ``app.state``. The authenticator is closed on shutdown.

    Args:
        dispatcher: Dispatcher that handles deliveries.
        metrics: Metrics exposed at ``/metrics``; defaults to the
                 dispatcher's.
        webhook_path: Path deliveries are posted to.
        title: OpenAPI title.
    """
    metrics = metrics if metrics is not None else dispatcher.metrics
    if metrics is None:
        metrics = OctoferMetrics()
        dispatcher.metrics = metrics

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Octofer webhook server starting",
            extra={
                "webhook_path": webhook_path,
                "event_types": await dispatcher.registry.event_types(),
                "github_app_auth": dispatcher.authenticator is not None,
            },
        )
        yield
        logger.info("Octofer webhook server shutting down")
        if dispatcher.authenticator is not None:
            await dispatcher.authenticator.close()

    app = FastAPI(title=title, lifespan=lifespan)
    app.state.dispatcher = dispatcher
    app.state.registry = dispatcher.registry
    app.state.authenticator = dispatcher.authenticator
    app.state.metrics = metrics

    @app.get("/health")
    async def health():
        """Liveness probe endpoint."""
        return {"status": "healthy"}

    @app.get("/metrics")
    async def prometheus_metrics():
        return Response(
            content=metrics.generate_latest(),
            media_type=CONTENT_TYPE_LATEST,
        )

    @app.post(webhook_path)
    async def github_webhook(request: Request):
        """GitHub webhook receiver endpoint.

        Returns 200 when the delivery was handled (or had no handlers), 400
        for missing headers or an unparseable body, 401 when the signature
        does not verify, 413 for oversized bodies and 500 when a handler
        fails.
        """
        body, size = await _read_body(request, dispatcher.max_body_bytes)
        if body is None:
            result = dispatcher.reject_oversized(request.headers, size)
        else:
            result = await dispatcher.dispatch_request(body, request.headers)
        content = {"status": result.outcome.value}
        if result.delivery_id:
            content["delivery_id"] = result.delivery_id
        return JSONResponse(status_code=result.status_code, content=content)

    return app

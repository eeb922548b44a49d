"""Webhook endpoint that forwards Pact callbacks to the broker.

Any path is accepted for POST, PUT or PATCH. The body is parsed as a callback event,
re-encoded canonically, published to the receive queue and echoed back.
"""
import json
from typing import Tuple

from fastapi import FastAPI, Request, Response
from starlette.concurrency import run_in_threadpool

from src import settings
from src.errors import BrokerUnavailable, DecodeError
from src.logging_conf import logger
from src.queue.models import CallbackEvent


def _error_body(message: str) -> bytes:
    return json.dumps({"error": message}).encode("utf-8")


class WebhookIngestor:
    """Republishes inbound callbacks onto the receive queue."""

    def __init__(self, gateway):
        self.gateway = gateway

    def handle(self, request_body: bytes) -> Tuple[int, bytes]:
        try:
            event = CallbackEvent.from_json(request_body)
        except DecodeError as e:
            logger.warning(f"Rejected webhook body: {e}")
            return 400, _error_body(str(e))

        payload = event.to_json()
        logger.info(
            f"Received a callback: {event.type}/{event.event}",
            extra={"type": event.type, "event": event.event}
        )

        try:
            self.gateway.publish(settings.RECEIVE_CALLBACK_QUEUE, payload)
        except BrokerUnavailable as e:
            logger.error(f"Failed to publish callback: {e}")
            return 503, _error_body("broker unavailable")

        return 200, payload


def create_app(ingestor: WebhookIngestor) -> FastAPI:
    app = FastAPI(title="Pact Relay", docs_url=None, redoc_url=None, openapi_url=None)

    @app.get("/health")
    def health() -> Response:
        connected = getattr(ingestor.gateway, "connected", True)
        status_code = 200 if connected else 503
        body = json.dumps({"status": "ok" if connected else "degraded", "broker": connected})
        return Response(content=body, status_code=status_code, media_type="application/json")

    # Any body-carrying method is treated as a callback
    @app.api_route("/{path:path}", methods=["POST", "PUT", "PATCH"])
    async def receive_callback(request: Request, path: str) -> Response:
        body = await request.body()
        # Publishing blocks on the broker confirm
        status_code, content = await run_in_threadpool(ingestor.handle, body)
        return Response(content=content, status_code=status_code, media_type="application/json")

    return app

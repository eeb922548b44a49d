"""Resolve conversation identifiers into account update events."""
from typing import Optional

from src import settings
from src.logging_conf import logger
from src.pact_client import PactClient
from src.queue.models import CallbackEvent, IdentifierRequest
from src.worker import QueueWorker


class IdentifierResolver(QueueWorker):
    """Fetches a conversation and republishes it as a webhook-shaped event."""

    queue_name = settings.SEND_IDENTIFIER_QUEUE

    def __init__(self, gateway, client: PactClient, backoff_base: Optional[float] = None,
                 backoff_max: Optional[float] = None):
        super().__init__(gateway, backoff_base=backoff_base, backoff_max=backoff_max)
        self.client = client

    def process(self, body: bytes) -> None:
        request = IdentifierRequest.from_json(body)
        conversation = self.client.fetch_conversation(request.conversation_id)

        event = CallbackEvent(type="account", event="update", data=conversation.to_dict())
        self.gateway.publish(settings.RECEIVE_CALLBACK_QUEUE, event.to_json())
        logger.info(
            f"Published account update for conversation {request.conversation_id}",
            extra={"conversation_id": request.conversation_id}
        )

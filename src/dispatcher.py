"""Send outbound messages from the broker to Pact."""
import hashlib
from collections import OrderedDict
from typing import List, Optional

from src import settings
from src.logging_conf import logger
from src.pact_client import PactClient
from src.queue.models import Attachment, OutboundMessageRequest
from src.worker import QueueWorker


class MessageDispatcher(QueueWorker):
    """Uploads attachments, then posts the message.

    Uploaded attachment ids are remembered until the message is posted, so
    a redelivered request does not upload the same file twice.
    """

    queue_name = settings.SEND_MESSAGE_QUEUE

    MAX_CACHED_UPLOADS = 256

    def __init__(self, gateway, client: PactClient, backoff_base: Optional[float] = None,
                 backoff_max: Optional[float] = None):
        super().__init__(gateway, backoff_base=backoff_base, backoff_max=backoff_max)
        self.client = client
        self._uploaded: "OrderedDict[str, int]" = OrderedDict()

    def process(self, body: bytes) -> None:
        request = OutboundMessageRequest.from_json(body)
        logger.info(
            f"Sending message to conversation {request.conversation_id} "
            f"with {len(request.attachments)} attachment(s)",
            extra={"conversation_id": request.conversation_id}
        )

        # Decode everything first so a bad attachment drops the message before any upload
        contents = [attachment.decode_content() for attachment in request.attachments]

        message_digest = hashlib.sha256(body).hexdigest()
        keys = []
        attachment_ids: List[int] = []
        for index, (attachment, content) in enumerate(zip(request.attachments, contents)):
            key = self._upload_key(request.conversation_id, message_digest, index)
            keys.append(key)
            attachment_ids.append(self._upload(request.conversation_id, attachment, content, key))

        self.client.post_message(request.conversation_id, request.message, attachment_ids)

        for key in keys:
            self._uploaded.pop(key, None)

    def _upload(self, conversation_id: int, attachment: Attachment, content: bytes, key: str) -> int:
        external_id = self._uploaded.get(key)
        if external_id is not None:
            logger.info(f"Reusing uploaded attachment {attachment.name} -> {external_id}")
            return external_id

        ref = self.client.upload_attachment(conversation_id, content, attachment.name, attachment.mime_type)
        self._uploaded[key] = ref.external_id
        while len(self._uploaded) > self.MAX_CACHED_UPLOADS:
            self._uploaded.popitem(last=False)
        return ref.external_id

    @staticmethod
    def _upload_key(conversation_id: int, message_digest: str, index: int) -> str:
        # Only a redelivery of the same message maps to the same slot
        return f"{conversation_id}:{message_digest}:{index}"

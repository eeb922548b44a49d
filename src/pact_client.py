"""Pact API client for conversations, attachments and messages."""
import time
from typing import Optional, Dict, Any, List, Tuple
import requests

from src import settings
from src.errors import ExternalApiError
from src.logging_conf import logger
from src.queue.models import ConversationMetadata, SentMessageResult, UploadedAttachmentRef


class PactClient:
    """Wraps the three Pact API calls used by the relay."""

    def __init__(
        self,
        company_id: Optional[str] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
    ):
        company_id = company_id or settings.PACT_COMPANY_ID
        base_url = (base_url or settings.PACT_API_BASE_URL).rstrip("/")
        self.base_url = f"{base_url}/p1/companies/{company_id}"
        self.timeout = timeout if timeout is not None else settings.PACT_HTTP_TIMEOUT
        self.max_retries = max_retries if max_retries is not None else settings.PACT_MAX_RETRIES
        self.session = requests.Session()
        self.session.headers.update({
            "X-Private-Api-Token": api_key or settings.PACT_API_KEY or "",
            "Accept": "application/json"
        })

    def fetch_conversation(self, conversation_id: int) -> ConversationMetadata:
        """Fetch conversation metadata."""
        body = self._request("GET", f"/conversations/{conversation_id}")
        conversation = ConversationMetadata.from_response(body)
        logger.info(
            f"Fetched conversation {conversation_id}",
            extra={"conversation_id": conversation_id, "channel_type": conversation.channel_type}
        )
        return conversation

    def upload_attachment(self, conversation_id: int, content: bytes, filename: str,
                          mime_type: str = "application/octet-stream") -> UploadedAttachmentRef:
        """
        Upload one file to a conversation.

        Args:
            conversation_id: Pact conversation ID
            content: Raw file bytes
            filename: Name sent with the multipart `file` part
            mime_type: Content type of the part

        Returns:
            Reference holding the external_id to pass to post_message
        """
        body = self._request(
            "POST",
            f"/conversations/{conversation_id}/messages/attachments",
            files={"file": (filename, content, mime_type)},
        )
        ref = UploadedAttachmentRef.from_response(body)
        logger.info(
            f"Uploaded attachment {filename} ({len(content)} bytes) -> {ref.external_id}",
            extra={"conversation_id": conversation_id, "external_id": ref.external_id}
        )
        return ref

    def post_message(self, conversation_id: int, message: str, attachment_ids: List[int]) -> SentMessageResult:
        """Post a message referencing previously uploaded attachments."""
        form: List[Tuple[str, str]] = [("message", message)]
        form.extend(("attachments_ids[]", str(attachment_id)) for attachment_id in attachment_ids)

        body = self._request("POST", f"/conversations/{conversation_id}/messages", data=form)
        result = SentMessageResult.from_response(body)
        logger.info(
            f"Sent message to conversation {conversation_id}: id={result.id} state={result.state}",
            extra={"conversation_id": conversation_id, "message_id": result.id}
        )
        return result

    def close(self):
        self.session.close()

    def _request(self, method: str, endpoint: str, retry_count: int = 0, **kwargs) -> Dict[str, Any]:
        """Make API request with retry logic.

        Only GET is retried on server and network errors; a POST may
        already have taken effect, so it is left to queue redelivery.
        """
        url = f"{self.base_url}{endpoint}"
        idempotent = method == "GET"

        try:
            response = self.session.request(method=method, url=url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            if idempotent and retry_count < self.max_retries and isinstance(
                e, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)
            ):
                wait_time = 2 ** retry_count
                logger.warning(f"Pact API unreachable ({e}). Retrying in {wait_time}s...")
                time.sleep(wait_time)
                return self._request(method, endpoint, retry_count + 1, **kwargs)
            raise ExternalApiError(f"Pact API request {method} {endpoint} failed: {e}") from e

        if response.status_code == 429 and retry_count < self.max_retries:
            retry_after = self._retry_after(response)
            logger.warning(f"Rate limited. Waiting {retry_after}s...")
            time.sleep(retry_after)
            return self._request(method, endpoint, retry_count + 1, **kwargs)

        if idempotent and response.status_code >= 500 and retry_count < self.max_retries:
            wait_time = 2 ** retry_count
            logger.warning(f"Server error {response.status_code}. Retrying in {wait_time}s...")
            time.sleep(wait_time)
            return self._request(method, endpoint, retry_count + 1, **kwargs)

        if not response.ok:
            raise ExternalApiError(
                f"Pact API {method} {endpoint} returned {response.status_code}: {response.text[:500]}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ExternalApiError(
                f"Pact API {method} {endpoint} returned invalid JSON",
                status_code=response.status_code,
            ) from e

    @staticmethod
    def _retry_after(response) -> int:
        try:
            return int(response.headers.get("Retry-After", 60))
        except ValueError:
            return 60

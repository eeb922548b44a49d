"""Queue data models."""
import base64
import binascii
import json
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional

from src.errors import AttachmentDecodeError, DecodeError, ExternalApiError


def _load_object(payload, what: str) -> Dict[str, Any]:
    """Parse a JSON object from bytes or str."""
    try:
        if isinstance(payload, (bytes, bytearray)):
            payload = payload.decode("utf-8")
        value = json.loads(payload)
    except (UnicodeDecodeError, ValueError) as e:
        raise DecodeError(f"{what} is not valid JSON: {e}") from e

    if not isinstance(value, dict):
        raise DecodeError(f"{what} must be a JSON object")
    return value


def _require_int(value: Any, name: str) -> int:
    # bool is an int subclass but never a valid id
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecodeError(f"{name} must be an integer")
    return value


def _require_str(value: Any, name: str) -> str:
    if not isinstance(value, str):
        raise DecodeError(f"{name} must be a string")
    return value


@dataclass
class CallbackEvent:
    """Envelope for every event pushed to the receive queue."""

    type: str
    event: str
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, payload) -> "CallbackEvent":
        raw = _load_object(payload, "callback event")
        data = raw.get("data")
        if data is None:
            data = {}
        elif not isinstance(data, dict):
            raise DecodeError("data must be a JSON object")
        return cls(
            type=_require_str(raw.get("type"), "type"),
            event=_require_str(raw.get("event"), "event"),
            data=data,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "event": self.event, "data": self.data}

    def to_json(self) -> bytes:
        """Canonical compact encoding; key order of data is preserved."""
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":")).encode("utf-8")


@dataclass
class Attachment:
    """File sent inline as a data URI."""

    name: str
    src: str
    mime_type: str = "application/octet-stream"

    @classmethod
    def from_dict(cls, raw: Any) -> "Attachment":
        if not isinstance(raw, dict):
            raise DecodeError("attachment must be a JSON object")
        mime_type = raw.get("type") or "application/octet-stream"
        return cls(
            name=_require_str(raw.get("name"), "attachment name"),
            src=_require_str(raw.get("src"), "attachment src"),
            mime_type=_require_str(mime_type, "attachment type"),
        )

    def decode_content(self) -> bytes:
        """Return the bytes after the first comma of the data URI."""
        payload = self.src[self.src.find(",") + 1:]
        try:
            return base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise AttachmentDecodeError(f"Attachment {self.name!r} is not valid base64: {e}") from e


@dataclass
class OutboundMessageRequest:
    """Message to post into a conversation, read from the send queue."""

    conversation_id: int
    message: str = ""
    attachments: List[Attachment] = field(default_factory=list)

    @classmethod
    def from_json(cls, payload) -> "OutboundMessageRequest":
        raw = _load_object(payload, "send message request")
        message = raw.get("message")
        attachments = raw.get("attachments")
        if attachments is None:
            attachments = []
        elif not isinstance(attachments, list):
            raise DecodeError("attachments must be a JSON array")
        return cls(
            conversation_id=_require_int(raw.get("conversationId"), "conversationId"),
            message=_require_str(message, "message") if message is not None else "",
            attachments=[Attachment.from_dict(item) for item in attachments],
        )


@dataclass
class IdentifierRequest:
    """Request to resolve a conversation, read from the identifier queue."""

    conversation_id: int

    @classmethod
    def from_json(cls, payload) -> "IdentifierRequest":
        raw = _load_object(payload, "identifier request")
        return cls(conversation_id=_require_int(raw.get("conversationId"), "conversationId"))


def _or_default(value: Any, default: Any) -> Any:
    return default if value is None else value


@dataclass
class ConversationMetadata:
    """Conversation as returned by the Pact API."""

    external_id: int
    name: str
    channel_id: int
    channel_type: str
    created_at: str
    avatar: str
    sender_external_id: str
    meta: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_response(cls, body: Dict[str, Any]) -> "ConversationMetadata":
        data = body.get("data") if isinstance(body, dict) else None
        conversation = data.get("conversation") if isinstance(data, dict) else None
        if not isinstance(conversation, dict):
            raise ExternalApiError("Conversation response has no data.conversation")
        return cls(
            external_id=_or_default(conversation.get("external_id"), 0),
            name=_or_default(conversation.get("name"), ""),
            channel_id=_or_default(conversation.get("channel_id"), 0),
            channel_type=_or_default(conversation.get("channel_type"), ""),
            created_at=_or_default(conversation.get("created_at"), ""),
            avatar=_or_default(conversation.get("avatar"), ""),
            sender_external_id=_or_default(conversation.get("sender_external_id"), ""),
            meta=_or_default(conversation.get("meta"), {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Flat mapping in the shape of a webhook account payload."""
        return {
            "external_id": self.external_id,
            "name": self.name,
            "channel_id": self.channel_id,
            "channel_type": self.channel_type,
            "created_at": self.created_at,
            "avatar": self.avatar,
            "sender_external_id": self.sender_external_id,
            "meta": self.meta,
        }


@dataclass
class UploadedAttachmentRef:
    external_id: int

    @classmethod
    def from_response(cls, body: Dict[str, Any]) -> "UploadedAttachmentRef":
        data = body.get("data") if isinstance(body, dict) else None
        external_id = data.get("external_id") if isinstance(data, dict) else None
        if isinstance(external_id, bool) or not isinstance(external_id, int):
            raise ExternalApiError("Attachment upload response has no data.external_id")
        return cls(external_id=external_id)


@dataclass
class SentMessageResult:
    """Outcome of posting a message; logged only."""

    id: Optional[int] = None
    company_id: Optional[int] = None
    channel: Dict[str, Any] = field(default_factory=dict)
    conversation_id: Optional[int] = None
    state: Optional[str] = None
    message_id: Any = None
    details: Any = None
    created_at: Any = None

    @classmethod
    def from_response(cls, body: Dict[str, Any]) -> "SentMessageResult":
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            raise ExternalApiError("Send message response has no data")
        return cls(
            id=data.get("id"),
            company_id=data.get("company_id"),
            channel=_or_default(data.get("channel"), {}),
            conversation_id=data.get("conversation_id"),
            state=data.get("state"),
            message_id=data.get("message_id"),
            details=data.get("details"),
            created_at=data.get("created_at"),
        )

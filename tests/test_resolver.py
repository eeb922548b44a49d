"""Tests for the identifier resolver."""

import json
from unittest.mock import MagicMock

import pytest

from src import settings
from src.errors import ExternalApiError
from src.queue.models import ConversationMetadata
from src.resolver import IdentifierResolver


@pytest.fixture
def conversation() -> ConversationMetadata:
    return ConversationMetadata(
        external_id=42,
        name="Alice",
        channel_id=3,
        channel_type="whatsapp",
        created_at="2020-01-01T00:00:00Z",
        avatar="https://example.com/a.png",
        sender_external_id="79990001122",
        meta={},
    )


@pytest.fixture
def client(conversation) -> MagicMock:
    client = MagicMock()
    client.fetch_conversation.return_value = conversation
    return client


@pytest.fixture
def resolver(gateway, client) -> IdentifierResolver:
    return IdentifierResolver(gateway, client, backoff_base=0, backoff_max=0)


def test_publishes_account_update(resolver, client, gateway, make_delivery) -> None:
    delivery = make_delivery(b'{"conversationId": 42}')

    assert resolver.handle(delivery) is True

    client.fetch_conversation.assert_called_once_with(42)
    assert len(gateway.published) == 1
    queue_name, body = gateway.published[0]
    assert queue_name == settings.RECEIVE_CALLBACK_QUEUE
    event = json.loads(body)
    assert event["type"] == "account"
    assert event["event"] == "update"
    assert event["data"]["external_id"] == 42
    assert event["data"]["channel_type"] == "whatsapp"
    assert list(event) == ["type", "event", "data"]
    assert delivery.acked == 1


def test_event_data_is_flat(resolver, gateway, make_delivery) -> None:
    resolver.handle(make_delivery(b'{"conversationId": 42}'))

    data = json.loads(gateway.published[0][1])["data"]
    nested = [key for key, value in data.items() if isinstance(value, (dict, list)) and value]
    assert nested == []


def test_fetch_failure_requeues(resolver, client, gateway, make_delivery) -> None:
    client.fetch_conversation.side_effect = ExternalApiError("timeout")
    delivery = make_delivery(b'{"conversationId": 42}')

    assert resolver.handle(delivery) is False

    assert gateway.published == []
    assert delivery.acked == 0
    assert delivery.rejected == [True]


def test_publish_failure_is_not_acked(resolver, gateway, make_delivery) -> None:
    gateway.fail_publish = True
    delivery = make_delivery(b'{"conversationId": 42}')

    resolver.handle(delivery)

    assert delivery.acked == 0
    assert delivery.rejected == [True]


def test_malformed_request_is_dropped(resolver, client, make_delivery) -> None:
    delivery = make_delivery(b'{"conversationId": "abc"}')

    resolver.handle(delivery)

    assert delivery.rejected == [False]
    client.fetch_conversation.assert_not_called()

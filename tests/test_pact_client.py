"""Tests for the Pact API client."""

import json
from unittest.mock import MagicMock

import pytest
import requests

from src import pact_client
from src.errors import ExternalApiError
from src.pact_client import PactClient


def _response(status_code: int, body=None, headers=None) -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    response._content = json.dumps(body).encode() if body is not None else b"oops"
    response.headers.update(headers or {})
    return response


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch) -> PactClient:
    monkeypatch.setattr(pact_client.time, "sleep", lambda seconds: None)
    client = PactClient(company_id="1001", api_key="secret", base_url="https://api.pact.test/", timeout=5, max_retries=2)
    client.session.request = MagicMock()
    return client


def test_session_sends_token_header(client: PactClient) -> None:
    assert client.session.headers["X-Private-Api-Token"] == "secret"
    assert client.base_url == "https://api.pact.test/p1/companies/1001"


def test_fetch_conversation(client: PactClient) -> None:
    client.session.request.return_value = _response(200, {
        "status": "ok",
        "data": {"conversation": {"external_id": 42, "name": "Alice", "channel_type": "telegram"}},
    })

    conversation = client.fetch_conversation(42)

    assert conversation.external_id == 42
    assert conversation.channel_type == "telegram"
    client.session.request.assert_called_once_with(
        method="GET", url="https://api.pact.test/p1/companies/1001/conversations/42", timeout=5
    )


def test_upload_attachment_sends_multipart_file(client: PactClient) -> None:
    client.session.request.return_value = _response(200, {"status": "ok", "data": {"external_id": 777}})

    ref = client.upload_attachment(42, b"\x00\x00\x00", "a.png", "image/png")

    assert ref.external_id == 777
    kwargs = client.session.request.call_args.kwargs
    assert kwargs["method"] == "POST"
    assert kwargs["url"].endswith("/conversations/42/messages/attachments")
    assert kwargs["files"] == {"file": ("a.png", b"\x00\x00\x00", "image/png")}
    assert kwargs["timeout"] == 5


def test_post_message_form_keeps_attachment_order(client: PactClient) -> None:
    client.session.request.return_value = _response(200, {
        "status": "ok",
        "data": {"id": 5, "conversation_id": 42, "state": "pending", "channel": {"id": 1, "type": "whatsapp"}},
    })

    result = client.post_message(42, "hi", [3, 1, 2])

    assert result.id == 5
    assert result.channel == {"id": 1, "type": "whatsapp"}
    kwargs = client.session.request.call_args.kwargs
    assert kwargs["url"].endswith("/conversations/42/messages")
    assert kwargs["data"] == [
        ("message", "hi"),
        ("attachments_ids[]", "3"),
        ("attachments_ids[]", "1"),
        ("attachments_ids[]", "2"),
    ]


def test_post_is_not_retried_on_server_error(client: PactClient) -> None:
    client.session.request.return_value = _response(500)

    with pytest.raises(ExternalApiError) as excinfo:
        client.post_message(42, "hi", [])

    assert excinfo.value.status_code == 500
    assert client.session.request.call_count == 1


def test_post_is_not_retried_on_network_error(client: PactClient) -> None:
    client.session.request.side_effect = requests.exceptions.ConnectionError("reset")

    with pytest.raises(ExternalApiError):
        client.upload_attachment(42, b"x", "x.txt")

    assert client.session.request.call_count == 1


def test_get_is_retried_on_server_error(client: PactClient) -> None:
    client.session.request.side_effect = [
        _response(502),
        _response(200, {"data": {"conversation": {"external_id": 42}}}),
    ]

    assert client.fetch_conversation(42).external_id == 42
    assert client.session.request.call_count == 2


def test_get_gives_up_after_max_retries(client: PactClient) -> None:
    client.session.request.side_effect = requests.exceptions.Timeout("slow")

    with pytest.raises(ExternalApiError):
        client.fetch_conversation(42)

    assert client.session.request.call_count == 3


def test_rate_limit_is_retried_for_post(client: PactClient) -> None:
    client.session.request.side_effect = [
        _response(429, headers={"Retry-After": "1"}),
        _response(200, {"data": {"external_id": 9}}),
    ]

    assert client.upload_attachment(42, b"x", "x.txt").external_id == 9


def test_invalid_json_response(client: PactClient) -> None:
    client.session.request.return_value = _response(200)

    with pytest.raises(ExternalApiError):
        client.fetch_conversation(42)

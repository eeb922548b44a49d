"""Pytest configuration and shared fakes."""

import sys
from pathlib import Path

import pytest

# Put the repository root on sys.path so `src.*` imports resolve
root_path = Path(__file__).parent.parent
if str(root_path) not in sys.path:
    sys.path.insert(0, str(root_path))

from src.errors import BrokerUnavailable  # noqa: E402


class FakeDelivery:
    def __init__(self, body: bytes):
        self.body = body
        self.acked = 0
        self.rejected = []

    @property
    def settled(self) -> bool:
        return bool(self.acked or self.rejected)

    def ack(self) -> None:
        self.acked += 1

    def reject(self, requeue: bool) -> None:
        self.rejected.append(requeue)


class FakeGateway:
    def __init__(self):
        self.published = []
        self.fail_publish = False
        self.connected = True

    def publish(self, queue_name: str, body: bytes) -> None:
        if self.fail_publish:
            raise BrokerUnavailable("Broker connection is down")
        self.published.append((queue_name, body))


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def make_delivery():
    return FakeDelivery

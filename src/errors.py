"""Error types raised across the relay."""
from typing import Optional


class RelayError(Exception):
    """Base class for relay errors."""


class ConfigError(RelayError):
    """Required configuration is missing or invalid."""


class DecodeError(RelayError):
    """A webhook body or queue payload could not be decoded."""


class AttachmentDecodeError(DecodeError):
    """An attachment data URI does not carry valid base64."""


class BrokerUnavailable(RelayError):
    """The broker connection or channel cannot be used."""


class ExternalApiError(RelayError):
    """The Pact API returned a non-2xx response or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

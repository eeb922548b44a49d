"""Configuration for Pact Relay."""
import os
from pathlib import Path
from dotenv import load_dotenv

from src.errors import ConfigError

load_dotenv()

# Numeric values that failed to parse, reported by validate_config
_invalid = []


def _get_number(name: str, default: str, cast=float):
    raw = os.getenv(name, default)
    try:
        return cast(raw)
    except (TypeError, ValueError):
        _invalid.append(f"{name} must be a number: {raw}")
        return cast(default)


# Base paths
BASE_DIR = Path(__file__).resolve().parent.parent
LOGS_DIR = BASE_DIR / "logs"
LOGS_DIR.mkdir(exist_ok=True)

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
BETTERSTACK_SOURCE_TOKEN = os.getenv("BETTERSTACK_SOURCE_TOKEN")
BETTERSTACK_INGEST_HOST = os.getenv("BETTERSTACK_INGEST_HOST")

# Error alerts by e-mail
LOGTOEMAIL_APP_NAME = os.getenv("LOGTOEMAIL_APP_NAME", "pact-relay")
LOGTOEMAIL_SMTP_HOST = os.getenv("LOGTOEMAIL_SMTP_HOST")
LOGTOEMAIL_SMTP_PORT = os.getenv("LOGTOEMAIL_SMTP_PORT", "587")
LOGTOEMAIL_SMTP_FROM = os.getenv("LOGTOEMAIL_SMTP_FROM")
LOGTOEMAIL_SMTP_TO = os.getenv("LOGTOEMAIL_SMTP_TO")
LOGTOEMAIL_SMTP_USERNAME = os.getenv("LOGTOEMAIL_SMTP_USERNAME")
LOGTOEMAIL_SMTP_PASSWORD = os.getenv("LOGTOEMAIL_SMTP_PASSWORD")

# RabbitMQ
RABBITMQ_ERP_HOST = os.getenv("RABBITMQ_ERP_HOST")
RABBITMQ_ERP_PORT = os.getenv("RABBITMQ_ERP_PORT", "5672")
RABBITMQ_ERP_LOGIN = os.getenv("RABBITMQ_ERP_LOGIN", "guest")
RABBITMQ_ERP_PASS = os.getenv("RABBITMQ_ERP_PASS", "guest")
RABBITMQ_ERP_VHOST = os.getenv("RABBITMQ_ERP_VHOST", "/")

# Queue names
SEND_MESSAGE_QUEUE = "erp_send_message"
SEND_IDENTIFIER_QUEUE = "erp_send_identifier"
RECEIVE_CALLBACK_QUEUE = "pact_receive_callback"

# Pact API
PACT_API_BASE_URL = os.getenv("PACT_API_BASE_URL", "https://api.pact.im")
PACT_COMPANY_ID = os.getenv("PACT_COMPANY_ID")
PACT_API_KEY = os.getenv("PACT_API_KEY")
PACT_HTTP_TIMEOUT = _get_number("PACT_HTTP_TIMEOUT", "30")  # seconds per request
PACT_MAX_RETRIES = _get_number("PACT_MAX_RETRIES", "3", int)

# HTTP listener
PACT_LISTEN_PORT = os.getenv("PACT_LISTEN_PORT", "8080")

# Broker and worker timing
BROKER_PUBLISH_TIMEOUT = _get_number("BROKER_PUBLISH_TIMEOUT", "10")
BROKER_RECONNECT_MAX = _get_number("BROKER_RECONNECT_MAX", "30")
WORKER_BACKOFF_BASE = _get_number("WORKER_BACKOFF_BASE", "1")
WORKER_BACKOFF_MAX = _get_number("WORKER_BACKOFF_MAX", "60")


def _is_int(value) -> bool:
    try:
        int(value)
    except (TypeError, ValueError):
        return False
    return True


def validate_config():
    """Validate required configuration."""
    errors = list(_invalid)

    if not RABBITMQ_ERP_HOST:
        errors.append("RABBITMQ_ERP_HOST is required")

    if not _is_int(RABBITMQ_ERP_PORT):
        errors.append(f"RABBITMQ_ERP_PORT must be an integer: {RABBITMQ_ERP_PORT}")

    if not PACT_COMPANY_ID:
        errors.append("PACT_COMPANY_ID is required")

    if not PACT_API_KEY:
        errors.append("PACT_API_KEY is required")

    if not _is_int(PACT_LISTEN_PORT):
        errors.append(f"PACT_LISTEN_PORT must be an integer: {PACT_LISTEN_PORT}")

    if PACT_HTTP_TIMEOUT <= 0:
        errors.append("PACT_HTTP_TIMEOUT must be positive")

    if LOGTOEMAIL_SMTP_HOST:
        if not _is_int(LOGTOEMAIL_SMTP_PORT):
            errors.append(f"LOGTOEMAIL_SMTP_PORT must be an integer: {LOGTOEMAIL_SMTP_PORT}")
        if not LOGTOEMAIL_SMTP_FROM or not LOGTOEMAIL_SMTP_TO:
            errors.append("LOGTOEMAIL_SMTP_FROM and LOGTOEMAIL_SMTP_TO are required with LOGTOEMAIL_SMTP_HOST")

    if errors:
        raise ConfigError("Config errors:\n  " + "\n  ".join(errors))

"""Main application - serves the webhook and runs the queue workers."""
import sys

import uvicorn

from src.logging_conf import logger
from src import settings
from src.errors import ConfigError
from src.dispatcher import MessageDispatcher
from src.pact_client import PactClient
from src.queue.broker import BrokerGateway
from src.resolver import IdentifierResolver
from src.webhook import WebhookIngestor, create_app


class Application:
    """Wires the broker gateway, the Pact client, the workers and the webhook."""

    def __init__(self):
        self.gateway = BrokerGateway()
        self.client = PactClient()
        self.dispatcher = MessageDispatcher(self.gateway, self.client)
        self.resolver = IdentifierResolver(self.gateway, self.client)
        self.ingestor = WebhookIngestor(self.gateway)
        self.server = None
        self.running = False

    def start(self):
        """Start the application."""
        logger.info("=" * 50)
        logger.info("Pact Relay")
        logger.info("=" * 50)
        logger.info(f"Broker: {settings.RABBITMQ_ERP_HOST}:{settings.RABBITMQ_ERP_PORT}{settings.RABBITMQ_ERP_VHOST}")
        logger.info(f"Pact company: {settings.PACT_COMPANY_ID}")
        logger.info(f"Listen port: {settings.PACT_LISTEN_PORT}")
        logger.info("=" * 50)

        self.gateway.start()
        self.dispatcher.start()
        self.resolver.start()
        self.running = True
        logger.info("Started - relaying callbacks and queue requests")

    def stop(self):
        """Stop the workers, then the broker connection."""
        if not self.running:
            return
        self.running = False
        self.dispatcher.stop()
        self.resolver.stop()
        self.gateway.close()
        self.client.close()
        logger.info("Stopped")

    def run(self):
        """Serve HTTP until uvicorn receives SIGINT or SIGTERM."""
        self.start()
        config = uvicorn.Config(
            create_app(self.ingestor),
            host="0.0.0.0",
            port=int(settings.PACT_LISTEN_PORT),
            log_config=None,
        )
        self.server = uvicorn.Server(config)
        try:
            self.server.run()
        finally:
            self.stop()


def main():
    """Entry point."""
    try:
        settings.validate_config()
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    Application().run()


if __name__ == "__main__":
    main()

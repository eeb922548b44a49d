"""Sequential queue worker base."""
import threading
from typing import Optional

from src import settings
from src.errors import BrokerUnavailable, DecodeError, ExternalApiError
from src.logging_conf import logger
from src.queue.broker import Delivery, DeliveryStream


class QueueWorker:
    """Worker that processes deliveries from one queue, one at a time.

    Subclasses set ``queue_name`` and implement ``process``. A delivery is
    acked once ``process`` returns, rejected for good on a DecodeError, and
    requeued after a backoff on any other failure.
    """

    queue_name: str = ""

    def __init__(self, gateway, backoff_base: Optional[float] = None, backoff_max: Optional[float] = None):
        self.gateway = gateway
        self.backoff_base = backoff_base if backoff_base is not None else settings.WORKER_BACKOFF_BASE
        self.backoff_max = backoff_max if backoff_max is not None else settings.WORKER_BACKOFF_MAX
        self.running = False
        self.thread = None
        self.failures = 0
        self._stream: Optional[DeliveryStream] = None
        self._stop_event = threading.Event()

    @property
    def name(self) -> str:
        return type(self).__name__

    def start(self):
        """Start the worker in a background thread."""
        if self.running:
            logger.warning(f"{self.name} is already running")
            return

        self.running = True
        self._stop_event.clear()
        self._stream = self.gateway.consume(self.queue_name)
        self.thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self.thread.start()
        logger.info(f"{self.name} started on {self.queue_name}")

    def stop(self, timeout: float = 30):
        """Stop taking deliveries and wait for the in-flight one."""
        if not self.running:
            return

        self.running = False
        self._stop_event.set()
        if self._stream:
            self._stream.close()
        if self.thread:
            self.thread.join(timeout=timeout)
        logger.info(f"{self.name} stopped")

    def process(self, body: bytes) -> None:
        raise NotImplementedError

    def _run(self):
        """Main worker loop."""
        logger.info(f"{self.name} thread started")

        for delivery in self._stream:
            if not self.running:
                self._settle(delivery, requeue=True)
                break
            self.handle(delivery)

        logger.info(f"{self.name} thread stopped")

    def handle(self, delivery: Delivery) -> bool:
        """Process one delivery and settle it. Returns True when acked."""
        try:
            self.process(delivery.body)
        except DecodeError as e:
            logger.error(
                f"{self.name}: dropping malformed message: {e}",
                extra={"queue": self.queue_name, "payload": _preview(delivery.body)}
            )
            self._settle(delivery, requeue=False)
            return False
        except Exception as e:
            self.failures += 1
            wait_time = self.backoff_delay()
            logger.error(
                f"{self.name}: processing failed ({e}); requeue in {wait_time}s",
                exc_info=not isinstance(e, (BrokerUnavailable, ExternalApiError)),
                extra={"queue": self.queue_name, "failures": self.failures}
            )
            self._stop_event.wait(wait_time)
            self._settle(delivery, requeue=True)
            return False

        self.failures = 0
        try:
            delivery.ack()
        except BrokerUnavailable as e:
            logger.warning(f"{self.name}: ack failed, message will be redelivered: {e}")
            return False
        return True

    def backoff_delay(self) -> float:
        if self.failures <= 0:
            return 0
        return min(self.backoff_base * 2 ** (self.failures - 1), self.backoff_max)

    def _settle(self, delivery: Delivery, requeue: bool):
        try:
            delivery.reject(requeue=requeue)
        except BrokerUnavailable as e:
            logger.warning(f"{self.name}: reject failed, broker will redeliver: {e}")


def _preview(body, limit: int = 500) -> str:
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    return body[:limit]

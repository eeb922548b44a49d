"""RabbitMQ gateway shared by the webhook and the queue workers.

A pika BlockingConnection is not thread-safe, so the gateway keeps the
connection on its own I/O thread. Every channel operation (publish,
consumer registration, ack, reject) runs on that thread; other threads
hand work over through ``add_callback_threadsafe`` and wait for the
result where they need one.
"""
import queue
import threading
import time
from functools import partial
from typing import Dict, Iterator, List, Optional

import pika
from pika.exceptions import AMQPError

from src import settings
from src.errors import BrokerUnavailable
from src.logging_conf import logger


_CLOSED = object()


class Delivery:
    """One message pulled from a queue, settled exactly once."""

    def __init__(self, gateway: "BrokerGateway", queue_name: str, body: bytes,
                 delivery_tag: int, redelivered: bool, generation: int):
        self.queue_name = queue_name
        self.body = body
        self.delivery_tag = delivery_tag
        self.redelivered = redelivered
        self._gateway = gateway
        self._generation = generation
        self._settled = False

    @property
    def settled(self) -> bool:
        return self._settled

    def ack(self) -> None:
        if self._settled:
            return
        self._settled = True
        self._gateway._settle(self._generation, self.delivery_tag, ack=True, requeue=False)

    def reject(self, requeue: bool) -> None:
        if self._settled:
            return
        self._settled = True
        self._gateway._settle(self._generation, self.delivery_tag, ack=False, requeue=requeue)


class DeliveryStream:
    """Blocking iterator over the deliveries of one queue."""

    def __init__(self, queue_name: str):
        self.queue_name = queue_name
        self._items: "queue.Queue" = queue.Queue()
        self._closed = False
        # Connection generation the consumer is registered under
        self.registered_generation = 0

    def put(self, delivery: Delivery) -> None:
        if not self._closed:
            self._items.put(delivery)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._items.put(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed

    def __iter__(self) -> Iterator[Delivery]:
        while True:
            item = self._items.get()
            if item is _CLOSED:
                return
            yield item


class BrokerGateway:
    """Owns the broker connection and the relay queues."""

    QUEUES = (
        settings.SEND_MESSAGE_QUEUE,
        settings.SEND_IDENTIFIER_QUEUE,
        settings.RECEIVE_CALLBACK_QUEUE,
    )

    def __init__(self, parameters: Optional[pika.ConnectionParameters] = None,
                 queues=QUEUES, publish_timeout: Optional[float] = None,
                 reconnect_max: Optional[float] = None):
        self.parameters = parameters or self._parameters_from_settings()
        self.queues = tuple(queues)
        self.publish_timeout = publish_timeout if publish_timeout is not None else settings.BROKER_PUBLISH_TIMEOUT
        self.reconnect_max = reconnect_max if reconnect_max is not None else settings.BROKER_RECONNECT_MAX

        self._lock = threading.Lock()
        self._connection = None
        self._channel = None
        self._generation = 0
        self._declared = set()
        self._streams: Dict[str, List[DeliveryStream]] = {}
        self._stop_event = threading.Event()
        self.running = False
        self.thread = None

    @staticmethod
    def _parameters_from_settings() -> pika.ConnectionParameters:
        return pika.ConnectionParameters(
            host=settings.RABBITMQ_ERP_HOST or "localhost",
            port=int(settings.RABBITMQ_ERP_PORT),
            virtual_host=settings.RABBITMQ_ERP_VHOST,
            credentials=pika.PlainCredentials(settings.RABBITMQ_ERP_LOGIN, settings.RABBITMQ_ERP_PASS),
            heartbeat=60,
            blocked_connection_timeout=300,
        )

    @property
    def connected(self) -> bool:
        with self._lock:
            return self._connection is not None and self._connection.is_open

    def start(self):
        """Start the I/O thread; it connects and keeps reconnecting."""
        if self.running:
            logger.warning("Broker gateway is already running")
            return

        self.running = True
        self._stop_event.clear()
        self.thread = threading.Thread(target=self._run, name="broker-io", daemon=True)
        self.thread.start()
        logger.info(f"Broker gateway started ({self.parameters.host}:{self.parameters.port})")

    def close(self):
        """Close the connection and every delivery stream."""
        if self.running:
            self.running = False
            self._stop_event.set()
            if self.thread:
                self.thread.join(timeout=10)
        for stream in self._all_streams():
            stream.close()
        logger.info("Broker gateway stopped")

    def publish(self, queue_name: str, body: bytes) -> None:
        """Publish a JSON message and wait for the broker to confirm it."""
        if threading.current_thread() is self.thread:
            self._basic_publish(queue_name, body)
            return

        connection = self._current_connection()
        done = threading.Event()
        cancelled = threading.Event()
        errors = []

        def _publish():
            try:
                if cancelled.is_set():
                    return
                self._basic_publish(queue_name, body)
            except Exception as e:
                errors.append(e)
            finally:
                done.set()

        try:
            connection.add_callback_threadsafe(_publish)
        except AMQPError as e:
            raise BrokerUnavailable(f"Cannot publish to {queue_name}: {e}") from e

        if not done.wait(self.publish_timeout):
            # Not sent yet means it never will be; one already awaiting its confirm still lands
            cancelled.set()
            raise BrokerUnavailable(f"Publish to {queue_name} not confirmed within {self.publish_timeout}s")
        if errors:
            error = errors[0]
            if isinstance(error, BrokerUnavailable):
                raise error
            raise BrokerUnavailable(f"Publish to {queue_name} failed: {error!r}") from error

        logger.debug(f"Published {len(body)} bytes to {queue_name}", extra={"queue": queue_name})

    def consume(self, queue_name: str) -> DeliveryStream:
        """Register a consumer and return its delivery stream."""
        stream = DeliveryStream(queue_name)
        with self._lock:
            self._streams.setdefault(queue_name, []).append(stream)
            connection = self._connection
            generation = self._generation

        if connection is not None and connection.is_open:
            try:
                connection.add_callback_threadsafe(partial(self._register_consumer, stream, generation))
            except AMQPError as e:
                # Registered again on the next reconnect
                logger.warning(f"Deferred consumer for {queue_name}: {e}")
        return stream

    def _current_connection(self):
        with self._lock:
            connection = self._connection
        if connection is None or not connection.is_open:
            raise BrokerUnavailable("Broker connection is down")
        return connection

    def _all_streams(self) -> List[DeliveryStream]:
        with self._lock:
            return [stream for streams in self._streams.values() for stream in streams]

    def _run(self):
        """Connection loop, runs on the I/O thread."""
        logger.info("Broker I/O thread started")
        attempt = 0

        while self.running:
            try:
                self._connect()
                attempt = 0
                while self.running:
                    self._connection.process_data_events(time_limit=1)
            except AMQPError as e:
                logger.error(f"Broker connection error: {e!r}")
            except Exception as e:
                logger.error(f"Broker I/O error: {e}", exc_info=True)
            finally:
                self._disconnect()

            if self.running:
                wait_time = min(2 ** attempt, self.reconnect_max)
                attempt += 1
                logger.warning(f"Reconnecting to broker in {wait_time}s...")
                self._stop_event.wait(wait_time)

        logger.info("Broker I/O thread stopped")

    def _connect(self):
        connection = pika.BlockingConnection(self.parameters)
        channel = connection.channel()
        channel.confirm_delivery()
        # One unacked message per consumer keeps each queue strictly ordered
        channel.basic_qos(prefetch_count=1)

        with self._lock:
            self._generation += 1
            self._connection = connection
            self._channel = channel
            self._declared = set()
            generation = self._generation

        for queue_name in self.queues:
            self._declare(queue_name)

        for stream in self._all_streams():
            if not stream.closed:
                self._register_consumer(stream, generation)

        logger.info(f"Connected to broker, queues declared: {', '.join(self.queues)}")

    def _disconnect(self):
        with self._lock:
            connection = self._connection
            self._connection = None
            self._channel = None
        if connection is not None and connection.is_open:
            try:
                connection.close()
            except AMQPError as e:
                logger.warning(f"Error closing broker connection: {e!r}")

    def _declare(self, queue_name: str):
        if queue_name in self._declared:
            return
        self._channel.queue_declare(queue=queue_name, durable=True)
        self._declared.add(queue_name)

    def _basic_publish(self, queue_name: str, body: bytes):
        if self._channel is None or not self._channel.is_open:
            raise BrokerUnavailable("Broker channel is closed")
        self._declare(queue_name)
        self._channel.basic_publish(
            exchange="",
            routing_key=queue_name,
            body=body,
            properties=pika.BasicProperties(
                content_type="application/json",
                delivery_mode=pika.DeliveryMode.Transient,
                timestamp=int(time.time()),
            ),
            mandatory=True,
        )

    def _register_consumer(self, stream: DeliveryStream, generation: int):
        if generation != self._generation or self._channel is None or stream.closed:
            return
        if stream.registered_generation == generation:
            return
        stream.registered_generation = generation
        self._channel.basic_consume(
            queue=stream.queue_name,
            on_message_callback=partial(self._on_message, stream, generation),
            auto_ack=False,
        )
        logger.info(f"Consuming from {stream.queue_name}")

    def _on_message(self, stream: DeliveryStream, generation: int, channel, method, properties, body):
        stream.put(Delivery(
            gateway=self,
            queue_name=stream.queue_name,
            body=body,
            delivery_tag=method.delivery_tag,
            redelivered=method.redelivered,
            generation=generation,
        ))

    def _settle(self, generation: int, delivery_tag: int, ack: bool, requeue: bool):
        """Ack or reject a delivery on the I/O thread."""
        if generation != self._generation:
            # The channel it came from is gone; the broker requeued it already
            logger.warning(f"Dropping settle for stale delivery {delivery_tag}")
            return

        def _do_settle():
            if generation != self._generation or self._channel is None or not self._channel.is_open:
                return
            if ack:
                self._channel.basic_ack(delivery_tag=delivery_tag)
            else:
                self._channel.basic_reject(delivery_tag=delivery_tag, requeue=requeue)

        if threading.current_thread() is self.thread:
            _do_settle()
            return

        connection = self._current_connection()
        try:
            connection.add_callback_threadsafe(_do_settle)
        except AMQPError as e:
            raise BrokerUnavailable(f"Cannot settle delivery {delivery_tag}: {e}") from e

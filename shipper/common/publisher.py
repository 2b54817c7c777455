import logging
import threading
from typing import Callable, Optional

import pika

from protocol.escape_codec import unescape
from protocol.rabbit_wrapper import RabbitMQProducer

from .dispatch_queue import DispatchQueue
from .models import (
    CONTENT_TYPE_PLAIN,
    CONTENT_TYPE_STRUCTURED,
    LogLine,
    Message,
    TerminationSource,
)
from .tail import encode_line

DEFAULT_POLL_INTERVAL = 0.2


def classify_content_type(body: bytes) -> str:
    """``application/json`` for a ``{...}`` payload, ``text/plain`` otherwise."""
    stripped = body.strip()
    if stripped.startswith(b"{") and stripped.endswith(b"}"):
        return CONTENT_TYPE_STRUCTURED
    return CONTENT_TYPE_PLAIN


def build_message(line: LogLine) -> Message:
    body = unescape(encode_line(line))
    return Message(body=body, content_type=classify_content_type(body))


class Publisher:
    """Takes lines off the dispatch queue and publishes them to the exchange.

    Runs in its own thread and is the only user of the broker connection.
    Any broker failure ends the publisher and is reported as a termination
    cause; nothing is retried.
    """

    def __init__(
        self,
        config,
        dispatch_queue: DispatchQueue,
        terminations,
        producer_factory: Callable[..., RabbitMQProducer] = RabbitMQProducer,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self.config = config
        self._queue = dispatch_queue
        self._terminations = terminations
        self._producer_factory = producer_factory
        self._poll_interval = poll_interval
        self._producer: Optional[RabbitMQProducer] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.published = 0

    def start(self) -> None:
        self._thread = threading.Thread(target=self.run, name="PublisherThread", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread:
            self._thread.join(timeout)

    def is_alive(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def run(self) -> None:
        try:
            self._producer = self._producer_factory(
                uri=self.config.amqp_uri,
                exchange=self.config.exchange,
                exchange_type=self.config.exchange_type,
                routing_key=self.config.routing_key,
                max_retries=self.config.connect_retries,
                delay=self.config.retry_delay,
            )
        except Exception as e:
            self._fail(f"cannot open AMQP channel: {e}")
            return

        logging.info(
            f"Publishing to exchange '{self.config.exchange}' ({self.config.exchange_type}) "
            f"with routing key '{self.config.routing_key}'"
        )
        try:
            self._consume_queue()
        finally:
            self._close()

    def _consume_queue(self) -> None:
        while True:
            item = self._queue.get(timeout=self._poll_interval)
            if item is None:
                if self._queue.drained or self._stop_event.is_set():
                    logging.info(f"Publisher finished after {self.published} message(s)")
                    return
                if not self._watch_connection():
                    return
                continue

            try:
                self.publish(item.line)
            except Exception as e:
                self._fail(f"AMQP error: {e}")
                return
            self._queue.acknowledge(item)

    def publish(self, line: LogLine) -> Message:
        message = build_message(line)
        self._producer.publish(
            message.body,
            routing_key=self.config.routing_key,
            content_type=message.content_type,
            headers={},
        )
        self.published += 1
        logging.debug(f"Published message #{self.published} ({message.content_type}, {len(message.body)} bytes)")
        return message

    def _watch_connection(self) -> bool:
        """Notice a connection the server closed while we had nothing to send."""
        try:
            self._producer.process_events()
        except pika.exceptions.AMQPError as e:
            self._fail(f"AMQP server closed connection: {e!r}")
            return False
        return True

    def _fail(self, reason: str) -> None:
        logging.error(reason)
        self._terminations.notify_reason(TerminationSource.PUBLISHER, reason)

    def _close(self) -> None:
        if self._producer:
            self._producer.stop()
            self._producer = None

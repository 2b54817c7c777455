import pika
import time
import logging

rabbit_logger = logging.getLogger("RabbitMQ")

TRANSIENT = 1


class RabbitMQBase:
    """Base class handling RabbitMQ connection and channel setup.

    The connection is opened once. A channel or connection that goes away
    afterwards is *not* reopened: callers find out through the exceptions
    raised by ``publish`` or ``process_events`` and decide what to do.
    """
    def __init__(self, uri, max_retries=1, delay=5, connection_factory=pika.BlockingConnection):
        self.uri = uri
        self._connection_factory = connection_factory
        self._connection = None
        self._channel = None
        self._connect_with_retry(max_retries=max_retries, delay=delay)

    def _connect_with_retry(self, max_retries=1, delay=5):
        """Establishes connection with RabbitMQ, retrying only the dial itself."""
        retries = 0
        parameters = pika.URLParameters(self.uri)
        while True:
            try:
                self._connection = self._connection_factory(parameters)
                self._channel = self._connection.channel()
                rabbit_logger.info(f"Successfully connected to RabbitMQ at {parameters.host}:{parameters.port}")
                return
            except pika.exceptions.AMQPConnectionError as e:
                retries += 1
                if retries >= max_retries:
                    rabbit_logger.error(f"Could not connect to RabbitMQ after {retries} attempt(s): {e}")
                    raise
                rabbit_logger.warning(f"Connection attempt {retries}/{max_retries} failed: {e}. Retrying in {delay}s...")
                time.sleep(delay)

    @property
    def channel(self):
        return self._channel

    @property
    def is_open(self):
        return bool(
            self._connection and self._connection.is_open
            and self._channel and self._channel.is_open
        )

    def process_events(self):
        """Pump pending broker I/O without blocking.

        Heartbeats are answered here, and a connection or channel closed by
        the server surfaces as a ``pika.exceptions.AMQPError``.
        """
        if not self.is_open:
            raise pika.exceptions.ConnectionWrongStateError("Connection or channel is already closed")
        self._connection.process_data_events(time_limit=0)

    def stop(self):
        """Closes the channel and connection gracefully."""
        closed_channel = False
        closed_connection = False
        try:
            if self._channel and self._channel.is_open:
                self._channel.close()
                closed_channel = True
            if self._connection and self._connection.is_open:
                self._connection.close()
                closed_connection = True

            if closed_channel: rabbit_logger.info("RabbitMQ channel closed.")
            if closed_connection: rabbit_logger.info("RabbitMQ connection closed.")

        except pika.exceptions.AMQPError as e:
            # Log error but don't prevent setting resources to None
            rabbit_logger.error(f"Error closing RabbitMQ resources: {e}", exc_info=True)
        finally:
            self._channel = None
            self._connection = None


class RabbitMQProducer(RabbitMQBase):
    """RabbitMQ producer bound to a single durable exchange."""
    def __init__(self, uri, exchange, exchange_type, routing_key="", **kwargs):
        # routing_key is the default, can be overridden in publish
        super().__init__(uri, **kwargs)
        self.exchange = exchange
        self.exchange_type = exchange_type
        self.default_routing_key = routing_key
        self._setup_producer()

    def _setup_producer(self):
        """Declares exchange."""
        try:
            self.channel.exchange_declare(
                exchange=self.exchange,
                exchange_type=self.exchange_type,
                durable=True,
                auto_delete=False,
                internal=False,
            )
            rabbit_logger.info(f"Exchange '{self.exchange}' ({self.exchange_type}) declared for producer.")
        except Exception as e:
            rabbit_logger.error(f"Error setting up producer for exchange {self.exchange}: {e}")
            self.stop() # Clean up connection if setup fails
            raise

    def publish(self, message, routing_key=None, content_type=None, headers=None):
        """Publishes a message to the configured exchange."""
        pub_routing_key = routing_key if routing_key is not None else self.default_routing_key

        try:
            self.channel.basic_publish(
                exchange=self.exchange,
                routing_key=pub_routing_key,
                body=message,
                properties=pika.BasicProperties(
                    content_type=content_type,
                    headers=headers if headers is not None else {},
                    delivery_mode=TRANSIENT,
                    priority=0,
                ),
                mandatory=False,
            )
            rabbit_logger.debug(f"Published message to exchange '{self.exchange}' with key '{pub_routing_key}'")
        except Exception as e:
            rabbit_logger.error(f"Failed to publish message to exchange {self.exchange}: {e}")
            raise

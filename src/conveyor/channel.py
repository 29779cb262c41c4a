import logging
import threading
import time
from collections import deque
from enum import Enum
from typing import Any, Callable, Deque, Optional

import pika
from pika.exceptions import AMQPError, ChannelWrongStateError

from . import errors, exceptions, helper, instrumentation, telemetry, utils
from .config import DIRECT, BrokerConfig
from .models import Delivery, OutboundMessage
from .policies import AckMode, ConsumerPolicy
from .worker import WorkerCallback

logger = logging.getLogger(__name__)
tracer = telemetry.tracing.get_tracer(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    TOPOLOGY_READY = "TOPOLOGY_READY"
    CONSUMING = "CONSUMING"
    CLOSING = "CLOSING"


def connect(url: str) -> pika.BlockingConnection:
    return pika.BlockingConnection(pika.URLParameters(url))


class BrokerChannel:
    """
    One connection, one channel, one durable exchange/queue/binding.

    `open()` builds the topology, `wait_for_messages()` drains deliveries on a
    single background thread, `publish()` routes new work onto the exchange and
    `close()` releases channel then connection. Every use of the pika objects
    goes through `_lock`; the consumer thread never holds it while the worker
    runs, so the worker may publish.
    """

    def __init__(
        self,
        config: BrokerConfig,
        policy: Optional[ConsumerPolicy] = None,
        connection_factory: Callable[[str], Any] = connect,
    ) -> None:
        self.config = config
        self.policy = policy or ConsumerPolicy()
        self._connection_factory = connection_factory

        self._connection = None
        self._channel = None
        self._queue_name: Optional[str] = None
        self._consumer_tag: Optional[str] = None
        self._state = ConnectionState.DISCONNECTED

        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._consumer_thread: Optional[threading.Thread] = None
        self._pending: Deque[Delivery] = deque()
        self._fatal: Optional[BaseException] = None
        self._cancelled_by_broker = False

    # ---------- State ----------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def queue_name(self) -> str:
        return self._queue_name or self.config.default_queue

    @property
    def consumer_tag(self) -> Optional[str]:
        return self._consumer_tag

    @property
    def is_open(self) -> bool:
        return self._channel is not None and self._channel.is_open

    @property
    def is_consuming(self) -> bool:
        thread = self._consumer_thread
        return self._state == ConnectionState.CONSUMING and thread is not None and thread.is_alive()

    def __enter__(self) -> "BrokerChannel":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ---------- Connection / Topology ----------

    def open(self) -> "BrokerChannel":
        """
        Dial the broker, open a channel and declare exchange, queue and binding.
        Any failing step releases what was acquired and aborts through `errors.fail`.
        """
        with self._lock:
            if self._connection is not None:
                return self

            self._stop_event.clear()
            self._fatal = None

            with tracer.start_as_current_span(
                "BrokerChannel.open",
                attributes={"exchange": self.config.exchange, "queue": self.config.default_queue},
            ):
                try:
                    self._open_session()
                except exceptions.SetupException as exc:
                    self._release()
                    self._state = ConnectionState.DISCONNECTED
                    errors.fail(exc.__cause__ or exc, exc.step)

        logger.info(
            f"Topology ready: exchange '{self.config.exchange}' ({self.config.exchange_type}) "
            f"→ queue '{self._queue_name}' via '{self.config.binding_key}'"
        )
        return self

    def _setup_step(self, step: str, fn: Callable, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except Exception as exc:
            raise exceptions.SetupException(str(exc), step=step) from exc

    def _open_session(self) -> None:
        cfg = self.config
        self._state = ConnectionState.CONNECTING

        self._connection = self._setup_step("Dial", self._connection_factory, cfg.url)
        self._channel = self._setup_step("Channel", self._connection.channel)
        self._channel.add_on_cancel_callback(self._on_cancel)

        self._setup_step(
            "Exchange",
            self._channel.exchange_declare,
            exchange=cfg.exchange,
            exchange_type=cfg.exchange_type,
            durable=True,
            auto_delete=False,
            internal=False,
        )
        declared = self._setup_step(
            "Queue Declare",
            self._channel.queue_declare,
            queue=cfg.default_queue,
            durable=True,
            exclusive=False,
            auto_delete=False,
        )
        self._queue_name = declared.method.queue
        self._setup_step(
            "Queue Bind",
            self._channel.queue_bind,
            queue=self._queue_name,
            exchange=cfg.exchange,
            routing_key=cfg.binding_key,
        )
        self._state = ConnectionState.TOPOLOGY_READY

    def close(self) -> None:
        """
        Stop pulling deliveries, let the in-flight callback finish, cancel the
        consumer, then close channel and connection. Errors are logged, never raised.
        """
        self._stop_event.set()

        thread = self._consumer_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.policy.shutdown_timeout)
            if thread.is_alive():
                logger.warning(f"Consumer thread still running after {self.policy.shutdown_timeout}s")
        self._consumer_thread = None

        with self._lock:
            if self._connection is None and self._channel is None:
                self._state = ConnectionState.DISCONNECTED
                return

            self._state = ConnectionState.CLOSING
            self._cancel_consumer()
            self._release()
            self._pending.clear()
            self._state = ConnectionState.DISCONNECTED

        logger.info("Broker channel closed")

    def shutdown(self) -> None:
        """Ask `wait_for_messages` to return. Safe from signal handlers and other threads."""
        self._stop_event.set()

    def _cancel_consumer(self) -> None:
        tag, self._consumer_tag = self._consumer_tag, None
        if tag and self._channel is not None and self._channel.is_open:
            try:
                self._channel.basic_cancel(tag)
            except Exception as exc:
                errors.log(exc, "Consumer cancel failed")

    def _release(self) -> None:
        channel, self._channel = self._channel, None
        connection, self._connection = self._connection, None

        if channel is not None and channel.is_open:
            try:
                channel.close()
            except Exception as exc:
                errors.log(exc, "Channel close failed")

        if connection is not None and connection.is_open:
            try:
                connection.close()
            except Exception as exc:
                errors.log(exc, "AMQP connection close error")

    # ---------- Consumption ----------

    def wait_for_messages(self, worker: WorkerCallback, consumer_tag: Optional[str] = None) -> None:
        """
        Start consuming and block the calling thread until `shutdown()` is
        called (or the process is interrupted). The channel is closed on the
        way out, whatever the exit path.
        """
        try:
            tag = self.start_consuming(worker, consumer_tag)
            logger.info(f"[{tag}] Waiting for messages. To exit press CTRL+C")

            while not self._stop_event.wait(timeout=1.0):
                pass

            if self._fatal is not None:
                errors.fail(self._fatal, "Reconnect")
        finally:
            self.close()

    def start_consuming(self, worker: WorkerCallback, consumer_tag: Optional[str] = None) -> str:
        """
        Apply QoS, register the consumer and spawn the delivery thread.
        Returns the effective consumer tag.
        """
        with self._lock:
            if self._channel is None:
                errors.fail(exceptions.ConveyorException("channel is not open"), "Queue Consume")
            if self._consumer_thread is not None and self._consumer_thread.is_alive():
                errors.fail(exceptions.ConveyorException(f"already consuming as '{self._consumer_tag}'"), "Queue Consume")

            try:
                tag = self._consume(consumer_tag)
            except exceptions.SetupException as exc:
                errors.fail(exc.__cause__ or exc, exc.step)

            self._stop_event.clear()
            self._consumer_thread = threading.Thread(
                target=self._handle_deliveries,
                args=(worker,),
                name=f"conveyor-consumer-{tag}",
                daemon=True,
            )
            self._consumer_thread.start()

        return tag

    def _consume(self, consumer_tag: Optional[str]) -> str:
        self._setup_step(
            "Failed to set QoS",
            self._channel.basic_qos,
            prefetch_size=0,
            prefetch_count=self.config.prefetch_count,
            global_qos=False,
        )
        self._cancelled_by_broker = False
        self._consumer_tag = self._setup_step(
            "Queue Consume",
            self._channel.basic_consume,
            queue=self._queue_name,
            on_message_callback=self._on_message,
            auto_ack=False,
            exclusive=False,
            consumer_tag=consumer_tag,
        )
        self._state = ConnectionState.CONSUMING
        return self._consumer_tag

    def _on_message(self, channel, method, properties, body) -> None:
        # runs inside process_data_events on the consumer thread
        self._pending.append(
            Delivery(
                body=body or b"",
                delivery_tag=method.delivery_tag,
                consumer_tag=method.consumer_tag,
                routing_key=method.routing_key or "",
                exchange=method.exchange or "",
                redelivered=bool(method.redelivered),
            )
        )

    def _on_cancel(self, method_frame) -> None:
        # Basic.Cancel from the broker, e.g. the queue was deleted
        logger.warning(f"[{self._consumer_tag}] Consumer cancelled by broker")
        self._cancelled_by_broker = True

    def _pump(self) -> None:
        with self._lock:
            if self._channel is None or not self._channel.is_open:
                raise ChannelWrongStateError("Channel is closed.")
            self._connection.process_data_events(time_limit=self.policy.poll_interval)

    def _handle_deliveries(self, worker: WorkerCallback) -> None:
        logger.info(f"[{self._consumer_tag}] Delivery loop started")

        while not self._stop_event.is_set():
            try:
                self._pump()
            except AMQPError as exc:
                if self._stop_event.is_set():
                    break
                logger.warning(f"Delivery stream closed: {exc}")
                if not self._reconnect():
                    break
                continue

            if self._cancelled_by_broker:
                self._pending.clear()
                with self._lock:
                    self._state = ConnectionState.TOPOLOGY_READY
                break

            while self._pending and not self._stop_event.is_set():
                if not self._dispatch(self._pending.popleft(), worker):
                    break

        logger.info("Delivery loop stopped")

    def _dispatch(self, delivery: Delivery, worker: WorkerCallback) -> bool:
        ack_mode = self.policy.ack_mode

        with tracer.start_as_current_span(
            "BrokerChannel.deliver",
            attributes={
                "delivery_tag": delivery.delivery_tag,
                "consumer_tag": delivery.consumer_tag,
                "ack_mode": ack_mode.value,
                "redelivered": delivery.redelivered,
            },
        ):
            # An unacknowledged delivery of a dead channel is redelivered by the broker
            if ack_mode is AckMode.BEFORE_PROCESS and not self._ack(delivery):
                return False

            start = time.perf_counter()
            outcome = "ok"
            try:
                worker(delivery.body, delivery.consumer_tag)
            except Exception as exc:
                outcome = "error"
                errors.log(exc, f"[{delivery.consumer_tag}] Worker failed on delivery {delivery.delivery_tag}")
            finally:
                instrumentation.record_delivery(delivery.consumer_tag, time.perf_counter() - start, outcome)

            if ack_mode is AckMode.AFTER_PROCESS:
                return self._ack(delivery)
            return True

    def _ack(self, delivery: Delivery) -> bool:
        if delivery.acknowledged:
            raise exceptions.AcknowledgementException(delivery_tag=delivery.delivery_tag)

        try:
            with self._lock:
                if self._channel is None:
                    raise ChannelWrongStateError("Channel is closed.")
                self._channel.basic_ack(delivery_tag=delivery.delivery_tag, multiple=False)
        except AMQPError as exc:
            errors.log(exc, f"Failed to acknowledge delivery {delivery.delivery_tag}")
            instrumentation.record_ack(delivery.consumer_tag, self.policy.ack_mode.value, False)
            return False

        delivery.acknowledged = True
        instrumentation.record_ack(delivery.consumer_tag, self.policy.ack_mode.value, True)
        return True

    def _reconnect(self) -> bool:
        policy = self.policy.reconnect

        with self._lock:
            self._release()
            self._pending.clear()
            self._state = ConnectionState.DISCONNECTED

        if not policy.enabled:
            logger.warning("Reconnection disabled; consumer stopped")
            return False

        last_exc = None
        for attempt in range(policy.max_attempts):
            if not utils.backoff(
                policy.backoff,
                policy.backoff_multiplier,
                policy.backoff_cap,
                attempt,
                stop_event=self._stop_event,
            ):
                return False

            logger.info(f"Reconnect attempt {attempt + 1}/{policy.max_attempts}")
            try:
                with self._lock:
                    self._open_session()
                    self._consume(self._consumer_tag)
            except exceptions.SetupException as exc:
                last_exc = exc
                with self._lock:
                    self._release()
                    self._state = ConnectionState.DISCONNECTED
                errors.log(exc, f"Reconnect attempt {attempt + 1}/{policy.max_attempts} failed")
                instrumentation.record_reconnect(attempt + 1, False)
                continue

            instrumentation.record_reconnect(attempt + 1, True)
            logger.info(f"[{self._consumer_tag}] Reconnected; consuming again")
            return True

        self._fatal = exceptions.ConveyorException(f"gave up after {policy.max_attempts} attempts: {last_exc}")
        self._stop_event.set()
        return False

    # ---------- Publishing ----------

    def resolve_routing_key(self, routing_key: str = "") -> str:
        """
        Explicit keys win. Otherwise direct exchanges route by the binding key
        and every other exchange type by the declared queue name.
        """
        if routing_key:
            return routing_key
        if self.config.exchange_type == DIRECT:
            return self.config.binding_key
        return self.queue_name

    def publish(self, body: Any, routing_key: str = "") -> None:
        """
        Publish one work item on the configured exchange. `bytes` go out
        verbatim, `str` as UTF-8, anything else as JSON. Failure is fatal.
        """
        message = OutboundMessage(body=helper.encode_body(body), routing_key=self.resolve_routing_key(routing_key))

        with tracer.start_as_current_span(
            "BrokerChannel.publish",
            attributes={"exchange": self.config.exchange, "routing_key": message.routing_key},
        ):
            try:
                with self._lock:
                    if self._channel is None or not self._channel.is_open:
                        raise exceptions.PublishException("channel is not open")
                    self._channel.basic_publish(
                        exchange=self.config.exchange,
                        routing_key=message.routing_key,
                        body=message.body,
                        properties=helper.build_properties(message),
                        mandatory=False,
                    )
            except Exception as exc:
                instrumentation.record_publish(self.config.exchange, message.routing_key, len(message.body), False)
                errors.fail(exc, "Failed to publish a message")

        instrumentation.record_publish(self.config.exchange, message.routing_key, len(message.body), True)
        logger.debug(f"Published {len(message.body)} bytes to '{self.config.exchange}' with key '{message.routing_key}'")

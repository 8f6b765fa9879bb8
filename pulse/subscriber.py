"""
Pulse subscriptions.

``subscribe`` turns a list of bindings into a running subscription: it
verifies the exchanges, declares the queue, binds it, registers a consumer
and hands every message to the caller's handler on a dedicated thread.
"""

import logging
import threading
from enum import StrEnum
from typing import TYPE_CHECKING, Callable, Optional, Sequence, Union

from amqpstorm import Channel, Message
from amqpstorm.exception import AMQPError

from pulse.config import Binding, BindingConfig, QueueConfig, expand_bindings
from pulse.exceptions import (
    ConsumeError,
    DeclarationError,
    PulseConnectionError,
    PulseError,
    SubscriptionStateError,
)
from pulse.interface import SubscriptionInterface
from pulse.message import Delivery

if TYPE_CHECKING:
    from pulse.connection import PulseConnection

logger = logging.getLogger(__name__)

Handler = Callable[[Delivery], None]

# seconds to wait for a dispatch thread to finish after its consumer is cancelled
JOIN_TIMEOUT = 10.0


class SubscriptionState(StrEnum):
    """Lifecycle states of a subscription."""
    RUNNING = "running"
    PAUSED = "paused"
    CLOSED = "closed"
    DELETED = "deleted"


_TERMINAL_STATES = (SubscriptionState.CLOSED, SubscriptionState.DELETED)


class Subscription(SubscriptionInterface):
    """
    A queue bound to one or more exchanges, with messages dispatched to a handler.

    Each subscription owns its channel and one dispatch thread. The handler
    is called for one message at a time, in arrival order; the next message
    is not taken from the channel until the handler returns.
    """

    def __init__(
        self,
        channel: Channel,
        queue_name: str,
        bindings: Sequence[Binding],
        handler: Handler,
        auto_ack: bool,
        on_terminal: Optional[Callable[["Subscription"], None]] = None,
    ) -> None:
        self._channel = channel
        self.queue_name = queue_name
        self.bindings: tuple[Binding, ...] = tuple(bindings)
        self._handler = handler
        self._auto_ack = auto_ack
        self._on_terminal = on_terminal

        self._consumer_tag: Optional[str] = None
        self._thread: Optional[threading.Thread] = None
        self._state = SubscriptionState.PAUSED
        self._error: Optional[BaseException] = None
        self._lock = threading.RLock()
        self._terminated = threading.Event()

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def error(self) -> Optional[BaseException]:
        """The exception that ended the dispatch loop, if any."""
        return self._error

    @property
    def consumer_tag(self) -> Optional[str]:
        return self._consumer_tag

    @property
    def is_running(self) -> bool:
        return self._state is SubscriptionState.RUNNING

    def _start_consuming(self) -> None:
        """
        Register the consumer and start the dispatch thread.

        The consumer tag of a previous registration is reused, so messages
        already buffered for it are still dispatched.

        Raises:
            ConsumeError: If the consumer cannot be registered
        """
        try:
            self._consumer_tag = self._channel.basic.consume(
                callback=self._on_message,
                queue=self.queue_name,
                consumer_tag=self._consumer_tag or "",
                no_ack=self._auto_ack,
            )
        except AMQPError as e:
            logger.error("Failed to consume from queue %s: %s", self.queue_name, e)
            raise ConsumeError(
                f"Failed to register a consumer on queue {self.queue_name}: {e}",
                step="consume",
                name=self.queue_name,
            ) from e

        self._state = SubscriptionState.RUNNING
        self._thread = threading.Thread(
            target=self._dispatch,
            name=f"pulse-subscriber-{self.queue_name}",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "Consuming from queue %s with consumer tag %s",
            self.queue_name,
            self._consumer_tag,
        )

    def _on_message(self, message: Message) -> None:
        self._handler(Delivery(message, self._auto_ack))

    def _dispatch(self) -> None:
        """Dispatch loop, run on the subscription's thread."""
        try:
            self._channel.start_consuming(auto_decode=False)
        except AMQPError as e:
            if self._state in _TERMINAL_STATES:
                # channel closed underneath us by close() or delete()
                return
            logger.error("Stream for queue %s failed: %s", self.queue_name, e)
            error = ConsumeError(
                f"Stream for queue {self.queue_name} failed: {e}",
                step="consume",
                name=self.queue_name,
            )
            error.__cause__ = e
            self._terminate(error)
            return
        except Exception as e:
            logger.exception(
                "Handler for queue %s raised %s, stopping subscription",
                self.queue_name,
                type(e).__name__,
            )
            self._terminate(e)
            return

        with self._lock:
            if self._state is not SubscriptionState.RUNNING:
                return
        logger.warning("Stream for queue %s ended", self.queue_name)
        self._terminate(None)

    def _terminate(self, error: Optional[BaseException]) -> None:
        """Mark the subscription closed after its dispatch loop ended by itself."""
        with self._lock:
            if self._state in _TERMINAL_STATES:
                return
            self._state = SubscriptionState.CLOSED
            self._error = error
        self._close_channel()
        self._mark_terminated()

    def _mark_terminated(self) -> None:
        # unregister before waking wait()
        if self._on_terminal is not None:
            try:
                self._on_terminal(self)
            except Exception as e:
                logger.exception("Error releasing subscription to queue %s: %s", self.queue_name, e)
        self._terminated.set()

    def _join(self) -> None:
        thread = self._thread
        if thread is None or thread is threading.current_thread():
            return
        thread.join(timeout=JOIN_TIMEOUT)
        if thread.is_alive():
            logger.warning(
                "Dispatch thread for queue %s did not stop within %.1fs",
                self.queue_name,
                JOIN_TIMEOUT,
            )

    def _cancel_consumer(self) -> None:
        try:
            if self._consumer_tag and self._channel.is_open:
                self._channel.basic.cancel(self._consumer_tag)
                logger.info("Consumer %s cancelled.", self._consumer_tag)
        except Exception as e:
            logger.exception("Error cancelling consumer: %s", e)

        try:
            if self._channel.is_open:
                self._channel.stop_consuming()
        except Exception as e:
            logger.exception("Error stopping consuming: %s", e)

    def _close_channel(self) -> None:
        _close_channel(self._channel)

    def _require_state(self, expected: SubscriptionState, operation: str) -> None:
        if self._state is not expected:
            raise SubscriptionStateError(
                f"Cannot {operation} subscription to {self.queue_name}: it is {self._state}",
                step=operation,
                name=self.queue_name,
            )

    def pause(self) -> None:
        """
        Cancel the consumer, keeping the queue, its bindings and the channel.

        Raises:
            SubscriptionStateError: If the subscription is not running
            ConsumeError: If the consumer cannot be cancelled
        """
        with self._lock:
            self._require_state(SubscriptionState.RUNNING, "pause")
            self._state = SubscriptionState.PAUSED

        try:
            self._channel.basic.cancel(self._consumer_tag)
        except AMQPError as e:
            error = ConsumeError(
                f"Failed to pause subscription to {self.queue_name}: {e}",
                step="pause",
                name=self.queue_name,
            )
            error.__cause__ = e
            self._terminate(error)
            raise error
        self._join()
        logger.info("Subscription to queue %s paused", self.queue_name)

    def resume(self) -> None:
        """
        Register the consumer again after ``pause``.

        Raises:
            SubscriptionStateError: If the subscription is not paused, if
                called from the subscription's own handler, or if the handler
                is still running a message taken before the pause
            ConsumeError: If the consumer cannot be registered
        """
        self._require_state(SubscriptionState.PAUSED, "resume")
        if self._thread is threading.current_thread():
            raise SubscriptionStateError(
                f"Cannot resume subscription to {self.queue_name} from its own handler",
                step="resume",
                name=self.queue_name,
            )
        # the previous dispatch thread must be gone before a new one starts
        self._join()
        if self._thread is not None and self._thread.is_alive():
            raise SubscriptionStateError(
                f"Cannot resume subscription to {self.queue_name}: "
                "its handler is still processing a message",
                step="resume",
                name=self.queue_name,
            )
        with self._lock:
            self._require_state(SubscriptionState.PAUSED, "resume")
            try:
                self._start_consuming()
            except ConsumeError as e:
                self._terminate(e)
                raise
        logger.info("Subscription to queue %s resumed", self.queue_name)

    def close(self) -> None:
        """
        Cancel the consumer and close the channel.

        Closing an already closed or deleted subscription does nothing.
        """
        with self._lock:
            if self._state in _TERMINAL_STATES:
                logger.debug("Subscription to queue %s already %s", self.queue_name, self._state)
                return
            was_running = self._state is SubscriptionState.RUNNING
            self._state = SubscriptionState.CLOSED

        logger.info("Closing subscription to queue %s...", self.queue_name)
        if was_running:
            self._cancel_consumer()
        self._close_channel()
        self._join()
        self._mark_terminated()

    def delete(self) -> None:
        """
        Cancel the consumer, delete the queue and close the channel.

        Raises:
            SubscriptionStateError: If the subscription is already closed or deleted
            DeclarationError: If the queue cannot be deleted
        """
        with self._lock:
            if self._state in _TERMINAL_STATES:
                raise SubscriptionStateError(
                    f"Cannot delete queue {self.queue_name}: subscription is {self._state}",
                    step="delete",
                    name=self.queue_name,
                )
            was_running = self._state is SubscriptionState.RUNNING
            self._state = SubscriptionState.DELETED

        if was_running:
            self._cancel_consumer()
            self._join()

        try:
            self._channel.queue.delete(queue=self.queue_name)
            logger.info("Queue %s deleted", self.queue_name)
        except AMQPError as e:
            logger.error("Failed to delete queue %s: %s", self.queue_name, e)
            raise DeclarationError(
                f"Failed to delete queue {self.queue_name}: {e}",
                step="delete queue",
                name=self.queue_name,
            ) from e
        finally:
            self._close_channel()
            self._mark_terminated()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the subscription is closed, deleted or its stream ends.

        Raises:
            Exception: Whatever ended the dispatch loop (a ConsumeError for
                transport failures, or the handler's own exception)
        """
        if not self._terminated.wait(timeout):
            return False
        if self._error is not None:
            raise self._error
        return True

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __repr__(self) -> str:
        return f"Subscription(queue_name={self.queue_name!r}, state={self._state.value!r})"


def _close_channel(channel: Channel) -> None:
    try:
        if channel.is_open:
            channel.close()
            logger.info("Channel closed.")
    except Exception as e:
        logger.exception("Error closing channel: %s", e)


def _set_prefetch(channel: Channel, prefetch_count: int, queue_name: str) -> None:
    try:
        channel.basic.qos(prefetch_count=prefetch_count)
    except AMQPError as e:
        raise ConsumeError(
            f"Failed to set prefetch count {prefetch_count} for queue {queue_name}: {e}",
            step="qos",
            name=queue_name,
        ) from e


def _verify_exchanges(channel: Channel, bindings: Sequence[Binding]) -> None:
    """Passively declare every distinct exchange, so mistyped names are never created."""
    for exchange_name in dict.fromkeys(b.exchange_name for b in bindings):
        try:
            channel.exchange.declare(
                exchange=exchange_name,
                exchange_type="topic",
                passive=True,
                durable=False,
                auto_delete=False,
            )
        except AMQPError as e:
            logger.error("Exchange %s could not be verified: %s", exchange_name, e)
            raise DeclarationError(
                f"Failed to passively declare exchange {exchange_name}: {e}",
                step="declare exchange",
                name=exchange_name,
            ) from e
        logger.debug("Exchange %s verified", exchange_name)


def _declare_queue(channel: Channel, queue_config: QueueConfig) -> str:
    logger.info("Declaring queue with config: %s", queue_config)
    try:
        result = channel.queue.declare(
            queue=queue_config.name,
            durable=queue_config.durable,
            exclusive=queue_config.exclusive,
            auto_delete=queue_config.auto_delete,
            arguments=queue_config.arguments(),
        )
    except AMQPError as e:
        logger.error("Failed to declare queue %s: %s", queue_config.name, e)
        raise DeclarationError(
            f"Failed to declare queue {queue_config.name}: {e}",
            step="declare queue",
            name=queue_config.name,
        ) from e

    queue_config.actual_queue_name = result.get("queue", queue_config.name)
    logger.info("Queue declared: %s", queue_config.actual_queue_name)
    return queue_config.actual_queue_name


def _bind_queue(channel: Channel, queue_name: str, bindings: Sequence[Binding]) -> None:
    for binding in bindings:
        logger.info(
            "Binding %s to %s with routing key '%s'",
            queue_name,
            binding.exchange_name,
            binding.routing_key,
        )
        try:
            channel.queue.bind(
                queue=queue_name,
                exchange=binding.exchange_name,
                routing_key=binding.routing_key,
            )
        except AMQPError as e:
            logger.error(
                "Failed to bind queue %s to exchange %s: %s",
                queue_name,
                binding.exchange_name,
                e,
            )
            raise ConsumeError(
                f"Failed to bind queue {queue_name} to exchange "
                f"{binding.exchange_name} with routing key '{binding.routing_key}': {e}",
                step="bind queue",
                name=binding.exchange_name,
            ) from e


def subscribe(
    connection: "PulseConnection",
    queue_name: str,
    handler: Handler,
    prefetch_count: int,
    auto_ack: bool,
    *bindings: Union[Binding, BindingConfig],
    max_length: Optional[int] = None,
) -> Subscription:
    """
    Subscribe a handler to messages matching the given bindings.

    Dials the connection if this is its first subscription, verifies that
    every exchange already exists, declares the queue, binds it and starts
    a dispatch thread. Either every step succeeds or the call fails with no
    consumer registered.

    Args:
        connection: The connection to subscribe through
        queue_name: Queue name; "" for an exclusive, auto-deleted queue with a
            generated name, otherwise a named queue that outlives the connection
        handler: Called with each Delivery, one at a time
        prefetch_count: Unacknowledged messages the broker may send ahead
        auto_ack: True to let the broker consider messages delivered as soon
            as they are sent; False to acknowledge from the handler
        *bindings: Bindings (or BindingConfigs) to bind the queue with
        max_length: Optional maximum queue length

    Returns:
        The running Subscription

    Raises:
        PulseConnectionError: If the connection or channel cannot be opened
        DeclarationError: If an exchange is missing or the queue cannot be declared
        ConsumeError: If binding or consumer registration fails
    """
    expanded = expand_bindings(bindings)
    if not expanded:
        logger.warning("Subscribing without bindings; only messages already routed to the queue will arrive")

    amqp_connection = connection.connect()
    try:
        channel = amqp_connection.channel()
    except AMQPError as e:
        logger.error("Failed to open a channel: %s", e)
        raise PulseConnectionError(
            f"Failed to open a channel: {e}",
            step="open channel",
        ) from e

    queue_config = QueueConfig.for_subscription(connection.user, queue_name, max_length)
    subscription = None
    try:
        _set_prefetch(channel, prefetch_count, queue_config.name)
        _verify_exchanges(channel, expanded)
        actual_queue_name = _declare_queue(channel, queue_config)
        _bind_queue(channel, actual_queue_name, expanded)

        subscription = Subscription(
            channel=channel,
            queue_name=actual_queue_name,
            bindings=expanded,
            handler=handler,
            auto_ack=auto_ack,
            on_terminal=connection._unregister,
        )
        # registered before consuming so an immediate stream end still unregisters it
        connection._register(subscription)
        subscription._start_consuming()
    except PulseError:
        if subscription is not None:
            connection._unregister(subscription)
        _close_channel(channel)
        raise

    return subscription

"""
Pulse binding and queue configuration.

This module provides the binding capability consumed by ``subscribe`` along
with configuration objects for routing keys, exchanges and queues.
"""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Iterable, Optional, Protocol, Union, runtime_checkable

from pulse.util import build_queue_name


@runtime_checkable
class Binding(Protocol):
    """
    Anything that names an exchange and a routing key to bind a queue with.

    Generated types (for example schema-validated Taskcluster exchanges) can
    implement this instead of passing plain strings to ``bind``.
    """

    @property
    def routing_key(self) -> str: ...

    @property
    def exchange_name(self) -> str: ...


@dataclass(frozen=True)
class SimpleBinding:
    """Binding described with plain strings. Not validated."""
    routing_key: str
    exchange_name: str

    def __str__(self) -> str:
        return f"{self.exchange_name} '{self.routing_key}'"


def bind(routing_key: str, exchange_name: str) -> SimpleBinding:
    """
    Return a Binding for the given routing key and exchange.

    Examples:
        >>> bind("#", "exchange/build/normalized")
        SimpleBinding(routing_key='#', exchange_name='exchange/build/normalized')
    """
    return SimpleBinding(routing_key=str(routing_key), exchange_name=str(exchange_name))


class ExchangeRegistry(StrEnum):
    """Registry of well-known Pulse exchanges. Extend this in your application."""
    # NOTE: all Pulse exchanges are non-durable topic exchanges
    BUILD = "exchange/build/"
    BUILD_NORMALIZED = "exchange/build/normalized"
    TASK_DEFINED = "exchange/taskcluster-queue/v1/task-defined"
    TASK_PENDING = "exchange/taskcluster-queue/v1/task-pending"
    TASK_RUNNING = "exchange/taskcluster-queue/v1/task-running"
    TASK_COMPLETED = "exchange/taskcluster-queue/v1/task-completed"
    TASK_FAILED = "exchange/taskcluster-queue/v1/task-failed"


class TopicWildcard(StrEnum):
    """Topic exchange wildcards for routing key patterns."""
    ALL = "#"  # Matches zero or more words
    ANY = "*"  # Matches exactly one word


@dataclass
class RoutingKeyConfig:
    """
    Dot-delimited routing key pattern built from individual fields.

    Example:
        >>> str(RoutingKeyConfig([TopicWildcard.ANY] * 5 + ["null-provisioner", TopicWildcard.ALL]))
        '*.*.*.*.*.null-provisioner.#'
    """
    fields: list[Union[str, TopicWildcard]]

    def build_key(self) -> str:
        """Build the routing key string from components."""
        return ".".join(str(part) for part in self.fields)

    def __str__(self) -> str:
        return self.build_key()


@dataclass
class BindingConfig:
    """
    One exchange bound with any number of routing keys.

    Attributes:
        exchange: Exchange name, usually from ExchangeRegistry
        routing_keys: Routing keys or RoutingKeyConfig patterns
    """
    exchange: Union[ExchangeRegistry, str]
    routing_keys: list[Union[RoutingKeyConfig, str]]

    def bindings(self) -> list[SimpleBinding]:
        """Expand into one binding per routing key, in order."""
        return [bind(str(key), str(self.exchange)) for key in self.routing_keys]


def expand_bindings(
    items: Iterable[Union[Binding, BindingConfig]],
) -> list[Binding]:
    """
    Flatten a mix of bindings and binding configs into bindings.

    Raises:
        TypeError: If an item is neither
    """
    expanded: list[Binding] = []
    for item in items:
        if isinstance(item, BindingConfig):
            expanded.extend(item.bindings())
        elif isinstance(item, Binding):
            expanded.append(item)
        else:
            raise TypeError(
                f"Expected a Binding or BindingConfig, got {type(item).__name__}"
            )
    return expanded


@dataclass
class QueueConfig:
    """
    Declaration parameters for a subscription queue.

    Attributes:
        name: Full queue name (``queue/<user>/...``)
        durable: Queue survives broker restart
        exclusive: Queue can only be used by this connection
        auto_delete: Queue is deleted when the last consumer goes away
        max_length: Optional ``x-max-length`` limit
        actual_queue_name: Set automatically after queue declaration
    """
    name: str
    durable: bool
    exclusive: bool
    auto_delete: bool
    max_length: Optional[int] = None
    actual_queue_name: Optional[str] = field(default=None, init=False)

    @classmethod
    def for_subscription(
        cls,
        user: str,
        queue_name: Optional[str],
        max_length: Optional[int] = None,
    ) -> "QueueConfig":
        """
        Build the queue config for a subscribe call.

        Unnamed queues get a generated name and are exclusive and auto-deleted,
        so they vanish with the connection. Named queues persist across
        disconnects and may be shared between consumers.
        """
        if queue_name:
            return cls(
                name=build_queue_name(user, queue_name),
                durable=False,
                exclusive=False,
                auto_delete=False,
                max_length=max_length,
            )
        return cls(
            name=build_queue_name(user),
            durable=False,
            exclusive=True,
            auto_delete=True,
            max_length=max_length,
        )

    def arguments(self) -> Optional[dict]:
        """Queue declare arguments, or None when there are none."""
        if self.max_length is None:
            return None
        return {"x-max-length": self.max_length}

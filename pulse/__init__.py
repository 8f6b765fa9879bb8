"""
Pulse client for consuming messages from pulse.mozilla.org.

This package lets you bind a queue to Pulse topic exchanges and receive
matching messages without learning AMQP 0.9.1 in depth:
- Credential resolution from arguments, url, environment and defaults
- Lazily established connections shared by many subscriptions
- Bindings as plain strings or generated types
- One dispatch thread per subscription with pause/resume/close/delete
"""

from pulse.config import (
    Binding,
    BindingConfig,
    ExchangeRegistry,
    QueueConfig,
    RoutingKeyConfig,
    SimpleBinding,
    TopicWildcard,
    bind,
)
from pulse.connection import PulseConnection, new_connection
from pulse.credentials import PRODUCTION_URL, ResolvedCredentials, resolve_credentials
from pulse.exceptions import (
    AcknowledgeError,
    ConsumeError,
    DeclarationError,
    PulseConnectionError,
    PulseError,
    SubscriptionStateError,
)
from pulse.interface import SubscriptionInterface
from pulse.message import Delivery
from pulse.subscriber import Subscription, SubscriptionState, subscribe

__all__ = [
    # Config
    "Binding",
    "BindingConfig",
    "ExchangeRegistry",
    "QueueConfig",
    "RoutingKeyConfig",
    "SimpleBinding",
    "TopicWildcard",
    "bind",
    # Connection
    "PRODUCTION_URL",
    "PulseConnection",
    "ResolvedCredentials",
    "new_connection",
    "resolve_credentials",
    # Subscriptions
    "Delivery",
    "Subscription",
    "SubscriptionInterface",
    "SubscriptionState",
    "subscribe",
    # Exceptions
    "AcknowledgeError",
    "ConsumeError",
    "DeclarationError",
    "PulseConnectionError",
    "PulseError",
    "SubscriptionStateError",
]

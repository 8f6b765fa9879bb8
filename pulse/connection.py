"""
Pulse connection management.

A PulseConnection holds the resolved credentials for one logical connection.
Creating it causes no network traffic; the AMQP connection is only dialled
when the first subscription is requested.
"""

import logging
import ssl
import threading
from typing import TYPE_CHECKING, Callable, Optional
from urllib.parse import urlsplit

import amqpstorm
from amqpstorm.exception import AMQPError

from pulse.credentials import mask_password, resolve_credentials
from pulse.exceptions import PulseConnectionError

if TYPE_CHECKING:
    from pulse.subscriber import Handler, Subscription

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[str], amqpstorm.Connection]


def get_ssl_options(hostname: Optional[str]) -> dict:
    """
    Create SSL options for an amqps connection.

    Args:
        hostname: Server hostname for SSL certificate verification

    Returns:
        Dictionary with SSL context and server hostname

    Raises:
        PulseConnectionError: If hostname is empty or None
    """
    if hostname is None or len(hostname) == 0:
        raise PulseConnectionError(
            "SSL is enabled but the server url has no hostname",
            step="connect",
        )
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.load_default_certs(purpose=ssl.Purpose.SERVER_AUTH)
    return {
        "context": context,
        "server_hostname": hostname,
    }


def dial(url: str) -> amqpstorm.Connection:
    """Open an AMQP connection to the given url, with TLS for amqps urls."""
    parts = urlsplit(url)
    ssl_options = None
    if parts.scheme == "amqps":
        ssl_options = get_ssl_options(parts.hostname)
    return amqpstorm.UriConnection(url, ssl_options=ssl_options)


class PulseConnection:
    """
    Resolved connection parameters plus a lazily established AMQP connection.

    Attributes:
        user: Effective user name
        password: Effective password
        url: AMQP url with the credentials embedded
        ambiguous: True when the given url could not be parsed strictly
    """

    def __init__(
        self,
        user: Optional[str] = "",
        password: Optional[str] = "",
        url: Optional[str] = "",
        connection_factory: Optional[ConnectionFactory] = None,
    ) -> None:
        """
        Resolve credentials for a new connection. No network I/O happens here.

        Args:
            user: Pulse user ("" to derive from url, environment or default)
            password: Pulse password ("" to derive from url, environment or default)
            url: AMQP url ("" for production)
            connection_factory: Callable that dials a url. Defaults to ``dial``.
        """
        resolved = resolve_credentials(user, password, url)
        self.user = resolved.user
        self.password = resolved.password
        self.url = resolved.url
        self.ambiguous = resolved.ambiguous

        self._connection_factory = connection_factory or dial
        self._connection: Optional[amqpstorm.Connection] = None
        self._connection_lock = threading.Lock()
        self._subscriptions: list["Subscription"] = []
        self._subscriptions_lock = threading.Lock()

    @property
    def is_established(self) -> bool:
        """Whether the AMQP connection has been dialled."""
        return self._connection is not None

    def connect(self) -> amqpstorm.Connection:
        """
        Return the AMQP connection, dialling it on first use.

        Concurrent callers share a single dial.

        Raises:
            PulseConnectionError: If the connection cannot be established
        """
        with self._connection_lock:
            if self._connection is not None:
                return self._connection

            logger.info("Connecting to %s", mask_password(self.url))
            try:
                self._connection = self._connection_factory(self.url)
            except AMQPError as e:
                logger.error(
                    "Failed to connect to %s: %s", mask_password(self.url), e
                )
                raise PulseConnectionError(
                    f"Failed to connect to {mask_password(self.url)}: {e}",
                    step="connect",
                    name=mask_password(self.url),
                ) from e
            logger.info("Connected to %s as %s", mask_password(self.url), self.user)
            return self._connection

    def subscribe(
        self,
        queue_name: str,
        handler: "Handler",
        prefetch_count: int,
        auto_ack: bool,
        *bindings,
        max_length: Optional[int] = None,
    ) -> "Subscription":
        """Subscribe to the given bindings. See ``pulse.subscriber.subscribe``."""
        from pulse.subscriber import subscribe

        return subscribe(
            self,
            queue_name,
            handler,
            prefetch_count,
            auto_ack,
            *bindings,
            max_length=max_length,
        )

    def _register(self, subscription: "Subscription") -> None:
        with self._subscriptions_lock:
            self._subscriptions.append(subscription)

    def _unregister(self, subscription: "Subscription") -> None:
        """Forget a subscription once it is closed or deleted."""
        with self._subscriptions_lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    @property
    def subscriptions(self) -> list["Subscription"]:
        """Subscriptions opened through this connection that are not yet closed or deleted."""
        with self._subscriptions_lock:
            return list(self._subscriptions)

    def close(self) -> None:
        """
        Close every subscription and then the AMQP connection.

        Errors while closing are logged, not raised.
        """
        for subscription in self.subscriptions:
            try:
                subscription.close()
            except Exception as e:
                logger.warning("Error closing subscription %s: %s", subscription, e)

        with self._connection_lock:
            if self._connection is None:
                return
            try:
                if self._connection.is_open:
                    self._connection.close()
                    logger.info("Connection to %s closed", mask_password(self.url))
            except Exception as e:
                logger.warning("Error closing connection: %s", e)
            finally:
                self._connection = None

    def __enter__(self) -> "PulseConnection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __repr__(self) -> str:
        return (
            f"PulseConnection(user={self.user!r}, url={mask_password(self.url)!r}, "
            f"established={self.is_established})"
        )


def new_connection(
    user: Optional[str] = "",
    password: Optional[str] = "",
    url: Optional[str] = "",
) -> PulseConnection:
    """
    Return a PulseConnection for the given credentials.

    Passing empty strings derives the user and password from the url, the
    ``PULSE_USERNAME`` / ``PULSE_PASSWORD`` environment variables or
    ``"guest"``, and connects to production (pulse.mozilla.org).
    """
    return PulseConnection(user=user, password=password, url=url)

"""Pulse CLI parameters.

Provides reusable typer option types and the typed context built from them.

Example:
    ```python
    from pulse.cli.params import PulseUser, PulsePassword, PulseServerUrl

    @app.command()
    def run(user: PulseUser = "", password: PulsePassword = "", server_url: PulseServerUrl = ""):
        pulse_ctx = create_pulse_context(user, password, server_url)
    ```
"""

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Annotated, List, Optional

import typer

from pulse.config import SimpleBinding, bind
from pulse.connection import ConnectionFactory, PulseConnection

logger = logging.getLogger(__name__)


class LogLevelName(StrEnum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# Type aliases for CLI parameters. User and password deliberately have no
# envvar: PULSE_USERNAME/PULSE_PASSWORD rank below credentials in the url.
PulseUser = Annotated[
    str,
    typer.Option("--user", "-u", help="The pulse user to connect with (see https://pulse.mozilla.org/)."),
]
PulsePassword = Annotated[
    str,
    typer.Option("--password", "-p", help="The password to use for connecting to pulse."),
]
PulseServerUrl = Annotated[
    str,
    typer.Option(
        "--server-url",
        "-s",
        help="The full amqp/amqps url of the pulse server (default: production).",
    ),
]
PulseQueue = Annotated[
    str,
    typer.Option(
        "--queue",
        "-q",
        help="Named queue that outlives this process; empty for a temporary exclusive queue.",
    ),
]
Prefetch = Annotated[
    int,
    typer.Option(min=0, help="Unacknowledged messages the server may send ahead."),
]
AutoAck = Annotated[
    bool,
    typer.Option("--auto-ack", help="Let the server consider messages delivered as soon as they are sent."),
]
MaxLength = Annotated[
    Optional[int],
    typer.Option(min=1, help="Maximum number of messages kept in the queue."),
]
LogLevel = Annotated[
    LogLevelName,
    typer.Option(envvar="LOG_LEVEL", case_sensitive=False, help="Logging level"),
]
ExchangeRoutingKeyPairs = Annotated[
    List[str],
    typer.Argument(
        metavar="EXCHANGE ROUTING_KEY...",
        help="Pairs of exchange and routing key to bind to. Quote routing keys so the shell leaves '#' and '*' alone.",
    ),
]


@dataclass
class PulseContext:
    """Typed Pulse context with resolved connection configuration.

    Attributes:
        user: Effective user name
        url: AMQP url with credentials embedded
        connection: Connection to subscribe through (not yet dialled)
    """

    user: str
    url: str
    connection: PulseConnection


def create_pulse_context(
    user: str = "",
    password: str = "",
    server_url: str = "",
    connection_factory: Optional[ConnectionFactory] = None,
) -> PulseContext:
    """Create Pulse context from CLI parameters.

    Args:
        user: Pulse user, "" to derive it
        password: Pulse password, "" to derive it
        server_url: AMQP url, "" for production
        connection_factory: Optional callable used to dial the server

    Returns:
        PulseContext with the resolved connection
    """
    connection = PulseConnection(
        user=user,
        password=password,
        url=server_url,
        connection_factory=connection_factory,
    )
    if connection.ambiguous:
        logger.warning("Server url could not be parsed strictly; check --server-url")
    logger.debug("Pulse context created for user %s", connection.user)
    return PulseContext(user=connection.user, url=connection.url, connection=connection)


def parse_bindings(arguments: List[str]) -> list[SimpleBinding]:
    """
    Pair up ``EXCHANGE ROUTING_KEY`` command line arguments.

    Raises:
        typer.BadParameter: If the arguments do not form pairs
    """
    if len(arguments) == 0 or len(arguments) % 2 != 0:
        raise typer.BadParameter(
            "expected one or more EXCHANGE ROUTING_KEY pairs, "
            f"got {len(arguments)} argument(s)"
        )
    return [
        bind(routing_key, exchange)
        for exchange, routing_key in zip(arguments[0::2], arguments[1::2])
    ]

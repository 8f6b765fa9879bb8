"""Inbound Pulse message handed to subscription handlers."""

import json
import logging
from typing import Any

from amqpstorm import Message

from pulse.exceptions import AcknowledgeError

logger = logging.getLogger(__name__)


class Delivery:
    """
    A message received on a subscription.

    Wraps the AMQP message so handlers can read the payload and decide when
    (and whether) to acknowledge it.
    """

    def __init__(self, message: Message, auto_ack: bool) -> None:
        self._message = message
        self._auto_ack = auto_ack

    @property
    def body(self) -> bytes:
        body = self._message.body
        if isinstance(body, str):
            return body.encode("utf-8")
        return body

    @property
    def exchange(self) -> str:
        return self._message.method.get("exchange", "")

    @property
    def routing_key(self) -> str:
        return self._message.method.get("routing_key", "")

    @property
    def delivery_tag(self) -> int:
        return self._message.method.get("delivery_tag")

    @property
    def redelivered(self) -> bool:
        return bool(self._message.method.get("redelivered", False))

    @property
    def properties(self) -> dict:
        return self._message.properties

    def json(self) -> Any:
        """Decode the body as UTF-8 JSON."""
        return json.loads(self.body.decode("utf-8"))

    def _check_manual_ack(self, operation: str) -> None:
        if self._auto_ack:
            raise AcknowledgeError(
                f"Cannot {operation} delivery {self.delivery_tag}: "
                "subscription acknowledges automatically",
                step=operation,
                name=self.exchange,
            )

    def ack(self, multiple: bool = False) -> None:
        """
        Acknowledge this delivery.

        Args:
            multiple: Also acknowledge every earlier unacknowledged delivery
                on the same subscription
        """
        self._check_manual_ack("ack")
        self._message.channel.basic.ack(
            delivery_tag=self.delivery_tag, multiple=multiple
        )
        logger.debug("Acknowledged delivery %s", self.delivery_tag)

    def nack(self, multiple: bool = False, requeue: bool = True) -> None:
        """Negatively acknowledge this delivery."""
        self._check_manual_ack("nack")
        self._message.channel.basic.nack(
            delivery_tag=self.delivery_tag, multiple=multiple, requeue=requeue
        )
        logger.debug("Rejected delivery %s (requeue=%s)", self.delivery_tag, requeue)

    def reject(self, requeue: bool = True) -> None:
        """Reject this delivery."""
        self._check_manual_ack("reject")
        self._message.channel.basic.reject(
            delivery_tag=self.delivery_tag, requeue=requeue
        )
        logger.debug("Rejected delivery %s (requeue=%s)", self.delivery_tag, requeue)

    def __repr__(self) -> str:
        return (
            f"Delivery(exchange={self.exchange!r}, routing_key={self.routing_key!r}, "
            f"delivery_tag={self.delivery_tag!r})"
        )

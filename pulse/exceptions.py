"""Exceptions raised by the pulse client."""

from typing import Optional


class PulseError(Exception):
    """Base exception for pulse client errors."""

    def __init__(
        self,
        message: str,
        step: Optional[str] = None,
        name: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.step = step
        self.name = name


class PulseConnectionError(PulseError):
    """The transport connection or a channel could not be established."""
    pass


class DeclarationError(PulseError):
    """An exchange could not be verified or a queue could not be declared."""
    pass


class ConsumeError(PulseError):
    """Binding, QoS or consumer registration failed, or the stream broke."""
    pass


class SubscriptionStateError(PulseError):
    """A lifecycle operation is not valid in the subscription's current state."""
    pass


class AcknowledgeError(PulseError):
    """A delivery was acknowledged on an auto-acknowledging subscription."""
    pass

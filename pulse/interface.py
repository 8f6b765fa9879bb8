"""Abstract interface for Pulse subscriptions."""

import abc
from typing import Optional


class SubscriptionInterface(abc.ABC):
    """Lifecycle of a running subscription."""

    @abc.abstractmethod
    def pause(self) -> None:
        """Stop delivering messages, keeping the queue and its bindings."""
        pass

    @abc.abstractmethod
    def resume(self) -> None:
        """Start delivering messages again after ``pause``."""
        pass

    @abc.abstractmethod
    def close(self) -> None:
        """Stop delivering messages and release the channel."""
        pass

    @abc.abstractmethod
    def delete(self) -> None:
        """Stop delivering messages, delete the queue and release the channel."""
        pass

    @abc.abstractmethod
    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until message delivery ends.

        Args:
            timeout: Seconds to wait, or None to wait indefinitely

        Returns:
            True if delivery has ended, False on timeout
        """
        pass

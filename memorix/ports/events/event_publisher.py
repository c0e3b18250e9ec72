"""Event publishing port."""

from abc import ABC, abstractmethod
from typing import Optional

from memorix.domain.events import DomainEvent


class EventPublisher(ABC):
    """Sends domain events to the message channel after a local write commits."""

    @abstractmethod
    def publish(self, event: DomainEvent) -> None:
        """Schedule delivery of ``event`` without blocking the caller."""

    @abstractmethod
    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight publishes to finish."""

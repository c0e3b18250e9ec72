"""Message channel port.

A broker routes published messages through direct exchanges to durable queues
and hands them to consumer callbacks one at a time. A callback that raises
rejects the delivery without requeue, which moves it to the queue's
dead-letter queue.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List

from memorix.ports.messaging.topology import Topology


@dataclass(frozen=True)
class Delivery:
    message_id: str
    queue: str
    exchange: str
    routing_key: str
    body: str
    published_at: int  # epoch millis at first publish
    delivery_tag: str
    redelivered: bool = False
    headers: Dict[str, str] = field(default_factory=dict)


DeliveryHandler = Callable[[Delivery], Awaitable[None]]


class MessageBroker(ABC):
    @abstractmethod
    async def connect(self) -> None:
        pass

    @abstractmethod
    async def declare(self, topology: Topology) -> None:
        """Declare exchanges, queues and bindings; safe to repeat."""

    @abstractmethod
    async def publish(self, exchange: str, routing_key: str, body: str) -> int:
        """Route ``body`` to every queue bound with exactly ``routing_key``.

        Returns the number of queues the message was delivered to.
        """

    @abstractmethod
    async def start_consumer(
        self, queue: str, handler: DeliveryHandler, concurrency: int = 1
    ) -> None:
        """Start ``concurrency`` competing workers on ``queue``."""

    @abstractmethod
    async def peek(self, queue: str, limit: int = 100) -> List[Delivery]:
        """Return up to ``limit`` messages waiting on ``queue`` without consuming them."""

    @abstractmethod
    async def replay_dead_letters(self, dead_letter_queue: str, limit: int = 100) -> int:
        """Republish dead-lettered messages to their original exchange and routing key."""

    @abstractmethod
    async def health_check(self) -> bool:
        pass

    @abstractmethod
    async def close(self) -> None:
        """Stop consumers and release connections."""

"""Fire-and-forget event publisher with a fixed retry budget."""

import asyncio
from typing import Optional, Set

import structlog

from memorix.core.observability import metrics
from memorix.domain.events import DomainEvent
from memorix.ports.events.event_publisher import EventPublisher
from memorix.ports.messaging.message_broker import MessageBroker

logger = structlog.get_logger(__name__)


class RetryingEventPublisher(EventPublisher):
    """Publishes each event on a background task.

    A failed send is retried up to ``max_attempts`` times in total with a
    fixed ``retry_delay`` between attempts. Once the budget is spent the event
    is logged and abandoned; nothing is stored for a later retry.
    """

    def __init__(
        self,
        broker: MessageBroker,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
    ) -> None:
        self.broker = broker
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self._pending: Set[asyncio.Task] = set()

    def publish(self, event: DomainEvent) -> None:
        task = asyncio.get_running_loop().create_task(
            self.publish_now(event), name=f"publish-{event.routing_key}"
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def publish_now(self, event: DomainEvent) -> bool:
        """Send ``event`` with retries; returns False if it was abandoned."""
        event_type = type(event).__name__
        body = event.to_json()

        for attempt in range(1, self.max_attempts + 1):
            try:
                routed = await self.broker.publish(event.exchange, event.routing_key, body)
            except Exception as e:
                logger.warning(
                    "Event publish attempt failed",
                    event_type=event_type,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    error=str(e),
                )
                if attempt < self.max_attempts:
                    metrics.record_event_published(event_type, "retry")
                    await asyncio.sleep(self.retry_delay)
                continue

            metrics.record_event_published(event_type, "success")
            logger.info(
                "Event published",
                event_type=event_type,
                routing_key=event.routing_key,
                queues=routed,
                attempt=attempt,
            )
            return True

        metrics.record_event_published(event_type, "abandoned")
        logger.error(
            "Event publish abandoned after retries",
            event_type=event_type,
            attempts=self.max_attempts,
            payload=body,
        )
        return False

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self, timeout: Optional[float] = None) -> None:
        if not self._pending:
            return
        done, not_done = await asyncio.wait(set(self._pending), timeout=timeout)
        if not_done:
            logger.warning("Publishes still in flight after drain", count=len(not_done))

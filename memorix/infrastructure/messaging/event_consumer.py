from typing import Awaitable, Callable

import structlog

from memorix.core.observability import metrics, trace_async_operation
from memorix.domain.events import DomainEvent, parse_event
from memorix.ports.messaging.message_broker import Delivery, MessageBroker

logger = structlog.get_logger(__name__)

EventHandler = Callable[[DomainEvent], Awaitable[None]]


class EventConsumer:
    """Subscribes to one queue and hands decoded domain events to a handler.

    Decoding and handler errors are not caught here; they propagate to the
    broker, which rejects the delivery into the queue's dead-letter queue.
    """

    def __init__(
        self,
        broker: MessageBroker,
        queue: str,
        handler: EventHandler,
        concurrency: int = 1,
    ) -> None:
        self.broker = broker
        self.queue = queue
        self.handler = handler
        self.concurrency = concurrency

    async def start(self) -> None:
        await self.broker.start_consumer(
            self.queue, self.handle_delivery, concurrency=self.concurrency
        )
        logger.info(
            "Event consumer started", queue=self.queue, concurrency=self.concurrency
        )

    async def handle_delivery(self, delivery: Delivery) -> None:
        async with trace_async_operation(
            "consume_event",
            queue=self.queue,
            routing_key=delivery.routing_key,
            message_id=delivery.message_id,
        ):
            try:
                event = parse_event(delivery.routing_key, delivery.body)
                await self.handler(event)
            except Exception:
                metrics.record_event_consumed(self.queue, "error")
                raise

            metrics.record_event_consumed(self.queue, "success")
            logger.info(
                "Event consumed",
                queue=self.queue,
                event_type=type(event).__name__,
                message_id=delivery.message_id,
                redelivered=delivery.redelivered,
            )

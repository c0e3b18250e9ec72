"""In-process message broker.

Same routing, TTL and dead-letter semantics as the Redis broker, with no
external dependencies. Used by tests and by single-process local runs.
"""

import asyncio
import itertools
import time
from collections import deque
from typing import Callable, Deque, Dict, List, Optional
from uuid import uuid4

import structlog

from memorix.core.observability import metrics
from memorix.domain.exceptions import TopologyError
from memorix.infrastructure.messaging.redis_broker import (
    DEATH_ERROR,
    DEATH_QUEUE,
    DEATH_REASON,
    DEATH_TIME,
    ORIGINAL_EXCHANGE,
    ORIGINAL_ROUTING_KEY,
)
from memorix.ports.messaging.topology import QueueSpec, Topology
from memorix.ports.messaging.message_broker import (
    Delivery,
    DeliveryHandler,
    MessageBroker,
)

logger = structlog.get_logger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class _MemoryQueue:
    def __init__(self, spec: QueueSpec) -> None:
        self.spec = spec
        self.messages: Deque[Delivery] = deque()
        self._available = asyncio.Condition()
        self._unfinished = 0
        self._idle = asyncio.Event()
        self._idle.set()

    async def put(self, delivery: Delivery) -> None:
        async with self._available:
            self.messages.append(delivery)
            self._unfinished += 1
            self._idle.clear()
            self._available.notify()

    async def get(self) -> Delivery:
        async with self._available:
            await self._available.wait_for(lambda: bool(self.messages))
            return self.messages.popleft()

    def discard(self, delivery: Delivery) -> bool:
        try:
            self.messages.remove(delivery)
        except ValueError:
            return False
        self.task_done()
        return True

    def task_done(self) -> None:
        self._unfinished -= 1
        if self._unfinished <= 0:
            self._unfinished = 0
            self._idle.set()

    async def join(self) -> None:
        await self._idle.wait()


class InMemoryMessageBroker(MessageBroker):
    def __init__(self, clock: Callable[[], int] = _now_ms) -> None:
        self._clock = clock
        self._topology = Topology()
        self._queues: Dict[str, _MemoryQueue] = {}
        self._tags = itertools.count(1)
        self._tasks: List[asyncio.Task] = []
        self._running = False

    async def connect(self) -> None:
        self._running = True

    async def declare(self, topology: Topology) -> None:
        self._topology = self._topology.merge(topology)
        for spec in topology.queues:
            if spec.name not in self._queues:
                self._queues[spec.name] = _MemoryQueue(spec)

    def _queue(self, name: str) -> _MemoryQueue:
        try:
            return self._queues[name]
        except KeyError:
            raise TopologyError(f"queue {name!r} is not declared") from None

    async def publish(self, exchange: str, routing_key: str, body: str) -> int:
        queues = self._topology.route(exchange, routing_key)
        if not queues:
            logger.warning(
                "Unroutable message dropped", exchange=exchange, routing_key=routing_key
            )
            return 0

        message_id = uuid4().hex
        published_at = self._clock()
        for name in queues:
            await self._queue(name).put(
                Delivery(
                    message_id=message_id,
                    queue=name,
                    exchange=exchange,
                    routing_key=routing_key,
                    body=body,
                    published_at=published_at,
                    delivery_tag=str(next(self._tags)),
                )
            )
        return len(queues)

    async def start_consumer(
        self, queue: str, handler: DeliveryHandler, concurrency: int = 1
    ) -> None:
        memory_queue = self._queue(queue)
        self._running = True
        for index in range(concurrency):
            task = asyncio.create_task(
                self._consume_loop(memory_queue, handler),
                name=f"consumer-{queue}-{index}",
            )
            self._tasks.append(task)

    async def _consume_loop(self, memory_queue: _MemoryQueue, handler: DeliveryHandler) -> None:
        while self._running:
            try:
                delivery = await memory_queue.get()
            except asyncio.CancelledError:
                break
            try:
                await self._deliver(memory_queue.spec, handler, delivery)
            finally:
                memory_queue.task_done()

    async def _deliver(
        self, spec: QueueSpec, handler: DeliveryHandler, delivery: Delivery
    ) -> None:
        if spec.is_expired(delivery.published_at, self._clock()):
            await self._dead_letter(spec, delivery, "expired")
            return
        try:
            await handler(delivery)
        except Exception as e:
            logger.error(
                "Delivery rejected",
                queue=spec.name,
                message_id=delivery.message_id,
                error=str(e),
            )
            await self._dead_letter(spec, delivery, "rejected", error=str(e))

    async def _dead_letter(
        self,
        spec: QueueSpec,
        delivery: Delivery,
        reason: str,
        error: Optional[str] = None,
    ) -> None:
        if not spec.dead_letter_exchange:
            logger.error(
                "Message dropped, queue has no dead-letter exchange",
                queue=spec.name,
                message_id=delivery.message_id,
                reason=reason,
            )
            return

        routing_key = spec.dead_letter_routing_key or spec.name
        headers = dict(delivery.headers)
        headers.update(
            {
                DEATH_REASON: reason,
                DEATH_QUEUE: spec.name,
                DEATH_TIME: str(self._clock()),
                ORIGINAL_EXCHANGE: delivery.exchange,
                ORIGINAL_ROUTING_KEY: delivery.routing_key,
            }
        )
        if error:
            headers[DEATH_ERROR] = error[:500]

        for name in self._topology.route(spec.dead_letter_exchange, routing_key):
            await self._queue(name).put(
                Delivery(
                    message_id=delivery.message_id,
                    queue=name,
                    exchange=spec.dead_letter_exchange,
                    routing_key=routing_key,
                    body=delivery.body,
                    published_at=delivery.published_at,
                    delivery_tag=str(next(self._tags)),
                    headers=headers,
                )
            )

        metrics.record_dead_letter(spec.name, reason)
        logger.warning(
            "Message dead-lettered",
            queue=spec.name,
            message_id=delivery.message_id,
            reason=reason,
        )

    async def join(self, queue: str) -> None:
        """Wait until every message put on ``queue`` has been handled."""
        await self._queue(queue).join()

    async def peek(self, queue: str, limit: int = 100) -> List[Delivery]:
        return list(itertools.islice(self._queue(queue).messages, limit))

    async def replay_dead_letters(self, dead_letter_queue: str, limit: int = 100) -> int:
        memory_queue = self._queue(dead_letter_queue)
        replayed = 0

        for delivery in list(itertools.islice(memory_queue.messages, limit)):
            exchange = delivery.headers.get(ORIGINAL_EXCHANGE)
            routing_key = delivery.headers.get(ORIGINAL_ROUTING_KEY)
            if not exchange or not routing_key:
                logger.warning(
                    "Dead letter has no origin, skipping",
                    queue=dead_letter_queue,
                    message_id=delivery.message_id,
                )
                continue
            if not await self.publish(exchange, routing_key, delivery.body):
                logger.warning(
                    "Dead letter is unroutable, keeping it",
                    queue=dead_letter_queue,
                    message_id=delivery.message_id,
                    exchange=exchange,
                    routing_key=routing_key,
                )
                continue
            if memory_queue.discard(delivery):
                replayed += 1

        logger.info("Dead letters replayed", queue=dead_letter_queue, count=replayed)
        return replayed

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

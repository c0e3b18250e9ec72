"""Message broker on Redis Streams.

Layout under the configured key prefix:

- ``<prefix>:queue:<name>``          stream holding the queue's messages
- ``<prefix>:queue-args:<name>``     hash of queue arguments (DLX, TTL)
- ``<prefix>:exchange:<name>``       hash describing a declared exchange
- ``<prefix>:binding:<ex>:<key>``    set of queues bound to ``ex`` with ``key``

Every queue has a single consumer group, so all workers on a queue compete
for its messages. Bindings live in Redis rather than in process memory, which
lets a publisher in one service route into queues declared by another.
"""

import asyncio
import os
import socket
import time
from typing import Callable, Dict, List, Optional, Tuple
from uuid import uuid4

import structlog
from redis.exceptions import RedisError, ResponseError

from memorix.core.observability import metrics
from memorix.domain.exceptions import MessagingException
from memorix.infrastructure.messaging.redis_client import RedisClient
from memorix.ports.messaging.topology import QueueSpec, Topology
from memorix.ports.messaging.message_broker import (
    Delivery,
    DeliveryHandler,
    MessageBroker,
)

logger = structlog.get_logger(__name__)

# Fields copied onto a dead-lettered message, named after their AMQP counterparts
DEATH_REASON = "x-death-reason"
DEATH_QUEUE = "x-death-queue"
DEATH_TIME = "x-death-time"
DEATH_ERROR = "x-death-error"
ORIGINAL_EXCHANGE = "x-original-exchange"
ORIGINAL_ROUTING_KEY = "x-original-routing-key"


def _now_ms() -> int:
    return int(time.time() * 1000)


class RedisMessageBroker(MessageBroker):
    def __init__(
        self,
        redis_client: RedisClient,
        key_prefix: str = "memorix",
        block_ms: int = 1000,
        redelivery_idle_ms: int = 60_000,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.redis_client = redis_client
        self.key_prefix = key_prefix
        self.block_ms = block_ms
        self.redelivery_idle_ms = redelivery_idle_ms
        self._clock = clock
        self._group = f"{key_prefix}.workers"
        self._topology = Topology()
        self._tasks: List[asyncio.Task] = []
        self._running = False
        self._consumer_prefix = f"{socket.gethostname()}-{os.getpid()}"

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def _stream_key(self, queue: str) -> str:
        return f"{self.key_prefix}:queue:{queue}"

    def _queue_args_key(self, queue: str) -> str:
        return f"{self.key_prefix}:queue-args:{queue}"

    def _exchange_key(self, exchange: str) -> str:
        return f"{self.key_prefix}:exchange:{exchange}"

    def _binding_key(self, exchange: str, routing_key: str) -> str:
        return f"{self.key_prefix}:binding:{exchange}:{routing_key}"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        if self.redis_client.redis_client is None:
            await self.redis_client.initialize()

    async def close(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        await self.redis_client.close()

    async def health_check(self) -> bool:
        return await self.redis_client.health_check()

    # ------------------------------------------------------------------
    # Topology
    # ------------------------------------------------------------------

    async def declare(self, topology: Topology) -> None:
        merged = self._topology.merge(topology)
        client = self.redis_client.get_client()
        try:
            for exchange in topology.exchanges:
                await client.hset(
                    self._exchange_key(exchange.name),
                    mapping={"kind": exchange.kind, "durable": int(exchange.durable)},
                )
            for queue in topology.queues:
                await client.hset(
                    self._queue_args_key(queue.name), mapping=queue.arguments()
                )
                await self._ensure_group(queue.name)
            for binding in topology.bindings:
                await client.sadd(
                    self._binding_key(binding.exchange, binding.routing_key),
                    binding.queue,
                )
        except RedisError as e:
            metrics.record_redis_operation("declare", "error")
            raise MessagingException(f"Topology declaration failed: {e}")

        self._topology = merged
        metrics.record_redis_operation("declare", "success")
        logger.info(
            "Topology declared",
            exchanges=len(topology.exchanges),
            queues=len(topology.queues),
            bindings=len(topology.bindings),
        )

    async def _ensure_group(self, queue: str) -> None:
        """Create the queue's consumer group, ignoring BUSYGROUP if it exists."""
        client = self.redis_client.get_client()
        try:
            await client.xgroup_create(
                name=self._stream_key(queue),
                groupname=self._group,
                id="0",
                mkstream=True,
            )
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    async def publish(self, exchange: str, routing_key: str, body: str) -> int:
        client = self.redis_client.get_client()
        try:
            queues = sorted(
                await client.smembers(self._binding_key(exchange, routing_key))
            )
            if not queues:
                metrics.record_redis_operation("publish", "unroutable")
                logger.warning(
                    "Unroutable message dropped",
                    exchange=exchange,
                    routing_key=routing_key,
                )
                return 0

            fields = self._fields(
                message_id=uuid4().hex,
                exchange=exchange,
                routing_key=routing_key,
                body=body,
                published_at=self._clock(),
            )
            for queue in queues:
                await client.xadd(self._stream_key(queue), fields)

            metrics.record_redis_operation("publish", "success")
            return len(queues)
        except RedisError as e:
            metrics.record_redis_operation("publish", "error")
            raise MessagingException(
                f"Publish to {exchange}/{routing_key} failed: {e}"
            )

    @staticmethod
    def _fields(
        message_id: str,
        exchange: str,
        routing_key: str,
        body: str,
        published_at: int,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, str]:
        fields = {
            "message_id": message_id,
            "exchange": exchange,
            "routing_key": routing_key,
            "published_at": str(published_at),
            "body": body,
        }
        if headers:
            fields.update(headers)
        return fields

    # ------------------------------------------------------------------
    # Consume
    # ------------------------------------------------------------------

    async def start_consumer(
        self, queue: str, handler: DeliveryHandler, concurrency: int = 1
    ) -> None:
        spec = self._topology.queue(queue)
        await self._ensure_group(queue)
        self._running = True

        for index in range(concurrency):
            consumer_name = f"{self._consumer_prefix}-{queue}-{index}"
            task = asyncio.create_task(
                self._consume_loop(spec, handler, consumer_name),
                name=f"consumer-{queue}-{index}",
            )
            self._tasks.append(task)

    async def _consume_loop(
        self, spec: QueueSpec, handler: DeliveryHandler, consumer_name: str
    ) -> None:
        """Take one message at a time: reclaimed idle messages first, then new ones."""
        stream = self._stream_key(spec.name)
        logger.info("Starting queue consumer", queue=spec.name, consumer=consumer_name)

        while self._running:
            try:
                client = self.redis_client.get_client()
                entry = await self._claim_idle(stream, consumer_name)
                redelivered = entry is not None

                if entry is None:
                    response = await client.xreadgroup(
                        groupname=self._group,
                        consumername=consumer_name,
                        streams={stream: ">"},
                        count=1,
                        block=self.block_ms,
                    )
                    if not response:
                        continue
                    _stream, messages = response[0]
                    if not messages:
                        continue
                    entry = messages[0]

                message_id, fields = entry
                await self.process_entry(spec, handler, message_id, fields, redelivered)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(
                    "Queue consumer error", queue=spec.name, error=str(e)
                )
                metrics.record_redis_operation("consume", "error")
                await asyncio.sleep(1)

    async def _claim_idle(
        self, stream: str, consumer_name: str
    ) -> Optional[Tuple[str, Dict[str, str]]]:
        """Take over one message a crashed consumer left unacknowledged."""
        client = self.redis_client.get_client()
        result = await client.xautoclaim(
            stream,
            self._group,
            consumer_name,
            min_idle_time=self.redelivery_idle_ms,
            start_id="0-0",
            count=1,
        )
        claimed = result[1] if result else []
        for message_id, fields in claimed:
            if fields:
                return message_id, fields
        return None

    async def process_entry(
        self,
        spec: QueueSpec,
        handler: DeliveryHandler,
        message_id: str,
        fields: Dict[str, str],
        redelivered: bool = False,
    ) -> None:
        """Deliver one stream entry, then acknowledge it.

        A handler failure negatively acknowledges the message without requeue:
        it is copied to the dead-letter queue and removed from this queue.
        """
        client = self.redis_client.get_client()
        stream = self._stream_key(spec.name)
        delivery = self._to_delivery(spec.name, message_id, fields, redelivered)

        if spec.is_expired(delivery.published_at, self._clock()):
            await self._dead_letter(spec, delivery, "expired")
        else:
            try:
                await handler(delivery)
                metrics.record_redis_operation("consume", "success")
            except Exception as e:
                logger.error(
                    "Delivery rejected",
                    queue=spec.name,
                    message_id=delivery.message_id,
                    error=str(e),
                )
                await self._dead_letter(spec, delivery, "rejected", error=str(e))

        await client.xack(stream, self._group, message_id)
        await client.xdel(stream, message_id)

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

        client = self.redis_client.get_client()
        routing_key = spec.dead_letter_routing_key or spec.name
        targets = await client.smembers(
            self._binding_key(spec.dead_letter_exchange, routing_key)
        )

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

        fields = self._fields(
            message_id=delivery.message_id,
            exchange=spec.dead_letter_exchange,
            routing_key=routing_key,
            body=delivery.body,
            published_at=delivery.published_at,
            headers=headers,
        )
        for target in sorted(targets):
            await client.xadd(self._stream_key(target), fields)

        metrics.record_dead_letter(spec.name, reason)
        logger.warning(
            "Message dead-lettered",
            queue=spec.name,
            message_id=delivery.message_id,
            reason=reason,
            targets=sorted(targets),
        )

    @staticmethod
    def _to_delivery(
        queue: str, message_id: str, fields: Dict[str, str], redelivered: bool
    ) -> Delivery:
        headers = {key: value for key, value in fields.items() if key.startswith("x-")}
        return Delivery(
            message_id=fields.get("message_id", message_id),
            queue=queue,
            exchange=fields.get("exchange", ""),
            routing_key=fields.get("routing_key", ""),
            body=fields.get("body", ""),
            published_at=int(fields.get("published_at") or 0),
            delivery_tag=message_id,
            redelivered=redelivered,
            headers=headers,
        )

    # ------------------------------------------------------------------
    # Operator tools
    # ------------------------------------------------------------------

    async def peek(self, queue: str, limit: int = 100) -> List[Delivery]:
        client = self.redis_client.get_client()
        entries = await client.xrange(self._stream_key(queue), count=limit)
        return [
            self._to_delivery(queue, message_id, fields, False)
            for message_id, fields in entries
        ]

    async def replay_dead_letters(self, dead_letter_queue: str, limit: int = 100) -> int:
        client = self.redis_client.get_client()
        stream = self._stream_key(dead_letter_queue)
        replayed = 0

        for message_id, fields in await client.xrange(stream, count=limit):
            exchange = fields.get(ORIGINAL_EXCHANGE)
            routing_key = fields.get(ORIGINAL_ROUTING_KEY)
            if not exchange or not routing_key:
                logger.warning(
                    "Dead letter has no origin, skipping",
                    queue=dead_letter_queue,
                    message_id=message_id,
                )
                continue
            if not await self.publish(exchange, routing_key, fields.get("body", "")):
                logger.warning(
                    "Dead letter is unroutable, keeping it",
                    queue=dead_letter_queue,
                    message_id=message_id,
                    exchange=exchange,
                    routing_key=routing_key,
                )
                continue
            await client.xdel(stream, message_id)
            replayed += 1

        logger.info("Dead letters replayed", queue=dead_letter_queue, count=replayed)
        return replayed

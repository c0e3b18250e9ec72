"""Unit tests for the in-process message broker."""

import asyncio

import pytest
import pytest_asyncio

from memorix.domain.exceptions import TopologyError
from memorix.infrastructure.messaging.memory_broker import InMemoryMessageBroker
from memorix.infrastructure.messaging.redis_broker import (
    DEATH_ERROR,
    DEATH_QUEUE,
    DEATH_REASON,
    ORIGINAL_EXCHANGE,
    ORIGINAL_ROUTING_KEY,
)
from memorix.ports.messaging.topology import build_event_topology
from memorix.ports.messaging.message_broker import Delivery


@pytest_asyncio.fixture
async def broker(clock):
    broker = InMemoryMessageBroker(clock=clock)
    await broker.connect()
    await broker.declare(build_event_topology())
    yield broker
    await broker.close()


class Recorder:
    def __init__(self, fail: bool = False) -> None:
        self.deliveries = []
        self.fail = fail

    async def __call__(self, delivery) -> None:
        self.deliveries.append(delivery)
        if self.fail:
            raise RuntimeError("handler exploded")


class TestRouting:
    @pytest.mark.asyncio
    async def test_publish_routes_by_exact_key(self, broker):
        routed = await broker.publish("card.exchange", "card.created", '{"x":1}')

        assert routed == 1
        [delivery] = await broker.peek("card.created")
        assert delivery.body == '{"x":1}'
        assert delivery.exchange == "card.exchange"
        assert await broker.peek("card.deleted") == []
        assert await broker.peek("deck.deleted") == []

    @pytest.mark.asyncio
    async def test_unroutable_message_is_dropped(self, broker):
        assert await broker.publish("deck.exchange", "card.created", "{}") == 0
        assert await broker.publish("nowhere", "card.created", "{}") == 0
        assert await broker.peek("card.created") == []

    @pytest.mark.asyncio
    async def test_consumer_on_undeclared_queue(self, broker):
        with pytest.raises(TopologyError):
            await broker.start_consumer("missing", Recorder())


class TestConsumption:
    @pytest.mark.asyncio
    async def test_handler_receives_delivery(self, broker):
        handler = Recorder()
        await broker.start_consumer("deck.deleted", handler)

        await broker.publish("deck.exchange", "deck.deleted", "body")
        await broker.join("deck.deleted")

        [delivery] = handler.deliveries
        assert delivery.queue == "deck.deleted"
        assert delivery.routing_key == "deck.deleted"
        assert await broker.peek("deck.deleted.dlq") == []

    @pytest.mark.asyncio
    async def test_competing_consumers_share_messages(self, broker):
        seen = []

        async def handler(delivery):
            await asyncio.sleep(0)
            seen.append(delivery.body)

        await broker.start_consumer("card.created", handler, concurrency=3)
        for i in range(10):
            await broker.publish("card.exchange", "card.created", str(i))
        await broker.join("card.created")

        assert sorted(seen, key=int) == [str(i) for i in range(10)]


class TestDeadLettering:
    @pytest.mark.asyncio
    async def test_failed_handler_moves_message_to_dlq(self, broker):
        handler = Recorder(fail=True)
        await broker.start_consumer("card.deleted", handler)

        await broker.publish("card.exchange", "card.deleted", "poison")
        await broker.join("card.deleted")

        assert len(handler.deliveries) == 1  # not requeued
        [dead] = await broker.peek("card.deleted.dlq")
        assert dead.body == "poison"
        assert dead.headers[DEATH_REASON] == "rejected"
        assert dead.headers[DEATH_QUEUE] == "card.deleted"
        assert "handler exploded" in dead.headers[DEATH_ERROR]
        assert dead.headers[ORIGINAL_EXCHANGE] == "card.exchange"
        assert dead.headers[ORIGINAL_ROUTING_KEY] == "card.deleted"

    @pytest.mark.asyncio
    async def test_expired_message_skips_handler(self, broker, clock):
        handler = Recorder()
        await broker.publish("card.exchange", "card.created", "stale")
        clock.advance(300_001)

        await broker.start_consumer("card.created", handler)
        await broker.join("card.created")

        assert handler.deliveries == []
        [dead] = await broker.peek("card.created.dlq")
        assert dead.headers[DEATH_REASON] == "expired"

    @pytest.mark.asyncio
    async def test_message_within_ttl_is_delivered(self, broker, clock):
        handler = Recorder()
        await broker.publish("card.exchange", "card.created", "fresh")
        clock.advance(300_000)

        await broker.start_consumer("card.created", handler)
        await broker.join("card.created")

        assert len(handler.deliveries) == 1
        assert await broker.peek("card.created.dlq") == []

    @pytest.mark.asyncio
    async def test_replay_returns_dead_letters_to_origin(self, broker):
        failing = Recorder(fail=True)
        await broker.start_consumer("deck.deleted", failing)
        await broker.publish("deck.exchange", "deck.deleted", "again")
        await broker.join("deck.deleted")

        replayed = await broker.replay_dead_letters("deck.deleted.dlq")
        await broker.join("deck.deleted")

        assert replayed == 1
        assert [d.body for d in failing.deliveries] == ["again", "again"]
        # Rejected a second time, so it is back in the DLQ exactly once
        assert len(await broker.peek("deck.deleted.dlq")) == 1

    @pytest.mark.asyncio
    async def test_replay_of_empty_dlq(self, broker):
        assert await broker.replay_dead_letters("card.created.dlq") == 0

    @pytest.mark.asyncio
    async def test_unroutable_dead_letter_stays_in_dlq(self, broker, clock):
        dlq = broker._queue("card.created.dlq")
        await dlq.put(
            Delivery(
                message_id="m-1",
                queue="card.created.dlq",
                exchange="card.dlx",
                routing_key="card.created.dlq",
                body="keep me",
                published_at=clock(),
                delivery_tag="1",
                headers={ORIGINAL_EXCHANGE: "card.exchange", ORIGINAL_ROUTING_KEY: "card.moved"},
            )
        )

        assert await broker.replay_dead_letters("card.created.dlq") == 0

        [kept] = await broker.peek("card.created.dlq")
        assert kept.body == "keep me"

    @pytest.mark.asyncio
    async def test_dead_letter_without_origin_is_skipped(self, broker):
        # Published straight to the dead-letter exchange, so no origin headers
        await broker.publish("card.dlx", "card.created.dlq", "orphan")

        assert await broker.replay_dead_letters("card.created.dlq") == 0
        assert [d.body for d in await broker.peek("card.created.dlq")] == ["orphan"]

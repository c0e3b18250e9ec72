"""Unit tests for startup wiring and the worker entry point."""

import asyncio

import pytest

from memorix.adapters.services.http_existence_oracle import HttpExistenceOracle
from memorix.infrastructure.container import ServiceContainer
from memorix.infrastructure.messaging.memory_broker import InMemoryMessageBroker
from memorix.infrastructure.messaging.redis_broker import RedisMessageBroker
from memorix.worker import run_worker


class TestServiceContainer:
    def test_unknown_role(self, test_settings):
        with pytest.raises(ValueError):
            ServiceContainer(test_settings, role="slides")

    def test_broker_backend_selection(self, test_settings):
        assert isinstance(ServiceContainer(test_settings).broker(), InMemoryMessageBroker)

        redis_settings = test_settings.model_copy(update={"broker_backend": "redis"})
        broker = ServiceContainer(redis_settings).broker()
        assert isinstance(broker, RedisMessageBroker)
        assert broker.key_prefix == "memorix"

    @pytest.mark.asyncio
    async def test_existence_oracle_targets_deck_service(self, test_settings):
        oracle = ServiceContainer(test_settings, role="card").existence_oracle()

        assert isinstance(oracle, HttpExistenceOracle)
        assert oracle.base_url == "http://localhost:8000"
        assert oracle.timeout == 2.0
        await oracle.close()

    def test_deck_role_consumes_card_events(self, test_settings):
        container = ServiceContainer(test_settings, role="deck")

        assert [c.queue for c in container.consumers()] == ["card.created", "card.deleted"]

    def test_card_role_consumes_deck_events(self, test_settings):
        container = ServiceContainer(test_settings, role="card")

        assert [c.queue for c in container.consumers()] == ["deck.deleted"]

    @pytest.mark.asyncio
    async def test_start_declares_topology_and_stop_closes(self, test_settings):
        broker = InMemoryMessageBroker()
        container = ServiceContainer(test_settings, role="deck", broker=broker)

        await container.start()
        assert await broker.peek("card.created.dlq") == []
        assert await container.health() == {"database": True, "broker": True}

        await container.stop()
        assert container.database().engine is None


class TestWorker:
    @pytest.mark.asyncio
    async def test_runs_until_stopped(self, test_settings):
        stop = asyncio.Event()
        container = ServiceContainer(test_settings, role="card", broker=InMemoryMessageBroker())

        worker = asyncio.create_task(
            run_worker(test_settings, stop_event=stop, container=container)
        )
        await asyncio.sleep(0.1)
        assert not worker.done()

        stop.set()
        await asyncio.wait_for(worker, timeout=5)
        assert container.database().engine is None

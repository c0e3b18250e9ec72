"""End-to-end consistency between the deck and card services.

Both roles run in-process with their own SQLite databases, sharing one
in-memory message channel. The card service reaches the deck service through
its real HEAD endpoint over an ASGI transport.
"""

import json
from dataclasses import dataclass
from uuid import uuid4

import httpx
import pytest
import pytest_asyncio

from memorix.adapters.services.http_existence_oracle import HttpExistenceOracle
from memorix.api.schemas import CardRequest, DeckRequest
from memorix.core.config import Settings
from memorix.domain.events import CardDeleted, DeckDeleted
from memorix.domain.results import ErrorKind
from memorix.infrastructure.container import ServiceContainer
from memorix.infrastructure.messaging.memory_broker import InMemoryMessageBroker
from memorix.main import create_app


@dataclass
class System:
    broker: InMemoryMessageBroker
    decks: ServiceContainer
    cards: ServiceContainer

    async def create_deck(self, name="Capitals"):
        async with self.decks.database().session() as session:
            return (await self.decks.deck_service(session).create_deck(DeckRequest(name=name))).value

    async def delete_deck(self, deck_id):
        async with self.decks.database().session() as session:
            return await self.decks.deck_service(session).delete_deck(deck_id)

    async def cards_count(self, deck_id) -> int:
        async with self.decks.database().session() as session:
            return (await self.decks.deck_service(session).get_deck(deck_id)).value.cards_count

    async def create_card(self, deck_id, question="France?", cards=None):
        container = cards or self.cards
        async with container.database().session() as session:
            return await container.card_service(session).create_card(
                deck_id, CardRequest(question=question, answer="Paris")
            )

    async def delete_card(self, card_id):
        async with self.cards.database().session() as session:
            return await self.cards.card_service(session).delete_card(card_id)

    async def card_rows(self, deck_id) -> int:
        async with self.cards.database().session() as session:
            return await self.cards.card_service(session).card_repo.count_by_deck_id(deck_id)

    async def settle(self, *queues: str) -> None:
        """Wait until published events are delivered and handled."""
        await self.decks.event_publisher().drain()
        await self.cards.event_publisher().drain()
        for queue in queues:
            await self.broker.join(queue)


def role_settings(tmp_path, role: str) -> Settings:
    return Settings(
        environment="testing",
        service_role=role,
        database_url=f"sqlite+aiosqlite:///{tmp_path / f'{role}.db'}",
        broker_backend="memory",
        publish_retry_delay_seconds=0,
        _env_file=None,
    )


def oracle_for(app) -> HttpExistenceOracle:
    client = httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://deck-service"
    )
    return HttpExistenceOracle("http://deck-service", client=client)


@pytest_asyncio.fixture
async def system(tmp_path, clock):
    broker = InMemoryMessageBroker(clock=clock)
    decks = ServiceContainer(role_settings(tmp_path, "deck"), broker=broker)
    deck_app = create_app(decks.settings, container=decks)
    cards = ServiceContainer(
        role_settings(tmp_path, "card"), broker=broker, existence_oracle=oracle_for(deck_app)
    )

    await decks.start(with_consumers=True)
    await cards.start(with_consumers=True)
    yield System(broker=broker, decks=decks, cards=cards)
    await cards.stop()
    await decks.stop()


class TestCardCountLifecycle:
    @pytest.mark.asyncio
    async def test_create_delete_cascade(self, system):
        deck = await system.create_deck()
        assert deck.cards_count == 0

        created = [(await system.create_card(deck.id, f"q{i}")).value for i in range(3)]
        await system.settle("card.created")
        assert await system.cards_count(deck.id) == 3

        await system.delete_card(created[0].id)
        await system.settle("card.deleted")
        assert await system.cards_count(deck.id) == 2
        assert await system.card_rows(deck.id) == 2

        await system.delete_deck(deck.id)
        await system.settle("deck.deleted")
        assert await system.card_rows(deck.id) == 0

        for dlq in ("card.created.dlq", "card.deleted.dlq", "deck.deleted.dlq"):
            assert await system.broker.peek(dlq) == []

    @pytest.mark.asyncio
    async def test_duplicate_card_deleted_never_goes_negative(self, system):
        deck = await system.create_deck()
        card = (await system.create_card(deck.id)).value
        await system.settle("card.created")

        await system.delete_card(card.id)
        duplicate = CardDeleted(card_id=card.id, deck_id=deck.id)
        await system.broker.publish(duplicate.exchange, duplicate.routing_key, duplicate.to_json())
        await system.settle("card.deleted")

        assert await system.cards_count(deck.id) == 0

    @pytest.mark.asyncio
    async def test_duplicate_deck_deleted_is_a_no_op(self, system):
        deck = await system.create_deck()
        for i in range(2):
            await system.create_card(deck.id, f"q{i}")
        await system.settle("card.created")

        await system.delete_deck(deck.id)
        duplicate = DeckDeleted(deck_id=deck.id)
        await system.broker.publish(duplicate.exchange, duplicate.routing_key, duplicate.to_json())
        await system.settle("deck.deleted")

        assert await system.card_rows(deck.id) == 0
        assert await system.broker.peek("deck.deleted.dlq") == []


class TestExistenceGate:
    @pytest.mark.asyncio
    async def test_nonexistent_deck(self, system):
        result = await system.create_card(uuid4())
        await system.settle("card.created")

        assert result.kind == ErrorKind.NOT_FOUND
        assert await system.broker.peek("card.created") == []
        async with system.cards.database().session() as session:
            assert (await system.cards.card_service(session).list_cards()).value == []

    @pytest.mark.asyncio
    async def test_deleted_deck_rejects_new_cards(self, system):
        deck = await system.create_deck()
        await system.delete_deck(deck.id)

        result = await system.create_card(deck.id)

        assert result.kind == ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_oracle_timeout_fails_closed(self, system, tmp_path):
        deck = await system.create_deck()

        def timeout(request):
            raise httpx.ReadTimeout("deck service too slow", request=request)

        client = httpx.AsyncClient(
            transport=httpx.MockTransport(timeout), base_url="http://deck-service"
        )
        slow_cards = ServiceContainer(
            role_settings(tmp_path / "slow", "card"),
            broker=system.broker,
            existence_oracle=HttpExistenceOracle("http://deck-service", client=client),
        )
        (tmp_path / "slow").mkdir()
        await slow_cards.database().initialize()
        try:
            result = await system.create_card(deck.id, cards=slow_cards)
        finally:
            await slow_cards.existence_oracle().close()
            await slow_cards.database().close()

        assert result.kind == ErrorKind.NOT_FOUND
        assert await system.cards_count(deck.id) == 0


class TestPoisonMessages:
    @pytest.mark.asyncio
    async def test_malformed_event_is_dead_lettered(self, system):
        deck = await system.create_deck()
        await system.broker.publish("card.exchange", "card.created", json.dumps({"deckId": "nope"}))
        await system.settle("card.created")

        [dead] = await system.broker.peek("card.created.dlq")
        assert dead.headers["x-death-reason"] == "rejected"
        assert await system.cards_count(deck.id) == 0

    @pytest.mark.asyncio
    async def test_expired_event_is_applied_after_replay(self, system, clock):
        deck = await system.create_deck()
        await system.create_card(deck.id)
        await system.cards.event_publisher().drain()
        # Nobody picked the message up within the queue TTL
        clock.advance(300_001)
        await system.settle("card.created")

        assert await system.cards_count(deck.id) == 0
        [dead] = await system.broker.peek("card.created.dlq")
        assert dead.headers["x-death-reason"] == "expired"

        assert await system.broker.replay_dead_letters("card.created.dlq") == 1
        await system.settle("card.created")

        assert await system.cards_count(deck.id) == 1
        assert await system.broker.peek("card.created.dlq") == []

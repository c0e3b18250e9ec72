"""Explicit startup wiring.

Everything the process needs is constructed here by passing references, in
the order the process starts: database, message channel, topology, publisher,
existence oracle, consumers. Services are built per request around a
database session.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from memorix.adapters.events.retrying_event_publisher import RetryingEventPublisher
from memorix.adapters.services.http_existence_oracle import HttpExistenceOracle
from memorix.core.config import Settings
from memorix.domain.events import CardCreated, CardDeleted, DeckDeleted
from memorix.domain.repositories import CardRepository, DeckRepository
from memorix.infrastructure.db.database import Database
from memorix.infrastructure.db.models import CardBase, DeckBase
from memorix.infrastructure.db.repositories import SqlCardRepository, SqlDeckRepository
from memorix.infrastructure.messaging.event_consumer import EventConsumer
from memorix.infrastructure.messaging.memory_broker import InMemoryMessageBroker
from memorix.infrastructure.messaging.redis_broker import RedisMessageBroker
from memorix.infrastructure.messaging.redis_client import RedisClient
from memorix.ports.messaging.topology import build_event_topology
from memorix.ports.events.event_publisher import EventPublisher
from memorix.ports.messaging.message_broker import MessageBroker
from memorix.ports.services.existence_oracle import ExistenceOracle
from memorix.services.card_service import CardService
from memorix.services.deck_service import DeckService
from memorix.services.event_handlers import CardEventHandler, DeckEventHandler

logger = structlog.get_logger(__name__)

DECK_ROLE = "deck"
CARD_ROLE = "card"


class ServiceContainer:
    def __init__(
        self,
        settings: Settings,
        role: Optional[str] = None,
        broker: Optional[MessageBroker] = None,
        existence_oracle: Optional[ExistenceOracle] = None,
        database: Optional[Database] = None,
    ) -> None:
        self.settings = settings
        self.role = role or settings.service_role
        if self.role not in (DECK_ROLE, CARD_ROLE):
            raise ValueError(f"Unknown service role: {self.role!r}")

        self._database = database
        self._broker = broker
        self._existence_oracle = existence_oracle
        self._event_publisher: Optional[RetryingEventPublisher] = None
        self._consumers: Optional[List[EventConsumer]] = None
        self._started = False

    # Collaborators

    def database(self) -> Database:
        if self._database is None:
            self._database = Database(
                self.settings.database_url, echo=self.settings.database_echo
            )
        return self._database

    def broker(self) -> MessageBroker:
        if self._broker is None:
            if self.settings.broker_backend == "memory":
                self._broker = InMemoryMessageBroker()
            else:
                self._broker = RedisMessageBroker(
                    RedisClient(self.settings.redis_url),
                    key_prefix=self.settings.broker_key_prefix,
                    block_ms=self.settings.consumer_block_ms,
                    redelivery_idle_ms=self.settings.redelivery_idle_ms,
                )
        return self._broker

    def event_publisher(self) -> EventPublisher:
        if self._event_publisher is None:
            self._event_publisher = RetryingEventPublisher(
                self.broker(),
                max_attempts=self.settings.publish_max_attempts,
                retry_delay=self.settings.publish_retry_delay_seconds,
            )
        return self._event_publisher

    def existence_oracle(self) -> ExistenceOracle:
        if self._existence_oracle is None:
            self._existence_oracle = HttpExistenceOracle(
                self.settings.deck_service_url,
                timeout=self.settings.deck_service_timeout_seconds,
            )
        return self._existence_oracle

    # Per-session services

    def deck_service(self, session: AsyncSession) -> DeckService:
        return DeckService(SqlDeckRepository(session), self.event_publisher())

    def card_service(self, session: AsyncSession) -> CardService:
        return CardService(
            SqlCardRepository(session),
            self.existence_oracle(),
            self.event_publisher(),
        )

    @asynccontextmanager
    async def deck_repository_scope(self) -> AsyncIterator[DeckRepository]:
        async with self.database().session() as session:
            yield SqlDeckRepository(session)

    @asynccontextmanager
    async def card_repository_scope(self) -> AsyncIterator[CardRepository]:
        async with self.database().session() as session:
            yield SqlCardRepository(session)

    # Consumers

    def consumers(self) -> List[EventConsumer]:
        """Deck role counts cards; card role cascades deck deletions."""
        if self._consumers is None:
            concurrency = self.settings.consumer_concurrency
            if self.role == DECK_ROLE:
                handler = DeckEventHandler(self.deck_repository_scope)
                queues = [CardCreated.routing_key, CardDeleted.routing_key]
            else:
                handler = CardEventHandler(self.card_repository_scope)
                queues = [DeckDeleted.routing_key]
            self._consumers = [
                EventConsumer(self.broker(), queue, handler.handle, concurrency=concurrency)
                for queue in queues
            ]
        return self._consumers

    # Lifecycle

    async def start(self, with_consumers: Optional[bool] = None) -> None:
        if self._started:
            return
        if with_consumers is None:
            with_consumers = self.settings.consumers_enabled

        database = self.database()
        await database.initialize()
        if self.settings.create_schema:
            metadata = DeckBase.metadata if self.role == DECK_ROLE else CardBase.metadata
            await database.create_schema(metadata)

        broker = self.broker()
        await broker.connect()
        await broker.declare(
            build_event_topology(
                message_ttl_ms=self.settings.message_ttl_ms,
                deck_deleted_ttl_ms=self.settings.deck_deleted_ttl_ms,
            )
        )

        if with_consumers:
            for consumer in self.consumers():
                await consumer.start()

        self._started = True
        logger.info(
            "Service started",
            role=self.role,
            broker=type(broker).__name__,
            consumers=with_consumers,
        )

    async def stop(self) -> None:
        if self._event_publisher is not None:
            await self._event_publisher.drain(
                timeout=self.settings.publish_drain_timeout_seconds
            )
        if self._broker is not None:
            await self._broker.close()
        if self._existence_oracle is not None:
            await self._existence_oracle.close()
        if self._database is not None:
            await self._database.close()
        self._started = False
        logger.info("Service stopped", role=self.role)

    async def health(self) -> dict:
        return {
            "database": await self.database().health_check(),
            "broker": await self.broker().health_check(),
        }

"""Per-service reactions to domain events.

Each handler dispatches over the closed ``DomainEvent`` union; a variant the
service does not consume raises ``UnexpectedEventError`` so the delivery is
dead-lettered instead of acknowledged. Every delivery gets its own repository
scope (one database session) so a failed delivery cannot leak state into the
next one.
"""

from typing import AsyncContextManager, Callable, assert_never

import structlog

from memorix.core.observability import trace_async_operation
from memorix.domain.events import CardCreated, CardDeleted, DeckDeleted, DomainEvent
from memorix.domain.exceptions import UnexpectedEventError
from memorix.domain.repositories import CardRepository, DeckRepository
from memorix.services.aggregate_counter import AggregateCounter
from memorix.services.cascade_deleter import CascadeDeleter

logger = structlog.get_logger(__name__)

DeckRepositoryScope = Callable[[], AsyncContextManager[DeckRepository]]
CardRepositoryScope = Callable[[], AsyncContextManager[CardRepository]]


class DeckEventHandler:
    """Consumes card events on behalf of the deck service."""

    name = "deck-service"

    def __init__(self, deck_repositories: DeckRepositoryScope) -> None:
        self.deck_repositories = deck_repositories

    async def handle(self, event: DomainEvent) -> None:
        async with trace_async_operation("handle_card_event", event_type=type(event).__name__):
            match event:
                case CardCreated(deck_id=deck_id):
                    async with self.deck_repositories() as deck_repo:
                        await AggregateCounter(deck_repo).increment(deck_id)
                case CardDeleted(deck_id=deck_id):
                    async with self.deck_repositories() as deck_repo:
                        await AggregateCounter(deck_repo).decrement(deck_id)
                case DeckDeleted():
                    raise UnexpectedEventError(type(event).__name__, self.name)
                case _:
                    assert_never(event)

    __call__ = handle


class CardEventHandler:
    """Consumes deck events on behalf of the card service."""

    name = "card-service"

    def __init__(self, card_repositories: CardRepositoryScope) -> None:
        self.card_repositories = card_repositories

    async def handle(self, event: DomainEvent) -> None:
        async with trace_async_operation("handle_deck_event", event_type=type(event).__name__):
            match event:
                case DeckDeleted(deck_id=deck_id):
                    async with self.card_repositories() as card_repo:
                        await CascadeDeleter(card_repo).delete_all_by_deck_id(deck_id)
                case CardCreated() | CardDeleted():
                    raise UnexpectedEventError(type(event).__name__, self.name)
                case _:
                    assert_never(event)

    __call__ = handle

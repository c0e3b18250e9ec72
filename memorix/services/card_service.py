from typing import Any, List, Mapping, Union
from uuid import UUID

import structlog

from memorix.api.schemas import CardRequest, parse_request
from memorix.core.observability import trace_async_operation
from memorix.domain.entities import Card
from memorix.domain.events import CardCreated, CardDeleted
from memorix.domain.repositories import CardRepository
from memorix.domain.results import Failure, Result, Success
from memorix.ports.events.event_publisher import EventPublisher
from memorix.ports.services.existence_oracle import ExistenceOracle

logger = structlog.get_logger(__name__)

CardPayload = Union[CardRequest, Mapping[str, Any]]


def _card_not_found(card_id: UUID) -> Failure:
    return Failure.not_found(f"Card with ID {card_id} not found")


def _deck_not_found(deck_id: UUID) -> Failure:
    return Failure.not_found(f"Deck with ID {deck_id} not found")


class CardService:
    def __init__(
        self,
        card_repo: CardRepository,
        existence_oracle: ExistenceOracle,
        event_publisher: EventPublisher,
    ) -> None:
        self.card_repo = card_repo
        self.existence_oracle = existence_oracle
        self.event_publisher = event_publisher

    async def create_card(self, deck_id: UUID, payload: CardPayload) -> Result[Card]:
        """Create a card under ``deck_id``.

        The deck service is asked first; if it denies the deck or cannot be
        reached, nothing is written and no event is sent.
        """
        parsed = parse_request(CardRequest, payload)
        if isinstance(parsed, Failure):
            return parsed
        request = parsed.value

        async with trace_async_operation("create_card", deck_id=str(deck_id)):
            if not await self.existence_oracle.exists(deck_id):
                logger.info("Card rejected, deck not found", deck_id=str(deck_id))
                return _deck_not_found(deck_id)

            card = Card(question=request.question, answer=request.answer, deck_id=deck_id)
            created = await self.card_repo.create(card)
            await self.card_repo.commit()

            self.event_publisher.publish(CardCreated(card_id=created.id, deck_id=deck_id))
            logger.info("Card created", card_id=str(created.id), deck_id=str(deck_id))
            return Success(created)

    async def get_card(self, card_id: UUID) -> Result[Card]:
        async with trace_async_operation("get_card", card_id=str(card_id)):
            card = await self.card_repo.get_by_id(card_id)
            if card is None:
                return _card_not_found(card_id)
            return Success(card)

    async def list_cards(self, limit: int = 20, offset: int = 0) -> Result[List[Card]]:
        if limit < 1 or offset < 0:
            return Failure.validation("limit must be positive and offset non-negative")
        async with trace_async_operation("list_cards"):
            return Success(await self.card_repo.list(limit, offset))

    async def list_cards_by_deck(
        self, deck_id: UUID, limit: int = 20, offset: int = 0
    ) -> Result[List[Card]]:
        if limit < 1 or offset < 0:
            return Failure.validation("limit must be positive and offset non-negative")
        async with trace_async_operation("list_cards_by_deck", deck_id=str(deck_id)):
            if not await self.existence_oracle.exists(deck_id):
                return _deck_not_found(deck_id)
            return Success(await self.card_repo.list_by_deck_id(deck_id, limit, offset))

    async def update_card(self, card_id: UUID, payload: CardPayload) -> Result[Card]:
        parsed = parse_request(CardRequest, payload)
        if isinstance(parsed, Failure):
            return parsed
        request = parsed.value

        async with trace_async_operation("update_card", card_id=str(card_id)):
            card = await self.card_repo.get_by_id(card_id)
            if card is None:
                return _card_not_found(card_id)

            card.update_content(request.question, request.answer)
            updated = await self.card_repo.update(card)
            if updated is None:
                return _card_not_found(card_id)
            await self.card_repo.commit()

            logger.info("Card updated", card_id=str(card_id))
            return Success(updated)

    async def delete_card(self, card_id: UUID) -> Result[None]:
        async with trace_async_operation("delete_card", card_id=str(card_id)):
            card = await self.card_repo.get_by_id(card_id)
            if card is None:
                return _card_not_found(card_id)

            if not await self.card_repo.delete(card_id):
                return _card_not_found(card_id)
            await self.card_repo.commit()

            self.event_publisher.publish(CardDeleted(card_id=card_id, deck_id=card.deck_id))
            logger.info("Card deleted", card_id=str(card_id), deck_id=str(card.deck_id))
            return Success(None)

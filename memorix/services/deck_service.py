from typing import Any, List, Mapping, Sequence, Union
from uuid import UUID

import structlog

from memorix.api.schemas import DeckRequest, parse_request
from memorix.core.observability import trace_async_operation
from memorix.domain.entities import Deck
from memorix.domain.events import DeckDeleted
from memorix.domain.repositories import DeckRepository
from memorix.domain.results import Failure, Result, Success
from memorix.ports.events.event_publisher import EventPublisher

logger = structlog.get_logger(__name__)

DEFAULT_HEX_COLOR = "#FFFFFF"

DeckPayload = Union[DeckRequest, Mapping[str, Any]]


def _deck_not_found(deck_id: UUID) -> Failure:
    return Failure.not_found(f"Deck with ID {deck_id} not found")


class DeckService:
    def __init__(self, deck_repo: DeckRepository, event_publisher: EventPublisher) -> None:
        self.deck_repo = deck_repo
        self.event_publisher = event_publisher

    async def create_deck(self, payload: DeckPayload) -> Result[Deck]:
        parsed = parse_request(DeckRequest, payload)
        if isinstance(parsed, Failure):
            return parsed
        request = parsed.value

        async with trace_async_operation("create_deck", name=request.name):
            deck = Deck(
                name=request.name,
                description=request.description,
                cover_image_url=request.cover_image(),
                hex_color=request.hex_color or DEFAULT_HEX_COLOR,
            )
            created = await self.deck_repo.create(deck)
            await self.deck_repo.commit()

            logger.info("Deck created", deck_id=str(created.id))
            return Success(created)

    async def get_deck(self, deck_id: UUID) -> Result[Deck]:
        async with trace_async_operation("get_deck", deck_id=str(deck_id)):
            deck = await self.deck_repo.get_by_id(deck_id)
            if deck is None:
                return _deck_not_found(deck_id)
            return Success(deck)

    async def list_decks(self, limit: int = 20, offset: int = 0) -> Result[List[Deck]]:
        if limit < 1 or offset < 0:
            return Failure.validation("limit must be positive and offset non-negative")
        async with trace_async_operation("list_decks"):
            return Success(await self.deck_repo.list(limit, offset))

    async def update_deck(self, deck_id: UUID, payload: DeckPayload) -> Result[Deck]:
        parsed = parse_request(DeckRequest, payload)
        if isinstance(parsed, Failure):
            return parsed
        request = parsed.value

        async with trace_async_operation("update_deck", deck_id=str(deck_id)):
            deck = await self.deck_repo.get_by_id(deck_id)
            if deck is None:
                return _deck_not_found(deck_id)

            deck.update_details(
                name=request.name,
                description=request.description,
                cover_image_url=request.cover_image(),
                hex_color=request.hex_color or deck.hex_color,
            )
            updated = await self.deck_repo.update(deck)
            if updated is None:
                return _deck_not_found(deck_id)
            await self.deck_repo.commit()

            logger.info("Deck updated", deck_id=str(deck_id))
            return Success(updated)

    async def delete_deck(self, deck_id: UUID) -> Result[None]:
        """Delete the deck locally, then announce it so its cards are removed.

        The event goes out only after the commit; cards referencing the deck
        stay readable until the card service consumes it.
        """
        async with trace_async_operation("delete_deck", deck_id=str(deck_id)):
            if not await self.deck_repo.delete(deck_id):
                return _deck_not_found(deck_id)
            await self.deck_repo.commit()

            self.event_publisher.publish(DeckDeleted(deck_id=deck_id))
            logger.info("Deck deleted", deck_id=str(deck_id))
            return Success(None)

    async def delete_decks(self, deck_ids: Sequence[UUID]) -> Result[List[UUID]]:
        """Bulk delete; ids that do not exist are skipped."""
        if not deck_ids:
            return Failure.validation("at least one deck id is required")

        async with trace_async_operation("delete_decks", requested=len(deck_ids)):
            removed = await self.deck_repo.delete_many(deck_ids)
            await self.deck_repo.commit()

            for deck_id in removed:
                self.event_publisher.publish(DeckDeleted(deck_id=deck_id))

            logger.info(
                "Decks deleted", requested=len(deck_ids), removed=len(removed)
            )
            return Success(removed)

    async def deck_exists(self, deck_id: UUID) -> bool:
        return await self.deck_repo.exists(deck_id)

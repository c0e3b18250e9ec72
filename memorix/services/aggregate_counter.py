from uuid import UUID

import structlog

from memorix.domain.repositories import DeckRepository

logger = structlog.get_logger(__name__)


class AggregateCounter:
    """Keeps ``Deck.cards_count`` in step with card events.

    Both directions are single delta updates in storage, never read-then-write,
    so concurrent and reordered deliveries commute. The decrement is guarded at
    zero, which also absorbs duplicate CardDeleted deliveries.
    """

    def __init__(self, deck_repo: DeckRepository) -> None:
        self.deck_repo = deck_repo

    async def increment(self, deck_id: UUID) -> bool:
        applied = await self.deck_repo.increment_cards_count(deck_id)
        await self.deck_repo.commit()
        if applied:
            logger.info("Cards count incremented", deck_id=str(deck_id))
        else:
            logger.warning("Cards count not incremented, deck missing", deck_id=str(deck_id))
        return applied

    async def decrement(self, deck_id: UUID) -> bool:
        applied = await self.deck_repo.decrement_cards_count(deck_id)
        await self.deck_repo.commit()
        if applied:
            logger.info("Cards count decremented", deck_id=str(deck_id))
        else:
            # Either the deck is gone or the count is already 0
            logger.info("Cards count decrement clamped", deck_id=str(deck_id))
        return applied

from uuid import UUID

import structlog

from memorix.domain.repositories import CardRepository

logger = structlog.get_logger(__name__)


class CascadeDeleter:
    """Removes every card of a deleted deck in one statement.

    No per-card events are emitted. Running it again for the same deck
    deletes nothing and returns 0.
    """

    def __init__(self, card_repo: CardRepository) -> None:
        self.card_repo = card_repo

    async def delete_all_by_deck_id(self, deck_id: UUID) -> int:
        deleted = await self.card_repo.delete_all_by_deck_id(deck_id)
        await self.card_repo.commit()
        logger.info("Cards cascade-deleted", deck_id=str(deck_id), count=deleted)
        return deleted

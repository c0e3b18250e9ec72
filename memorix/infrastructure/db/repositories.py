from datetime import datetime, UTC
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import delete, desc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from memorix.core.observability import metrics
from memorix.domain.entities import Card, Deck
from memorix.domain.repositories import CardRepository, DeckRepository
from memorix.infrastructure.db.models import CardModel, DeckModel


def _to_deck(db_deck: DeckModel) -> Deck:
    return Deck(
        id=db_deck.id,
        name=db_deck.name,
        description=db_deck.description,
        cover_image_url=db_deck.cover_image_url,
        hex_color=db_deck.hex_color,
        cards_count=db_deck.cards_count,
        created_at=db_deck.created_at,
        updated_at=db_deck.updated_at,
    )


def _to_card(db_card: CardModel) -> Card:
    return Card(
        id=db_card.id,
        question=db_card.question,
        answer=db_card.answer,
        deck_id=db_card.deck_id,
        created_at=db_card.created_at,
        updated_at=db_card.updated_at,
    )


class SqlDeckRepository(DeckRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(self, deck: Deck) -> Deck:
        try:
            db_deck = DeckModel(
                id=deck.id,
                name=deck.name,
                description=deck.description,
                cover_image_url=deck.cover_image_url,
                hex_color=deck.hex_color,
                cards_count=deck.cards_count,
                created_at=deck.created_at,
                updated_at=deck.updated_at,
            )
            self.session.add(db_deck)
            await self.session.flush()

            metrics.record_database_operation("create", "decks", "success")
            return deck
        except Exception:
            metrics.record_database_operation("create", "decks", "error")
            raise

    async def get_by_id(self, deck_id: UUID) -> Optional[Deck]:
        try:
            result = await self.session.execute(
                select(DeckModel).where(DeckModel.id == deck_id)
            )
            db_deck = result.scalar_one_or_none()

            metrics.record_database_operation("get", "decks", "success")
            return _to_deck(db_deck) if db_deck is not None else None
        except Exception:
            metrics.record_database_operation("get", "decks", "error")
            raise

    async def list(self, limit: int = 20, offset: int = 0) -> List[Deck]:
        try:
            result = await self.session.execute(
                select(DeckModel)
                .order_by(desc(DeckModel.created_at))
                .limit(limit)
                .offset(offset)
            )
            metrics.record_database_operation("list", "decks", "success")
            return [_to_deck(db_deck) for db_deck in result.scalars().all()]
        except Exception:
            metrics.record_database_operation("list", "decks", "error")
            raise

    async def update(self, deck: Deck) -> Optional[Deck]:
        # cards_count is owned by the event consumers and never written here
        result = await self.session.execute(
            update(DeckModel)
            .where(DeckModel.id == deck.id)
            .values(
                name=deck.name,
                description=deck.description,
                cover_image_url=deck.cover_image_url,
                hex_color=deck.hex_color,
                updated_at=deck.updated_at,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            metrics.record_database_operation("update", "decks", "not_found")
            return None

        metrics.record_database_operation("update", "decks", "success")
        return deck

    async def delete(self, deck_id: UUID) -> bool:
        try:
            result = await self.session.execute(
                delete(DeckModel)
                .where(DeckModel.id == deck_id)
                .execution_options(synchronize_session=False)
            )
            deleted = result.rowcount > 0

            metrics.record_database_operation(
                "delete", "decks", "success" if deleted else "not_found"
            )
            return deleted
        except Exception:
            metrics.record_database_operation("delete", "decks", "error")
            raise

    async def delete_many(self, deck_ids: Iterable[UUID]) -> List[UUID]:
        ids = list(dict.fromkeys(deck_ids))
        if not ids:
            return []
        try:
            result = await self.session.execute(
                select(DeckModel.id).where(DeckModel.id.in_(ids))
            )
            existing = list(result.scalars().all())
            if existing:
                await self.session.execute(
                    delete(DeckModel)
                    .where(DeckModel.id.in_(existing))
                    .execution_options(synchronize_session=False)
                )

            metrics.record_database_operation("delete_many", "decks", "success")
            return existing
        except Exception:
            metrics.record_database_operation("delete_many", "decks", "error")
            raise

    async def exists(self, deck_id: UUID) -> bool:
        try:
            result = await self.session.execute(
                select(func.count(DeckModel.id)).where(DeckModel.id == deck_id)
            )
            metrics.record_database_operation("exists", "decks", "success")
            return result.scalar() > 0
        except Exception:
            metrics.record_database_operation("exists", "decks", "error")
            raise

    async def increment_cards_count(self, deck_id: UUID) -> bool:
        try:
            result = await self.session.execute(
                update(DeckModel)
                .where(DeckModel.id == deck_id)
                .values(
                    cards_count=DeckModel.cards_count + 1,
                    updated_at=datetime.now(UTC),
                )
                .execution_options(synchronize_session=False)
            )
            metrics.record_database_operation("increment_cards_count", "decks", "success")
            return result.rowcount > 0
        except Exception:
            metrics.record_database_operation("increment_cards_count", "decks", "error")
            raise

    async def decrement_cards_count(self, deck_id: UUID) -> bool:
        try:
            # The guard is part of the UPDATE, so it is evaluated atomically with the write
            result = await self.session.execute(
                update(DeckModel)
                .where(DeckModel.id == deck_id, DeckModel.cards_count > 0)
                .values(
                    cards_count=DeckModel.cards_count - 1,
                    updated_at=datetime.now(UTC),
                )
                .execution_options(synchronize_session=False)
            )
            metrics.record_database_operation("decrement_cards_count", "decks", "success")
            return result.rowcount > 0
        except Exception:
            metrics.record_database_operation("decrement_cards_count", "decks", "error")
            raise

    async def commit(self) -> None:
        await self.session.commit()


class SqlCardRepository(CardRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(self, card: Card) -> Card:
        try:
            db_card = CardModel(
                id=card.id,
                question=card.question,
                answer=card.answer,
                deck_id=card.deck_id,
                created_at=card.created_at,
                updated_at=card.updated_at,
            )
            self.session.add(db_card)
            await self.session.flush()

            metrics.record_database_operation("create", "cards", "success")
            return card
        except Exception:
            metrics.record_database_operation("create", "cards", "error")
            raise

    async def get_by_id(self, card_id: UUID) -> Optional[Card]:
        try:
            result = await self.session.execute(
                select(CardModel).where(CardModel.id == card_id)
            )
            db_card = result.scalar_one_or_none()

            metrics.record_database_operation("get", "cards", "success")
            return _to_card(db_card) if db_card is not None else None
        except Exception:
            metrics.record_database_operation("get", "cards", "error")
            raise

    async def list(self, limit: int = 20, offset: int = 0) -> List[Card]:
        try:
            result = await self.session.execute(
                select(CardModel)
                .order_by(desc(CardModel.created_at))
                .limit(limit)
                .offset(offset)
            )
            metrics.record_database_operation("list", "cards", "success")
            return [_to_card(db_card) for db_card in result.scalars().all()]
        except Exception:
            metrics.record_database_operation("list", "cards", "error")
            raise

    async def list_by_deck_id(
        self, deck_id: UUID, limit: int = 20, offset: int = 0
    ) -> List[Card]:
        try:
            result = await self.session.execute(
                select(CardModel)
                .where(CardModel.deck_id == deck_id)
                .order_by(CardModel.created_at)
                .limit(limit)
                .offset(offset)
            )
            metrics.record_database_operation("list_by_deck", "cards", "success")
            return [_to_card(db_card) for db_card in result.scalars().all()]
        except Exception:
            metrics.record_database_operation("list_by_deck", "cards", "error")
            raise

    async def count_by_deck_id(self, deck_id: UUID) -> int:
        result = await self.session.execute(
            select(func.count(CardModel.id)).where(CardModel.deck_id == deck_id)
        )
        return result.scalar() or 0

    async def update(self, card: Card) -> Optional[Card]:
        result = await self.session.execute(
            update(CardModel)
            .where(CardModel.id == card.id)
            .values(
                question=card.question,
                answer=card.answer,
                updated_at=card.updated_at,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            metrics.record_database_operation("update", "cards", "not_found")
            return None

        metrics.record_database_operation("update", "cards", "success")
        return card

    async def delete(self, card_id: UUID) -> bool:
        try:
            result = await self.session.execute(
                delete(CardModel)
                .where(CardModel.id == card_id)
                .execution_options(synchronize_session=False)
            )
            deleted = result.rowcount > 0

            metrics.record_database_operation(
                "delete", "cards", "success" if deleted else "not_found"
            )
            return deleted
        except Exception:
            metrics.record_database_operation("delete", "cards", "error")
            raise

    async def delete_all_by_deck_id(self, deck_id: UUID) -> int:
        try:
            result = await self.session.execute(
                delete(CardModel)
                .where(CardModel.deck_id == deck_id)
                .execution_options(synchronize_session=False)
            )
            metrics.record_database_operation("delete_by_deck", "cards", "success")
            return result.rowcount
        except Exception:
            metrics.record_database_operation("delete_by_deck", "cards", "error")
            raise

    async def commit(self) -> None:
        await self.session.commit()

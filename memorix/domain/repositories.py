from abc import ABC, abstractmethod
from typing import Iterable, List, Optional
from uuid import UUID

from memorix.domain.entities import Card, Deck


class DeckRepository(ABC):
    @abstractmethod
    async def create(self, deck: Deck) -> Deck:
        pass

    @abstractmethod
    async def get_by_id(self, deck_id: UUID) -> Optional[Deck]:
        pass

    @abstractmethod
    async def list(self, limit: int = 20, offset: int = 0) -> List[Deck]:
        pass

    @abstractmethod
    async def update(self, deck: Deck) -> Optional[Deck]:
        pass

    @abstractmethod
    async def delete(self, deck_id: UUID) -> bool:
        pass

    @abstractmethod
    async def delete_many(self, deck_ids: Iterable[UUID]) -> List[UUID]:
        """Delete the given decks and return the ids that actually existed."""

    @abstractmethod
    async def exists(self, deck_id: UUID) -> bool:
        pass

    @abstractmethod
    async def increment_cards_count(self, deck_id: UUID) -> bool:
        """Atomically add one to cards_count; False if the deck is gone."""

    @abstractmethod
    async def decrement_cards_count(self, deck_id: UUID) -> bool:
        """Atomically subtract one from cards_count unless it is already zero.

        Returns False when nothing was updated (deck gone or count at zero).
        """

    @abstractmethod
    async def commit(self) -> None:
        pass


class CardRepository(ABC):
    @abstractmethod
    async def create(self, card: Card) -> Card:
        pass

    @abstractmethod
    async def get_by_id(self, card_id: UUID) -> Optional[Card]:
        pass

    @abstractmethod
    async def list(self, limit: int = 20, offset: int = 0) -> List[Card]:
        pass

    @abstractmethod
    async def list_by_deck_id(
        self, deck_id: UUID, limit: int = 20, offset: int = 0
    ) -> List[Card]:
        pass

    @abstractmethod
    async def count_by_deck_id(self, deck_id: UUID) -> int:
        pass

    @abstractmethod
    async def update(self, card: Card) -> Optional[Card]:
        pass

    @abstractmethod
    async def delete(self, card_id: UUID) -> bool:
        pass

    @abstractmethod
    async def delete_all_by_deck_id(self, deck_id: UUID) -> int:
        pass

    @abstractmethod
    async def commit(self) -> None:
        pass

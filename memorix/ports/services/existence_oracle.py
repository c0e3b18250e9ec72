"""Cross-service existence check port."""

from abc import ABC, abstractmethod
from uuid import UUID


class ExistenceOracle(ABC):
    """Answers "does deck X exist" for services that do not own decks.

    Implementations must fail closed: when the answer cannot be determined the
    deck is reported as absent.
    """

    @abstractmethod
    async def exists(self, deck_id: UUID) -> bool:
        pass

    async def close(self) -> None:
        pass

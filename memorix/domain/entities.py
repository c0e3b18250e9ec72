from datetime import datetime, UTC
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Deck(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    name: str
    description: Optional[str] = None
    cover_image_url: Optional[str] = None
    hex_color: str = "#FFFFFF"
    # Eventually-consistent cache of the number of cards referencing this deck
    cards_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def update_details(
        self,
        name: str,
        description: Optional[str],
        cover_image_url: Optional[str],
        hex_color: str,
    ) -> None:
        self.name = name
        self.description = description
        self.cover_image_url = cover_image_url
        self.hex_color = hex_color
        self.updated_at = _utcnow()

    def __eq__(self, other) -> bool:
        if not isinstance(other, Deck):
            return False
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)


class Card(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    question: str
    answer: str
    # Validated against the deck service only at creation time
    deck_id: UUID
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def update_content(self, question: str, answer: str) -> None:
        self.question = question
        self.answer = answer
        self.updated_at = _utcnow()

    def __eq__(self, other) -> bool:
        if not isinstance(other, Card):
            return False
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

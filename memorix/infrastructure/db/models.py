"""Table definitions.

The deck and card services never share a database, so each owns a separate
declarative base and creates only its own tables.
"""

import uuid
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID as PostgresUUID
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import CHAR, TypeDecorator

DeckBase = declarative_base()
CardBase = declarative_base()


class GUID(TypeDecorator):
    """Platform-independent GUID type."""

    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PostgresUUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(32))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if not isinstance(value, uuid.UUID):
            value = uuid.UUID(str(value))
        if dialect.name == "postgresql":
            return value
        return "%.32x" % value.int

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


class DeckModel(DeckBase):
    __tablename__ = "decks"

    id = Column(GUID(), primary_key=True, default=uuid4)
    name = Column(String(100), nullable=False)
    description = Column(String(255), nullable=True)
    cover_image_url = Column(Text, nullable=True)
    hex_color = Column(String(7), nullable=False, default="#FFFFFF")
    cards_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("cards_count >= 0", name="ck_decks_cards_count_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<DeckModel(id={self.id}, name='{self.name}', cards_count={self.cards_count})>"


class CardModel(CardBase):
    __tablename__ = "cards"

    id = Column(GUID(), primary_key=True, default=uuid4)
    question = Column(Text, nullable=False)
    answer = Column(Text, nullable=False)
    # No foreign key: decks live in another service's database
    deck_id = Column(GUID(), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<CardModel(id={self.id}, deck_id={self.deck_id})>"

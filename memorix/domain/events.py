"""Domain events exchanged between the deck and card services.

The wire format is a flat JSON object with camelCase field names. It carries
no type tag: the routing key of the message decides which variant the payload
is decoded into.
"""

import time
from typing import ClassVar, Dict, Type, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from memorix.domain.exceptions import EventDeserializationError


def _epoch_millis() -> int:
    return int(time.time() * 1000)


class _WireEvent(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    routing_key: ClassVar[str]
    exchange: ClassVar[str]

    timestamp: int = Field(default_factory=_epoch_millis)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class CardCreated(_WireEvent):
    routing_key: ClassVar[str] = "card.created"
    exchange: ClassVar[str] = "card.exchange"

    card_id: UUID = Field(alias="cardId")
    deck_id: UUID = Field(alias="deckId")


class CardDeleted(_WireEvent):
    routing_key: ClassVar[str] = "card.deleted"
    exchange: ClassVar[str] = "card.exchange"

    card_id: UUID = Field(alias="cardId")
    deck_id: UUID = Field(alias="deckId")


class DeckDeleted(_WireEvent):
    routing_key: ClassVar[str] = "deck.deleted"
    exchange: ClassVar[str] = "deck.exchange"

    deck_id: UUID = Field(alias="deckId")


DomainEvent = Union[CardCreated, CardDeleted, DeckDeleted]

EVENT_TYPES: Dict[str, Type[_WireEvent]] = {
    event_type.routing_key: event_type
    for event_type in (CardCreated, CardDeleted, DeckDeleted)
}


def parse_event(routing_key: str, body: Union[str, bytes]) -> DomainEvent:
    """Decode a message body into the variant bound to ``routing_key``."""
    event_type = EVENT_TYPES.get(routing_key)
    if event_type is None:
        raise EventDeserializationError(routing_key, "unknown routing key")
    try:
        return event_type.model_validate_json(body)
    except ValidationError as e:
        raise EventDeserializationError(routing_key, str(e)) from e

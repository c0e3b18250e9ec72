from datetime import datetime
from typing import Annotated, Any, List, Mapping, Optional, Type, TypeVar, Union
from uuid import UUID

from pydantic import (
    AnyUrl,
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    UrlConstraints,
    ValidationError,
)
from pydantic.alias_generators import to_camel

from memorix.domain.results import Failure, Result, Success

M = TypeVar("M", bound=BaseModel)

NonBlankStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
CoverImageUrl = Annotated[AnyUrl, UrlConstraints(allowed_schemes=["http", "https", "ftp"])]


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class DeckRequest(_CamelModel):
    name: NonBlankStr = Field(..., max_length=100)
    description: Optional[str] = Field(None, max_length=255)
    cover_image_url: Optional[CoverImageUrl] = None
    hex_color: Optional[str] = Field(None, min_length=7, max_length=7)

    def cover_image(self) -> Optional[str]:
        return str(self.cover_image_url) if self.cover_image_url is not None else None


class CardRequest(_CamelModel):
    question: NonBlankStr
    answer: NonBlankStr


def describe_errors(errors: List[Mapping[str, Any]]) -> str:
    """Flatten pydantic error details into one readable message."""
    return "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in errors
    )


def parse_request(model: Type[M], payload: Union[M, Mapping[str, Any]]) -> Result[M]:
    """Validate a raw payload against ``model``; rule violations become a Failure."""
    if isinstance(payload, model):
        return Success(payload)
    try:
        return Success(model.model_validate(payload))
    except ValidationError as e:
        return Failure.validation(describe_errors(e.errors()))


class DeckResponse(_CamelModel):
    id: UUID
    name: str
    description: Optional[str] = None
    cover_image_url: Optional[str] = None
    hex_color: str
    cards_count: int = Field(ge=0)
    created_at: datetime
    updated_at: datetime


class CardResponse(_CamelModel):
    id: UUID
    question: str
    answer: str
    deck_id: UUID
    created_at: datetime
    updated_at: datetime


class ErrorResponse(BaseModel):
    error: str
    message: str


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    database: bool
    broker: bool

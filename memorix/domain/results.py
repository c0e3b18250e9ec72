"""Explicit outcomes for synchronous write and read paths.

Not-found and validation failures are returned, never raised, so every call
site has to branch on them::

    result = await card_service.create_card(deck_id, request)
    if isinstance(result, Failure):
        ...
    card = result.value
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    VALIDATION = "validation"


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind
    message: str

    @classmethod
    def not_found(cls, message: str) -> "Failure":
        return cls(ErrorKind.NOT_FOUND, message)

    @classmethod
    def validation(cls, message: str) -> "Failure":
        return cls(ErrorKind.VALIDATION, message)


Result = Union[Success[T], Failure]

from typing import TypeVar

from fastapi import HTTPException

from memorix.domain.results import ErrorKind, Failure, Result

T = TypeVar("T")

STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION: 400,
}


def unwrap(result: Result[T]) -> T:
    """Return the success value or raise the HTTP error matching the failure."""
    if isinstance(result, Failure):
        raise HTTPException(
            status_code=STATUS_BY_KIND[result.kind],
            detail={"error": result.kind.value, "message": result.message},
        )
    return result.value

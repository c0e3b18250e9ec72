from typing import Optional
from uuid import UUID

import httpx
import structlog

from memorix.core.observability import metrics
from memorix.ports.services.existence_oracle import ExistenceOracle

logger = structlog.get_logger(__name__)


class HttpExistenceOracle(ExistenceOracle):
    """Asks the deck service whether a deck exists with ``HEAD /api/v2/decks/{id}``.

    Fail-closed: a timeout, connection error or any non-2xx answer counts as
    "does not exist".
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 2.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url, timeout=httpx.Timeout(timeout)
        )

    async def exists(self, deck_id: UUID) -> bool:
        try:
            response = await self._client.head(f"/api/v2/decks/{deck_id}")
        except httpx.HTTPError as e:
            metrics.record_existence_check("error")
            logger.warning(
                "Deck existence check failed, treating deck as absent",
                deck_id=str(deck_id),
                error_type=type(e).__name__,
                error=str(e),
            )
            return False

        if response.is_success:
            metrics.record_existence_check("found")
            return True

        if response.status_code == 404:
            metrics.record_existence_check("not_found")
        else:
            metrics.record_existence_check("error")
            logger.warning(
                "Unexpected deck service status, treating deck as absent",
                deck_id=str(deck_id),
                status_code=response.status_code,
            )
        return False

    async def close(self) -> None:
        await self._client.aclose()

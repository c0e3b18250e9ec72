from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from memorix.infrastructure.container import ServiceContainer
from memorix.services.card_service import CardService
from memorix.services.deck_service import DeckService


def get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=500, detail="Service container not initialized")
    return container


async def get_database_session(
    container: ServiceContainer = Depends(get_container),
) -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with container.database().session() as session:
        yield session


async def get_deck_service(
    session: AsyncSession = Depends(get_database_session),
    container: ServiceContainer = Depends(get_container),
) -> DeckService:
    return container.deck_service(session)


async def get_card_service(
    session: AsyncSession = Depends(get_database_session),
    container: ServiceContainer = Depends(get_container),
) -> CardService:
    return container.card_service(session)

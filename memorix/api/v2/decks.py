from typing import List
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, Response

from memorix.api.errors import unwrap
from memorix.api.schemas import DeckRequest, DeckResponse
from memorix.core.dependencies import get_deck_service
from memorix.services.deck_service import DeckService

router = APIRouter(prefix="/decks", tags=["decks"])


@router.get("", response_model=List[DeckResponse])
async def list_decks(
    limit: int = Query(20),
    offset: int = Query(0),
    deck_service: DeckService = Depends(get_deck_service),
) -> List[DeckResponse]:
    decks = unwrap(await deck_service.list_decks(limit=limit, offset=offset))
    return [DeckResponse.model_validate(deck) for deck in decks]


@router.get("/{deck_id}", response_model=DeckResponse)
async def get_deck(
    deck_id: UUID,
    deck_service: DeckService = Depends(get_deck_service),
) -> DeckResponse:
    deck = unwrap(await deck_service.get_deck(deck_id))
    return DeckResponse.model_validate(deck)


@router.head("/{deck_id}", status_code=204)
async def deck_exists(
    deck_id: UUID,
    deck_service: DeckService = Depends(get_deck_service),
) -> Response:
    """Existence check used by the card service before it creates a card."""
    found = await deck_service.deck_exists(deck_id)
    return Response(status_code=204 if found else 404)


@router.post("", response_model=DeckResponse, status_code=201)
async def create_deck(
    request: DeckRequest,
    response: Response,
    deck_service: DeckService = Depends(get_deck_service),
) -> DeckResponse:
    deck = unwrap(await deck_service.create_deck(request))
    response.headers["Location"] = f"/api/v2/decks/{deck.id}"
    return DeckResponse.model_validate(deck)


@router.put("/{deck_id}", response_model=DeckResponse)
async def update_deck(
    deck_id: UUID,
    request: DeckRequest,
    deck_service: DeckService = Depends(get_deck_service),
) -> DeckResponse:
    deck = unwrap(await deck_service.update_deck(deck_id, request))
    return DeckResponse.model_validate(deck)


@router.delete("/{deck_id}", status_code=204)
async def delete_deck(
    deck_id: UUID,
    deck_service: DeckService = Depends(get_deck_service),
) -> Response:
    unwrap(await deck_service.delete_deck(deck_id))
    return Response(status_code=204)


@router.delete("", status_code=204)
async def delete_decks(
    deck_ids: List[UUID] = Body(...),
    deck_service: DeckService = Depends(get_deck_service),
) -> Response:
    unwrap(await deck_service.delete_decks(deck_ids))
    return Response(status_code=204)

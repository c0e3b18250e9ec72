from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response

from memorix.api.errors import unwrap
from memorix.api.schemas import CardRequest, CardResponse
from memorix.core.dependencies import get_card_service
from memorix.services.card_service import CardService

router = APIRouter(tags=["cards"])


@router.get("/cards", response_model=List[CardResponse])
async def list_cards(
    limit: int = Query(20),
    offset: int = Query(0),
    card_service: CardService = Depends(get_card_service),
) -> List[CardResponse]:
    cards = unwrap(await card_service.list_cards(limit=limit, offset=offset))
    return [CardResponse.model_validate(card) for card in cards]


@router.get("/cards/{card_id}", response_model=CardResponse)
async def get_card(
    card_id: UUID,
    card_service: CardService = Depends(get_card_service),
) -> CardResponse:
    card = unwrap(await card_service.get_card(card_id))
    return CardResponse.model_validate(card)


@router.get("/decks/{deck_id}/cards", response_model=List[CardResponse])
async def list_deck_cards(
    deck_id: UUID,
    limit: int = Query(20),
    offset: int = Query(0),
    card_service: CardService = Depends(get_card_service),
) -> List[CardResponse]:
    cards = unwrap(
        await card_service.list_cards_by_deck(deck_id, limit=limit, offset=offset)
    )
    return [CardResponse.model_validate(card) for card in cards]


@router.post("/decks/{deck_id}/cards", response_model=CardResponse, status_code=201)
async def create_card(
    deck_id: UUID,
    request: CardRequest,
    response: Response,
    card_service: CardService = Depends(get_card_service),
) -> CardResponse:
    """Create a card; 404 when the deck service denies or cannot confirm the deck."""
    card = unwrap(await card_service.create_card(deck_id, request))
    response.headers["Location"] = f"/api/v2/cards/{card.id}"
    return CardResponse.model_validate(card)


@router.put("/cards/{card_id}", response_model=CardResponse)
async def update_card(
    card_id: UUID,
    request: CardRequest,
    card_service: CardService = Depends(get_card_service),
) -> CardResponse:
    card = unwrap(await card_service.update_card(card_id, request))
    return CardResponse.model_validate(card)


@router.delete("/cards/{card_id}", status_code=204)
async def delete_card(
    card_id: UUID,
    card_service: CardService = Depends(get_card_service),
) -> Response:
    unwrap(await card_service.delete_card(card_id))
    return Response(status_code=204)

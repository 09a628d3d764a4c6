"""
Collection API endpoints.

Provides the authenticated owner's collection: paged reads, add-item with
merge-on-insert, direct edits, deletes, and batch sync.
"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from cardtrack.api.auth import get_current_user_id
from cardtrack.config import settings
from cardtrack.db import (
    add_or_merge_card,
    collection_to_model,
    delete_collection_card,
    list_all_collection_cards,
    list_collection_cards,
    update_collection_card,
)
from cardtrack.db.database import get_session
from cardtrack.models.failure import WriteConflictError
from cardtrack.models.sync import (
    CardResponse,
    CollectionCardPayload,
    CollectionPage,
    Pagination,
    ServerCard,
    SyncResult,
)
from cardtrack.services.reconciliation import reconcile_batch

router = APIRouter(prefix="/collection", tags=["collection"])

CurrentUser = Annotated[str, Depends(get_current_user_id)]
Session = Annotated[AsyncSession, Depends(get_session)]


class CardUpdateRequest(BaseModel):
    """Request model for editing an owned card. Omitted fields are left as they are."""

    quantity: int | None = Field(default=None, gt=0)
    purchase_price: float | None = None
    current_price: float | None = None


class SyncRequest(BaseModel):
    """Request model for batch sync."""

    cards: list[Any] = Field(
        ...,
        description="Client entries to reconcile. Malformed entries are skipped.",
    )


class CollectionStatsResponse(BaseModel):
    """Response model for collection value statistics."""

    total_cards: int = 0
    unique_cards: int = 0
    total_value: float = 0.0
    total_cost: float = 0.0
    profit_loss: float = 0.0


@router.get("", response_model=CollectionPage)
async def get_collection_page(
    user_id: CurrentUser,
    session: Session,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1)] = 50,
) -> CollectionPage:
    """
    Get one page of the caller's collection.

    Ordered by date added, newest first. `limit` is capped at the
    configured maximum page size.
    """
    limit = min(limit, settings.max_page_limit)
    rows, total = await list_collection_cards(session, user_id, page=page, limit=limit)

    return CollectionPage(
        data=[ServerCard.model_validate(row) for row in rows],
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=-(-total // limit),
        ),
    )


@router.post("", response_model=CardResponse, status_code=status.HTTP_201_CREATED)
async def add_card(
    card: CollectionCardPayload,
    response: Response,
    user_id: CurrentUser,
    session: Session,
) -> CardResponse:
    """
    Add a card to the caller's collection.

    If the card is already owned, the requested quantity is added to the
    existing row and the response is 200 with merged=true instead of 201.
    """
    try:
        row, merged = await add_or_merge_card(session, user_id, card)
    except WriteConflictError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from e
    if merged:
        response.status_code = status.HTTP_200_OK

    return CardResponse(data=ServerCard.model_validate(row), merged=merged)


@router.get("/stats", response_model=CollectionStatsResponse)
async def get_collection_stats(user_id: CurrentUser, session: Session) -> CollectionStatsResponse:
    """Get totals and market value for the caller's collection."""
    collection = collection_to_model(await list_all_collection_cards(session, user_id))
    total_value = collection.total_value()
    total_cost = collection.total_cost()

    return CollectionStatsResponse(
        total_cards=collection.total_cards(),
        unique_cards=collection.unique_cards(),
        total_value=total_value,
        total_cost=total_cost,
        profit_loss=total_value - total_cost,
    )


@router.put("/{card_id}", response_model=CardResponse)
async def update_card(
    card_id: str,
    request: CardUpdateRequest,
    user_id: CurrentUser,
    session: Session,
) -> CardResponse:
    """
    Edit quantity or prices of an owned card.

    Only fields present in the request are changed; an explicit null
    clears a price.
    """
    changes = request.model_dump(exclude_unset=True)

    if not changes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No fields to update",
        )
    if "quantity" in changes and changes["quantity"] is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Quantity must be positive",
        )

    try:
        row = await update_collection_card(session, user_id, card_id, changes)
    except WriteConflictError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from e
    if row is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Card not found",
        )

    return CardResponse(data=ServerCard.model_validate(row))


@router.delete("/{card_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_card(card_id: str, user_id: CurrentUser, session: Session) -> Response:
    """
    Remove a card from the caller's collection.

    Deleting a card that is not owned is not an error.
    """
    await delete_collection_card(session, user_id, card_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/sync", response_model=SyncResult)
async def sync_collection(
    request: SyncRequest,
    user_id: CurrentUser,
    session: Session,
) -> SyncResult:
    """
    Reconcile a batch of client writes against the caller's collection.

    Each entry is inserted, applied (client newer), or returned as a
    conflict carrying the server's copy (server newer or tie).
    """
    return await reconcile_batch(session, user_id, request.cards)

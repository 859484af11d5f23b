"""am_listing REST endpoints.

POST  /listings                    publish terms
GET   /listings                    list with cursor pagination (default ACTIVE)
GET   /listings/{listing_id}       detail
PATCH /listings/{listing_id}       edit terms (seller, ACTIVE only)
POST  /listings/{listing_id}/delist
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.am_common.database import get_db_session
from src.am_common.response import ApiResponse, respond
from src.am_identity.auth.dependencies import CallerIdentity, get_current_user
from src.am_listing.application.schemas import (
    CreateListingRequest,
    EditListingRequest,
    ListingResponse,
)
from src.am_listing.application.service import ListingRegistry

router = APIRouter(prefix="/listings", tags=["listings"])

_registry = ListingRegistry()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_listing(
    body: CreateListingRequest,
    request: Request,
    caller: Annotated[CallerIdentity, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    listing = await _registry.create(db, caller.user_id, body)
    return respond(request, ListingResponse.from_domain(listing).model_dump(), "Listing created")


@router.get("")
async def list_listings(
    request: Request,
    caller: Annotated[CallerIdentity, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    state: str | None = Query(
        None, description="Filter by state. Default: ACTIVE. Use ALL for no filter."
    ),
    seller_id: str | None = Query(None),
    limit: int = Query(20, ge=1, le=100),
    cursor: str | None = Query(None),
) -> ApiResponse:
    result = await _registry.list_listings(db, state, seller_id, cursor, limit)
    return respond(request, result.model_dump())


@router.get("/{listing_id}")
async def get_listing(
    listing_id: str,
    request: Request,
    caller: Annotated[CallerIdentity, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    listing = await _registry.get(db, listing_id)
    return respond(request, ListingResponse.from_domain(listing).model_dump())


@router.patch("/{listing_id}")
async def edit_listing(
    listing_id: str,
    body: EditListingRequest,
    request: Request,
    caller: Annotated[CallerIdentity, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    listing = await _registry.edit(db, caller.user_id, listing_id, body)
    return respond(request, ListingResponse.from_domain(listing).model_dump(), "Listing updated")


@router.post("/{listing_id}/delist")
async def delist_listing(
    listing_id: str,
    request: Request,
    caller: Annotated[CallerIdentity, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    listing = await _registry.delist(db, caller.user_id, listing_id)
    return respond(request, ListingResponse.from_domain(listing).model_dump(), "Listing delisted")

"""am_purchase REST endpoints.

POST /purchases                     submit a purchase intent
GET  /purchases                     caller's intents, cursor pagination
GET  /purchases/{intent_id}         detail (own intents only)
POST /purchases/{intent_id}/cancel  Pending and not yet observed only
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.am_common.database import get_db_session
from src.am_common.response import ApiResponse, respond
from src.am_identity.auth.dependencies import CallerIdentity, get_current_user
from src.am_purchase.application.schemas import PurchaseIntentResponse, SubmitPurchaseRequest
from src.am_purchase.application.service import PurchaseIntentService, get_purchase_service

router = APIRouter(prefix="/purchases", tags=["purchases"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def submit_purchase(
    body: SubmitPurchaseRequest,
    request: Request,
    caller: Annotated[CallerIdentity, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[PurchaseIntentService, Depends(get_purchase_service)],
) -> ApiResponse:
    intent = await service.submit(db, caller.user_id, body, wallet=caller.wallet)
    return respond(
        request, PurchaseIntentResponse.from_domain(intent).model_dump(), "Purchase intent created"
    )


@router.get("")
async def list_purchases(
    request: Request,
    caller: Annotated[CallerIdentity, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[PurchaseIntentService, Depends(get_purchase_service)],
    status_filter: str | None = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    cursor: str | None = Query(None, description="Pagination cursor (intent ID)"),
) -> ApiResponse:
    result = await service.list_intents(db, caller.user_id, status_filter, cursor, limit)
    return respond(request, result.model_dump())


@router.get("/{intent_id}")
async def get_purchase(
    intent_id: str,
    request: Request,
    caller: Annotated[CallerIdentity, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[PurchaseIntentService, Depends(get_purchase_service)],
) -> ApiResponse:
    intent = await service.get(db, caller.user_id, intent_id)
    return respond(request, PurchaseIntentResponse.from_domain(intent).model_dump())


@router.post("/{intent_id}/cancel")
async def cancel_purchase(
    intent_id: str,
    request: Request,
    caller: Annotated[CallerIdentity, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[PurchaseIntentService, Depends(get_purchase_service)],
) -> ApiResponse:
    intent = await service.cancel(db, caller.user_id, intent_id)
    return respond(
        request, PurchaseIntentResponse.from_domain(intent).model_dump(), "Purchase intent cancelled"
    )

"""am_entitlement REST endpoints.

GET  /access/entitlements              caller's entitlements, cursor pagination
GET  /access/credits                   caller's listing-credit balance
GET  /access/{subject_id}              hasAccess for the caller, now
POST /access/{subject_id}/credential   short-lived signed access credential
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.am_common.database import get_db_session
from src.am_common.response import ApiResponse, respond
from src.am_entitlement.application.service import EntitlementLedger
from src.am_identity.auth.dependencies import CallerIdentity, get_current_user

router = APIRouter(prefix="/access", tags=["access"])

_ledger = EntitlementLedger()


@router.get("/entitlements")
async def list_entitlements(
    request: Request,
    caller: Annotated[CallerIdentity, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    limit: int = Query(20, ge=1, le=100),
    cursor: str | None = Query(None, description="Pagination cursor (entitlement ID)"),
) -> ApiResponse:
    result = await _ledger.list_entitlements(db, caller.user_id, cursor, limit)
    return respond(request, result.model_dump())


@router.get("/credits")
async def get_credit_balance(
    request: Request,
    caller: Annotated[CallerIdentity, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    result = await _ledger.credit_balance(db, caller.user_id)
    return respond(request, result.model_dump())


@router.get("/{subject_id}")
async def check_access(
    subject_id: str,
    request: Request,
    caller: Annotated[CallerIdentity, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    result = await _ledger.check_access(db, caller.user_id, subject_id)
    return respond(request, result.model_dump())


@router.post("/{subject_id}/credential")
async def issue_credential(
    subject_id: str,
    request: Request,
    caller: Annotated[CallerIdentity, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    result = await _ledger.issue_credential(db, caller.user_id, subject_id)
    return respond(request, result.model_dump())

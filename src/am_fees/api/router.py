"""Platform endpoints: stats, fee account, fee verification, alerts.

GET  /platform/stats         any authenticated caller
GET  /platform/fees          totals per currency + recent entries
POST /platform/fees/verify   admin: recompute and check for drift
GET  /platform/alerts        admin: operational alerts, newest first
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.am_common.database import get_db_session
from src.am_common.response import ApiResponse, respond
from src.am_fees.application.schemas import AlertResponse
from src.am_fees.application.service import FeeAccount
from src.am_fees.application.stats import PlatformStatsService
from src.am_identity.auth.dependencies import (
    CallerIdentity,
    get_current_user,
    require_platform_admin,
)
from src.am_settlement.infrastructure.alerts import AlertRepository

router = APIRouter(prefix="/platform", tags=["platform"])

_fees = FeeAccount()
_stats = PlatformStatsService(fees=_fees)
_alerts = AlertRepository()


@router.get("/stats")
async def platform_stats(
    request: Request,
    caller: Annotated[CallerIdentity, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    result = await _stats.stats(db)
    return respond(request, result.model_dump())


@router.get("/fees")
async def fee_account(
    request: Request,
    caller: Annotated[CallerIdentity, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    limit: int = Query(20, ge=1, le=100),
    cursor: str | None = Query(None),
) -> ApiResponse:
    result = await _fees.account(db, cursor, limit)
    return respond(request, result.model_dump())


@router.post("/fees/verify")
async def verify_fees(
    request: Request,
    admin: Annotated[CallerIdentity, Depends(require_platform_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    repair_cache: bool = Query(False, description="Overwrite drifted cached totals"),
) -> ApiResponse:
    result = await _fees.verify(db, repair_cache=repair_cache)
    return respond(request, result.model_dump())


@router.get("/alerts")
async def list_alerts(
    request: Request,
    admin: Annotated[CallerIdentity, Depends(require_platform_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    kind: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
) -> ApiResponse:
    alerts = await _alerts.list_recent(db, kind, limit)
    return respond(request, [AlertResponse.from_domain(a).model_dump() for a in alerts])

"""Settlement signal endpoints.

POST /settlement/chain/{tx_hash}      caller-triggered re-check of a chain payment
POST /settlement/webhooks/payment     payment-gateway webhook (no bearer token;
                                      authenticated by the HMAC signature header)

Both answer 200 with the outcome, including idempotent replays. A Pending
outcome is still 200: the intent is open and will be re-checked.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Path, Request
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.am_common.database import get_db_session
from src.am_common.response import ApiResponse, respond
from src.am_identity.auth.dependencies import CallerIdentity, get_current_user
from src.am_settlement.application.schemas import SettlementOutcomeResponse
from src.am_settlement.application.service import get_reconciliation_engine
from src.am_settlement.engine.engine import ReconciliationEngine

router = APIRouter(prefix="/settlement", tags=["settlement"])


@router.post("/chain/{tx_hash}")
async def reconcile_chain_payment(
    request: Request,
    caller: Annotated[CallerIdentity, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    engine: Annotated[ReconciliationEngine, Depends(get_reconciliation_engine)],
    tx_hash: str = Path(..., pattern=r"^[0-9a-fA-F]{64}$"),
) -> ApiResponse:
    outcome = await engine.handle_chain_signal(db, tx_hash)
    return respond(request, SettlementOutcomeResponse.from_domain(outcome).model_dump())


@router.post("/webhooks/payment")
async def payment_webhook(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    engine: Annotated[ReconciliationEngine, Depends(get_reconciliation_engine)],
) -> ApiResponse:
    raw = await request.body()
    signature = request.headers.get(settings.GATEWAY_SIGNATURE_HEADER)
    outcome = await engine.handle_gateway_webhook(db, raw, signature)
    return respond(request, SettlementOutcomeResponse.from_domain(outcome).model_dump())

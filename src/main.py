"""FastAPI application entry point.

Run with: uvicorn src.main:app --reload --port 8000
"""

# ruff: noqa: E402  -- uvloop.install() must run before other imports

import uvloop

uvloop.install()

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from config.settings import settings
from src.am_chain.infrastructure.blockfrost_client import close_ledger_client
from src.am_common.database import async_session_factory, engine
from src.am_common.errors import AppError
from src.am_common.redis_client import close_redis, redis_available
from src.am_common.response import error_response
from src.am_entitlement.api.router import router as access_router
from src.am_fees.api.router import router as platform_router
from src.am_identity.middleware.request_log import RequestLogMiddleware
from src.am_listing.api.router import router as listing_router
from src.am_payment.infrastructure.flutterwave_client import close_payment_gateway
from src.am_purchase.api.router import router as purchase_router
from src.am_settlement.api.router import router as settlement_router
from src.am_settlement.application.poller import SettlementPoller
from src.am_settlement.application.service import get_reconciliation_engine

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: verify DB, ping the fee cache, start the poller. Shutdown: stop and dispose."""
    # Startup
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    await redis_available()

    poller: SettlementPoller | None = None
    if settings.SETTLEMENT_POLL_ENABLED:
        poller = SettlementPoller(
            engine=get_reconciliation_engine(),
            session_factory=async_session_factory,
            interval_seconds=settings.SETTLEMENT_POLL_INTERVAL_SECONDS,
            batch_size=settings.SETTLEMENT_POLL_BATCH,
        )
        poller.start()
    yield
    # Shutdown
    if poller is not None:
        await poller.stop()
    await close_ledger_client()
    await close_payment_gateway()
    await engine.dispose()
    await close_redis()


app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    lifespan=lifespan,
)


app.add_middleware(RequestLogMiddleware)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error("[%d] %s", exc.code, exc.message)
    resp = error_response(exc.code, exc.message)
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return JSONResponse(
        status_code=exc.http_status,
        content=resp.model_dump(),
    )


app.include_router(listing_router, prefix="/api/v1")
app.include_router(purchase_router, prefix="/api/v1")
app.include_router(access_router, prefix="/api/v1")
app.include_router(settlement_router, prefix="/api/v1")
app.include_router(platform_router, prefix="/api/v1")


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "version": "0.1.0"}

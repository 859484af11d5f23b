"""Integration-test fixtures.

Requires Postgres + Redis (make up) and migrations (make migrate); set
RUN_INTEGRATION=1 to run. Caller tokens are minted locally with the shared
JWT_SECRET, the same way the external auth service signs them. The chain
ledger is replaced by IndexedLedger; the database and Redis are real.

All integration tests share a single event-loop so that the module-level
SQLAlchemy async engine pool and Redis pool (both created at import time)
remain valid across the entire test session.
"""

import os
import uuid
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt

from config.settings import settings
from src.am_chain.domain.models import ChainTransaction, TxOutput
from src.am_common.errors import NetworkUnavailableError, TransactionNotFoundError
from src.am_payment.infrastructure.flutterwave_client import get_payment_gateway
from src.am_purchase.application.service import PurchaseIntentService, get_purchase_service
from src.am_settlement.domain.config import ReconciliationConfig
from src.main import app


def pytest_collection_modifyitems(config, items):
    if os.environ.get("RUN_INTEGRATION") == "1":
        return
    skip = pytest.mark.skip(reason="set RUN_INTEGRATION=1 with Postgres and Redis running")
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(skip)


def _bearer(user_id: str, wallet: str | None = None) -> dict[str, str]:
    claims = {"sub": user_id, "type": "access", "exp": datetime.now(UTC) + timedelta(hours=1)}
    if wallet is not None:
        claims["wallet"] = wallet
    token = jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return {"Authorization": f"Bearer {token}"}


class IndexedLedger:
    """Ledger stand-in: hashes registered with index() are found, paid from one wallet."""

    def __init__(self) -> None:
        self.payers: dict[str, str] = {}

    def index(self, tx_hash: str, payer: str) -> None:
        self.payers[tx_hash] = payer

    async def get_transaction(self, tx_hash: str) -> ChainTransaction:
        if tx_hash not in self.payers:
            raise TransactionNotFoundError(tx_hash)
        return ChainTransaction(
            tx_hash=tx_hash,
            confirmations=0,
            inputs=[TxOutput(address=self.payers[tx_hash], amounts={"lovelace": 10_000_000})],
            outputs=[],
        )

    async def submit(self, signed_tx: str) -> str:
        raise NetworkUnavailableError("no ledger submission in integration tests")

    async def aclose(self) -> None:
        return None


@pytest.fixture
def ledger() -> IndexedLedger:
    """Purchases resolve transaction hashes against an in-process ledger."""
    indexed = IndexedLedger()
    app.dependency_overrides[get_purchase_service] = lambda: PurchaseIntentService(
        ledger=indexed,
        gateway=get_payment_gateway(),
        config=ReconciliationConfig.from_settings(),
    )
    return indexed


@pytest_asyncio.fixture(loop_scope="session", scope="session")
async def client() -> AsyncClient:  # type: ignore[override]
    """Session-scoped async HTTP client, keeps the engine pool alive."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture(scope="session")
def run_id() -> str:
    """Per-run suffix so repeated runs never collide on unique columns."""
    return uuid.uuid4().hex[:8]


@pytest.fixture(scope="session")
def seller_headers(run_id: str) -> dict[str, str]:
    return _bearer(f"usr_seller_{run_id}")


@pytest.fixture(scope="session")
def buyer_wallet(run_id: str) -> str:
    return f"addr_test1_buyer_{run_id}"


@pytest.fixture(scope="session")
def buyer_headers(run_id: str, buyer_wallet: str) -> dict[str, str]:
    return _bearer(f"usr_buyer_{run_id}", wallet=buyer_wallet)


@pytest.fixture
def headers_for():
    """Bearer headers for an arbitrary caller id."""
    return _bearer

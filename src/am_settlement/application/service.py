# src/am_settlement/application/service.py
from src.am_chain.infrastructure.blockfrost_client import get_ledger_client
from src.am_payment.infrastructure.flutterwave_client import get_payment_gateway
from src.am_settlement.domain.config import ReconciliationConfig
from src.am_settlement.engine.engine import ReconciliationEngine

_engine: ReconciliationEngine | None = None


def get_reconciliation_engine() -> ReconciliationEngine:
    global _engine  # noqa: PLW0603
    if _engine is None:
        _engine = ReconciliationEngine(
            ledger=get_ledger_client(),
            gateway=get_payment_gateway(),
            config=ReconciliationConfig.from_settings(),
        )
    return _engine

"""ReconciliationConfig: every knob the engine reads, injected explicitly.

Built once from settings in production; tests construct it directly so
reconciliation behaviour never depends on ambient process state.
"""

from dataclasses import dataclass, field

from config.settings import Settings, settings
from src.am_common.enums import SettlementRail
from src.am_common.retry import RetryPolicy


@dataclass(frozen=True)
class ReconciliationConfig:
    marketplace_address: str
    min_confirmations: int = 2
    marketplace_fee_bps: int = 300
    chain_currency: str = "ADA"
    chain_payment_unit: str = "lovelace"
    gateway_currency: str = "USD"
    listing_credit_unit_price: int = 100
    max_commit_attempts: int = 3
    max_pending_attempts: int = 40
    network_retry: RetryPolicy = field(default_factory=RetryPolicy)

    @classmethod
    def from_settings(cls, s: Settings = settings) -> "ReconciliationConfig":
        return cls(
            marketplace_address=s.MARKETPLACE_ADDRESS,
            min_confirmations=s.MIN_CONFIRMATIONS,
            marketplace_fee_bps=s.MARKETPLACE_FEE_BPS,
            chain_currency=s.CHAIN_CURRENCY.upper(),
            chain_payment_unit=s.CHAIN_PAYMENT_UNIT,
            gateway_currency=s.GATEWAY_CURRENCY.upper(),
            listing_credit_unit_price=s.LISTING_CREDIT_UNIT_PRICE,
            max_commit_attempts=s.MAX_COMMIT_ATTEMPTS,
            max_pending_attempts=s.MAX_PENDING_ATTEMPTS,
            network_retry=RetryPolicy(
                attempts=s.NETWORK_RETRY_ATTEMPTS,
                base_delay=s.RETRY_BASE_DELAY_SECONDS,
                max_delay=s.RETRY_MAX_DELAY_SECONDS,
                timeout=max(s.LEDGER_TIMEOUT_SECONDS, s.GATEWAY_TIMEOUT_SECONDS),
            ),
        )

    def rail_for_currency(self, currency: str) -> str:
        """Listings priced in the chain currency settle on-chain, all others via the gateway."""
        if currency.upper() == self.chain_currency:
            return SettlementRail.CHAIN.value
        return SettlementRail.GATEWAY.value

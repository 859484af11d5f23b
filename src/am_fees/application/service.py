"""FeeAccount: marketplace-held balances derived purely from the fee ledger.

Entries are appended only inside the reconciliation commit unit. Totals are
never stored authoritatively: they are summed from fee_ledger_entries, with a
Redis copy kept for cheap reads and checked for drift by verify().
"""

import logging
from collections.abc import Callable
from datetime import datetime

import redis
from sqlalchemy.ext.asyncio import AsyncSession

from src.am_common.datetime_utils import utc_now
from src.am_common.enums import AlertKind, PurchaseKind
from src.am_common.id_generator import generate_id
from src.am_common.redis_client import get_redis
from src.am_fees.application.schemas import (
    FeeAccountResponse,
    FeeEntryResponse,
    FeeTotalsItem,
    FeeVerificationResponse,
)
from src.am_fees.domain.fee import FeeLedgerEntry, FeeTotals, compute_fee_split, sum_entries
from src.am_fees.domain.repository import FeeLedgerRepositoryProtocol
from src.am_fees.infrastructure.fee_cache import FeeTotalsCache
from src.am_fees.infrastructure.fee_ledger import FeeLedgerRepository
from src.am_purchase.domain.models import PurchaseIntent
from src.am_settlement.domain.models import SettlementAlert
from src.am_settlement.domain.repository import AlertRepositoryProtocol
from src.am_settlement.infrastructure.alerts import AlertRepository

logger = logging.getLogger(__name__)


class FeeAccount:
    def __init__(
        self,
        repo: FeeLedgerRepositoryProtocol | None = None,
        cache: FeeTotalsCache | None = None,
        alerts: AlertRepositoryProtocol | None = None,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repo: FeeLedgerRepositoryProtocol = repo or FeeLedgerRepository()
        self._cache = cache
        self._alerts: AlertRepositoryProtocol = alerts or AlertRepository()
        self._now = now

    async def _get_cache(self) -> FeeTotalsCache:
        if self._cache is None:
            self._cache = FeeTotalsCache(await get_redis())
        return self._cache

    # ------------------------------------------------------------------
    # Settlement (caller owns the transaction)
    # ------------------------------------------------------------------

    async def record_settlement(
        self,
        db: AsyncSession,
        intent: PurchaseIntent,
        fee_bps: int,
        settled_at: datetime,
    ) -> FeeLedgerEntry:
        split = compute_fee_split(PurchaseKind(intent.kind), intent.declared_amount, fee_bps)
        entry = FeeLedgerEntry(
            id=generate_id("fee"),
            purchase_intent_id=intent.id,
            kind=intent.kind,
            currency=intent.currency,
            gross_amount=intent.declared_amount,
            fee_bps=fee_bps,
            listing_fee_amount=split.listing_fee,
            marketplace_cut_amount=split.marketplace_cut,
            settled_at=settled_at,
        )
        return await self._repo.append(db, entry)

    async def cache_entry(self, entry: FeeLedgerEntry) -> None:
        """Add a committed entry to the cached totals. Best effort: drift is caught by verify().

        Entries already counted, for example by a repair that ran between the
        settlement commit and this call, are skipped.
        """
        try:
            cache = await self._get_cache()
            if not await cache.add(entry):
                logger.info("Fee entry %s already in cached totals", entry.id)
        except redis.RedisError as exc:
            logger.warning("Fee cache update skipped for %s: %s", entry.purchase_intent_id, exc)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def totals(self, db: AsyncSession) -> dict[str, FeeTotals]:
        return await self._repo.totals_by_currency(db)

    async def account(
        self, db: AsyncSession, cursor: str | None, limit: int
    ) -> FeeAccountResponse:
        totals = await self._repo.totals_by_currency(db)
        rows = await self._repo.list_entries(db, cursor, limit + 1)
        has_more = len(rows) > limit
        page = rows[:limit]
        return FeeAccountResponse(
            totals=[FeeTotalsItem.from_domain(t) for t in totals.values()],
            recent_entries=[FeeEntryResponse.from_domain(e) for e in page],
            next_cursor=page[-1].id if has_more and page else None,
            has_more=has_more,
        )

    # ------------------------------------------------------------------
    # Drift verification
    # ------------------------------------------------------------------

    async def verify(self, db: AsyncSession, repair_cache: bool = False) -> FeeVerificationResponse:
        """Recompute totals from the ledger and check them against every derived copy.

        Checks:
          - every entry's split equals the fee function of its recorded inputs;
          - Verified intents and fee entries match one-to-one with equal amounts;
          - SQL totals equal the sum of entries;
          - the Redis cache equals the recomputed totals.
        Violations are logged at ERROR and recorded as one FEE_DRIFT alert.
        """
        violations: list[str] = []
        entries = await self._repo.list_all(db)
        for e in entries:
            if not e.conforms():
                violations.append(
                    f"fee entry {e.id} ({e.purchase_intent_id}) does not match fee_bps={e.fee_bps}"
                    f" on gross {e.gross_amount}"
                )
        violations.extend(await self._repo.find_unmatched(db))

        recomputed = sum_entries(entries)
        stored = await self._repo.totals_by_currency(db)
        violations.extend(_compare_totals("ledger totals", recomputed, stored))

        cache_checked = False
        cache_repaired = False
        try:
            cache = await self._get_cache()
            cached = await cache.get_totals()
            cache_checked = True
            cache_drift = _compare_totals("cached totals", recomputed, cached)
            violations.extend(cache_drift)
            if cache_drift and repair_cache:
                await cache.replace(recomputed, {e.id for e in entries})
                cache_repaired = True
        except redis.RedisError as exc:
            logger.warning("Fee cache unavailable during verification: %s", exc)

        if violations:
            for msg in violations:
                logger.error("Fee drift: %s", msg)
            await self._record_drift_alert(db, violations)
        return FeeVerificationResponse(
            ok=not violations,
            violations=violations,
            checked_entries=len(entries),
            cache_checked=cache_checked,
            cache_repaired=cache_repaired,
        )

    async def _record_drift_alert(self, db: AsyncSession, violations: list[str]) -> None:
        alert = SettlementAlert(
            id=generate_id("alr"),
            kind=AlertKind.FEE_DRIFT.value,
            payment_reference=None,
            purchase_intent_id=None,
            detail="; ".join(violations)[:2000],
            created_at=self._now(),
        )
        try:
            await self._alerts.insert(db, alert)
            await db.commit()
        except Exception:
            await db.rollback()
            raise


def _compare_totals(
    label: str, expected: dict[str, FeeTotals], actual: dict[str, FeeTotals]
) -> list[str]:
    violations: list[str] = []
    for currency in sorted(set(expected) | set(actual)):
        want = expected.get(currency, FeeTotals(currency=currency))
        got = actual.get(currency, FeeTotals(currency=currency))
        if (want.listing_fees, want.marketplace_cuts, want.entries) != (
            got.listing_fees,
            got.marketplace_cuts,
            got.entries,
        ):
            violations.append(
                f"{label} {currency}: listing_fees={got.listing_fees}"
                f" marketplace_cuts={got.marketplace_cuts} entries={got.entries},"
                f" expected {want.listing_fees}/{want.marketplace_cuts}/{want.entries}"
            )
    return violations

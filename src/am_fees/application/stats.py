"""Platform statistics: listing, purchase and entitlement counts plus fee totals."""

from sqlalchemy.ext.asyncio import AsyncSession

from src.am_entitlement.application.service import EntitlementLedger
from src.am_fees.application.schemas import FeeTotalsItem, PlatformStatsResponse
from src.am_fees.application.service import FeeAccount
from src.am_listing.application.service import ListingRegistry
from src.am_purchase.domain.repository import PurchaseIntentRepositoryProtocol
from src.am_purchase.infrastructure.persistence import PurchaseIntentRepository


class PlatformStatsService:
    def __init__(
        self,
        listings: ListingRegistry | None = None,
        intents: PurchaseIntentRepositoryProtocol | None = None,
        entitlements: EntitlementLedger | None = None,
        fees: FeeAccount | None = None,
    ) -> None:
        self._listings = listings or ListingRegistry()
        self._intents: PurchaseIntentRepositoryProtocol = intents or PurchaseIntentRepository()
        self._entitlements = entitlements or EntitlementLedger()
        self._fees = fees or FeeAccount()

    async def stats(self, db: AsyncSession) -> PlatformStatsResponse:
        totals = await self._fees.totals(db)
        return PlatformStatsResponse(
            listings_by_state=await self._listings.count_by_state(db),
            purchases_by_status=await self._intents.count_by_status(db),
            entitlements=await self._entitlements.count(db),
            fees=[FeeTotalsItem.from_domain(t) for t in totals.values()],
        )

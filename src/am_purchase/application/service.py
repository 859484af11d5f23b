"""PurchaseIntentService: buyers declare what they are paying for, and how.

An intent snapshots the amount and terms hash a payment must match, and the
reference the payment will be observed under:
  - chain rail: the transaction hash (given, or returned by submitting the
    buyer's signed transaction);
  - gateway rail: a generated tx_ref for which a payment session is opened.

External calls (submit, transaction lookup, payment session) happen before the
intent row is written and outside any transaction.

Chain intents are bound to the wallet address in the caller's token. A
transaction hash is public once broadcast, so an intent for a given hash is
only created when the ledger already shows that wallet among its inputs.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from src.am_chain.domain.client import LedgerClientProtocol
from src.am_chain.infrastructure.blockfrost_client import get_ledger_client
from src.am_common.datetime_utils import utc_now
from src.am_common.enums import PurchaseKind, PurchaseStatus, SettlementRail
from src.am_common.errors import (
    IntentNotCancellableError,
    ListingNotActiveError,
    MalformedSignalError,
    NetworkUnavailableError,
    PayerMismatchError,
    PurchaseIntentNotFoundError,
    PurchaseKindNotOfferedError,
    SelfPurchaseError,
    TransactionNotFoundError,
    WalletRequiredError,
)
from src.am_common.id_generator import generate_id
from src.am_common.retry import retry_async
from src.am_listing.application.service import ListingRegistry
from src.am_payment.domain.gateway import PaymentGatewayProtocol
from src.am_payment.infrastructure.flutterwave_client import get_payment_gateway
from src.am_purchase.application.schemas import (
    PurchaseIntentListResponse,
    PurchaseIntentResponse,
    SubmitPurchaseRequest,
)
from src.am_purchase.domain.models import PurchaseIntent
from src.am_purchase.domain.repository import PurchaseIntentRepositoryProtocol
from src.am_purchase.infrastructure.persistence import PurchaseIntentRepository
from src.am_settlement.domain.config import ReconciliationConfig

logger = logging.getLogger(__name__)


class PurchaseIntentService:
    def __init__(
        self,
        ledger: LedgerClientProtocol,
        gateway: PaymentGatewayProtocol,
        config: ReconciliationConfig,
        repo: PurchaseIntentRepositoryProtocol | None = None,
        listings: ListingRegistry | None = None,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._ledger = ledger
        self._gateway = gateway
        self._config = config
        self._repo: PurchaseIntentRepositoryProtocol = repo or PurchaseIntentRepository()
        self._listings = listings or ListingRegistry()
        self._now = now

    async def submit(
        self,
        db: AsyncSession,
        buyer_id: str,
        req: SubmitPurchaseRequest,
        wallet: str | None = None,
    ) -> PurchaseIntent:
        """Create a Pending intent. Raises DuplicatePaymentReferenceError on reuse.

        `wallet` is the caller's linked payment address; chain purchases by
        tx_hash require it (WalletRequiredError) and require the transaction
        to spend from it (PayerMismatchError).
        """
        kind = PurchaseKind(req.kind)
        if kind == PurchaseKind.LISTING_CREDIT:
            intent = await self._build_credit_intent(buyer_id, req)
        else:
            intent = await self._build_listing_intent(db, buyer_id, kind, req, wallet)

        try:
            saved = await self._repo.insert(db, intent)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info(
            "Purchase intent %s (%s, %s) for %s reference %s",
            saved.id, saved.kind, saved.rail, buyer_id, saved.payment_reference,
        )
        return saved

    async def _build_listing_intent(
        self,
        db: AsyncSession,
        buyer_id: str,
        kind: PurchaseKind,
        req: SubmitPurchaseRequest,
        wallet: str | None,
    ) -> PurchaseIntent:
        if not req.listing_id:
            raise MalformedSignalError("listing_id is required")
        listing = await self._listings.get(db, req.listing_id)
        # Release the read transaction before any external call
        await db.rollback()

        if not listing.is_active:
            raise ListingNotActiveError(listing.id)
        if listing.seller_id == buyer_id:
            raise SelfPurchaseError()
        if not listing.offers(kind):
            raise PurchaseKindNotOfferedError(listing.id, kind.value)

        amount = listing.expected_amount(kind)
        duration = listing.duration_seconds if kind == PurchaseKind.SUBSCRIPTION else None
        rail = self._config.rail_for_currency(listing.currency)
        payment_link: str | None = None
        payer_address: str | None = None
        if rail == SettlementRail.CHAIN:
            reference, payer_address = await self._chain_reference(req, wallet)
        else:
            reference = generate_id("am")
            payment_link = await self._open_session(
                amount, listing.currency, reference, buyer_id, f"{kind.value} {listing.id}"
            )

        return self._new_intent(
            listing_id=listing.id,
            buyer_id=buyer_id,
            kind=kind,
            rail=rail,
            amount=amount,
            currency=listing.currency,
            reference=reference,
            terms_hash=listing.terms_hash,
            duration_seconds=duration,
            payer_address=payer_address,
            credit_points=None,
            payment_link=payment_link,
        )

    async def _build_credit_intent(
        self, buyer_id: str, req: SubmitPurchaseRequest
    ) -> PurchaseIntent:
        if not req.credit_points:
            raise MalformedSignalError("credit_points is required for LISTING_CREDIT")
        amount = req.credit_points * self._config.listing_credit_unit_price
        currency = self._config.gateway_currency
        reference = generate_id("am")
        payment_link = await self._open_session(
            amount, currency, reference, buyer_id, f"{req.credit_points} listing credits"
        )
        return self._new_intent(
            listing_id=None,
            buyer_id=buyer_id,
            kind=PurchaseKind.LISTING_CREDIT,
            rail=SettlementRail.GATEWAY.value,
            amount=amount,
            currency=currency,
            reference=reference,
            terms_hash=None,
            duration_seconds=None,
            payer_address=None,
            credit_points=req.credit_points,
            payment_link=payment_link,
        )

    async def _chain_reference(
        self, req: SubmitPurchaseRequest, wallet: str | None
    ) -> tuple[str, str | None]:
        """Return (payment reference, payer address) for a chain purchase."""
        if req.tx_hash:
            if not wallet:
                raise WalletRequiredError()
            tx_hash = req.tx_hash
            tx = await retry_async(
                lambda: self._ledger.get_transaction(tx_hash),
                self._config.network_retry,
                (NetworkUnavailableError, TransactionNotFoundError),
                label=f"ledger.get_transaction({tx_hash[:12]})",
            )
            if wallet not in tx.input_addresses():
                logger.warning("Intent for %s refused: not paid from %s", tx_hash, wallet)
                raise PayerMismatchError(tx_hash, wallet)
            return tx_hash, wallet
        if req.signed_tx:
            signed_tx = req.signed_tx
            reference = await retry_async(
                lambda: self._ledger.submit(signed_tx),
                self._config.network_retry,
                (NetworkUnavailableError,),
                label="ledger.submit",
            )
            # The service broadcast it itself; only the submitter knew the hash
            return reference, wallet
        raise MalformedSignalError("chain purchases need tx_hash or signed_tx")

    async def _open_session(
        self, amount: int, currency: str, reference: str, buyer_id: str, description: str
    ) -> str:
        return await retry_async(
            lambda: self._gateway.create_payment_session(
                amount, currency, reference, buyer_id, description
            ),
            self._config.network_retry,
            (NetworkUnavailableError,),
            label="gateway.create_payment_session",
        )

    def _new_intent(
        self,
        *,
        listing_id: str | None,
        buyer_id: str,
        kind: PurchaseKind,
        rail: str,
        amount: int,
        currency: str,
        reference: str,
        terms_hash: str | None,
        duration_seconds: int | None,
        payer_address: str | None,
        credit_points: int | None,
        payment_link: str | None,
    ) -> PurchaseIntent:
        now = self._now()
        return PurchaseIntent(
            id=generate_id("pi"),
            listing_id=listing_id,
            buyer_id=buyer_id,
            kind=kind.value,
            rail=rail,
            declared_amount=amount,
            currency=currency,
            payment_reference=reference,
            terms_hash=terms_hash,
            duration_seconds=duration_seconds,
            payer_address=payer_address,
            credit_points=credit_points,
            payment_link=payment_link,
            status=PurchaseStatus.PENDING.value,
            attempts=0,
            last_error=None,
            observed_at=None,
            verified_at=None,
            reject_reason=None,
            created_at=now,
            updated_at=now,
        )

    async def cancel(self, db: AsyncSession, buyer_id: str, intent_id: str) -> PurchaseIntent:
        """Pending -> Cancelled, only before the payment has been observed.

        The row lock orders this against the settlement commit unit; whichever
        locks first wins, and a payment verified afterwards still grants.
        """
        try:
            intent = await self._repo.get_by_id(db, intent_id, for_update=True)
            if intent is None or intent.buyer_id != buyer_id:
                raise PurchaseIntentNotFoundError(intent_id)
            if intent.status != PurchaseStatus.PENDING:
                raise IntentNotCancellableError(intent_id, f"status is {intent.status}")
            if intent.observed_at is not None:
                raise IntentNotCancellableError(intent_id, "payment already observed")
            cancelled = await self._repo.set_status(
                db, intent_id, PurchaseStatus.CANCELLED.value
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("Purchase intent %s cancelled by buyer", intent_id)
        return cancelled

    async def get(self, db: AsyncSession, buyer_id: str, intent_id: str) -> PurchaseIntent:
        intent = await self._repo.get_by_id(db, intent_id)
        if intent is None or intent.buyer_id != buyer_id:
            raise PurchaseIntentNotFoundError(intent_id)
        return intent

    async def list_intents(
        self,
        db: AsyncSession,
        buyer_id: str,
        status: str | None,
        cursor: str | None,
        limit: int,
    ) -> PurchaseIntentListResponse:
        # Fetch limit+1 to detect has_more without COUNT(*)
        rows = await self._repo.list_by_buyer(db, buyer_id, status, cursor, limit + 1)
        has_more = len(rows) > limit
        page = rows[:limit]
        return PurchaseIntentListResponse(
            items=[PurchaseIntentResponse.from_domain(i) for i in page],
            next_cursor=page[-1].id if has_more and page else None,
            has_more=has_more,
        )


_service: PurchaseIntentService | None = None


def get_purchase_service() -> PurchaseIntentService:
    """Process-wide service wired to the configured ledger and gateway clients."""
    global _service  # noqa: PLW0603
    if _service is None:
        _service = PurchaseIntentService(
            ledger=get_ledger_client(),
            gateway=get_payment_gateway(),
            config=ReconciliationConfig.from_settings(),
        )
    return _service

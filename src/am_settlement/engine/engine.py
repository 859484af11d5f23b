"""ReconciliationEngine: verifies each payment once and commits its effects atomically.

Per signal:
  1. Lease the payment reference (one in-process lock per reference, no
     global lock; different references proceed in parallel).
  2. Look the intent up by reference. Unknown -> UnknownReferenceError, nothing
     written. Already VERIFIED/REJECTED -> idempotent success, nothing written.
  3. Ask the outside world (ledger / webhook payload) and compute a Verdict.
     Ledger calls are bounded by timeouts and retried with backoff; an
     exhausted budget leaves the intent PENDING.
  4. Commit unit, one DB transaction with the intent row locked FOR UPDATE and
     its status re-checked:
       ACCEPT  -> VERIFIED + entitlement grant + fee entry (+ listing SOLD)
       REJECT  -> REJECTED with reason
       PENDING -> attempts + 1, alert once the attempt budget is spent
     The unit is retried whole on transient DB errors and abandoned after
     max_commit_attempts with an ATOMIC_COMMIT_FAILURE alert.

No entitlement or fee row is written anywhere else.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from src.am_chain.domain.client import LedgerClientProtocol
from src.am_common.database import TRANSIENT_DB_ERRORS
from src.am_common.datetime_utils import add_seconds, utc_now
from src.am_common.enums import (
    LISTING_CREDIT_SUBJECT,
    AlertKind,
    EntitlementKind,
    ListingState,
    PurchaseKind,
    PurchaseStatus,
    SettlementOutcomeStatus,
    SettlementRail,
)
from src.am_common.errors import (
    AppError,
    AtomicCommitFailureError,
    DuplicateGrantError,
    InternalError,
    NetworkUnavailableError,
    SettlementRailMismatchError,
    SignatureInvalidError,
    TransactionNotFoundError,
    UnknownReferenceError,
)
from src.am_common.id_generator import generate_id
from src.am_common.retry import retry_async
from src.am_entitlement.application.service import EntitlementLedger
from src.am_entitlement.domain.models import Entitlement
from src.am_fees.application.service import FeeAccount
from src.am_fees.domain.fee import FeeLedgerEntry
from src.am_listing.application.service import ListingRegistry
from src.am_listing.domain.models import Listing
from src.am_payment.domain.gateway import PaymentGatewayProtocol
from src.am_payment.domain.webhook import parse_webhook
from src.am_purchase.domain.models import PurchaseIntent
from src.am_purchase.domain.repository import PurchaseIntentRepositoryProtocol
from src.am_purchase.infrastructure.persistence import PurchaseIntentRepository
from src.am_settlement.domain.config import ReconciliationConfig
from src.am_settlement.domain.models import SettlementAlert, SettlementOutcome
from src.am_settlement.domain.repository import AlertRepositoryProtocol
from src.am_settlement.domain.verdict import (
    Verdict,
    VerdictKind,
    verify_chain_payment,
    verify_gateway_payment,
)
from src.am_settlement.infrastructure.alerts import AlertRepository

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

_LEDGER_TRANSIENT = (NetworkUnavailableError, TransactionNotFoundError)


class ReconciliationEngine:
    def __init__(
        self,
        ledger: LedgerClientProtocol,
        gateway: PaymentGatewayProtocol,
        config: ReconciliationConfig,
        *,
        intents: PurchaseIntentRepositoryProtocol | None = None,
        listings: ListingRegistry | None = None,
        entitlements: EntitlementLedger | None = None,
        fees: FeeAccount | None = None,
        alerts: AlertRepositoryProtocol | None = None,
        now: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._ledger = ledger
        self._gateway = gateway
        self._config = config
        self._intents: PurchaseIntentRepositoryProtocol = intents or PurchaseIntentRepository()
        self._listings = listings or ListingRegistry()
        self._entitlements = entitlements or EntitlementLedger(now=now)
        self._fees = fees or FeeAccount(now=now)
        self._alerts: AlertRepositoryProtocol = alerts or AlertRepository()
        self._now = now
        self._sleep = sleep
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Per-reference single writer
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _reference_lease(self, reference: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(reference, asyncio.Lock())
        self._lock_users[reference] = self._lock_users.get(reference, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[reference] -= 1
            if self._lock_users[reference] == 0:
                del self._lock_users[reference]
                del self._locks[reference]

    def active_leases(self) -> int:
        return len(self._locks)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def handle_chain_signal(self, db: AsyncSession, tx_hash: str) -> SettlementOutcome:
        """Reconcile the intent whose payment reference is `tx_hash`."""
        tx_hash = tx_hash.lower()
        async with self._reference_lease(tx_hash):
            intent = await self._load(db, tx_hash, SettlementRail.CHAIN)
            if intent.is_terminal:
                return _replayed(intent)

            try:
                tx = await retry_async(
                    lambda: self._ledger.get_transaction(tx_hash),
                    self._config.network_retry,
                    _LEDGER_TRANSIENT,
                    label=f"ledger.get_transaction({tx_hash[:12]})",
                    sleep=self._sleep,
                )
            except _LEDGER_TRANSIENT as exc:
                return await self._commit(db, tx_hash, Verdict.pending(exc.message))

            verdict = verify_chain_payment(intent, tx, self._config)
            return await self._commit(db, tx_hash, verdict)

    async def handle_gateway_webhook(
        self, db: AsyncSession, raw_payload: bytes, signature: str | None
    ) -> SettlementOutcome:
        """Reconcile a payment-gateway notification.

        Raises:
            SignatureInvalidError: the payload is not signed with the shared secret;
                no intent is read or touched.
            MalformedSignalError: the payload cannot be parsed.
            UnknownReferenceError: no intent carries the payload's tx_ref.
        """
        if not self._gateway.verify_webhook_signature(raw_payload, signature):
            logger.warning("Webhook rejected: invalid signature (%d bytes)", len(raw_payload))
            raise SignatureInvalidError()

        event = parse_webhook(raw_payload)
        if not event.is_charge_completed:
            logger.info("Webhook %s for %s ignored", event.event_type, event.reference)
            return SettlementOutcome(
                payment_reference=event.reference,
                status=SettlementOutcomeStatus.IGNORED.value,
                reason=f"event {event.event_type!r} is not a completed charge",
            )

        async with self._reference_lease(event.reference):
            intent = await self._load(db, event.reference, SettlementRail.GATEWAY)
            if intent.is_terminal:
                return _replayed(intent)
            verdict = verify_gateway_payment(intent, event)
            return await self._commit(db, event.reference, verdict)

    async def poll_pending(
        self, session_factory: SessionFactory, limit: int
    ) -> list[SettlementOutcome]:
        """Re-drive Pending chain intents, each in its own session.

        Intents that have used up max_pending_attempts are left alone; they were
        alerted on and are only re-checked when a caller signals the hash again.
        """
        async with session_factory() as db:
            async with db.begin():
                pending = await self._intents.list_pending(
                    db, SettlementRail.CHAIN.value, self._config.max_pending_attempts, limit
                )

        outcomes: list[SettlementOutcome] = []
        for intent in pending:
            async with session_factory() as db:
                try:
                    outcomes.append(await self.handle_chain_signal(db, intent.payment_reference))
                except AppError as exc:
                    # Alerts are already recorded; one bad intent must not stall the rest
                    logger.error(
                        "Poll of %s failed: [%d] %s",
                        intent.payment_reference, exc.code, exc.message,
                    )
        return outcomes

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _load(
        self, db: AsyncSession, reference: str, rail: SettlementRail
    ) -> PurchaseIntent:
        async with db.begin():
            intent = await self._intents.get_by_reference(db, reference)
        if intent is None:
            logger.warning("Settlement signal for unknown reference %s", reference)
            raise UnknownReferenceError(reference)
        if intent.rail != rail:
            raise SettlementRailMismatchError(reference, intent.rail)
        return intent

    async def _commit(
        self, db: AsyncSession, reference: str, verdict: Verdict
    ) -> SettlementOutcome:
        attempts = self._config.max_commit_attempts
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                async with db.begin():
                    outcome, fee_entry = await self._apply(db, reference, verdict)
            except DuplicateGrantError as exc:
                await self._raise_alert(db, AlertKind.DUPLICATE_GRANT, reference, None, exc.message)
                raise
            except TRANSIENT_DB_ERRORS as exc:
                last_error = exc
                logger.warning(
                    "Commit for %s failed (attempt %d/%d): %s", reference, attempt, attempts, exc
                )
                if attempt < attempts:
                    await self._sleep(self._config.network_retry.delay_for(attempt))
                continue

            if fee_entry is not None:
                await self._fees.cache_entry(fee_entry)
            return outcome

        await self._raise_alert(
            db,
            AlertKind.ATOMIC_COMMIT_FAILURE,
            reference,
            None,
            f"{verdict.kind.value} not committed after {attempts} attempts: {last_error}",
        )
        raise AtomicCommitFailureError(reference, attempts) from last_error

    async def _apply(
        self, db: AsyncSession, reference: str, verdict: Verdict
    ) -> tuple[SettlementOutcome, FeeLedgerEntry | None]:
        intent = await self._intents.get_by_reference(db, reference, for_update=True)
        if intent is None:
            raise UnknownReferenceError(reference)
        # Re-check under the row lock; another worker may have settled it
        if intent.is_terminal:
            return _replayed(intent), None

        if verdict.kind == VerdictKind.PENDING:
            return await self._apply_pending(db, intent, verdict), None
        if verdict.kind == VerdictKind.REJECT:
            return await self._apply_reject(db, intent, verdict), None
        return await self._apply_accept(db, intent)

    async def _apply_pending(
        self, db: AsyncSession, intent: PurchaseIntent, verdict: Verdict
    ) -> SettlementOutcome:
        reason = verdict.reason or "pending"
        if intent.status == PurchaseStatus.CANCELLED:
            return _outcome(intent, SettlementOutcomeStatus.CANCELLED, reason=reason)

        observed_at = self._now() if verdict.observed else None
        updated = await self._intents.record_attempt(db, intent.id, reason, observed_at)
        if updated.attempts == self._config.max_pending_attempts:
            await self._insert_alert(
                db,
                AlertKind.RETRY_BUDGET_EXHAUSTED,
                intent.payment_reference,
                intent.id,
                f"still pending after {updated.attempts} attempts: {reason}",
            )
        logger.info(
            "Intent %s pending (attempt %d): %s", intent.id, updated.attempts, reason
        )
        return _outcome(updated, SettlementOutcomeStatus.PENDING, reason=reason)

    async def _apply_reject(
        self, db: AsyncSession, intent: PurchaseIntent, verdict: Verdict
    ) -> SettlementOutcome:
        reason = verdict.reason or "rejected"
        if intent.status == PurchaseStatus.CANCELLED:
            return _outcome(intent, SettlementOutcomeStatus.CANCELLED, reason=reason)
        updated = await self._intents.set_status(
            db, intent.id, PurchaseStatus.REJECTED.value, reject_reason=reason
        )
        logger.info("Intent %s rejected: %s", intent.id, reason)
        return _outcome(updated, SettlementOutcomeStatus.REJECTED, reason=reason)

    async def _apply_accept(
        self, db: AsyncSession, intent: PurchaseIntent
    ) -> tuple[SettlementOutcome, FeeLedgerEntry | None]:
        if intent.status == PurchaseStatus.CANCELLED:
            logger.warning("Intent %s was cancelled but its payment arrived; honouring it", intent.id)

        listing: Listing | None = None
        if intent.listing_id is not None:
            listing = await self._listings.get(db, intent.listing_id, for_update=True)

        if (
            intent.kind == PurchaseKind.FULL_TRANSFER
            and listing is not None
            and listing.state == ListingState.SOLD
        ):
            reason = f"listing {listing.id} already sold to another buyer"
            updated = await self._intents.set_status(
                db, intent.id, PurchaseStatus.REJECTED.value, reject_reason=reason
            )
            await self._insert_alert(
                db, AlertKind.REFUND_REQUIRED, intent.payment_reference, intent.id, reason
            )
            return _outcome(updated, SettlementOutcomeStatus.REJECTED, reason=reason), None

        now = self._now()
        updated = await self._intents.set_status(
            db, intent.id, PurchaseStatus.VERIFIED.value, verified_at=now
        )
        entitlement = await self._grant(db, intent, listing, now)
        fee_entry = await self._fees.record_settlement(
            db, intent, self._config.marketplace_fee_bps, now
        )
        if intent.kind == PurchaseKind.FULL_TRANSFER and listing is not None:
            await self._listings.mark_sold(db, listing.id)

        logger.info(
            "Intent %s verified: %s %s to %s",
            intent.id, entitlement.kind, entitlement.subject_id, intent.buyer_id,
        )
        outcome = _outcome(
            updated, SettlementOutcomeStatus.VERIFIED, entitlement_id=entitlement.id
        )
        return outcome, fee_entry

    async def _grant(
        self,
        db: AsyncSession,
        intent: PurchaseIntent,
        listing: Listing | None,
        now: datetime,
    ) -> Entitlement:
        if intent.kind == PurchaseKind.LISTING_CREDIT:
            return await self._entitlements.grant(
                db,
                intent.id,
                intent.buyer_id,
                LISTING_CREDIT_SUBJECT,
                EntitlementKind.CREDIT,
                credit_points=intent.credit_points,
            )

        assert listing is not None
        if intent.kind == PurchaseKind.SUBSCRIPTION:
            duration = intent.duration_seconds or listing.duration_seconds
            if not duration:
                raise InternalError(f"Subscription intent {intent.id} has no duration")
            return await self._entitlements.grant(
                db,
                intent.id,
                intent.buyer_id,
                listing.subject_id,
                EntitlementKind.SUBSCRIPTION,
                expires_at=add_seconds(now, duration),
            )
        return await self._entitlements.grant(
            db, intent.id, intent.buyer_id, listing.subject_id, EntitlementKind.OWNED
        )

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    async def _insert_alert(
        self,
        db: AsyncSession,
        kind: AlertKind,
        reference: str | None,
        intent_id: str | None,
        detail: str,
    ) -> None:
        logger.error("ALERT %s [%s]: %s", kind.value, reference, detail)
        await self._alerts.insert(
            db,
            SettlementAlert(
                id=generate_id("alr"),
                kind=kind.value,
                payment_reference=reference,
                purchase_intent_id=intent_id,
                detail=detail,
                created_at=self._now(),
            ),
        )

    async def _raise_alert(
        self,
        db: AsyncSession,
        kind: AlertKind,
        reference: str | None,
        intent_id: str | None,
        detail: str,
    ) -> None:
        """Record an alert in its own transaction, after the failed unit rolled back."""
        try:
            async with db.begin():
                await self._insert_alert(db, kind, reference, intent_id, detail)
        except TRANSIENT_DB_ERRORS:
            # The alert is already in the error log; the caller raises the primary error
            logger.exception("Alert %s for %s could not be persisted", kind.value, reference)


def _outcome(
    intent: PurchaseIntent,
    status: SettlementOutcomeStatus,
    *,
    entitlement_id: str | None = None,
    reason: str | None = None,
) -> SettlementOutcome:
    return SettlementOutcome(
        payment_reference=intent.payment_reference,
        status=status.value,
        purchase_intent_id=intent.id,
        entitlement_id=entitlement_id,
        reason=reason,
    )


def _replayed(intent: PurchaseIntent) -> SettlementOutcome:
    logger.info("Intent %s already %s; signal replay ignored", intent.id, intent.status)
    return SettlementOutcome(
        payment_reference=intent.payment_reference,
        status=SettlementOutcomeStatus(intent.status).value,
        purchase_intent_id=intent.id,
        reason=intent.reject_reason,
        replayed=True,
    )

"""In-memory doubles for unit tests.

Every fake repository conforms to its domain Protocol and stores rows in one
shared MemoryStore. FakeSession.begin() snapshots the store and restores it
when the block raises, so a failed commit unit leaves no partial writes, as a
rolled-back PostgreSQL transaction would.
"""

import asyncio
import copy
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone

import pytest
import redis

from src.am_chain.domain.actions import BuyFull, BuySubscription, terms_hash
from src.am_chain.domain.models import ChainTransaction, TxOutput
from src.am_common.enums import ListingState, PurchaseKind, PurchaseStatus, SettlementRail
from src.am_common.errors import (
    DuplicateGrantError,
    DuplicatePaymentReferenceError,
    ListingNotFoundError,
    PurchaseIntentNotFoundError,
    TransactionNotFoundError,
)
from src.am_common.id_generator import generate_id
from src.am_common.retry import RetryPolicy
from src.am_entitlement.application.service import EntitlementLedger
from src.am_entitlement.domain.models import CreditRedemption, Entitlement
from src.am_fees.application.service import FeeAccount
from src.am_fees.domain.fee import FeeLedgerEntry, FeeTotals, sum_entries
from src.am_listing.application.service import ListingRegistry
from src.am_listing.domain.models import Listing
from src.am_payment.infrastructure.flutterwave_client import sign_payload
from src.am_purchase.domain.models import PurchaseIntent
from src.am_settlement.domain.config import ReconciliationConfig
from src.am_settlement.domain.models import SettlementAlert
from src.am_settlement.engine.engine import ReconciliationEngine

MARKET_ADDRESS = "addr_test1_marketplace"
BUYER_ADDRESS = "addr_test1_buyer"
WEBHOOK_SECRET = "whsec_unit"
T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, start: datetime = T0) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: int) -> None:
        self.current += timedelta(seconds=seconds)


@dataclass
class MemoryStore:
    listings: dict[str, Listing] = field(default_factory=dict)
    intents: dict[str, PurchaseIntent] = field(default_factory=dict)
    entitlements: dict[str, Entitlement] = field(default_factory=dict)
    redemptions: dict[str, CreditRedemption] = field(default_factory=dict)
    fees: dict[str, FeeLedgerEntry] = field(default_factory=dict)
    alerts: dict[str, SettlementAlert] = field(default_factory=dict)

    def snapshot(self) -> dict:
        return copy.deepcopy(self.__dict__)

    def restore(self, snap: dict) -> None:
        for name, rows in snap.items():
            setattr(self, name, rows)


class FakeSession:
    """AsyncSession stand-in. `fail_commits` errors are raised by write units, in order."""

    def __init__(self, store: MemoryStore) -> None:
        self.store = store
        self.fail_commits: list[Exception] = []
        self.commits = 0
        self.rollbacks = 0

    @asynccontextmanager
    async def begin(self) -> AsyncIterator["FakeSession"]:
        snap = self.store.snapshot()
        try:
            yield self
        except BaseException:
            self.store.restore(snap)
            raise
        if self.fail_commits and self.store.snapshot() != snap:
            self.store.restore(snap)
            raise self.fail_commits.pop(0)
        self.commits += 1

    async def commit(self) -> None:
        self.commits += 1

    async def rollback(self) -> None:
        self.rollbacks += 1

    async def __aenter__(self) -> "FakeSession":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        return None


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class FakeListingRepo:
    def __init__(self, store: MemoryStore) -> None:
        self.store = store

    async def insert(self, db, listing: Listing) -> Listing:
        self.store.listings[listing.id] = listing
        return listing

    async def get_by_id(self, db, listing_id: str, *, for_update: bool = False):
        return self.store.listings.get(listing_id)

    async def update_terms(self, db, listing_id, price, full_price, duration_seconds, terms_hash):
        listing = self._require(listing_id)
        updated = replace(
            listing,
            price=price,
            full_price=full_price,
            duration_seconds=duration_seconds,
            terms_hash=terms_hash,
        )
        self.store.listings[listing_id] = updated
        return updated

    async def set_state(self, db, listing_id: str, state: str) -> Listing:
        updated = replace(self._require(listing_id), state=state)
        self.store.listings[listing_id] = updated
        return updated

    async def has_verified_full_transfer(self, db, listing_id: str) -> bool:
        return any(
            i.listing_id == listing_id
            and i.kind == PurchaseKind.FULL_TRANSFER
            and i.status == PurchaseStatus.VERIFIED
            for i in self.store.intents.values()
        )

    async def list_listings(self, db, state, seller_id, cursor_ts, cursor_id, limit):
        rows = [
            item for item in self.store.listings.values()
            if (state is None or item.state == state)
            and (seller_id is None or item.seller_id == seller_id)
        ]
        rows.sort(key=lambda item: (item.created_at, item.id), reverse=True)
        return rows[:limit]

    async def count_by_state(self, db) -> dict[str, int]:
        counts: dict[str, int] = {}
        for item in self.store.listings.values():
            counts[item.state] = counts.get(item.state, 0) + 1
        return counts

    def _require(self, listing_id: str) -> Listing:
        if listing_id not in self.store.listings:
            raise ListingNotFoundError(listing_id)
        return self.store.listings[listing_id]


class FakeIntentRepo:
    def __init__(self, store: MemoryStore) -> None:
        self.store = store

    async def insert(self, db, intent: PurchaseIntent) -> PurchaseIntent:
        if any(
            i.payment_reference == intent.payment_reference for i in self.store.intents.values()
        ):
            raise DuplicatePaymentReferenceError(intent.payment_reference)
        self.store.intents[intent.id] = intent
        return intent

    async def get_by_id(self, db, intent_id: str, *, for_update: bool = False):
        return self.store.intents.get(intent_id)

    async def get_by_reference(self, db, reference: str, *, for_update: bool = False):
        for intent in self.store.intents.values():
            if intent.payment_reference == reference:
                return intent
        return None

    async def set_status(self, db, intent_id, status, *, verified_at=None, reject_reason=None):
        intent = self._require(intent_id)
        updated = replace(
            intent,
            status=status,
            verified_at=verified_at or intent.verified_at,
            reject_reason=reject_reason or intent.reject_reason,
        )
        self.store.intents[intent_id] = updated
        return updated

    async def record_attempt(self, db, intent_id, error, observed_at):
        intent = self._require(intent_id)
        updated = replace(
            intent,
            attempts=intent.attempts + 1,
            last_error=error,
            observed_at=intent.observed_at or observed_at,
        )
        self.store.intents[intent_id] = updated
        return updated

    async def list_by_buyer(self, db, buyer_id, status, cursor_id, limit):
        rows = [
            i for i in self.store.intents.values()
            if i.buyer_id == buyer_id
            and (status is None or i.status == status)
            and (cursor_id is None or i.id < cursor_id)
        ]
        rows.sort(key=lambda i: i.id, reverse=True)
        return rows[:limit]

    async def list_pending(self, db, rail: str, max_attempts: int, limit: int):
        rows = [
            i for i in self.store.intents.values()
            if i.rail == rail and i.status == PurchaseStatus.PENDING and i.attempts < max_attempts
        ]
        rows.sort(key=lambda i: i.updated_at)
        return rows[:limit]

    async def count_by_status(self, db) -> dict[str, int]:
        counts: dict[str, int] = {}
        for i in self.store.intents.values():
            counts[i.status] = counts.get(i.status, 0) + 1
        return counts

    def _require(self, intent_id: str) -> PurchaseIntent:
        if intent_id not in self.store.intents:
            raise PurchaseIntentNotFoundError(intent_id)
        return self.store.intents[intent_id]


class FakeEntitlementRepo:
    def __init__(self, store: MemoryStore) -> None:
        self.store = store

    async def insert(self, db, entitlement: Entitlement) -> Entitlement:
        if any(e.granted_from == entitlement.granted_from for e in self.store.entitlements.values()):
            raise DuplicateGrantError(entitlement.granted_from)
        self.store.entitlements[entitlement.id] = entitlement
        return entitlement

    async def get_by_granted_from(self, db, purchase_intent_id: str):
        for e in self.store.entitlements.values():
            if e.granted_from == purchase_intent_id:
                return e
        return None

    async def list_for_subject(self, db, user_id: str, subject_id: str):
        return [
            e for e in self.store.entitlements.values()
            if e.user_id == user_id and e.subject_id == subject_id
        ]

    async def list_by_user(self, db, user_id, cursor_id, limit):
        rows = [
            e for e in self.store.entitlements.values()
            if e.user_id == user_id and (cursor_id is None or e.id < cursor_id)
        ]
        rows.sort(key=lambda e: e.id, reverse=True)
        return rows[:limit]

    async def lock_credit_account(self, db, user_id: str) -> None:
        return None

    async def credit_balance(self, db, user_id: str) -> int:
        granted = sum(
            e.credit_points or 0
            for e in self.store.entitlements.values()
            if e.user_id == user_id and e.kind == "CREDIT"
        )
        spent = sum(r.points for r in self.store.redemptions.values() if r.user_id == user_id)
        return granted - spent

    async def insert_redemption(self, db, redemption: CreditRedemption) -> CreditRedemption:
        self.store.redemptions[redemption.id] = redemption
        return redemption

    async def count(self, db) -> int:
        return len(self.store.entitlements)


class FakeFeeRepo:
    def __init__(self, store: MemoryStore) -> None:
        self.store = store

    async def append(self, db, entry: FeeLedgerEntry) -> FeeLedgerEntry:
        if any(f.purchase_intent_id == entry.purchase_intent_id for f in self.store.fees.values()):
            raise DuplicateGrantError(entry.purchase_intent_id)
        self.store.fees[entry.id] = entry
        return entry

    async def totals_by_currency(self, db) -> dict[str, FeeTotals]:
        return sum_entries(list(self.store.fees.values()))

    async def list_all(self, db) -> list[FeeLedgerEntry]:
        return sorted(self.store.fees.values(), key=lambda f: f.id)

    async def list_entries(self, db, cursor_id, limit):
        rows = [f for f in self.store.fees.values() if cursor_id is None or f.id < cursor_id]
        rows.sort(key=lambda f: f.id, reverse=True)
        return rows[:limit]

    async def find_unmatched(self, db) -> list[str]:
        by_intent = {f.purchase_intent_id: f for f in self.store.fees.values()}
        violations = []
        for intent in self.store.intents.values():
            if intent.status == PurchaseStatus.VERIFIED and intent.id not in by_intent:
                violations.append(f"verified intent {intent.id} has no fee entry")
        for intent_id in by_intent:
            intent = self.store.intents.get(intent_id)
            if intent is None or intent.status != PurchaseStatus.VERIFIED:
                violations.append(f"fee entry for {intent_id} has no verified intent")
        return violations


class FakeAlertRepo:
    def __init__(self, store: MemoryStore) -> None:
        self.store = store

    async def insert(self, db, alert: SettlementAlert) -> SettlementAlert:
        self.store.alerts[alert.id] = alert
        return alert

    async def list_recent(self, db, kind, limit):
        rows = [a for a in self.store.alerts.values() if kind is None or a.kind == kind]
        rows.sort(key=lambda a: a.id, reverse=True)
        return rows[:limit]


class FakeFeeCache:
    def __init__(self) -> None:
        self.totals: dict[str, FeeTotals] = {}
        self.entry_ids: set[str] = set()
        self.available = True

    def _check(self) -> None:
        if not self.available:
            raise redis.ConnectionError("redis down")

    async def add(self, entry: FeeLedgerEntry) -> bool:
        self._check()
        if entry.id in self.entry_ids:
            return False
        self.entry_ids.add(entry.id)
        t = self.totals.setdefault(entry.currency, FeeTotals(currency=entry.currency))
        t.listing_fees += entry.listing_fee_amount
        t.marketplace_cuts += entry.marketplace_cut_amount
        t.entries += 1
        return True

    async def get_totals(self) -> dict[str, FeeTotals]:
        self._check()
        return copy.deepcopy(self.totals)

    async def replace(self, totals: dict[str, FeeTotals], entry_ids: set[str]) -> None:
        self._check()
        self.totals = copy.deepcopy(totals)
        self.entry_ids = set(entry_ids)


# ---------------------------------------------------------------------------
# External services
# ---------------------------------------------------------------------------


class FakeLedger:
    """Serves queued ChainTransactions (or errors) per hash; the last one repeats."""

    def __init__(self) -> None:
        self.responses: dict[str, list[ChainTransaction | Exception]] = {}
        self.calls: list[str] = []
        self.submitted: list[str] = []
        self.submit_hash = "f" * 64

    def queue(self, tx_hash: str, *responses: ChainTransaction | Exception) -> None:
        self.responses.setdefault(tx_hash, []).extend(responses)

    async def get_transaction(self, tx_hash: str) -> ChainTransaction:
        self.calls.append(tx_hash)
        await asyncio.sleep(0)
        queued = self.responses.get(tx_hash)
        if not queued:
            raise TransactionNotFoundError(tx_hash)
        response = queued.pop(0) if len(queued) > 1 else queued[0]
        if isinstance(response, Exception):
            raise response
        return response

    async def submit(self, signed_tx: str) -> str:
        self.submitted.append(signed_tx)
        return self.submit_hash

    async def aclose(self) -> None:
        return None


class FakeGateway:
    def __init__(self, secret: str = WEBHOOK_SECRET) -> None:
        self.secret = secret
        self.sessions: list[dict] = []

    async def create_payment_session(
        self, amount, currency, reference, customer_id, description=""
    ) -> str:
        self.sessions.append(
            {"amount": amount, "currency": currency, "reference": reference, "customer": customer_id}
        )
        return f"https://checkout.test/{reference}"

    def verify_webhook_signature(self, raw_payload: bytes, signature: str | None) -> bool:
        return bool(signature) and sign_payload(raw_payload, self.secret) == signature

    def sign(self, raw_payload: bytes) -> str:
        return sign_payload(raw_payload, self.secret)

    async def aclose(self) -> None:
        return None


async def _no_sleep(_: float) -> None:
    return None


# ---------------------------------------------------------------------------
# World: everything wired together
# ---------------------------------------------------------------------------


class World:
    def __init__(self) -> None:
        self.clock = Clock()
        self.store = MemoryStore()
        self.ledger = FakeLedger()
        self.gateway = FakeGateway()
        self.cache = FakeFeeCache()
        self.config = ReconciliationConfig(
            marketplace_address=MARKET_ADDRESS,
            min_confirmations=2,
            marketplace_fee_bps=300,
            max_commit_attempts=3,
            max_pending_attempts=3,
            network_retry=RetryPolicy(attempts=2, base_delay=0, max_delay=0, timeout=None),
        )
        self.listing_repo = FakeListingRepo(self.store)
        self.intent_repo = FakeIntentRepo(self.store)
        self.entitlement_repo = FakeEntitlementRepo(self.store)
        self.fee_repo = FakeFeeRepo(self.store)
        self.alert_repo = FakeAlertRepo(self.store)

        self.entitlements = EntitlementLedger(repo=self.entitlement_repo, now=self.clock)
        self.listings = ListingRegistry(
            repo=self.listing_repo, entitlements=self.entitlements, credit_cost=0, now=self.clock
        )
        self.fees = FeeAccount(
            repo=self.fee_repo, cache=self.cache, alerts=self.alert_repo, now=self.clock
        )
        self.engine = ReconciliationEngine(
            self.ledger,
            self.gateway,
            self.config,
            intents=self.intent_repo,
            listings=self.listings,
            entitlements=self.entitlements,
            fees=self.fees,
            alerts=self.alert_repo,
            now=self.clock,
            sleep=_no_sleep,
        )

    def session(self) -> FakeSession:
        return FakeSession(self.store)

    # --- seeding -------------------------------------------------------

    def add_listing(
        self,
        *,
        price: int = 100,
        full_price: int | None = None,
        duration: int | None = None,
        currency: str = "ADA",
        seller_id: str = "usr_seller",
        agent_id: str | None = "agent_alpha",
        state: str = ListingState.ACTIVE.value,
    ) -> Listing:
        listing = Listing(
            id=generate_id("lst"),
            seller_id=seller_id,
            agent_id=agent_id,
            price=price,
            full_price=full_price,
            duration_seconds=duration,
            currency=currency,
            terms_hash=terms_hash(price, full_price, duration, seller_id),
            state=state,
            created_at=self.clock(),
            updated_at=self.clock(),
        )
        self.store.listings[listing.id] = listing
        return listing

    def add_intent(
        self,
        listing: Listing | None,
        *,
        kind: PurchaseKind = PurchaseKind.FULL_TRANSFER,
        reference: str | None = None,
        buyer_id: str = "usr_buyer",
        amount: int | None = None,
        status: str = PurchaseStatus.PENDING.value,
        credit_points: int | None = None,
        payer_address: str | None = BUYER_ADDRESS,
    ) -> PurchaseIntent:
        if listing is None:
            rail = SettlementRail.GATEWAY.value
            currency = self.config.gateway_currency
        else:
            rail = self.config.rail_for_currency(listing.currency)
            currency = listing.currency
        if amount is None:
            amount = listing.expected_amount(kind) if listing is not None else 0
        intent = PurchaseIntent(
            id=generate_id("pi"),
            listing_id=listing.id if listing is not None else None,
            buyer_id=buyer_id,
            kind=kind.value,
            rail=rail,
            declared_amount=amount,
            currency=currency,
            payment_reference=reference or generate_id("am"),
            terms_hash=listing.terms_hash if listing is not None else None,
            duration_seconds=listing.duration_seconds
            if listing is not None and kind == PurchaseKind.SUBSCRIPTION
            else None,
            payer_address=payer_address if rail == SettlementRail.CHAIN else None,
            credit_points=credit_points,
            payment_link=None,
            status=status,
            attempts=0,
            last_error=None,
            observed_at=None,
            verified_at=None,
            reject_reason=None,
            created_at=self.clock(),
            updated_at=self.clock(),
        )
        self.store.intents[intent.id] = intent
        return intent

    def intent(self, intent_id: str) -> PurchaseIntent:
        return self.store.intents[intent_id]

    def listing(self, listing_id: str) -> Listing:
        return self.store.listings[listing_id]

    def alerts_of(self, kind: str) -> list[SettlementAlert]:
        return [a for a in self.store.alerts.values() if a.kind == kind]


def buy_metadata(action: BuyFull | BuySubscription) -> dict:
    """The metadata a wallet attaches to pay for `action`."""
    return {
        "action": type(action).__name__,
        "price": action.terms.price,
        "full_price": action.terms.full_price,
        "duration": action.terms.duration,
        "seller": action.terms.seller,
        "buyer": action.buyer,
    }


def chain_tx(
    tx_hash: str,
    listing: Listing,
    *,
    confirmations: int = 3,
    amount: int | None = None,
    kind: PurchaseKind = PurchaseKind.FULL_TRANSFER,
    to_address: str = MARKET_ADDRESS,
    unit: str = "lovelace",
    buyer: str = BUYER_ADDRESS,
    metadata: dict | None = None,
) -> ChainTransaction:
    """A transaction paying `listing` from the buyer, with matching buy metadata."""
    if amount is None:
        amount = listing.expected_amount(kind)
    if metadata is None:
        action_cls = BuyFull if kind == PurchaseKind.FULL_TRANSFER else BuySubscription
        metadata = buy_metadata(action_cls(terms=listing.terms, buyer=buyer))
    return ChainTransaction(
        tx_hash=tx_hash,
        confirmations=confirmations,
        inputs=[TxOutput(address=buyer, amounts={"lovelace": amount + 2_000_000})],
        outputs=[
            TxOutput(address=to_address, amounts={unit: amount}),
            TxOutput(address=buyer, amounts={"lovelace": 1_800_000}),
        ],
        attached_terms=metadata,
    )


def webhook_body(
    reference: str,
    amount: str,
    *,
    currency: str = "USD",
    status: str = "successful",
    event: str = "charge.completed",
) -> bytes:
    return (
        f'{{"event":"{event}","data":{{"id":4567,"tx_ref":"{reference}",'
        f'"amount":{amount},"currency":"{currency}","status":"{status}"}}}}'
    ).encode()


@pytest.fixture
def world() -> World:
    return World()


@pytest.fixture
def make_chain_tx():
    return chain_tx


@pytest.fixture
def make_buy_metadata():
    return buy_metadata


@pytest.fixture
def make_webhook():
    return webhook_body

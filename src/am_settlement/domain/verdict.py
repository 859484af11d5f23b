"""Pure acceptance rules for settlement signals.

Given an intent and what the outside world reports about its payment, decide:
  ACCEPT   commit the settlement;
  REJECT   definitive mismatch, the intent is closed;
  PENDING  not (yet) acceptable, the intent stays open and is retried.

Chain payments (checked in this order):
  1. no output to the marketplace address          -> REJECT (wrong recipient)
  2. no payment unit in those outputs              -> REJECT (wrong asset)
  3. metadata missing/malformed or a non-buy action,
     or the buy action does not match the kind     -> REJECT
  4. payer address not among the inputs           -> REJECT (someone else paid)
  5. amount, terms hash or metadata buyer differ  -> PENDING
  6. confirmations below the minimum               -> PENDING (payment observed)
  7. otherwise                                     -> ACCEPT

The payer checks (4, and the buyer part of 5) apply whenever the intent is
bound to a payer address, which every intent created from a tx_hash is.

Gateway payments: a non-successful charge, or one whose amount or currency
differs from the intent, is REJECTED; anything else is ACCEPTED.
"""

from dataclasses import dataclass
from enum import Enum

from src.am_chain.domain.actions import BuyFull, BuySubscription, parse_action
from src.am_chain.domain.models import ChainTransaction
from src.am_common.enums import PurchaseKind
from src.am_common.errors import InsufficientConfirmationsError, MalformedSignalError
from src.am_payment.domain.webhook import WebhookEvent
from src.am_purchase.domain.models import PurchaseIntent
from src.am_settlement.domain.config import ReconciliationConfig


class VerdictKind(str, Enum):
    ACCEPT = "ACCEPT"
    REJECT = "REJECT"
    PENDING = "PENDING"


@dataclass(frozen=True)
class Verdict:
    kind: VerdictKind
    reason: str | None = None
    # A matching payment was seen; the buyer can no longer cancel
    observed: bool = False

    @classmethod
    def accept(cls) -> "Verdict":
        return cls(VerdictKind.ACCEPT, observed=True)

    @classmethod
    def reject(cls, reason: str) -> "Verdict":
        return cls(VerdictKind.REJECT, reason)

    @classmethod
    def pending(cls, reason: str, observed: bool = False) -> "Verdict":
        return cls(VerdictKind.PENDING, reason, observed)


def verify_chain_payment(
    intent: PurchaseIntent, tx: ChainTransaction, config: ReconciliationConfig
) -> Verdict:
    outputs = tx.outputs_to(config.marketplace_address)
    if not outputs:
        return Verdict.reject("wrong recipient: no output to the marketplace address")

    paid = tx.paid_to(config.marketplace_address, config.chain_payment_unit)
    if paid <= 0:
        return Verdict.reject(f"wrong asset: no {config.chain_payment_unit} paid")

    try:
        action = parse_action(tx.attached_terms)
    except MalformedSignalError as exc:
        return Verdict.reject(exc.message)

    expected = BuyFull if intent.kind == PurchaseKind.FULL_TRANSFER else BuySubscription
    if not isinstance(action, (BuyFull, BuySubscription)):
        return Verdict.reject(f"transaction carries {type(action).__name__}, not a purchase")
    if not isinstance(action, expected):
        return Verdict.reject(
            f"transaction carries {type(action).__name__}, intent is {intent.kind}"
        )

    payer = intent.payer_address
    if payer is not None and payer not in tx.input_addresses():
        return Verdict.reject(f"buyer mismatch: transaction does not spend from {payer}")

    if paid != intent.declared_amount:
        return Verdict.pending(f"amount mismatch: paid {paid}, expected {intent.declared_amount}")
    if action.terms.terms_hash() != intent.terms_hash:
        return Verdict.pending("terms mismatch: transaction terms differ from listing terms")
    if payer is not None and action.buyer != payer:
        return Verdict.pending("buyer mismatch: metadata buyer differs from the payer")

    if tx.confirmations < config.min_confirmations:
        err = InsufficientConfirmationsError(tx.confirmations, config.min_confirmations)
        return Verdict.pending(err.message, observed=True)

    return Verdict.accept()


def verify_gateway_payment(intent: PurchaseIntent, event: WebhookEvent) -> Verdict:
    if not event.is_successful:
        return Verdict.reject(f"gateway reported status {event.status!r}")
    if event.currency != intent.currency.upper():
        return Verdict.reject(
            f"currency mismatch: paid {event.currency}, expected {intent.currency}"
        )
    if event.amount != intent.declared_amount:
        return Verdict.reject(
            f"amount mismatch: paid {event.amount}, expected {intent.declared_amount}"
        )
    return Verdict.accept()

"""Unified error codes and custom exceptions.

Error code ranges:
  1xxx: Caller identity / access
  2xxx: Listing
  3xxx: Purchase intent
  4xxx: Settlement signal
  5xxx: Ledger integrity (operational alert)
  9xxx: System

Codes are part of the API contract; never renumber an existing error.
"""


class AppError(Exception):
    """Base application error."""

    # Transient errors leave the purchase intent Pending and are retried.
    transient: bool = False

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)


# --- 1xxx: Caller identity ---

class InvalidCredentialsError(AppError):
    def __init__(self) -> None:
        super().__init__(1001, "Invalid or expired token", 401)


class AccessDeniedError(AppError):
    def __init__(self, subject_id: str) -> None:
        super().__init__(1002, f"No active entitlement for subject {subject_id}", 403)


class AdminRequiredError(AppError):
    def __init__(self) -> None:
        super().__init__(1003, "Platform admin required", 403)


class WalletRequiredError(AppError):
    def __init__(self) -> None:
        super().__init__(1004, "Caller token carries no wallet address", 403)


# --- 2xxx: Listing ---

class InvalidTermsError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(2001, f"Invalid listing terms: {detail}", 422)


class NotEditableError(AppError):
    def __init__(self, listing_id: str, state: str) -> None:
        super().__init__(2002, f"Listing {listing_id} in state {state} cannot be edited", 409)


class AlreadySettledError(AppError):
    def __init__(self, listing_id: str) -> None:
        super().__init__(2003, f"Listing {listing_id} already has a settled full transfer", 409)


class ListingNotFoundError(AppError):
    def __init__(self, listing_id: str) -> None:
        super().__init__(2004, f"Listing not found: {listing_id}", 404)


class ListingNotActiveError(AppError):
    def __init__(self, listing_id: str) -> None:
        super().__init__(2005, f"Listing is not active: {listing_id}", 422)


class NotListingOwnerError(AppError):
    def __init__(self, listing_id: str) -> None:
        super().__init__(2006, f"Caller does not own listing {listing_id}", 403)


class InsufficientListingCreditError(AppError):
    def __init__(self, required: int, available: int) -> None:
        super().__init__(
            2007,
            f"Insufficient listing credit: required {required}, available {available}",
            422,
        )


# --- 3xxx: Purchase intent ---

class PurchaseIntentNotFoundError(AppError):
    def __init__(self, intent_id: str) -> None:
        super().__init__(3001, f"Purchase intent not found: {intent_id}", 404)


class DuplicatePaymentReferenceError(AppError):
    def __init__(self, reference: str) -> None:
        super().__init__(3002, f"Payment reference already used: {reference}", 409)


class IntentNotCancellableError(AppError):
    def __init__(self, intent_id: str, reason: str) -> None:
        super().__init__(3003, f"Purchase intent {intent_id} cannot be cancelled: {reason}", 409)


class SelfPurchaseError(AppError):
    def __init__(self) -> None:
        super().__init__(3004, "Sellers cannot purchase their own listing", 422)


class PurchaseKindNotOfferedError(AppError):
    def __init__(self, listing_id: str, kind: str) -> None:
        super().__init__(3005, f"Listing {listing_id} does not offer {kind}", 422)


class PayerMismatchError(AppError):
    def __init__(self, tx_hash: str, wallet: str) -> None:
        super().__init__(3006, f"Transaction {tx_hash} was not paid from wallet {wallet}", 403)


# --- 4xxx: Settlement signal ---

class UnknownReferenceError(AppError):
    def __init__(self, reference: str) -> None:
        super().__init__(4001, f"Unknown payment reference: {reference}", 404)


class SignatureInvalidError(AppError):
    def __init__(self) -> None:
        super().__init__(4002, "Webhook signature is invalid", 401)


class InsufficientConfirmationsError(AppError):
    transient = True

    def __init__(self, confirmations: int, required: int) -> None:
        super().__init__(
            4003,
            f"Insufficient confirmations: {confirmations} of {required}",
            202,
        )


class NetworkUnavailableError(AppError):
    transient = True

    def __init__(self, detail: str = "Upstream service unavailable") -> None:
        super().__init__(4004, detail, 503)


class MalformedSignalError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(4005, f"Malformed settlement signal: {detail}", 400)


class SettlementRailMismatchError(AppError):
    def __init__(self, reference: str, rail: str) -> None:
        super().__init__(4006, f"Reference {reference} settles on the {rail} rail", 422)


class TransactionNotFoundError(AppError):
    transient = True

    def __init__(self, tx_hash: str) -> None:
        super().__init__(4007, f"Transaction not found on ledger: {tx_hash}", 404)


# --- 5xxx: Ledger integrity ---

class DuplicateGrantError(AppError):
    def __init__(self, purchase_intent_id: str) -> None:
        super().__init__(
            5001, f"Entitlement already granted for purchase intent {purchase_intent_id}", 500
        )


class AtomicCommitFailureError(AppError):
    def __init__(self, reference: str, attempts: int) -> None:
        super().__init__(
            5002, f"Settlement commit for {reference} failed after {attempts} attempts", 500
        )


# --- 9xxx: System ---

class InternalError(AppError):
    def __init__(self, detail: str = "Internal server error") -> None:
        super().__init__(9002, detail, 500)

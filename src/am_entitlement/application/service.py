"""EntitlementLedger: the authoritative record of who may access what, until when.

grant() is the only writer and is only called from the reconciliation commit
unit; every grant references the purchase intent that justified it, and that
reference is unique. Subscriptions are never extended in place: each purchase
adds a row and access takes the maximum expiry at query time.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from src.am_common.datetime_utils import utc_now
from src.am_common.enums import EntitlementKind
from src.am_common.errors import (
    AccessDeniedError,
    DuplicateGrantError,
    InsufficientListingCreditError,
)
from src.am_common.id_generator import generate_id
from src.am_entitlement.application.schemas import (
    AccessResponse,
    CredentialResponse,
    CreditBalanceResponse,
    EntitlementListResponse,
    EntitlementResponse,
)
from src.am_entitlement.domain.models import (
    CreditRedemption,
    Entitlement,
    access_not_after,
    has_access,
)
from src.am_entitlement.domain.repository import EntitlementRepositoryProtocol
from src.am_entitlement.infrastructure.persistence import EntitlementRepository
from src.am_identity.auth.jwt_handler import create_access_credential

logger = logging.getLogger(__name__)


class EntitlementLedger:
    def __init__(
        self,
        repo: EntitlementRepositoryProtocol | None = None,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repo: EntitlementRepositoryProtocol = repo or EntitlementRepository()
        self._now = now

    # ------------------------------------------------------------------
    # Writes (caller owns the transaction)
    # ------------------------------------------------------------------

    async def grant(
        self,
        db: AsyncSession,
        purchase_intent_id: str,
        user_id: str,
        subject_id: str,
        kind: EntitlementKind,
        *,
        expires_at: datetime | None = None,
        credit_points: int | None = None,
    ) -> Entitlement:
        """Create the entitlement justified by `purchase_intent_id`.

        Raises:
            DuplicateGrantError: an entitlement already references the intent.
        """
        if await self._repo.get_by_granted_from(db, purchase_intent_id) is not None:
            raise DuplicateGrantError(purchase_intent_id)
        if kind == EntitlementKind.SUBSCRIPTION and expires_at is None:
            raise ValueError("subscription entitlements need an expiry")
        if kind == EntitlementKind.CREDIT and not credit_points:
            raise ValueError("credit entitlements need a positive point count")

        entitlement = Entitlement(
            id=generate_id("ent"),
            user_id=user_id,
            subject_id=subject_id,
            kind=kind.value,
            granted_from=purchase_intent_id,
            expires_at=expires_at if kind == EntitlementKind.SUBSCRIPTION else None,
            credit_points=credit_points if kind == EntitlementKind.CREDIT else None,
            created_at=self._now(),
        )
        saved = await self._repo.insert(db, entitlement)
        logger.info(
            "Granted %s on %s to %s (intent %s)",
            kind.value, subject_id, user_id, purchase_intent_id,
        )
        return saved

    async def redeem_credits(
        self, db: AsyncSession, user_id: str, listing_id: str, points: int
    ) -> CreditRedemption:
        """Spend listing credits. Raises InsufficientListingCreditError."""
        await self._repo.lock_credit_account(db, user_id)
        balance = await self._repo.credit_balance(db, user_id)
        if balance < points:
            raise InsufficientListingCreditError(points, balance)
        return await self._repo.insert_redemption(
            db,
            CreditRedemption(
                id=generate_id("red"),
                user_id=user_id,
                listing_id=listing_id,
                points=points,
                created_at=self._now(),
            ),
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def has_access(
        self, db: AsyncSession, user_id: str, subject_id: str, at: datetime | None = None
    ) -> bool:
        entitlements = await self._repo.list_for_subject(db, user_id, subject_id)
        return has_access(entitlements, at or self._now())

    async def check_access(
        self, db: AsyncSession, user_id: str, subject_id: str
    ) -> AccessResponse:
        at = self._now()
        allowed = await self.has_access(db, user_id, subject_id, at)
        return AccessResponse(subject_id=subject_id, has_access=allowed, checked_at=at.isoformat())

    async def issue_credential(
        self, db: AsyncSession, user_id: str, subject_id: str
    ) -> CredentialResponse:
        """Sign a short-lived access credential. Raises AccessDeniedError."""
        at = self._now()
        entitlements = await self._repo.list_for_subject(db, user_id, subject_id)
        active = [e for e in entitlements if e.grants_access_at(at)]
        if not active:
            raise AccessDeniedError(subject_id)

        not_after = access_not_after(active, at)
        token, expires_at = create_access_credential(
            user_id=user_id,
            subject_id=subject_id,
            entitlement_id=active[0].id,
            not_after=not_after,
            now=at,
        )
        return CredentialResponse(
            subject_id=subject_id, credential=token, expires_at=expires_at.isoformat()
        )

    async def list_entitlements(
        self, db: AsyncSession, user_id: str, cursor: str | None, limit: int
    ) -> EntitlementListResponse:
        # Fetch limit+1 to detect has_more without COUNT(*)
        rows = await self._repo.list_by_user(db, user_id, cursor, limit + 1)
        has_more = len(rows) > limit
        page = rows[:limit]
        return EntitlementListResponse(
            items=[EntitlementResponse.from_domain(e) for e in page],
            next_cursor=page[-1].id if has_more and page else None,
            has_more=has_more,
        )

    async def credit_balance(self, db: AsyncSession, user_id: str) -> CreditBalanceResponse:
        balance = await self._repo.credit_balance(db, user_id)
        return CreditBalanceResponse(user_id=user_id, balance=balance)

    async def count(self, db: AsyncSession) -> int:
        return await self._repo.count(db)



# src/am_entitlement/domain/repository.py
"""Repository Protocol for entitlements and listing-credit redemptions."""

from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.am_entitlement.domain.models import CreditRedemption, Entitlement


class EntitlementRepositoryProtocol(Protocol):
    async def insert(self, db: AsyncSession, entitlement: Entitlement) -> Entitlement:
        """Raises DuplicateGrantError if `granted_from` already has an entitlement."""
        ...

    async def get_by_granted_from(
        self, db: AsyncSession, purchase_intent_id: str
    ) -> Entitlement | None: ...

    async def list_for_subject(
        self, db: AsyncSession, user_id: str, subject_id: str
    ) -> list[Entitlement]: ...

    async def list_by_user(
        self, db: AsyncSession, user_id: str, cursor_id: str | None, limit: int
    ) -> list[Entitlement]: ...

    async def lock_credit_account(self, db: AsyncSession, user_id: str) -> None: ...

    async def credit_balance(self, db: AsyncSession, user_id: str) -> int: ...

    async def insert_redemption(
        self, db: AsyncSession, redemption: CreditRedemption
    ) -> CreditRedemption: ...

    async def count(self, db: AsyncSession) -> int: ...

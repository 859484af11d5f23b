# src/am_purchase/domain/repository.py
"""Repository Protocol for purchase intents.

payment_reference is UNIQUE; insert() raises DuplicatePaymentReferenceError
when the reference is already taken.
"""

from datetime import datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.am_purchase.domain.models import PurchaseIntent


class PurchaseIntentRepositoryProtocol(Protocol):
    async def insert(self, db: AsyncSession, intent: PurchaseIntent) -> PurchaseIntent: ...

    async def get_by_id(
        self, db: AsyncSession, intent_id: str, *, for_update: bool = False
    ) -> PurchaseIntent | None: ...

    async def get_by_reference(
        self, db: AsyncSession, reference: str, *, for_update: bool = False
    ) -> PurchaseIntent | None: ...

    async def set_status(
        self,
        db: AsyncSession,
        intent_id: str,
        status: str,
        *,
        verified_at: datetime | None = None,
        reject_reason: str | None = None,
    ) -> PurchaseIntent: ...

    async def record_attempt(
        self,
        db: AsyncSession,
        intent_id: str,
        error: str,
        observed_at: datetime | None,
    ) -> PurchaseIntent:
        """attempts + 1, last_error = error; observed_at is only ever set once."""
        ...

    async def list_by_buyer(
        self,
        db: AsyncSession,
        buyer_id: str,
        status: str | None,
        cursor_id: str | None,
        limit: int,
    ) -> list[PurchaseIntent]: ...

    async def list_pending(
        self, db: AsyncSession, rail: str, max_attempts: int, limit: int
    ) -> list[PurchaseIntent]:
        """Oldest-touched Pending intents on `rail` with fewer than `max_attempts` checks."""
        ...

    async def count_by_status(self, db: AsyncSession) -> dict[str, int]: ...

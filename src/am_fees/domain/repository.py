# src/am_fees/domain/repository.py
"""Repository Protocol for the append-only fee ledger."""

from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.am_fees.domain.fee import FeeLedgerEntry, FeeTotals


class FeeLedgerRepositoryProtocol(Protocol):
    async def append(self, db: AsyncSession, entry: FeeLedgerEntry) -> FeeLedgerEntry:
        """Raises DuplicateGrantError if the intent already has an entry."""
        ...

    async def totals_by_currency(self, db: AsyncSession) -> dict[str, FeeTotals]: ...

    async def list_all(self, db: AsyncSession) -> list[FeeLedgerEntry]: ...

    async def list_entries(
        self, db: AsyncSession, cursor_id: str | None, limit: int
    ) -> list[FeeLedgerEntry]: ...

    async def find_unmatched(self, db: AsyncSession) -> list[str]:
        """Violations between Verified intents and fee entries (missing, orphaned, amount)."""
        ...

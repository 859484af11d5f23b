# src/am_settlement/domain/repository.py
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.am_settlement.domain.models import SettlementAlert


class AlertRepositoryProtocol(Protocol):
    async def insert(self, db: AsyncSession, alert: SettlementAlert) -> SettlementAlert: ...

    async def list_recent(
        self, db: AsyncSession, kind: str | None, limit: int
    ) -> list[SettlementAlert]: ...

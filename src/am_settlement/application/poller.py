"""SettlementPoller: periodically re-drives Pending chain intents.

Chain payments have no push notification; confirmations accumulate block by
block. The poller asks the engine to re-check the oldest-touched Pending
chain intents every interval. Started from the app lifespan when
SETTLEMENT_POLL_ENABLED is set.
"""

import asyncio
import logging

from src.am_settlement.engine.engine import ReconciliationEngine, SessionFactory

logger = logging.getLogger(__name__)


class SettlementPoller:
    def __init__(
        self,
        engine: ReconciliationEngine,
        session_factory: SessionFactory,
        interval_seconds: float,
        batch_size: int,
    ) -> None:
        self._engine = engine
        self._session_factory = session_factory
        self._interval = interval_seconds
        self._batch_size = batch_size
        self._task: asyncio.Task[None] | None = None

    async def run_once(self) -> int:
        outcomes = await self._engine.poll_pending(self._session_factory, self._batch_size)
        if outcomes:
            summary: dict[str, int] = {}
            for o in outcomes:
                summary[o.status] = summary.get(o.status, 0) + 1
            logger.info("Settlement poll: %s", summary)
        return len(outcomes)

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                # Keep polling; the failure is in the log with its traceback
                logger.exception("Settlement poll failed")
            await asyncio.sleep(self._interval)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._loop(), name="settlement-poller")
            logger.info(
                "Settlement poller started (every %.0fs, batch %d)",
                self._interval, self._batch_size,
            )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Settlement poller stopped")

"""Bounded retry with exponential backoff for calls that may block.

Chain queries and gateway calls are the only suspending operations in the
settlement path. Each attempt runs under its own timeout; a timeout counts as
a transient failure. When the budget is spent the last transient error is
re-raised for the caller to turn into "intent stays Pending".
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from src.am_common.errors import NetworkUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0
    timeout: float | None = 10.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number `attempt` (1-based): base * 2^(attempt-1), capped."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    retry_on: tuple[type[BaseException], ...],
    *,
    label: str = "call",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await fn() until it succeeds, retrying on `retry_on` and timeouts.

    Non-listed exceptions propagate immediately. A timeout on the final
    attempt is raised as NetworkUnavailableError.
    """
    last_error: BaseException | None = None
    for attempt in range(1, policy.attempts + 1):
        try:
            if policy.timeout is None:
                return await fn()
            return await asyncio.wait_for(fn(), timeout=policy.timeout)
        except asyncio.TimeoutError:
            last_error = NetworkUnavailableError(f"{label} timed out after {policy.timeout}s")
        except retry_on as exc:
            last_error = exc

        if attempt < policy.attempts:
            delay = policy.delay_for(attempt)
            logger.warning(
                "%s failed (attempt %d/%d): %s, retrying in %.2fs",
                label, attempt, policy.attempts, last_error, delay,
            )
            await sleep(delay)

    logger.warning("%s failed after %d attempts: %s", label, policy.attempts, last_error)
    assert last_error is not None
    raise last_error

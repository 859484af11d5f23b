# tests/unit/test_fee_cache.py
"""FeeTotalsCache and the Redis connection helper against MagicMock clients."""
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, call

import pytest
import redis

from src.am_common.redis_client import redis_available
from src.am_fees.domain.fee import FeeLedgerEntry, FeeTotals
from src.am_fees.infrastructure.fee_cache import FeeTotalsCache


def _entry() -> FeeLedgerEntry:
    return FeeLedgerEntry(
        id="fee_1", purchase_intent_id="pi_1", kind="FULL_TRANSFER", currency="ADA",
        gross_amount=1000, fee_bps=300, listing_fee_amount=0, marketplace_cut_amount=30,
        settled_at=datetime.now(UTC),
    )


@pytest.fixture
def redis_mock() -> MagicMock:
    client = MagicMock()
    client.register_script.return_value = AsyncMock(return_value=1)
    return client


class TestAdd:
    @pytest.mark.asyncio
    async def test_add_passes_entry_id_with_the_increments(self, redis_mock) -> None:
        cache = FeeTotalsCache(redis_mock)

        assert await cache.add(_entry()) is True

        script = redis_mock.register_script.return_value
        assert script.call_args.kwargs == {
            "keys": ["am:fees:entry_ids", "am:fees:currencies", "am:fees:ADA"],
            "args": ["fee_1", "ADA", 0, 30],
        }

    @pytest.mark.asyncio
    async def test_already_counted_entry_reports_false(self, redis_mock) -> None:
        redis_mock.register_script.return_value = AsyncMock(return_value=0)
        assert await FeeTotalsCache(redis_mock).add(_entry()) is False


class TestReplace:
    @pytest.mark.asyncio
    async def test_replace_rewrites_totals_and_entry_ids_in_one_transaction(
        self, redis_mock
    ) -> None:
        redis_mock.smembers = AsyncMock(return_value={"USD"})
        pipe = MagicMock()
        pipe.execute = AsyncMock()
        redis_mock.pipeline.return_value.__aenter__.return_value = pipe

        await FeeTotalsCache(redis_mock).replace(
            {"ADA": FeeTotals("ADA", listing_fees=0, marketplace_cuts=30, entries=1)},
            {"fee_1"},
        )

        redis_mock.pipeline.assert_called_once_with(transaction=True)
        assert pipe.delete.call_args_list == [
            call("am:fees:USD"),
            call("am:fees:currencies", "am:fees:entry_ids"),
        ]
        assert pipe.sadd.call_args_list == [
            call("am:fees:entry_ids", "fee_1"),
            call("am:fees:currencies", "ADA"),
        ]
        pipe.execute.assert_awaited_once()


class TestRedisAvailable:
    @pytest.mark.asyncio
    async def test_ping_ok(self, monkeypatch) -> None:
        client = MagicMock()
        client.ping = AsyncMock(return_value=True)
        monkeypatch.setattr("src.am_common.redis_client._redis_pool", client)

        assert await redis_available() is True

    @pytest.mark.asyncio
    async def test_unreachable_cache_is_reported_not_raised(self, monkeypatch) -> None:
        client = MagicMock()
        client.ping = AsyncMock(side_effect=redis.ConnectionError("connection refused"))
        monkeypatch.setattr("src.am_common.redis_client._redis_pool", client)

        assert await redis_available() is False

"""Tests for am_common.id_generator and am_common.datetime_utils."""

from datetime import UTC, datetime

import pytest

from src.am_common.datetime_utils import add_seconds, isoformat_or_none, utc_now
from src.am_common.id_generator import SnowflakeIdGenerator, generate_id


class TestSnowflakeIdGenerator:
    def test_returns_str(self) -> None:
        gen = SnowflakeIdGenerator(machine_id=1)
        assert isinstance(gen.next_id(), str)

    def test_unique_ids(self) -> None:
        gen = SnowflakeIdGenerator(machine_id=1)
        ids = {gen.next_id() for _ in range(1000)}
        assert len(ids) == 1000

    def test_monotonically_increasing(self) -> None:
        gen = SnowflakeIdGenerator(machine_id=1)
        prev = gen.next_int()
        for _ in range(100):
            current = gen.next_int()
            assert current > prev
            prev = current

    def test_prefix(self) -> None:
        assert generate_id("pi").startswith("pi_")

    def test_machine_id_out_of_range(self) -> None:
        with pytest.raises(ValueError):
            SnowflakeIdGenerator(machine_id=1024)


class TestUtcNow:
    def test_returns_aware_datetime(self) -> None:
        now = utc_now()
        assert isinstance(now, datetime)
        assert now.tzinfo is not None

    def test_is_utc(self) -> None:
        assert utc_now().tzinfo == UTC


def test_add_seconds_and_isoformat() -> None:
    t0 = datetime(2026, 3, 1, tzinfo=UTC)
    assert add_seconds(t0, 60) == datetime(2026, 3, 1, 0, 1, tzinfo=UTC)
    assert isoformat_or_none(t0) == "2026-03-01T00:00:00+00:00"
    assert isoformat_or_none(None) is None

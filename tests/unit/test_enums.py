"""Tests for am_common.enums: all enum values must match DB CHECK constraints."""

from pathlib import Path

import pytest

from src.am_common.enums import (
    AlertKind,
    EntitlementKind,
    ListingState,
    PurchaseKind,
    PurchaseStatus,
    SettlementOutcomeStatus,
    SettlementRail,
)

_VERSIONS = Path(__file__).resolve().parents[2] / "alembic" / "versions"


def _migration(prefix: str) -> str:
    (path,) = _VERSIONS.glob(f"{prefix}_*.py")
    return path.read_text()


class TestAllEnumsAreStr:
    """All enums inherit from (str, Enum) for JSON serialization."""

    def test_purchase_status_is_str(self) -> None:
        assert isinstance(PurchaseStatus.PENDING, str)
        assert PurchaseStatus.PENDING == "PENDING"

    def test_alert_kind_is_str(self) -> None:
        assert AlertKind.REFUND_REQUIRED == "REFUND_REQUIRED"


class TestValues:
    def test_listing_state(self) -> None:
        assert {s.value for s in ListingState} == {"ACTIVE", "DELISTED", "SOLD"}

    def test_purchase_status(self) -> None:
        expected = {"PENDING", "VERIFIED", "REJECTED", "CANCELLED"}
        assert {s.value for s in PurchaseStatus} == expected

    def test_outcome_status_covers_purchase_status(self) -> None:
        outcomes = {s.value for s in SettlementOutcomeStatus}
        assert {s.value for s in PurchaseStatus} <= outcomes
        assert "IGNORED" in outcomes


@pytest.mark.parametrize(
    "prefix, enum",
    [
        ("002", ListingState),
        ("003", PurchaseKind),
        ("003", PurchaseStatus),
        ("003", SettlementRail),
        ("004", EntitlementKind),
        ("006", AlertKind),
    ],
)
def test_values_present_in_check_constraints(prefix: str, enum: type) -> None:
    sql = _migration(prefix)
    for member in enum:
        assert f"'{member.value}'" in sql, f"{member.value} missing from migration {prefix}"

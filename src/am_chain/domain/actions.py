"""Marketplace contract actions carried in transaction metadata.

A purchase transaction attaches one action under the marketplace metadata
label. Each action is its own frozen dataclass carrying only what it needs;
MarketAction is the closed union of them.

Metadata shapes:
    {"action": "BuyFull", "price": 100, "full_price": 150, "duration": null,
     "seller": "usr_1", "buyer": "addr_test1..."}
    {"action": "BuySubscription", ... same fields ...}
    {"action": "Edit", "price": 120, "full_price": null, "duration": 86400}
    {"action": "Delist"}
"""

import hashlib
import json
from dataclasses import dataclass
from typing import Any

from src.am_common.errors import MalformedSignalError


@dataclass(frozen=True)
class ListingTerms:
    """Terms a seller publishes, mirrored on-chain. Amounts in minor units."""

    price: int
    full_price: int | None
    duration: int | None
    seller: str

    def terms_hash(self) -> str:
        return terms_hash(self.price, self.full_price, self.duration, self.seller)


@dataclass(frozen=True)
class BuyFull:
    terms: ListingTerms
    buyer: str


@dataclass(frozen=True)
class BuySubscription:
    terms: ListingTerms
    buyer: str


@dataclass(frozen=True)
class Edit:
    price: int
    full_price: int | None
    duration: int | None


@dataclass(frozen=True)
class Delist:
    pass


MarketAction = BuyFull | BuySubscription | Edit | Delist


def terms_hash(price: int, full_price: int | None, duration: int | None, seller: str) -> str:
    """sha256 hex of the canonical JSON encoding of the terms.

    Zero duration normalises to None so "no subscription" hashes one way.
    """
    canonical = json.dumps(
        {
            "duration": duration or None,
            "full_price": full_price,
            "price": price,
            "seller": seller,
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode()).hexdigest()


def _int_field(data: dict[str, Any], key: str, *, optional: bool) -> int | None:
    value = data.get(key)
    if value is None:
        if optional:
            return None
        raise MalformedSignalError(f"missing {key}")
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedSignalError(f"{key} must be an integer")
    return value


def _str_field(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise MalformedSignalError(f"missing {key}")
    return value


def _parse_terms(data: dict[str, Any]) -> ListingTerms:
    price = _int_field(data, "price", optional=False)
    assert price is not None
    return ListingTerms(
        price=price,
        full_price=_int_field(data, "full_price", optional=True),
        duration=_int_field(data, "duration", optional=True) or None,
        seller=_str_field(data, "seller"),
    )


def parse_action(metadata: dict[str, Any] | None) -> MarketAction:
    """Decode the attached metadata into a MarketAction.

    Raises:
        MalformedSignalError: metadata absent, unknown action, or bad field types.
    """
    if not isinstance(metadata, dict):
        raise MalformedSignalError("transaction carries no marketplace metadata")

    kind = metadata.get("action")
    if kind == "BuyFull":
        return BuyFull(terms=_parse_terms(metadata), buyer=_str_field(metadata, "buyer"))
    if kind == "BuySubscription":
        return BuySubscription(terms=_parse_terms(metadata), buyer=_str_field(metadata, "buyer"))
    if kind == "Edit":
        price = _int_field(metadata, "price", optional=False)
        assert price is not None
        return Edit(
            price=price,
            full_price=_int_field(metadata, "full_price", optional=True),
            duration=_int_field(metadata, "duration", optional=True) or None,
        )
    if kind == "Delist":
        return Delist()
    raise MalformedSignalError(f"unknown action {kind!r}")


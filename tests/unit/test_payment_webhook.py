"""Unit tests for gateway webhook parsing."""
import pytest

from src.am_common.errors import MalformedSignalError
from src.am_payment.domain.webhook import parse_webhook


def test_parses_completed_charge() -> None:
    event = parse_webhook(
        b'{"event":"charge.completed","data":{"id":4567,"tx_ref":"am_1",'
        b'"amount":65.00,"currency":"usd","status":"successful"}}'
    )
    assert event.reference == "am_1"
    assert event.amount == 6500
    assert event.currency == "USD"
    assert event.gateway_tx_id == "4567"
    assert event.is_charge_completed
    assert event.is_successful


def test_float_amounts_are_exact() -> None:
    event = parse_webhook(
        b'{"event":"charge.completed","data":{"tx_ref":"am_1","amount":0.29,'
        b'"currency":"USD","status":"successful"}}'
    )
    assert event.amount == 29


def test_string_amount_accepted() -> None:
    event = parse_webhook(
        b'{"event":"charge.completed","data":{"tx_ref":"am_1","amount":"12.5",'
        b'"currency":"USD","status":"failed"}}'
    )
    assert event.amount == 1250
    assert not event.is_successful


@pytest.mark.parametrize(
    "raw",
    [
        b"not json",
        b"[]",
        b'{"event":"charge.completed"}',
        b'{"data":{"amount":1,"currency":"USD"}}',
        b'{"data":{"tx_ref":"am_1","amount":1}}',
        b'{"data":{"tx_ref":"am_1","amount":1.001,"currency":"USD"}}',
        b'{"data":{"tx_ref":"am_1","amount":"ten","currency":"USD"}}',
        b'{"data":{"tx_ref":"am_1","amount":true,"currency":"USD"}}',
        b"\xff\xfe",
    ],
)
def test_malformed(raw: bytes) -> None:
    with pytest.raises(MalformedSignalError):
        parse_webhook(raw)

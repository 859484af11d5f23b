"""Inbound payment notification parsing.

Flutterwave-style payload:
    {"event": "charge.completed",
     "data": {"id": 4567, "tx_ref": "am_...", "amount": 65.00,
              "currency": "USD", "status": "successful"}}

Amounts arrive in major units; they are parsed as Decimal (never float) and
converted to exact minor units.
"""

import json
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from src.am_common.errors import MalformedSignalError
from src.am_common.units import major_to_minor

CHARGE_COMPLETED = "charge.completed"
STATUS_SUCCESSFUL = "successful"


@dataclass(frozen=True)
class WebhookEvent:
    event_type: str
    reference: str
    status: str
    amount: int  # minor units
    currency: str
    gateway_tx_id: str | None = None

    @property
    def is_charge_completed(self) -> bool:
        return self.event_type == CHARGE_COMPLETED

    @property
    def is_successful(self) -> bool:
        return self.status.lower() == STATUS_SUCCESSFUL


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, Decimal, str)):
        raise MalformedSignalError("amount must be numeric")
    try:
        return Decimal(value) if not isinstance(value, Decimal) else value
    except InvalidOperation:
        raise MalformedSignalError(f"amount is not a number: {value!r}") from None


def parse_webhook(raw_payload: bytes) -> WebhookEvent:
    """Parse a raw webhook body.

    Raises:
        MalformedSignalError: not JSON, missing fields, or an amount that is not
            a whole number of minor units.
    """
    try:
        body = json.loads(raw_payload, parse_float=Decimal)
    except (ValueError, UnicodeDecodeError):
        raise MalformedSignalError("webhook body is not valid JSON") from None

    if not isinstance(body, dict) or not isinstance(body.get("data"), dict):
        raise MalformedSignalError("webhook body has no data object")
    data = body["data"]

    reference = data.get("tx_ref")
    currency = data.get("currency")
    if not isinstance(reference, str) or not reference:
        raise MalformedSignalError("missing tx_ref")
    if not isinstance(currency, str) or not currency:
        raise MalformedSignalError("missing currency")

    try:
        amount = major_to_minor(_to_decimal(data.get("amount")), currency)
    except ValueError as exc:
        raise MalformedSignalError(str(exc)) from None

    gateway_tx_id = data.get("id")
    return WebhookEvent(
        event_type=str(body.get("event", "")),
        reference=reference,
        status=str(data.get("status", "")),
        amount=amount,
        currency=currency.upper(),
        gateway_tx_id=str(gateway_tx_id) if gateway_tx_id is not None else None,
    )

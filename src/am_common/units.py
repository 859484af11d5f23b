"""Integer arithmetic utilities for amounts in the smallest currency unit.

All prices, amounts and fees are int (minor units: cents, lovelace). No float.
Decimal appears only at the boundary where a third party reports major units.
"""

from decimal import Decimal

# Minor-unit exponent per currency; unknown currencies default to 2.
_EXPONENTS: dict[str, int] = {
    "ADA": 6,
    "USD": 2,
    "EUR": 2,
    "GBP": 2,
    "NGN": 2,
    "KES": 2,
}


def currency_exponent(currency: str) -> int:
    return _EXPONENTS.get(currency.upper(), 2)


def validate_amount(amount: int) -> None:
    """Validate that an amount is a strictly positive integer of minor units."""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValueError(f"Amount must be a positive integer of minor units, got {amount!r}")


def major_to_minor(amount: Decimal, currency: str) -> int:
    """Convert a major-unit Decimal to minor units. Raises ValueError if inexact.

    Decimal("10.50"), "USD" -> 1050. Decimal("10.505"), "USD" -> ValueError.
    """
    scaled = amount.scaleb(currency_exponent(currency))
    if scaled != scaled.to_integral_value():
        raise ValueError(f"{amount} {currency} is not a whole number of minor units")
    return int(scaled)


def minor_to_major_str(amount: int, currency: str) -> str:
    """Convert minor units to a plain major-unit string: 1050, "USD" -> '10.50'."""
    exp = currency_exponent(currency)
    sign = "-" if amount < 0 else ""
    whole, frac = divmod(abs(amount), 10**exp)
    if exp == 0:
        return f"{sign}{whole}"
    return f"{sign}{whole}.{frac:0{exp}d}"


def minor_to_display(amount: int, currency: str) -> str:
    """Human display string: 6500, "USD" -> '65.00 USD', 2500000, "ADA" -> '2.500000 ADA'."""
    return f"{minor_to_major_str(amount, currency)} {currency.upper()}"


def calculate_fee(gross_amount: int, fee_rate_bps: int) -> int:
    """Calculate fee with ceiling division (platform never loses).

    fee = ceil(gross_amount * fee_rate_bps / 10000)
    Using integer ceiling: (a + b - 1) // b
    """
    if gross_amount == 0 or fee_rate_bps == 0:
        return 0
    return (gross_amount * fee_rate_bps + 9999) // 10000

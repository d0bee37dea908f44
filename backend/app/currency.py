"""
currency.py — ISO-4217 codes and decimal-precision rules.

No exchange rates. A currency only decides which codes are accepted and how
many minor-unit digits an amount in that currency may carry.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from backend.app.errors import WarningCode

SUPPORTED_CURRENCIES: frozenset[str] = frozenset({
    "USD", "EUR", "GBP", "JPY", "AUD", "CAD", "CHF", "CNY", "SEK", "NZD",
    "MXN", "SGD", "HKD", "NOK", "KRW", "TRY", "RUB", "INR", "BRL", "ZAR",
    "PLN", "ILS", "DKK", "CZK", "HUF", "ISK", "BGN", "RON", "HRK", "AED",
    "SAR", "QAR", "KWD", "BHD", "OMR", "JOD", "LBP", "EGP", "MAD", "TND",
    "DZD", "LYD", "IQD", "IRR", "AFN", "PKR", "LKR", "BDT", "NPR", "BTN",
    "MVR", "MMK", "THB", "LAK", "KHR", "VND", "IDR", "MYR", "BND", "PHP",
    "TWD", "MOP", "MNT", "KZT", "UZS", "KGS", "TJS", "TMT", "AZN", "GEL",
    "AMD", "BYN", "UAH", "MDL", "RSD", "MKD", "ALL", "BAM", "CLP", "ARS",
    "COP", "PEN", "UYU", "PYG", "BOB", "VES", "CRC", "GTQ", "HNL", "NIO",
    "PAB", "DOP", "JMD", "TTD", "BBD", "BZD", "XCD", "KES", "UGX", "TZS",
    "RWF", "ETB", "GHS", "NGN", "XOF", "XAF", "KMF", "GNF", "MGA", "MUR",
    "SCR", "ZMW", "BWP", "NAD", "SZL", "LSL", "MWK", "MZN", "AOA",
})

_ZERO_DECIMAL = frozenset({
    "JPY", "KRW", "VND", "IDR", "CLP", "PYG", "UGX",
    "RWF", "KMF", "GNF", "MGA", "XOF", "XAF",
})

_THREE_DECIMAL = frozenset({"BHD", "IQD", "JOD", "KWD", "LYD", "OMR", "TND"})

DEFAULT_CURRENCY = "USD"


def is_valid_currency(code: str | None) -> bool:
    """True if `code` is an upper-case ISO-4217 code this ledger accepts."""
    return code is not None and code in SUPPORTED_CURRENCIES


def decimal_places(code: str) -> int:
    """Number of minor-unit digits for `code` (0, 2 or 3)."""
    if code in _ZERO_DECIMAL:
        return 0
    if code in _THREE_DECIMAL:
        return 3
    return 2


def minor_unit(code: str) -> Decimal:
    """Smallest representable amount, e.g. Decimal('0.01') for USD."""
    return Decimal(1).scaleb(-decimal_places(code))


def quantize_amount(amount: Decimal, code: str) -> Decimal:
    """Rounds `amount` half-up to the precision of `code`."""
    return Decimal(amount).quantize(minor_unit(code), rounding=ROUND_HALF_UP)


def has_valid_precision(amount: Decimal, code: str) -> bool:
    """
    True if `amount` carries no more fractional digits than `code` allows.

    Trailing zeros do not count: Decimal("1000.00") is a valid JPY amount.
    """
    exponent = Decimal(amount).normalize().as_tuple().exponent
    if not isinstance(exponent, int):
        return False  # NaN / Infinity
    return exponent >= -decimal_places(code)


def foreign_currency_warnings(currency: str, primary_currency: str) -> list[dict]:
    """FOREIGN_CURRENCY warning when a record will not count toward balances."""
    if currency == primary_currency:
        return []
    return [{
        "code": WarningCode.FOREIGN_CURRENCY,
        "message": (
            f"Recorded in {currency}, but the group settles in {primary_currency}. "
            f"It is excluded from balances and settlement plans."
        ),
    }]

"""Validation predicates for untrusted request input."""

import math
import re
from decimal import Decimal, InvalidOperation
from numbers import Real

SUPPORTED_CURRENCIES = ("btc", "eth", "usdt", "ltc", "xmr")
AMOUNT_TOLERANCE = Decimal("0.01")

UUID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)


def is_valid_uuid(value) -> bool:
    """Check for a canonical hyphenated UUID, case-insensitive."""
    return isinstance(value, str) and UUID_PATTERN.fullmatch(value) is not None


def is_supported_currency(value) -> bool:
    """Check a pay currency code against the processor whitelist."""
    return isinstance(value, str) and value.lower() in SUPPORTED_CURRENCIES


def supported_currencies_message() -> str:
    return f"Unsupported currency. Supported currencies: {', '.join(SUPPORTED_CURRENCIES)}"


def is_valid_amount(value) -> bool:
    """Check that a monetary amount is a finite, strictly positive number.

    Booleans and numeric strings are rejected; JSON clients send numbers.
    """
    if isinstance(value, bool) or not isinstance(value, (Real, Decimal)):
        return False
    if isinstance(value, Decimal):
        return value.is_finite() and value > 0
    return math.isfinite(value) and value > 0


def to_decimal(value) -> Decimal:
    """Convert a validated amount to ``Decimal`` without binary float drift."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Not a decimal amount: {value!r}") from e


def amounts_match(amount, total, tolerance: Decimal = AMOUNT_TOLERANCE) -> bool:
    """Check a client-supplied amount against the authoritative order total.

    Args:
        amount: Amount sent by the client
        total: Server-held order total
        tolerance: Maximum absolute difference, inclusive

    Returns:
        bool: True if the amounts agree within the tolerance
    """
    return abs(to_decimal(amount) - to_decimal(total)) <= tolerance

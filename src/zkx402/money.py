"""Money conversion helpers using fixed atomic-unit precision."""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .errors import InvalidPriceError


USDC_DECIMALS = 6
MIN_MONEY = Decimal("0.0001")
MAX_MONEY = Decimal("999999999")

_NON_NUMERIC_RE = re.compile(r"[^0-9.\-]+")


def parse_money(value: Decimal | float | int | str) -> Decimal:
    """Parse a dollar amount such as ``"$0.01"`` or ``0.01`` into a Decimal."""
    raw = value
    if isinstance(value, str):
        raw = _NON_NUMERIC_RE.sub("", value)
    try:
        amount = Decimal(str(raw))
    except InvalidOperation as e:
        raise InvalidPriceError(f"Invalid price: {value!r}") from e
    if not amount.is_finite() or amount < MIN_MONEY or amount > MAX_MONEY:
        raise InvalidPriceError(f"Invalid price: {value!r}")
    return amount


def amount_to_atomic(amount: Decimal, decimals: int = USDC_DECIMALS) -> int:
    """Scale a decimal amount into integer atomic units."""
    scaled = (amount * (Decimal(10) ** decimals)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return int(scaled)


def atomic_to_decimal(value: int | str, decimals: int = USDC_DECIMALS) -> Decimal:
    """Convert integer atomic units to a Decimal amount."""
    return Decimal(int(value)) / (Decimal(10) ** decimals)


def atomic_to_price(value: int | str) -> str:
    """Format atomic units of a 6-decimal asset as a dollar price string.

    The 6-decimal convention is fixed and does not follow the route's asset.
    """
    try:
        amount = atomic_to_decimal(value, USDC_DECIMALS)
    except (ValueError, TypeError) as e:
        raise InvalidPriceError(f"Invalid atomic amount: {value!r}") from e
    return f"${amount:.6f}"

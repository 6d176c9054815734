"""Pure money and tax computation over cart lines.

All amounts are integer cents. Tax rates are percentages held as ``Decimal``
so that truncation to the cent is exact on every platform.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable

from kiosk.models import CartLine

_CENT = Decimal("0.01")


def to_cents(value: object) -> int | None:
    """Convert a dollar amount from the backend (float, str, Decimal) to cents."""
    if value is None or value == "":
        return None
    try:
        dollars = Decimal(str(value))
        if not dollars.is_finite():
            raise InvalidOperation
        cents = (dollars.quantize(_CENT, rounding=ROUND_HALF_UP) * 100).to_integral_value()
    except InvalidOperation as exc:
        raise ValueError(f"Invalid money amount: {value!r}") from exc
    return int(cents)


def to_rate(value: object) -> Decimal | None:
    """Parse a tax rate percentage; empty values mean no rate."""
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid tax rate: {value!r}") from exc


def cents_to_dollars(cents: int) -> float:
    """Dollar float for wire payloads only; never used for arithmetic."""
    return float(Decimal(cents) / 100)


def format_currency(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    return f"{sign}${abs(cents) // 100}.{abs(cents) % 100:02d}"


def line_price(line: CartLine) -> int:
    """Unit price: override, else catalog price, else zero."""
    if line.price_override_cents is not None:
        return line.price_override_cents
    if line.item.price_cents is not None:
        return line.item.price_cents
    return 0


def line_total(line: CartLine) -> int:
    """Unit price times quantity, plus every modifier's own total."""
    own = line_price(line) * line.quantity
    return own + sum(line_total(modifier) for modifier in line.modifiers)


def line_tax(line: CartLine) -> int:
    """Tax for a top-level line, truncated (never rounded) to the cent.

    The line total already includes modifier amounts, so modifiers are taxed
    at the parent's rate and never on their own.
    """
    rate = line.tax_rate
    if not line.item.taxable or rate is None or rate <= 0:
        return 0
    raw = Decimal(line_total(line)) * rate / 100
    return int(raw.to_integral_value(rounding=ROUND_DOWN))


def cart_subtotal(lines: Iterable[CartLine]) -> int:
    return sum(line_total(line) for line in lines)


def cart_tax_total(lines: Iterable[CartLine]) -> int:
    return sum(line_tax(line) for line in lines)


def cart_grand_total(lines: Iterable[CartLine]) -> int:
    lines = tuple(lines)
    return cart_subtotal(lines) + cart_tax_total(lines)

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value: object) -> Decimal | None:
    """Coerce a number or numeric string to Decimal. Returns None when not a finite number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        d = value
    else:
        try:
            # str() first so 0.1 becomes Decimal("0.1"), not its binary expansion
            d = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return None
    if not d.is_finite():
        return None
    return d


def to_amount(value: object) -> Decimal:
    """Revenue-style input: missing, invalid, non-finite or negative values become zero."""
    d = to_decimal(value)
    if d is None or d < 0:
        return ZERO
    return d


def round2(value: Decimal) -> Decimal:
    """Round half-up to cents."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def money_str(value: Decimal) -> str:
    """Serialize an amount for persistence (two decimals)."""
    return f"{round2(value):.2f}"

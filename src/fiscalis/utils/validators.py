from __future__ import annotations

import re
from datetime import date
from decimal import Decimal, InvalidOperation

from fiscalis.services.exceptions import ValidationError

ACTIVITY_CLASSES = frozenset({"service", "goods", "mixed"})


def validate_monetary(value: str) -> str:
    """Validate and normalize a monetary value string.

    Returns the value with exactly 2 decimal places.
    Raises ValidationError for invalid or negative values.
    """
    try:
        d = Decimal(value)
        if not d.is_finite():
            raise InvalidOperation
    except (InvalidOperation, TypeError):
        raise ValidationError(f"Invalid amount: '{value}'") from None
    if d < 0:
        raise ValidationError(f"Amount must not be negative: '{value}'")
    return f"{d:.2f}"


def validate_date(value: str) -> str:
    """Validate an ISO date string (YYYY-MM-DD). Returns the value unchanged."""
    try:
        date.fromisoformat(value)
    except (ValueError, TypeError):
        raise ValidationError(f"Invalid date: '{value}'. Use YYYY-MM-DD.") from None
    return value


def validate_year_month(value: str) -> str:
    """Validate a YYYY-MM month string."""
    if not isinstance(value, str) or not re.fullmatch(r"\d{4}-(0[1-9]|1[0-2])", value):
        raise ValidationError(f"Invalid month: '{value}'. Use YYYY-MM.")
    return value


def validate_year(value: str | int) -> int:
    try:
        year = int(value)
    except (ValueError, TypeError):
        raise ValidationError(f"Invalid year: '{value}'") from None
    if not 1900 <= year <= 2200:
        raise ValidationError(f"Year out of range: {year}")
    return year


def validate_household_parts(value: object) -> Decimal:
    """Household parts: a number >= 1, fractional halves allowed (1.5, 2.5...)."""
    try:
        d = Decimal(str(value))
        if not d.is_finite():
            raise InvalidOperation
    except InvalidOperation:
        raise ValidationError(f"Invalid household parts: '{value}'") from None
    if d < 1:
        raise ValidationError("Household parts must be at least 1")
    return d


def validate_rate(value: object, *, upper_inclusive: bool = True) -> Decimal:
    """Validate a rate in [0, 1] (or [0, 1) when upper_inclusive is False)."""
    try:
        d = Decimal(str(value))
        if not d.is_finite():
            raise InvalidOperation
    except InvalidOperation:
        raise ValidationError(f"Invalid rate: '{value}'") from None
    too_high = d > 1 if upper_inclusive else d >= 1
    if d < 0 or too_high:
        bound = "1" if upper_inclusive else "1 (exclusive)"
        raise ValidationError(f"Rate must be between 0 and {bound}: '{value}'")
    return d


def validate_activity_class(value: str) -> str:
    if value not in ACTIVITY_CLASSES:
        allowed = ", ".join(sorted(ACTIVITY_CLASSES))
        raise ValidationError(f"Unknown activity class '{value}' (expected one of: {allowed})")
    return value

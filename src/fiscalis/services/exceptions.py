from __future__ import annotations


class ValidationError(ValueError):
    """Malformed input rejected at a boundary (settings, CLI arguments, stored records)."""


class NotFoundError(LookupError):
    """A payment-lifecycle operation referenced an obligation id that does not exist."""

    def __init__(self, obligation_id: str) -> None:
        super().__init__(f"Obligation not found: {obligation_id}")
        self.obligation_id = obligation_id


class InvariantViolation(Exception):
    """Fiscal data is missing or inconsistent (e.g. no parameter set for a year)."""

    def __init__(self, message: str, year: int | None = None) -> None:
        super().__init__(message)
        self.year = year

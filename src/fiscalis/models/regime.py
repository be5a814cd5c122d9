from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from fiscalis.utils.periods import add_years
from fiscalis.utils.validators import (
    validate_activity_class,
    validate_date,
    validate_household_parts,
    validate_rate,
)

ACRE_TENURE_YEARS = 3


@dataclass(frozen=True)
class RegimeFlags:
    """Regime choices of the enterprise, validated once at the settings boundary."""

    acre_active: bool = False
    liberatory_election: bool = False
    household_parts: Decimal = Decimal("1")
    abatement_rate: Decimal | None = None  # None: use the year's abatement for activity_class
    creation_date: date | None = None
    activity_class: str = "service"

    def acre_applies_on(self, day: date) -> bool:
        """ACRE rate applies while the flag is on and the tenure has not run out."""
        if not self.acre_active:
            return False
        if self.creation_date is None:
            return True
        return day < add_years(self.creation_date, ACRE_TENURE_YEARS)

    @classmethod
    def from_dict(cls, d: dict | None) -> RegimeFlags:
        """Create RegimeFlags from a YAML/JSON dict, applying defaults for missing keys.

        Raises ValidationError on out-of-range values.
        """
        d = d or {}
        abatement = d.get("abatement_rate")
        creation = d.get("creation_date")
        if isinstance(creation, date):
            creation = creation.isoformat()
        return cls(
            acre_active=bool(d.get("acre_active", False)),
            liberatory_election=bool(d.get("liberatory_election", False)),
            household_parts=validate_household_parts(d.get("household_parts", 1)),
            abatement_rate=(
                validate_rate(abatement, upper_inclusive=False) if abatement is not None else None
            ),
            creation_date=date.fromisoformat(validate_date(creation)) if creation else None,
            activity_class=validate_activity_class(d.get("activity_class", "service")),
        )

    def to_dict(self) -> dict:
        return {
            "acre_active": self.acre_active,
            "liberatory_election": self.liberatory_election,
            "household_parts": str(self.household_parts),
            "abatement_rate": str(self.abatement_rate) if self.abatement_rate is not None else None,
            "creation_date": self.creation_date.isoformat() if self.creation_date else None,
            "activity_class": self.activity_class,
        }

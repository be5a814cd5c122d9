from __future__ import annotations

from dataclasses import dataclass, field

from fiscalis.models.obligation import ChargesRecord
from fiscalis.models.regime import RegimeFlags


@dataclass(frozen=True)
class Company:
    """Enterprise aggregate: regime flags plus the charges ledger it owns."""

    regime: RegimeFlags = field(default_factory=RegimeFlags)
    charges: ChargesRecord = field(default_factory=ChargesRecord)

    @classmethod
    def from_dict(cls, d: dict | None) -> Company:
        d = d or {}
        return cls(
            regime=RegimeFlags.from_dict(d.get("regime")),
            charges=ChargesRecord.from_dict(d.get("charges")),
        )

    def to_dict(self) -> dict:
        return {"regime": self.regime.to_dict(), "charges": self.charges.to_dict()}

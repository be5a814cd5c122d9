from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from types import MappingProxyType

from fiscalis.services.exceptions import InvariantViolation, ValidationError
from fiscalis.utils.validators import ACTIVITY_CLASSES, validate_year_month


def _dec(value: object) -> Decimal:
    return Decimal(str(value))


@dataclass(frozen=True)
class TaxBracket:
    """One progressive income-tax bracket; ``upper`` is None for the last, unbounded one."""

    lower: Decimal
    upper: Decimal | None
    rate: Decimal

    @classmethod
    def from_dict(cls, d: dict) -> TaxBracket:
        upper = d.get("upper")
        return cls(
            lower=_dec(d["lower"]),
            upper=_dec(upper) if upper is not None else None,
            rate=_dec(d["rate"]),
        )

    @property
    def label(self) -> str:
        upper = "∞" if self.upper is None else f"{self.upper}€"
        return f"{self.lower}€ - {upper}"


@dataclass(frozen=True)
class FiscalParameterSet:
    """Legal parameters for one calendar year. Immutable once defined."""

    year: int
    standard_rate: Decimal
    acre_rate: Decimal
    training_rate: Decimal
    liberatory_rate: Decimal
    vat_rate: Decimal
    vat_start_month: str  # YYYY-MM, first liable month
    brackets: tuple[TaxBracket, ...]
    ceilings: Mapping[str, Decimal]
    abatements: Mapping[str, Decimal]

    def __post_init__(self) -> None:
        object.__setattr__(self, "ceilings", MappingProxyType(dict(self.ceilings)))
        object.__setattr__(self, "abatements", MappingProxyType(dict(self.abatements)))
        rates = {
            "standard_rate": self.standard_rate,
            "acre_rate": self.acre_rate,
            "training_rate": self.training_rate,
            "liberatory_rate": self.liberatory_rate,
            "vat_rate": self.vat_rate,
            **{f"abatement[{k}]": v for k, v in self.abatements.items()},
            **{f"bracket[{i}]": b.rate for i, b in enumerate(self.brackets)},
        }
        for name, rate in rates.items():
            if not 0 <= rate <= 1:
                raise InvariantViolation(
                    f"{self.year}: {name}={rate} is outside [0, 1]", year=self.year
                )
        self._check_brackets()
        self._check_activity_classes()
        try:
            validate_year_month(self.vat_start_month)
        except ValidationError as e:
            raise InvariantViolation(f"{self.year}: vat_start_month: {e}", year=self.year) from None

    def _check_activity_classes(self) -> None:
        for name, table in (("ceilings", self.ceilings), ("abatements", self.abatements)):
            missing = sorted(ACTIVITY_CLASSES - table.keys())
            if missing:
                raise InvariantViolation(
                    f"{self.year}: {name} missing activity class(es) {', '.join(missing)}",
                    year=self.year,
                )
        for activity, ceiling in self.ceilings.items():
            if ceiling <= 0:
                raise InvariantViolation(
                    f"{self.year}: ceiling for {activity} must be positive", year=self.year
                )

    def _check_brackets(self) -> None:
        if not self.brackets:
            raise InvariantViolation(f"{self.year}: no income-tax brackets", year=self.year)
        if self.brackets[0].lower != 0:
            raise InvariantViolation(f"{self.year}: first bracket must start at 0", year=self.year)
        for prev, nxt in zip(self.brackets, self.brackets[1:]):
            if prev.upper is None or prev.upper != nxt.lower:
                raise InvariantViolation(
                    f"{self.year}: brackets must be contiguous ({prev.label} / {nxt.label})",
                    year=self.year,
                )
        for b in self.brackets:
            if b.upper is not None and b.upper <= b.lower:
                raise InvariantViolation(
                    f"{self.year}: bracket {b.label} is empty or decreasing", year=self.year
                )
        if self.brackets[-1].upper is not None:
            raise InvariantViolation(f"{self.year}: last bracket must be unbounded", year=self.year)

    @classmethod
    def from_dict(cls, year: int, d: dict) -> FiscalParameterSet:
        """Create a parameter set from a YAML-loaded dict (one entry of fiscal_years.yaml)."""
        try:
            return cls(
                year=int(year),
                standard_rate=_dec(d["standard_rate"]),
                acre_rate=_dec(d["acre_rate"]),
                training_rate=_dec(d["training_rate"]),
                liberatory_rate=_dec(d["liberatory_rate"]),
                vat_rate=_dec(d["vat_rate"]),
                vat_start_month=str(d["vat_start_month"]),
                brackets=tuple(TaxBracket.from_dict(b) for b in d["brackets"]),
                ceilings={k: _dec(v) for k, v in d["ceilings"].items()},
                abatements={k: _dec(v) for k, v in d["abatements"].items()},
            )
        except KeyError as e:
            raise InvariantViolation(
                f"Fiscal parameters for {year} are missing {e.args[0]!r}", year=int(year)
            ) from None
        except (InvalidOperation, TypeError, AttributeError, ValueError) as e:
            raise InvariantViolation(
                f"Malformed fiscal parameters for {year}: {e}", year=int(year)
            ) from None

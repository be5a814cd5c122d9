"""Fiscal parameter sets keyed by calendar year.

Adding a year is a data change: either extend BUILTIN_YEARS or drop a
``fiscal_years.yaml`` in the config directory. Looking up a year that has
no parameter set is fatal (InvariantViolation), never a silent fallback.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from decimal import Decimal

from fiscalis import config as _config
from fiscalis.models.fiscal import FiscalParameterSet, TaxBracket
from fiscalis.services.exceptions import InvariantViolation

logger = logging.getLogger(__name__)

FiscalYearTable = Mapping[int, FiscalParameterSet]


def _brackets(*rows: tuple[int, int | None, str]) -> tuple[TaxBracket, ...]:
    return tuple(
        TaxBracket(Decimal(lo), Decimal(hi) if hi is not None else None, Decimal(rate))
        for lo, hi, rate in rows
    )


BUILTIN_YEARS: dict[int, FiscalParameterSet] = {
    2025: FiscalParameterSet(
        year=2025,
        standard_rate=Decimal("0.211"),
        acre_rate=Decimal("0.1065"),
        training_rate=Decimal("0.002"),
        liberatory_rate=Decimal("0.022"),
        vat_rate=Decimal("0.20"),
        vat_start_month="2025-10",
        brackets=_brackets(
            (0, 11294, "0"),
            (11294, 28797, "0.11"),
            (28797, 82341, "0.30"),
            (82341, 177106, "0.41"),
            (177106, None, "0.45"),
        ),
        ceilings={"service": Decimal("77700"), "goods": Decimal("188700"), "mixed": Decimal("188700")},
        abatements={"service": Decimal("0.34"), "goods": Decimal("0.71"), "mixed": Decimal("0.50")},
    ),
    2026: FiscalParameterSet(
        year=2026,
        standard_rate=Decimal("0.212"),
        acre_rate=Decimal("0.106"),
        training_rate=Decimal("0.002"),
        liberatory_rate=Decimal("0.022"),
        vat_rate=Decimal("0.20"),
        vat_start_month="2025-10",
        brackets=_brackets(
            (0, 11497, "0"),
            (11497, 29314, "0.11"),
            (29314, 83823, "0.30"),
            (83823, 180274, "0.41"),
            (180274, None, "0.45"),
        ),
        ceilings={"service": Decimal("79000"), "goods": Decimal("192000"), "mixed": Decimal("192000")},
        abatements={"service": Decimal("0.34"), "goods": Decimal("0.71"), "mixed": Decimal("0.50")},
    ),
}


def load_fiscal_years(overrides: dict | None = None) -> dict[int, FiscalParameterSet]:
    """Return the built-in table merged with config/fiscal_years.yaml (or ``overrides``)."""
    if overrides is None:
        overrides = _config.load_fiscal_year_overrides()
    table = dict(BUILTIN_YEARS)
    for year, data in overrides.items():
        table[int(year)] = FiscalParameterSet.from_dict(int(year), data)
        logger.info("Loaded fiscal parameters for %s from configuration", year)
    return table


def get_parameters(year: int, table: FiscalYearTable | None = None) -> FiscalParameterSet:
    """Return the parameter set for ``year``. Raises InvariantViolation when undefined."""
    table = BUILTIN_YEARS if table is None else table
    try:
        return table[int(year)]
    except KeyError:
        raise InvariantViolation(f"Missing fiscal parameters for year {year}", year=year) from None

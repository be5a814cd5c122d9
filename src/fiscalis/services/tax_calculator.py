"""Pure fiscal computations: contributions, income tax, VAT and aggregate provisions.

Every function is stateless. Revenue inputs that are missing, negative or not
finite numbers are treated as zero; an undefined fiscal year raises
InvariantViolation through get_parameters().
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from fiscalis.models.regime import RegimeFlags
from fiscalis.services.fiscal_years import FiscalYearTable, get_parameters
from fiscalis.utils.money import ZERO, round2, to_amount, to_decimal
from fiscalis.utils.periods import parse_year_month

logger = logging.getLogger(__name__)

CEILING_WARNING_RATIO = Decimal("0.8")
# Average marginal rate used for the quick charge-rate estimate of the progressive regime
PROGRESSIVE_RATE_ESTIMATE = Decimal("0.11")
LIBERATORY_LABEL = "Liberatory payment"


@dataclass(frozen=True)
class BracketDetail:
    label: str
    base: Decimal
    rate: Decimal
    amount: Decimal


@dataclass(frozen=True)
class IncomeTaxResult:
    tax: Decimal
    taxable_income: Decimal
    quotient: Decimal
    details: tuple[BracketDetail, ...] = ()


@dataclass(frozen=True)
class VatResult:
    collected: Decimal
    deductible: Decimal
    due: Decimal
    revenue_excl_tax: Decimal
    revenue_incl_tax: Decimal
    liable: bool


@dataclass(frozen=True)
class ProvisionBreakdown:
    contribution: Decimal
    income_tax: Decimal
    vat: Decimal | None
    total: Decimal


@dataclass(frozen=True)
class NetIncome:
    revenue: Decimal
    contribution: Decimal
    income_tax: Decimal
    total_charges: Decimal
    net_income: Decimal
    charge_rate: Decimal


@dataclass(frozen=True)
class CeilingStatus:
    ceiling: Decimal
    revenue: Decimal
    usage_ratio: Decimal
    remaining: Decimal
    exceeded: bool
    warning: bool


def _safe_parts(value: object) -> Decimal:
    parts = to_decimal(value)
    return parts if parts is not None and parts >= 1 else Decimal("1")


def _safe_abatement(value: object) -> Decimal:
    rate = to_decimal(value)
    if rate is None:
        return ZERO
    return min(max(rate, ZERO), Decimal("1"))


def compute_contribution(
    revenue: object, year: int, acre_active: bool = False, *, table: FiscalYearTable | None = None
) -> Decimal:
    """Social contribution plus the professional-training contribution, unrounded."""
    ca = to_amount(revenue)
    params = get_parameters(year, table)
    if ca == 0:
        return ZERO
    rate = params.acre_rate if acre_active else params.standard_rate
    return ca * rate + ca * params.training_rate


def compute_income_tax(
    revenue: object,
    *,
    year: int,
    household_parts: object = 1,
    abatement_rate: object = Decimal("0.34"),
    liberatory_election: bool = False,
    table: FiscalYearTable | None = None,
) -> IncomeTaxResult:
    """Income tax on ``revenue``: flat liberatory rate, or progressive household-quotient path.

    On the progressive path each bracket contributes the part of the quotient
    falling inside it; the accumulated figure is scaled back by the number of
    parts and rounded once at the end.
    """
    ca = to_amount(revenue)
    params = get_parameters(year, table)
    if ca == 0:
        return IncomeTaxResult(tax=ZERO, taxable_income=ZERO, quotient=ZERO)

    parts = _safe_parts(household_parts)
    abatement = _safe_abatement(abatement_rate)
    taxable_income = round2(ca * (1 - abatement))
    quotient = round2(taxable_income / parts)

    if liberatory_election:
        tax = round2(ca * params.liberatory_rate)
        detail = BracketDetail(LIBERATORY_LABEL, ca, params.liberatory_rate, tax)
        return IncomeTaxResult(tax, taxable_income, quotient, (detail,))

    accumulated = ZERO
    details: list[BracketDetail] = []
    for bracket in params.brackets:
        if quotient <= bracket.lower:
            break
        top = quotient if bracket.upper is None else min(quotient, bracket.upper)
        base = top - bracket.lower
        amount = base * bracket.rate
        if amount > 0:
            details.append(BracketDetail(bracket.label, base, bracket.rate, round2(amount)))
            accumulated += amount

    return IncomeTaxResult(round2(accumulated * parts), taxable_income, quotient, tuple(details))


def compute_vat(
    revenue_excl_tax: object,
    period_month: str | date,
    deductible_input_excl_tax: object = 0,
    *,
    table: FiscalYearTable | None = None,
) -> VatResult:
    """VAT for one month. Exempt (pass-through) strictly before the VAT start month.

    ``due`` is floored at zero; a VAT credit is not carried anywhere.
    """
    ca = to_amount(revenue_excl_tax)
    year, month = parse_year_month(period_month)
    params = get_parameters(year, table)

    if (year, month) < parse_year_month(params.vat_start_month):
        return VatResult(ZERO, ZERO, ZERO, ca, ca, liable=False)

    collected = round2(ca * params.vat_rate)
    deductible = round2(to_amount(deductible_input_excl_tax) * params.vat_rate)
    due = max(ZERO, round2(collected - deductible))
    return VatResult(collected, deductible, due, ca, ca + collected, liable=True)


def resolve_abatement(regime: RegimeFlags, year: int, table: FiscalYearTable | None = None) -> Decimal:
    """Explicit regime abatement, else the year's flat-rate abatement for the activity class."""
    if regime.abatement_rate is not None:
        return regime.abatement_rate
    params = get_parameters(year, table)
    if regime.activity_class in params.abatements:
        return params.abatements[regime.activity_class]
    return params.abatements["service"]


def compute_provisions(
    revenue: object,
    year: int,
    regime: RegimeFlags,
    *,
    period_month: str | date | None = None,
    deductible_input: object = 0,
    table: FiscalYearTable | None = None,
) -> ProvisionBreakdown:
    """Contribution + income tax (+ VAT when ``period_month`` is given) for one revenue figure.

    The ACRE tenure is checked against the first day of ``period_month``, or of
    ``year`` when no month is given.
    """
    if period_month is not None:
        y, m = parse_year_month(period_month)
        acre = regime.acre_applies_on(date(y, m, 1))
    else:
        acre = regime.acre_applies_on(date(year, 1, 1))

    contribution = round2(compute_contribution(revenue, year, acre, table=table))
    income_tax = compute_income_tax(
        revenue,
        year=year,
        household_parts=regime.household_parts,
        abatement_rate=resolve_abatement(regime, year, table),
        liberatory_election=regime.liberatory_election,
        table=table,
    ).tax

    vat = None
    if period_month is not None:
        vat = compute_vat(revenue, period_month, deductible_input, table=table).due

    total = round2(contribution + income_tax + (vat or ZERO))
    return ProvisionBreakdown(contribution, income_tax, vat, total)


def compute_net_income(
    revenue: object, year: int, regime: RegimeFlags, *, table: FiscalYearTable | None = None
) -> NetIncome:
    """Revenue left after contributions and income tax, with the effective charge rate."""
    ca = to_amount(revenue)
    if ca == 0:
        return NetIncome(ZERO, ZERO, ZERO, ZERO, ZERO, ZERO)
    provisions = compute_provisions(ca, year, regime, table=table)
    total = provisions.total
    return NetIncome(
        revenue=ca,
        contribution=provisions.contribution,
        income_tax=provisions.income_tax,
        total_charges=total,
        net_income=round2(ca - total),
        charge_rate=total / ca,
    )


def total_charge_rate(
    year: int,
    acre_active: bool = False,
    liberatory_election: bool = False,
    abatement_rate: object = Decimal("0.34"),
    *,
    table: FiscalYearTable | None = None,
) -> Decimal:
    """Rough overall charge rate on revenue.

    Without the liberatory election the income-tax share is an estimate
    (average rate on abated revenue); the exact figure needs compute_income_tax().
    """
    params = get_parameters(year, table)
    rate = params.acre_rate if acre_active else params.standard_rate
    if liberatory_election:
        tax_rate = params.liberatory_rate
    else:
        tax_rate = PROGRESSIVE_RATE_ESTIMATE * (1 - _safe_abatement(abatement_rate))
    return rate + params.training_rate + tax_rate


def is_vat_applicable(
    start_month: str | date, end_month: str | date, *, table: FiscalYearTable | None = None
) -> bool:
    """True when a period ending in ``end_month`` reaches the VAT start month."""
    year, month = parse_year_month(end_month)
    params = get_parameters(year, table)
    return (year, month) >= parse_year_month(params.vat_start_month)


def revenue_ceiling(activity_class: str, year: int, *, table: FiscalYearTable | None = None) -> Decimal:
    params = get_parameters(year, table)
    if activity_class not in params.ceilings:
        logger.warning("Unknown activity class %r, using the service ceiling", activity_class)
        return params.ceilings["service"]
    return params.ceilings[activity_class]


def check_revenue_ceiling(
    annual_revenue: object,
    activity_class: str,
    year: int,
    *,
    table: FiscalYearTable | None = None,
) -> CeilingStatus:
    """Usage of the micro-enterprise ceiling; ``warning`` fires above 80% even when exceeded."""
    ca = to_amount(annual_revenue)
    ceiling = revenue_ceiling(activity_class, year, table=table)
    usage = ca / ceiling
    return CeilingStatus(
        ceiling=ceiling,
        revenue=ca,
        usage_ratio=usage,
        remaining=max(ZERO, ceiling - ca),
        exceeded=ca > ceiling,
        warning=usage > CEILING_WARNING_RATIO,
    )

"""Obligation ledger: generation, recomputation and payment lifecycle of charges.

The ledger is the only writer of the company's charges. Every public method
runs inside one critical section (a process-local RLock plus the store's own
lock) and persists the whole record after building new obligation lists;
obligations are never mutated in place.

State machine per obligation::

    Unpaid --recalculate--> Unpaid --mark_paid--> Paid --mark_unpaid--> Unpaid
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime
from decimal import Decimal

from fiscalis.models.company import Company
from fiscalis.models.obligation import (
    CONTRIBUTION,
    INCOME_TAX_INSTALLMENT,
    ChargeObligation,
    ChargesRecord,
    PaymentHistoryEntry,
)
from fiscalis.models.regime import RegimeFlags
from fiscalis.services.exceptions import NotFoundError, ValidationError
from fiscalis.services.fiscal_years import FiscalYearTable
from fiscalis.services.revenue import RevenueSource
from fiscalis.services.tax_calculator import (
    compute_contribution,
    compute_income_tax,
    resolve_abatement,
)
from fiscalis.utils.company_store import CompanyStore
from fiscalis.utils.money import ZERO, round2, to_amount, to_decimal
from fiscalis.utils.periods import Period, add_months, month_periods, quarter_periods

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ObligationStats:
    total: Decimal
    paid: Decimal
    unpaid: Decimal
    count: int
    count_paid: int

    @classmethod
    def of(cls, obligations: list[ChargeObligation]) -> ObligationStats:
        paid = [o for o in obligations if o.paid]
        unpaid = [o for o in obligations if not o.paid]
        return cls(
            total=sum((o.amount for o in obligations), ZERO),
            paid=sum((o.paid_amount if o.paid_amount is not None else o.amount for o in paid), ZERO),
            unpaid=sum((o.amount for o in unpaid), ZERO),
            count=len(obligations),
            count_paid=len(paid),
        )


def _by_deadline(obligations: list[ChargeObligation]) -> list[ChargeObligation]:
    return sorted(obligations, key=lambda o: (o.deadline, o.kind, o.period_index))


class ObligationLedger:
    """Charges of one enterprise aggregate, backed by an injected store."""

    def __init__(
        self,
        store: CompanyStore,
        revenue: RevenueSource,
        table: FiscalYearTable | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.store = store
        self.revenue = revenue
        self.table = table
        self._today = today
        self._lock = threading.RLock()

    # --- persistence helpers ---

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with self._lock, self.store.locked():
            yield

    def _read(self) -> Company:
        return Company.from_dict(self.store.load())

    def _write(self, company: Company) -> None:
        self.store.save(company.to_dict())

    def _aggregate(self, start: date, end: date) -> Decimal:
        return round2(to_amount(self.revenue.aggregate_revenue(start, end)))

    # --- regime ---

    def regime(self) -> RegimeFlags:
        with self._locked():
            return self._read().regime

    def update_regime(self, flags: RegimeFlags) -> None:
        """Replace the regime flags (settings boundary). Existing amounts are left as they are."""
        with self._locked():
            company = self._read()
            if company.regime != flags:
                self._write(replace(company, regime=flags))

    # --- generation ---

    def _contribution_amount(self, revenue: Decimal, year: int, start: date, regime: RegimeFlags) -> Decimal:
        acre = regime.acre_applies_on(start)
        return round2(compute_contribution(revenue, year, acre, table=self.table))

    def _installment_amount(self, revenue: Decimal, year: int, regime: RegimeFlags) -> Decimal:
        if not regime.liberatory_election:
            return ZERO
        return compute_income_tax(
            revenue,
            year=year,
            household_parts=regime.household_parts,
            abatement_rate=resolve_abatement(regime, year, self.table),
            liberatory_election=True,
            table=self.table,
        ).tax

    def _new_obligation(
        self, kind: str, obligation_id: str, year: int, period: Period, revenue: Decimal, amount: Decimal
    ) -> ChargeObligation:
        return ChargeObligation(
            id=obligation_id,
            kind=kind,
            year=year,
            period_index=period.index,
            period_label=period.label,
            window_start=period.start,
            window_end=period.end,
            deadline=period.deadline,
            revenue_basis=revenue,
            amount=amount,
        )

    def generate_contribution_obligations(self, year: int) -> list[ChargeObligation]:
        """Create the missing quarterly contribution obligations of ``year``.

        Existing obligations are left untouched. Returns the ones created.
        """
        with self._locked():
            company = self._read()
            existing = {o.key for o in company.charges.contribution}
            created = []
            for period in quarter_periods(year):
                if (CONTRIBUTION, year, period.index) in existing:
                    continue
                revenue = self._aggregate(period.start, period.end)
                amount = self._contribution_amount(revenue, year, period.start, company.regime)
                created.append(
                    self._new_obligation(
                        CONTRIBUTION, f"contribution-{year}-q{period.index}", year, period, revenue, amount
                    )
                )
            if created:
                charges = replace(
                    company.charges, contribution=company.charges.contribution + tuple(created)
                )
                self._write(replace(company, charges=charges))
            logger.info("Generated %d contribution obligation(s) for %s", len(created), year)
            return created

    def generate_income_tax_installments(self, year: int) -> list[ChargeObligation]:
        """Create the missing monthly installments of ``year`` under the liberatory election.

        No-op without the election. Returns the ones created.
        """
        with self._locked():
            company = self._read()
            if not company.regime.liberatory_election:
                logger.debug("Liberatory election inactive, no installments for %s", year)
                return []
            existing = {o.key for o in company.charges.income_tax_installment}
            created = []
            for period in month_periods(year):
                if (INCOME_TAX_INSTALLMENT, year, period.index) in existing:
                    continue
                revenue = self._aggregate(period.start, period.end)
                amount = self._installment_amount(revenue, year, company.regime)
                created.append(
                    self._new_obligation(
                        INCOME_TAX_INSTALLMENT,
                        f"income-tax-{year}-{period.index:02d}",
                        year,
                        period,
                        revenue,
                        amount,
                    )
                )
            if created:
                charges = replace(
                    company.charges,
                    income_tax_installment=company.charges.income_tax_installment + tuple(created),
                )
                self._write(replace(company, charges=charges))
            logger.info("Generated %d income-tax installment(s) for %s", len(created), year)
            return created

    # --- recomputation ---

    def _recompute(self, obligation: ChargeObligation, regime: RegimeFlags) -> ChargeObligation:
        if obligation.window_start is None or obligation.window_end is None:
            raise ValidationError(f"{obligation.id}: missing computation window")
        revenue = self._aggregate(obligation.window_start, obligation.window_end)
        if obligation.kind == CONTRIBUTION:
            amount = self._contribution_amount(revenue, obligation.year, obligation.window_start, regime)
        elif obligation.kind == INCOME_TAX_INSTALLMENT:
            amount = self._installment_amount(revenue, obligation.year, regime)
        else:
            raise ValidationError(f"{obligation.id}: unknown obligation kind {obligation.kind!r}")
        return replace(obligation, amount=amount, revenue_basis=revenue)

    def recalculate_unpaid(self) -> list[str]:
        """Recompute every unpaid obligation against current revenue and regime.

        Paid obligations are never touched. A failing item keeps its previous
        values and is reported in the returned warning list.
        """
        warnings: list[str] = []
        with self._locked():
            company = self._read()
            regime = company.regime
            rebuilt: dict[str, tuple[ChargeObligation, ...]] = {}
            for kind in (CONTRIBUTION, INCOME_TAX_INSTALLMENT):
                items = []
                for obligation in company.charges.of_kind(kind):
                    if obligation.paid:
                        items.append(obligation)
                        continue
                    try:
                        items.append(self._recompute(obligation, regime))
                    except ValidationError as e:
                        logger.warning("Recalculation skipped: %s", e)
                        warnings.append(str(e))
                        items.append(obligation)
                rebuilt[kind] = tuple(items)
            self._write(replace(company, charges=replace(company.charges, **rebuilt)))
        return warnings

    # --- payment lifecycle ---

    @staticmethod
    def _find(charges: ChargesRecord, obligation_id: str) -> ChargeObligation:
        for obligation in charges.obligations():
            if obligation.id == obligation_id:
                return obligation
        raise NotFoundError(obligation_id)

    @staticmethod
    def _with_obligation(charges: ChargesRecord, updated: ChargeObligation) -> ChargesRecord:
        items = tuple(updated if o.id == updated.id else o for o in charges.of_kind(updated.kind))
        return replace(charges, **{updated.kind: items})

    def get(self, obligation_id: str) -> ChargeObligation:
        with self._locked():
            return self._find(self._read().charges, obligation_id)

    def mark_paid(
        self, obligation_id: str, paid_amount: object, paid_date: date | str | None = None
    ) -> ChargeObligation:
        """Record a payment: freeze the obligation and append a history entry.

        Raises NotFoundError for an unknown id, ValidationError for a bad amount.
        """
        amount = to_decimal(paid_amount)
        if amount is None or amount < 0:
            raise ValidationError(f"Invalid paid amount: {paid_amount!r}")
        if paid_date is None:
            paid_date = self._today()
        elif isinstance(paid_date, str):
            try:
                paid_date = date.fromisoformat(paid_date[:10])
            except ValueError:
                raise ValidationError(f"Invalid payment date: {paid_date!r}") from None

        with self._locked():
            company = self._read()
            target = self._find(company.charges, obligation_id)
            updated = replace(target, paid=True, paid_amount=round2(amount), paid_date=paid_date)
            entry = PaymentHistoryEntry(
                id=f"payment-{obligation_id}-{datetime.now(UTC):%Y%m%dT%H%M%S%f}",
                obligation_id=obligation_id,
                kind=target.kind,
                period_label=target.period_label,
                amount=round2(amount),
                expected_amount=target.amount,
                payment_date=paid_date,
                year=target.year,
            )
            # at most one live entry per obligation
            history = tuple(h for h in company.charges.history if h.obligation_id != obligation_id)
            charges = replace(self._with_obligation(company.charges, updated), history=history + (entry,))
            self._write(replace(company, charges=charges))
            logger.info("Marked %s as paid (%s on %s)", obligation_id, entry.amount, paid_date)
            return updated

    def mark_unpaid(self, obligation_id: str) -> ChargeObligation:
        """Revert a payment: clear payment fields and drop the obligation's history entries."""
        with self._locked():
            company = self._read()
            target = self._find(company.charges, obligation_id)
            updated = replace(target, paid=False, paid_amount=None, paid_date=None)
            history = tuple(h for h in company.charges.history if h.obligation_id != obligation_id)
            charges = replace(self._with_obligation(company.charges, updated), history=history)
            self._write(replace(company, charges=charges))
            logger.info("Marked %s as unpaid", obligation_id)
            return updated

    # --- queries ---

    def _all(self) -> list[ChargeObligation]:
        with self._locked():
            return self._read().charges.obligations()

    def by_year(self, year: int) -> list[ChargeObligation]:
        """Both kinds for ``year``, sorted by deadline."""
        return _by_deadline([o for o in self._all() if o.year == year])

    def overdue(self, as_of: date | None = None) -> list[ChargeObligation]:
        """Unpaid obligations whose deadline is strictly before ``as_of`` (default today)."""
        as_of = as_of or self._today()
        return _by_deadline([o for o in self._all() if not o.paid and o.deadline < as_of])

    def upcoming(self, within_months: int = 3, as_of: date | None = None) -> list[ChargeObligation]:
        """Unpaid obligations due in [as_of, as_of + within_months]."""
        as_of = as_of or self._today()
        horizon = add_months(as_of, within_months)
        return _by_deadline(
            [o for o in self._all() if not o.paid and as_of <= o.deadline <= horizon]
        )

    def statistics(self, year: int) -> dict[str, ObligationStats]:
        obligations = self.by_year(year)
        return {
            CONTRIBUTION: ObligationStats.of([o for o in obligations if o.kind == CONTRIBUTION]),
            INCOME_TAX_INSTALLMENT: ObligationStats.of(
                [o for o in obligations if o.kind == INCOME_TAX_INSTALLMENT]
            ),
            "total": ObligationStats.of(obligations),
        }

    def payment_history(self) -> list[PaymentHistoryEntry]:
        """All payment entries, most recent payment date first."""
        with self._locked():
            history = list(self._read().charges.history)
        return sorted(history, key=lambda h: h.payment_date, reverse=True)

    def export_rows(self, year: int) -> list[dict]:
        """Tabular projection of the year's obligations for an external formatter."""
        return [
            {
                "kind": o.kind,
                "period": o.period_label,
                "deadline": o.deadline.isoformat(),
                "revenue_basis": f"{o.revenue_basis:.2f}",
                "expected_amount": f"{o.amount:.2f}",
                "paid_amount": f"{o.paid_amount:.2f}" if o.paid_amount is not None else None,
                "paid": o.paid,
                "paid_date": o.paid_date.isoformat() if o.paid_date else None,
            }
            for o in self.by_year(year)
        ]

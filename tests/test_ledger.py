from __future__ import annotations

import threading
from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from fiscalis.models.obligation import CONTRIBUTION, INCOME_TAX_INSTALLMENT
from fiscalis.models.regime import RegimeFlags
from fiscalis.services.exceptions import InvariantViolation, NotFoundError, ValidationError
from fiscalis.services.fiscal_years import BUILTIN_YEARS
from fiscalis.services.ledger import ObligationLedger
from fiscalis.utils.company_store import MemoryCompanyStore
from tests.conftest import CountingStore, StubRevenue, monthly_revenue


class TestGenerateContributions:
    def test_four_quarters_with_deadlines(self, ledger):
        created = ledger.generate_contribution_obligations(2025)
        assert [o.period_index for o in created] == [1, 2, 3, 4]
        assert [o.deadline for o in created] == [
            date(2025, 4, 30),
            date(2025, 7, 31),
            date(2025, 10, 31),
            date(2026, 1, 31),
        ]
        assert [o.period_label for o in created] == ["Q1 2025", "Q2 2025", "Q3 2025", "Q4 2025"]

    def test_amounts_from_quarter_revenue(self, ledger):
        created = ledger.generate_contribution_obligations(2025)
        q1 = created[0]
        assert q1.id == "contribution-2025-q1"
        assert q1.kind == CONTRIBUTION
        assert q1.revenue_basis == Decimal("15000.00")
        assert q1.amount == Decimal("3195.00")
        assert q1.window_start == date(2025, 1, 1)
        assert q1.window_end == date(2025, 3, 31)
        assert q1.paid is False

    def test_idempotent(self, ledger, store):
        first = ledger.generate_contribution_obligations(2025)
        ledger.revenue = StubRevenue(monthly_revenue(2025, "9000"))
        assert ledger.generate_contribution_obligations(2025) == []
        again = ledger.by_year(2025)
        contributions = [o for o in again if o.kind == CONTRIBUTION]
        assert len(contributions) == 4
        assert [o.amount for o in contributions] == [o.amount for o in first]

    def test_no_write_when_nothing_new(self, ledger, store):
        ledger.generate_contribution_obligations(2025)
        saves = store.saves
        ledger.generate_contribution_obligations(2025)
        assert store.saves == saves

    def test_zero_revenue(self, store):
        ledger = ObligationLedger(store, StubRevenue())
        created = ledger.generate_contribution_obligations(2025)
        assert all(o.amount == 0 and o.revenue_basis == 0 for o in created)

    def test_acre_tenure_expiry(self, mission_revenue):
        store = MemoryCompanyStore(
            {"regime": {"acre_active": True, "creation_date": "2022-07-01"}}
        )
        ledger = ObligationLedger(store, mission_revenue)
        amounts = [o.amount for o in ledger.generate_contribution_obligations(2025)]
        assert amounts == [
            Decimal("1627.50"),
            Decimal("1627.50"),
            Decimal("3195.00"),
            Decimal("3195.00"),
        ]

    def test_undefined_year_is_fatal(self, ledger, store):
        with pytest.raises(InvariantViolation):
            ledger.generate_contribution_obligations(2031)
        assert store.saves == 0

    def test_concurrent_generation_has_no_duplicates(self, ledger):
        threads = [
            threading.Thread(target=ledger.generate_contribution_obligations, args=(2025,))
            for _ in range(8)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(ledger.by_year(2025)) == 4


class TestGenerateInstallments:
    def test_noop_without_liberatory_election(self, mission_revenue):
        store = CountingStore({"regime": {"liberatory_election": False}})
        ledger = ObligationLedger(store, mission_revenue)
        assert ledger.generate_income_tax_installments(2025) == []
        assert store.saves == 0

    def test_twelve_months(self, ledger):
        created = ledger.generate_income_tax_installments(2025)
        assert len(created) == 12
        assert created[0].id == "income-tax-2025-01"
        assert created[0].period_label == "January 2025"
        assert created[0].kind == INCOME_TAX_INSTALLMENT
        assert created[0].amount == Decimal("110.00")
        assert created[1].deadline == date(2025, 2, 28)
        assert created[11].deadline == date(2025, 12, 31)

    def test_leap_february(self, store, mission_revenue):
        table = {2028: replace(BUILTIN_YEARS[2026], year=2028)}
        ledger = ObligationLedger(store, mission_revenue, table)
        created = ledger.generate_income_tax_installments(2028)
        assert created[1].deadline == date(2028, 2, 29)

    def test_idempotent(self, ledger):
        ledger.generate_income_tax_installments(2025)
        assert ledger.generate_income_tax_installments(2025) == []
        assert len(ledger.by_year(2025)) == 12


class TestRecalculate:
    def test_updates_unpaid(self, ledger):
        ledger.generate_contribution_obligations(2025)
        ledger.revenue = StubRevenue(monthly_revenue(2025, "1000"))
        assert ledger.recalculate_unpaid() == []
        q1 = ledger.get("contribution-2025-q1")
        assert q1.revenue_basis == Decimal("3000.00")
        assert q1.amount == Decimal("639.00")

    def test_paid_obligations_are_frozen(self, ledger):
        ledger.generate_contribution_obligations(2025)
        paid = ledger.mark_paid("contribution-2025-q1", "3200", date(2025, 4, 20))
        ledger.revenue = StubRevenue(monthly_revenue(2025, "1000"))
        ledger.recalculate_unpaid()
        after = ledger.get("contribution-2025-q1")
        assert after == paid
        assert after.amount == Decimal("3195.00")
        assert after.revenue_basis == Decimal("15000.00")
        assert ledger.get("contribution-2025-q2").amount == Decimal("639.00")

    def test_installments_drop_to_zero_when_election_withdrawn(self, ledger):
        ledger.generate_income_tax_installments(2025)
        ledger.update_regime(RegimeFlags(liberatory_election=False))
        ledger.recalculate_unpaid()
        assert all(o.amount == 0 for o in ledger.by_year(2025))

    def test_regime_change_applies_to_unpaid(self, ledger):
        ledger.generate_contribution_obligations(2025)
        ledger.update_regime(RegimeFlags(acre_active=True))
        ledger.recalculate_unpaid()
        assert ledger.get("contribution-2025-q4").amount == Decimal("1627.50")

    def test_bad_item_reported_not_fatal(self, mission_revenue):
        broken = {
            "id": "contribution-2025-q1",
            "kind": "contribution",
            "year": 2025,
            "period_index": 1,
            "period_label": "Q1 2025",
            "deadline": "2025-04-30",
            "amount": "1.00",
        }
        store = MemoryCompanyStore({"charges": {"contribution": [broken]}})
        ledger = ObligationLedger(store, mission_revenue)
        ledger.generate_contribution_obligations(2025)
        warnings = ledger.recalculate_unpaid()
        assert len(warnings) == 1
        assert "contribution-2025-q1" in warnings[0]
        assert ledger.get("contribution-2025-q1").amount == Decimal("1.00")
        assert ledger.get("contribution-2025-q2").amount == Decimal("3195.00")

    def test_unreadable_record_does_not_block_ledger(self, mission_revenue):
        broken = {"id": "contribution-2025-q1", "kind": "contribution", "year": 2025, "period_index": 1}
        store = MemoryCompanyStore({"charges": {"contribution": [broken]}})
        ledger = ObligationLedger(store, mission_revenue, today=lambda: date(2025, 8, 1))
        assert ledger.by_year(2025) == []
        created = ledger.generate_contribution_obligations(2025)
        assert len(created) == 4
        assert created[0].id == "contribution-2025-q1"
        assert ledger.recalculate_unpaid() == []
        assert len(store.load()["charges"]["contribution"]) == 4


class TestPaymentLifecycle:
    def test_mark_paid(self, ledger):
        ledger.generate_contribution_obligations(2025)
        updated = ledger.mark_paid("contribution-2025-q2", "3000.5", "2025-07-15")
        assert updated.paid is True
        assert updated.paid_amount == Decimal("3000.50")
        assert updated.paid_date == date(2025, 7, 15)
        [entry] = ledger.payment_history()
        assert entry.obligation_id == "contribution-2025-q2"
        assert entry.amount == Decimal("3000.50")
        assert entry.expected_amount == Decimal("3195.00")
        assert entry.variance == Decimal("-194.50")
        assert entry.period_label == "Q2 2025"
        assert entry.year == 2025

    def test_mark_paid_defaults_to_today(self, ledger):
        ledger.generate_contribution_obligations(2025)
        assert ledger.mark_paid("contribution-2025-q1", 100).paid_date == date(2025, 8, 1)

    def test_mark_paid_unknown_id(self, ledger):
        with pytest.raises(NotFoundError) as exc:
            ledger.mark_paid("nope", 10)
        assert exc.value.obligation_id == "nope"

    def test_mark_paid_invalid_amount(self, ledger):
        ledger.generate_contribution_obligations(2025)
        with pytest.raises(ValidationError):
            ledger.mark_paid("contribution-2025-q1", "-5")

    def test_mark_paid_invalid_date(self, ledger):
        ledger.generate_contribution_obligations(2025)
        with pytest.raises(ValidationError, match="payment date"):
            ledger.mark_paid("contribution-2025-q1", "10", "2025-02-30")

    def test_mark_unpaid_unknown_id(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.mark_unpaid("nope")

    def test_revert_round_trip(self, ledger):
        ledger.generate_contribution_obligations(2025)
        ledger.mark_paid("contribution-2025-q1", "3195", "2025-04-28")
        before = ledger.payment_history()
        ledger.mark_paid("contribution-2025-q2", "3195", "2025-07-28")
        reverted = ledger.mark_unpaid("contribution-2025-q2")
        assert reverted.paid is False
        assert reverted.paid_amount is None
        assert reverted.paid_date is None
        assert ledger.payment_history() == before

    def test_single_live_history_entry(self, ledger):
        ledger.generate_contribution_obligations(2025)
        ledger.mark_paid("contribution-2025-q1", "100", "2025-04-01")
        ledger.mark_paid("contribution-2025-q1", "3195", "2025-04-28")
        history = ledger.payment_history()
        assert len(history) == 1
        assert history[0].amount == Decimal("3195.00")

    def test_repay_after_unpay_creates_new_entry(self, ledger):
        ledger.generate_contribution_obligations(2025)
        ledger.mark_paid("contribution-2025-q1", "3195", "2025-04-28")
        first = ledger.payment_history()[0]
        ledger.mark_unpaid("contribution-2025-q1")
        assert ledger.payment_history() == []
        ledger.mark_paid("contribution-2025-q1", "3195", "2025-04-29")
        second = ledger.payment_history()[0]
        assert second.payment_date == date(2025, 4, 29)
        assert second != first

    def test_history_sorted_most_recent_first(self, ledger):
        ledger.generate_contribution_obligations(2025)
        ledger.mark_paid("contribution-2025-q1", "1", "2025-04-28")
        ledger.mark_paid("contribution-2025-q3", "1", "2025-10-28")
        ledger.mark_paid("contribution-2025-q2", "1", "2025-07-28")
        dates = [h.payment_date for h in ledger.payment_history()]
        assert dates == [date(2025, 10, 28), date(2025, 7, 28), date(2025, 4, 28)]


class TestQueries:
    @pytest.fixture
    def populated(self, ledger):
        ledger.generate_contribution_obligations(2025)
        ledger.generate_income_tax_installments(2025)
        return ledger

    def test_by_year_merged_and_sorted(self, populated):
        obligations = populated.by_year(2025)
        assert len(obligations) == 16
        deadlines = [o.deadline for o in obligations]
        assert deadlines == sorted(deadlines)
        assert obligations[0].id == "income-tax-2025-01"
        assert obligations[-1].id == "contribution-2025-q4"
        assert populated.by_year(2024) == []

    def test_overdue(self, ledger):
        ledger.generate_contribution_obligations(2025)
        overdue = ledger.overdue(as_of=date(2025, 8, 1))
        assert [o.id for o in overdue] == ["contribution-2025-q1", "contribution-2025-q2"]
        ledger.mark_paid("contribution-2025-q1", "3195", "2025-04-30")
        assert [o.id for o in ledger.overdue(as_of=date(2025, 8, 1))] == ["contribution-2025-q2"]

    def test_overdue_is_strict(self, ledger):
        ledger.generate_contribution_obligations(2025)
        assert [o.id for o in ledger.overdue(as_of=date(2025, 4, 30))] == []

    def test_overdue_defaults_to_today(self, ledger):
        ledger.generate_contribution_obligations(2025)
        assert len(ledger.overdue()) == 2

    def test_upcoming(self, ledger):
        ledger.generate_contribution_obligations(2025)
        upcoming = ledger.upcoming(3, as_of=date(2025, 8, 1))
        assert [o.id for o in upcoming] == ["contribution-2025-q3"]
        upcoming = ledger.upcoming(6, as_of=date(2025, 8, 1))
        assert [o.id for o in upcoming] == ["contribution-2025-q3", "contribution-2025-q4"]

    def test_statistics(self, populated):
        populated.mark_paid("contribution-2025-q1", "3000", "2025-04-30")
        populated.mark_paid("income-tax-2025-01", "110", "2025-01-31")
        stats = populated.statistics(2025)
        contribution = stats[CONTRIBUTION]
        assert contribution.total == Decimal("12780.00")
        assert contribution.paid == Decimal("3000.00")
        assert contribution.unpaid == Decimal("9585.00")
        assert (contribution.count, contribution.count_paid) == (4, 1)
        tax = stats[INCOME_TAX_INSTALLMENT]
        assert tax.total == Decimal("1320.00")
        assert tax.unpaid == Decimal("1210.00")
        total = stats["total"]
        assert total.total == Decimal("14100.00")
        assert total.paid == Decimal("3110.00")
        assert (total.count, total.count_paid) == (16, 2)

    def test_export_rows(self, ledger):
        ledger.generate_contribution_obligations(2025)
        ledger.mark_paid("contribution-2025-q1", "3195", "2025-04-30")
        rows = ledger.export_rows(2025)
        assert rows[0] == {
            "kind": "contribution",
            "period": "Q1 2025",
            "deadline": "2025-04-30",
            "revenue_basis": "15000.00",
            "expected_amount": "3195.00",
            "paid_amount": "3195.00",
            "paid": True,
            "paid_date": "2025-04-30",
        }
        assert rows[1]["paid_amount"] is None

    def test_get_unknown(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.get("contribution-2025-q1")


class TestRegime:
    def test_update_regime_persists(self, ledger, store):
        flags = RegimeFlags(acre_active=True, household_parts=Decimal("2"))
        ledger.update_regime(flags)
        assert ledger.regime() == flags
        assert store.load()["regime"]["household_parts"] == "2"

    def test_update_regime_keeps_charges(self, ledger):
        ledger.generate_contribution_obligations(2025)
        ledger.update_regime(RegimeFlags())
        assert len(ledger.by_year(2025)) == 4

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from fiscalis.services.ledger import ObligationLedger
from fiscalis.services.revenue import MissionRevenue
from fiscalis.utils.company_store import MemoryCompanyStore


class StubRevenue:
    """RevenueSource returning fixed monthly figures; months are 'YYYY-MM' keys."""

    def __init__(self, monthly: dict[str, str] | None = None) -> None:
        self.monthly = {k: Decimal(v) for k, v in (monthly or {}).items()}
        self.calls: list[tuple[date, date]] = []

    def aggregate_revenue(self, start: date, end: date) -> Decimal:
        self.calls.append((start, end))
        total = Decimal("0")
        for ym, amount in self.monthly.items():
            year, month = (int(x) for x in ym.split("-"))
            if start <= date(year, month, 1) <= end:
                total += amount
        return total


def monthly_revenue(year: int, amount: str) -> dict[str, str]:
    return {f"{year}-{m:02d}": amount for m in range(1, 13)}


# --- Regime fixtures ---


@pytest.fixture
def regime_dict() -> dict:
    return {
        "acre_active": False,
        "liberatory_election": True,
        "household_parts": 1,
        "abatement_rate": None,
        "creation_date": "2024-06-01",
        "activity_class": "service",
    }


# --- Mission fixtures ---


@pytest.fixture
def missions_data() -> list[dict]:
    return [
        {
            "client": "Acme Corp",
            "daily_rate": 500,
            "months": [{"month": f"2025-{m:02d}", "days": 10} for m in range(1, 13)],
        }
    ]


@pytest.fixture
def mission_revenue(missions_data) -> MissionRevenue:
    return MissionRevenue.from_dicts(missions_data)


# --- Ledger fixtures ---


class CountingStore(MemoryCompanyStore):
    """In-memory store that counts writes."""

    def __init__(self, record: dict | None = None) -> None:
        super().__init__(record)
        self.saves = 0

    def save(self, record: dict) -> None:
        super().save(record)
        self.saves += 1


@pytest.fixture
def store(regime_dict) -> CountingStore:
    return CountingStore({"regime": regime_dict})


@pytest.fixture
def ledger(store, mission_revenue) -> ObligationLedger:
    return ObligationLedger(store, mission_revenue, today=lambda: date(2025, 8, 1))

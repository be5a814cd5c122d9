"""Revenue collaborator: turns missions (daily rate x days per month) into period revenue."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Protocol

from fiscalis import config as _config
from fiscalis.utils.money import ZERO, to_amount
from fiscalis.utils.periods import parse_year_month

logger = logging.getLogger(__name__)


class RevenueSource(Protocol):
    def aggregate_revenue(self, start: date, end: date) -> Decimal: ...


@dataclass(frozen=True)
class MonthLine:
    month: date  # first day of the month
    days: Decimal

    @classmethod
    def from_dict(cls, d: dict) -> MonthLine:
        """A line carries explicit ``days``, or ``planned_days`` minus ``leave_days``."""
        year, month = parse_year_month(d["month"])
        if d.get("days") is not None:
            days = to_amount(d["days"])
        else:
            days = max(ZERO, to_amount(d.get("planned_days")) - to_amount(d.get("leave_days")))
        return cls(month=date(year, month, 1), days=days)


@dataclass(frozen=True)
class Mission:
    client: str
    daily_rate: Decimal
    lines: tuple[MonthLine, ...]

    @classmethod
    def from_dict(cls, d: dict) -> Mission:
        lines = []
        for raw in d.get("months") or []:
            try:
                lines.append(MonthLine.from_dict(raw))
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed month line in mission %r: %r", d.get("client"), raw)
        return cls(
            client=str(d.get("client", "")),
            daily_rate=to_amount(d.get("daily_rate")),
            lines=tuple(lines),
        )

    def revenue_between(self, start: date, end: date) -> Decimal:
        return sum(
            (line.days * self.daily_rate for line in self.lines if start <= line.month <= end),
            ZERO,
        )

    @property
    def total_revenue(self) -> Decimal:
        return sum((line.days * self.daily_rate for line in self.lines), ZERO)


class MissionRevenue:
    """RevenueSource over a snapshot of missions."""

    def __init__(self, missions: Iterable[Mission]) -> None:
        self.missions = tuple(missions)

    @classmethod
    def from_dicts(cls, data: Iterable[dict]) -> MissionRevenue:
        return cls(Mission.from_dict(d) for d in data)

    @classmethod
    def from_config(cls) -> MissionRevenue:
        """Load missions from config/missions.yaml."""
        return cls.from_dicts(_config.load_missions())

    def aggregate_revenue(self, start: date, end: date) -> Decimal:
        """Revenue of every month line whose month starts inside [start, end]."""
        return sum((m.revenue_between(start, end) for m in self.missions), ZERO)

    def annual_revenue(self, year: int) -> Decimal:
        return self.aggregate_revenue(date(year, 1, 1), date(year, 12, 31))

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from fiscalis.services.exceptions import ValidationError
from fiscalis.utils.money import ZERO, money_str, to_decimal

CONTRIBUTION = "contribution"
INCOME_TAX_INSTALLMENT = "income_tax_installment"
KINDS = (CONTRIBUTION, INCOME_TAX_INSTALLMENT)

logger = logging.getLogger(__name__)


def _date_or_none(value: object) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _amount_or_none(value: object) -> Decimal | None:
    return None if value is None else to_decimal(value)


def _parse_records(rows: Iterable[object] | None, parse: Callable[[dict], object], section: str) -> tuple:
    """Parse stored records, skipping (and logging) the ones that are malformed."""
    parsed = []
    for row in rows or []:
        if not isinstance(row, dict):
            logger.warning("Skipping non-record entry in %s: %r", section, row)
            continue
        try:
            parsed.append(parse(row))
        except ValidationError as e:
            logger.warning("Skipping record in %s: %s", section, e)
    return tuple(parsed)


@dataclass(frozen=True)
class ChargeObligation:
    """One periodic fiscal obligation (a quarter of contributions or a month of tax)."""

    id: str
    kind: str
    year: int
    period_index: int  # quarter 1-4 or month 1-12
    period_label: str
    window_start: date | None
    window_end: date | None
    deadline: date
    revenue_basis: Decimal = ZERO
    amount: Decimal = ZERO
    paid: bool = False
    paid_amount: Decimal | None = None
    paid_date: date | None = None

    @property
    def key(self) -> tuple[str, int, int]:
        return (self.kind, self.year, self.period_index)

    @classmethod
    def from_dict(cls, d: dict) -> ChargeObligation:
        try:
            return cls(
                id=d["id"],
                kind=d["kind"],
                year=int(d["year"]),
                period_index=int(d["period_index"]),
                period_label=d.get("period_label", ""),
                window_start=_date_or_none(d.get("window_start")),
                window_end=_date_or_none(d.get("window_end")),
                deadline=date.fromisoformat(d["deadline"]),
                revenue_basis=to_decimal(d.get("revenue_basis")) or ZERO,
                amount=to_decimal(d.get("amount")) or ZERO,
                paid=bool(d.get("paid", False)),
                paid_amount=_amount_or_none(d.get("paid_amount")),
                paid_date=_date_or_none(d.get("paid_date")),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Malformed obligation record {d.get('id', '?')}: {e}") from e

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "year": self.year,
            "period_index": self.period_index,
            "period_label": self.period_label,
            "window_start": self.window_start.isoformat() if self.window_start else None,
            "window_end": self.window_end.isoformat() if self.window_end else None,
            "deadline": self.deadline.isoformat(),
            "revenue_basis": money_str(self.revenue_basis),
            "amount": money_str(self.amount),
            "paid": self.paid,
            "paid_amount": money_str(self.paid_amount) if self.paid_amount is not None else None,
            "paid_date": self.paid_date.isoformat() if self.paid_date else None,
        }


@dataclass(frozen=True)
class PaymentHistoryEntry:
    """Audit record of one payment action. Inserted or removed, never edited."""

    id: str
    obligation_id: str
    kind: str
    period_label: str
    amount: Decimal
    expected_amount: Decimal
    payment_date: date
    year: int

    @property
    def variance(self) -> Decimal:
        return self.amount - self.expected_amount

    @classmethod
    def from_dict(cls, d: dict) -> PaymentHistoryEntry:
        try:
            return cls(
                id=d["id"],
                obligation_id=d["obligation_id"],
                kind=d["kind"],
                period_label=d.get("period_label", ""),
                amount=to_decimal(d["amount"]) or ZERO,
                expected_amount=to_decimal(d["expected_amount"]) or ZERO,
                payment_date=date.fromisoformat(str(d["payment_date"])[:10]),
                year=int(d["year"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Malformed payment record {d.get('id', '?')}: {e}") from e

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "obligation_id": self.obligation_id,
            "kind": self.kind,
            "period_label": self.period_label,
            "amount": money_str(self.amount),
            "expected_amount": money_str(self.expected_amount),
            "payment_date": self.payment_date.isoformat(),
            "year": self.year,
        }


@dataclass(frozen=True)
class ChargesRecord:
    """The persisted ledger: obligations per kind plus the payment history."""

    contribution: tuple[ChargeObligation, ...] = ()
    income_tax_installment: tuple[ChargeObligation, ...] = ()
    history: tuple[PaymentHistoryEntry, ...] = ()

    def obligations(self) -> list[ChargeObligation]:
        return [*self.contribution, *self.income_tax_installment]

    def of_kind(self, kind: str) -> tuple[ChargeObligation, ...]:
        return getattr(self, kind)

    @classmethod
    def from_dict(cls, d: dict | None) -> ChargesRecord:
        d = d or {}
        return cls(
            contribution=_parse_records(d.get(CONTRIBUTION), ChargeObligation.from_dict, CONTRIBUTION),
            income_tax_installment=_parse_records(
                d.get(INCOME_TAX_INSTALLMENT), ChargeObligation.from_dict, INCOME_TAX_INSTALLMENT
            ),
            history=_parse_records(d.get("history"), PaymentHistoryEntry.from_dict, "history"),
        )

    def to_dict(self) -> dict:
        return {
            CONTRIBUTION: [o.to_dict() for o in self.contribution],
            INCOME_TAX_INSTALLMENT: [o.to_dict() for o in self.income_tax_installment],
            "history": [h.to_dict() for h in self.history],
        }

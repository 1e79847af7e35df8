from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterable

ZERO = Decimal("0")


@dataclass(frozen=True)
class ReportEntry:
    category_id: int
    category_name: str
    category_type: str
    amount: Decimal
    parent_id: int = 0


@dataclass(frozen=True)
class CategorySummary:
    category_id: int
    category_name: str
    category_type: str
    parent_id: int
    total_amount: Decimal
    transaction_count: int


@dataclass(frozen=True)
class MonthlySummary:
    year: int
    month: int
    report_date: str
    income_categories: list[CategorySummary]
    expense_categories: list[CategorySummary]
    total_income: Decimal
    total_expenses: Decimal

    @property
    def net_balance(self) -> Decimal:
        return self.total_income - self.total_expenses


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    if not 1 <= month <= 12:
        raise ValueError("month must be between 1 and 12.")
    last_day = calendar.monthrange(year, month)[1]
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    end = datetime(year, month, last_day, 23, 59, 59, 999999, tzinfo=timezone.utc)
    return start, end


def summarize_month(
    entries: Iterable[ReportEntry],
    year: int,
    month: int,
) -> MonthlySummary:
    month_bounds(year, month)
    totals: dict[int, Decimal] = {}
    counts: dict[int, int] = {}
    meta: dict[int, ReportEntry] = {}
    for entry in entries:
        if entry.category_type not in {"income", "expense"}:
            continue
        totals[entry.category_id] = totals.get(entry.category_id, ZERO) + _coerce_amount(
            entry.amount
        )
        counts[entry.category_id] = counts.get(entry.category_id, 0) + 1
        meta.setdefault(entry.category_id, entry)

    summaries = [
        CategorySummary(
            category_id=category_id,
            category_name=meta[category_id].category_name,
            category_type=meta[category_id].category_type,
            parent_id=meta[category_id].parent_id,
            total_amount=totals[category_id],
            transaction_count=counts[category_id],
        )
        for category_id in totals
    ]
    summaries.sort(key=lambda item: (-item.total_amount, item.category_name))
    income = [item for item in summaries if item.category_type == "income"]
    expenses = [item for item in summaries if item.category_type == "expense"]

    return MonthlySummary(
        year=year,
        month=month,
        report_date=date(year, month, 1).isoformat(),
        income_categories=income,
        expense_categories=expenses,
        total_income=sum((item.total_amount for item in income), ZERO),
        total_expenses=sum((item.total_amount for item in expenses), ZERO),
    )


def _coerce_amount(value: Decimal | float | int | str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.engine import Engine

from expense_tracker.db import categories, store_errors, transactions
from expense_tracker.report_engine import ReportEntry, month_bounds, summarize_month
from expense_tracker.schemas import (
    CategorySummaryResponse,
    MonthlySummaryQuery,
    MonthlySummaryResponse,
    SummaryTotalsResponse,
)


def monthly_summary(
    engine: Engine,
    query: MonthlySummaryQuery,
    user_id: int,
    now: datetime | None = None,
) -> MonthlySummaryResponse:
    now = now or datetime.now(timezone.utc)
    year = query.year or now.year
    month = query.month or now.month
    start, end = month_bounds(year, month)

    with store_errors("Failed to fetch monthly summary"):
        with engine.connect() as conn:
            rows = conn.execute(
                select(
                    transactions.c.amount,
                    categories.c.id.label("category_id"),
                    categories.c.name.label("category_name"),
                    categories.c.category_type,
                    categories.c.parent_id,
                )
                .select_from(
                    transactions.join(categories, categories.c.id == transactions.c.category_id)
                )
                .where(
                    transactions.c.user_id == user_id,
                    transactions.c.active.is_(True),
                    categories.c.active.is_(True),
                    transactions.c.transaction_date >= start,
                    transactions.c.transaction_date <= end,
                )
            ).mappings().all()

    summary = summarize_month(
        [
            ReportEntry(
                category_id=row["category_id"],
                category_name=row["category_name"],
                category_type=row["category_type"],
                amount=row["amount"],
                parent_id=row["parent_id"],
            )
            for row in rows
        ],
        year,
        month,
    )
    return MonthlySummaryResponse(
        year=summary.year,
        month=summary.month,
        report_date=summary.report_date,
        income_categories=[
            CategorySummaryResponse(**vars(item)) for item in summary.income_categories
        ],
        expense_categories=[
            CategorySummaryResponse(**vars(item)) for item in summary.expense_categories
        ],
        totals=SummaryTotalsResponse(
            total_income=summary.total_income,
            total_expenses=summary.total_expenses,
            net_balance=summary.net_balance,
        ),
    )

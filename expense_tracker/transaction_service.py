import logging
import math
import re
import time
from typing import Any, Mapping

from sqlalchemy import func, insert, select, update
from sqlalchemy.engine import Connection, Engine

from expense_tracker.db import accounts, categories, currencies, store_errors, transactions
from expense_tracker.errors import ReferenceNotFoundError, TransactionNotFoundError
from expense_tracker.observability import log_mutation, log_query_attempt, summarize_query
from expense_tracker.schemas import (
    PaginationResponse,
    TransactionCreate,
    TransactionPage,
    TransactionResponse,
    TransactionsQuery,
    TransactionUpdate,
)

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 1000
MIN_SEARCH_LENGTH = 2
_UNSAFE_CHARS = re.compile(r"[<>'\"&]")
_WHITESPACE = re.compile(r"\s+")

SORT_COLUMNS = {
    "transaction_date": transactions.c.transaction_date,
    "amount": transactions.c.amount,
}


def sanitize_text(value: str, max_length: int = MAX_COMMENT_LENGTH) -> str:
    cleaned = _UNSAFE_CHARS.sub("", value)
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    return cleaned[:max_length]


def escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def transaction_select():
    return select(
        transactions,
        func.coalesce(accounts.c.name, "Unknown Account").label("account_name"),
        func.coalesce(categories.c.name, "Unknown Category").label("category_name"),
        func.coalesce(categories.c.category_type, "expense").label("category_type"),
        func.coalesce(currencies.c.code, "Unknown").label("currency_code"),
    ).select_from(
        transactions.outerjoin(accounts, accounts.c.id == transactions.c.account_id)
        .outerjoin(categories, categories.c.id == transactions.c.category_id)
        .outerjoin(currencies, currencies.c.id == transactions.c.currency_id)
    )


def to_transaction_response(row: Mapping[str, Any]) -> TransactionResponse:
    return TransactionResponse(
        id=row["id"],
        user_id=row["user_id"],
        transaction_date=row["transaction_date"],
        account_id=row["account_id"],
        account_name=row["account_name"],
        category_id=row["category_id"],
        category_name=row["category_name"],
        category_type=row["category_type"],
        amount=row["amount"],
        currency_id=row["currency_id"],
        currency_code=row["currency_code"],
        comment=row["comment"],
        active=row["active"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def order_by_for(sort: str):
    column_name, direction = sort.split(":")
    column = SORT_COLUMNS[column_name]
    primary = column.asc() if direction == "asc" else column.desc()
    return [primary, transactions.c.id.asc()]


class TransactionService:
    def __init__(self, engine: Engine):
        self.engine = engine

    def list_transactions(self, query: TransactionsQuery, user_id: int) -> TransactionPage:
        started = time.perf_counter()
        conditions = [transactions.c.user_id == user_id]
        if not query.include_inactive:
            conditions.append(transactions.c.active.is_(True))
        if query.account_id is not None:
            conditions.append(transactions.c.account_id == query.account_id)
        if query.category_id is not None:
            conditions.append(transactions.c.category_id == query.category_id)
        if query.date_from is not None:
            conditions.append(transactions.c.transaction_date >= query.date_from)
        if query.date_to is not None:
            conditions.append(transactions.c.transaction_date <= query.date_to)
        if query.search:
            term = sanitize_text(query.search)
            if len(term) >= MIN_SEARCH_LENGTH:
                conditions.append(
                    transactions.c.comment.ilike(f"%{escape_like(term)}%", escape="\\")
                )

        summary = summarize_query(
            page=query.page, limit=query.limit, sort=query.sort, filters=query.filters()
        )
        try:
            with store_errors("Failed to fetch transactions"):
                with self.engine.connect() as conn:
                    total = conn.execute(
                        select(func.count()).select_from(transactions).where(*conditions)
                    ).scalar_one()
                    rows = conn.execute(
                        transaction_select()
                        .where(*conditions)
                        .order_by(*order_by_for(query.sort))
                        .limit(query.limit)
                        .offset((query.page - 1) * query.limit)
                    ).mappings().all()
        except Exception as exc:
            log_query_attempt(
                "list_transactions",
                user_id,
                success=False,
                duration_ms=_elapsed_ms(started),
                query=summary,
                error=str(exc),
            )
            raise

        log_query_attempt(
            "list_transactions",
            user_id,
            success=True,
            duration_ms=_elapsed_ms(started),
            query=summary,
            result_count=len(rows),
        )
        return TransactionPage(
            data=[to_transaction_response(row) for row in rows],
            pagination=PaginationResponse(
                total_items=total,
                total_pages=math.ceil(total / query.limit) if total else 0,
                current_page=query.page,
                per_page=query.limit,
            ),
        )

    def get_transaction(self, transaction_id: int, user_id: int) -> TransactionResponse:
        with store_errors("Failed to fetch transaction"):
            with self.engine.connect() as conn:
                row = self._fetch(conn, transaction_id, user_id)
        if not row:
            raise TransactionNotFoundError()
        return to_transaction_response(row)

    def create_transaction(
        self, payload: TransactionCreate, user_id: int
    ) -> TransactionResponse:
        comment = sanitize_text(payload.comment) if payload.comment else None
        try:
            with store_errors("Failed to create transaction"):
                with self.engine.begin() as conn:
                    self._validate_references(
                        conn,
                        user_id,
                        account_id=payload.account_id,
                        category_id=payload.category_id,
                        currency_id=payload.currency_id,
                    )
                    transaction_id = conn.execute(
                        insert(transactions)
                        .values(
                            user_id=user_id,
                            transaction_date=payload.transaction_date,
                            account_id=payload.account_id,
                            category_id=payload.category_id,
                            amount=payload.amount,
                            currency_id=payload.currency_id,
                            comment=comment or None,
                            active=True,
                        )
                        .returning(transactions.c.id)
                    ).scalar_one()
                    row = self._fetch(conn, transaction_id, user_id)
        except Exception as exc:
            log_mutation("create_transaction", user_id, success=False, error=str(exc))
            raise
        log_mutation("create_transaction", user_id, success=True, transaction_id=transaction_id)
        return to_transaction_response(row)

    def update_transaction(
        self, transaction_id: int, payload: TransactionUpdate, user_id: int
    ) -> TransactionResponse:
        values = payload.provided()
        if "comment" in values:
            comment = values["comment"]
            values["comment"] = (sanitize_text(comment) or None) if comment else None
        try:
            with store_errors("Failed to update transaction"):
                with self.engine.begin() as conn:
                    if not self._fetch(conn, transaction_id, user_id):
                        raise TransactionNotFoundError()
                    self._validate_references(
                        conn,
                        user_id,
                        account_id=values.get("account_id"),
                        category_id=values.get("category_id"),
                        currency_id=values.get("currency_id"),
                    )
                    conn.execute(
                        update(transactions)
                        .where(
                            transactions.c.id == transaction_id,
                            transactions.c.user_id == user_id,
                        )
                        .values(**values, updated_at=func.now())
                    )
                    row = self._fetch(conn, transaction_id, user_id)
        except Exception as exc:
            log_mutation(
                "update_transaction",
                user_id,
                success=False,
                error=str(exc),
                transaction_id=transaction_id,
            )
            raise
        log_mutation("update_transaction", user_id, success=True, transaction_id=transaction_id)
        return to_transaction_response(row)

    def delete_transaction(self, transaction_id: int, user_id: int) -> None:
        with store_errors("Failed to delete transaction"):
            with self.engine.begin() as conn:
                result = conn.execute(
                    update(transactions)
                    .where(
                        transactions.c.id == transaction_id,
                        transactions.c.user_id == user_id,
                        transactions.c.active.is_(True),
                    )
                    .values(active=False, updated_at=func.now())
                )
                if result.rowcount == 0:
                    raise TransactionNotFoundError()
        log_mutation("delete_transaction", user_id, success=True, transaction_id=transaction_id)

    def _fetch(self, conn: Connection, transaction_id: int, user_id: int):
        return conn.execute(
            transaction_select().where(
                transactions.c.id == transaction_id,
                transactions.c.user_id == user_id,
                transactions.c.active.is_(True),
            )
        ).mappings().first()

    def _validate_references(
        self,
        conn: Connection,
        user_id: int,
        *,
        account_id: int | None = None,
        category_id: int | None = None,
        currency_id: int | None = None,
    ) -> None:
        if account_id is not None:
            found = conn.execute(
                select(accounts.c.id).where(
                    accounts.c.id == account_id,
                    accounts.c.user_id == user_id,
                    accounts.c.active.is_(True),
                )
            ).first()
            if not found:
                raise ReferenceNotFoundError("Account not found or not accessible")
        if category_id is not None:
            found = conn.execute(
                select(categories.c.id).where(
                    categories.c.id == category_id,
                    categories.c.user_id == user_id,
                    categories.c.active.is_(True),
                )
            ).first()
            if not found:
                raise ReferenceNotFoundError("Category not found or not accessible")
        if currency_id is not None:
            found = conn.execute(
                select(currencies.c.id).where(
                    currencies.c.id == currency_id, currencies.c.active.is_(True)
                )
            ).first()
            if not found:
                raise ReferenceNotFoundError("Currency not found")


def _elapsed_ms(started: float) -> int:
    return int(round((time.perf_counter() - started) * 1000))

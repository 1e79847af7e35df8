import logging
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from typing import Any, Mapping, Sequence

from sqlalchemy import func, insert, select, update
from sqlalchemy.engine import Connection, Engine

from expense_tracker.balance import ZERO, LedgerEntry, compute_balances
from expense_tracker.config import DEFAULT_BALANCE_FALLBACK_WORKERS
from expense_tracker.db import accounts, categories, currencies, store_errors, transactions
from expense_tracker.errors import AccountNotFoundError, CurrencyNotFoundError
from expense_tracker.observability import log_mutation
from expense_tracker.schemas import AccountCreate, AccountResponse, AccountUpdate

logger = logging.getLogger(__name__)


def account_select():
    return select(
        accounts,
        currencies.c.code.label("currency_code"),
        currencies.c.description.label("currency_description"),
    ).select_from(accounts.join(currencies, currencies.c.id == accounts.c.currency_id))


def to_account_response(row: Mapping[str, Any], balance: Decimal) -> AccountResponse:
    return AccountResponse(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        currency_id=row["currency_id"],
        currency_code=row["currency_code"],
        currency_description=row["currency_description"],
        tag=row["tag"],
        balance=balance,
        active=row["active"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def ensure_active_currency(conn: Connection, currency_id: int) -> None:
    found = conn.execute(
        select(currencies.c.id).where(currencies.c.id == currency_id, currencies.c.active.is_(True))
    ).first()
    if not found:
        raise CurrencyNotFoundError()


class AccountService:
    def __init__(self, engine: Engine, fallback_workers: int = DEFAULT_BALANCE_FALLBACK_WORKERS):
        self.engine = engine
        self.fallback_workers = max(1, fallback_workers)

    def list_accounts(self, user_id: int, include_inactive: bool = False) -> list[AccountResponse]:
        return self._accounts_with_balances(user_id, include_inactive=include_inactive)

    def get_account(self, account_id: int, user_id: int) -> AccountResponse:
        found = self._accounts_with_balances(user_id, account_id=account_id)
        if not found:
            raise AccountNotFoundError()
        return found[0]

    def create_account(self, payload: AccountCreate, user_id: int) -> AccountResponse:
        with store_errors("Failed to create account"):
            with self.engine.begin() as conn:
                ensure_active_currency(conn, payload.currency_id)
                account_id = conn.execute(
                    insert(accounts)
                    .values(
                        user_id=user_id,
                        name=payload.name,
                        currency_id=payload.currency_id,
                        tag=payload.tag,
                        active=True,
                    )
                    .returning(accounts.c.id)
                ).scalar_one()
                row = conn.execute(
                    account_select().where(accounts.c.id == account_id)
                ).mappings().one()
        log_mutation("create_account", user_id, success=True, account_id=account_id)
        return to_account_response(row, ZERO)

    def update_account(
        self, account_id: int, payload: AccountUpdate, user_id: int
    ) -> AccountResponse:
        values = payload.provided()
        with store_errors("Failed to update account"):
            with self.engine.begin() as conn:
                if not self._is_active(conn, account_id, user_id):
                    raise AccountNotFoundError()
                if "currency_id" in values:
                    ensure_active_currency(conn, values["currency_id"])
                if values:
                    conn.execute(
                        update(accounts)
                        .where(accounts.c.id == account_id, accounts.c.user_id == user_id)
                        .values(**values, updated_at=func.now())
                    )
        log_mutation("update_account", user_id, success=True, account_id=account_id)
        return self.get_account(account_id, user_id)

    def soft_delete_account(self, account_id: int, user_id: int) -> None:
        with store_errors("Failed to verify account"):
            with self.engine.connect() as conn:
                exists = self._is_active(conn, account_id, user_id)
        if not exists:
            raise AccountNotFoundError("Account not found or access denied")

        # Two independent writes: if the second fails the account's
        # transactions stay deactivated while the account remains active.
        with store_errors("Failed to deactivate account transactions"):
            with self.engine.begin() as conn:
                conn.execute(
                    update(transactions)
                    .where(
                        transactions.c.account_id == account_id,
                        transactions.c.user_id == user_id,
                        transactions.c.active.is_(True),
                    )
                    .values(active=False, updated_at=func.now())
                )
        with store_errors("Failed to delete account"):
            with self.engine.begin() as conn:
                conn.execute(
                    update(accounts)
                    .where(accounts.c.id == account_id, accounts.c.user_id == user_id)
                    .values(active=False, updated_at=func.now())
                )
        log_mutation("delete_account", user_id, success=True, account_id=account_id)

    def _is_active(self, conn: Connection, account_id: int, user_id: int) -> bool:
        found = conn.execute(
            select(accounts.c.id).where(
                accounts.c.id == account_id,
                accounts.c.user_id == user_id,
                accounts.c.active.is_(True),
            )
        ).first()
        return found is not None

    def _account_rows(
        self,
        conn: Connection,
        user_id: int,
        *,
        include_inactive: bool = False,
        account_id: int | None = None,
    ) -> Sequence[Mapping[str, Any]]:
        stmt = account_select().where(accounts.c.user_id == user_id)
        if account_id is not None:
            stmt = stmt.where(accounts.c.id == account_id, accounts.c.active.is_(True))
        elif not include_inactive:
            stmt = stmt.where(accounts.c.active.is_(True))
        return conn.execute(stmt.order_by(accounts.c.name.asc())).mappings().all()

    def _accounts_with_balances(
        self,
        user_id: int,
        *,
        include_inactive: bool = False,
        account_id: int | None = None,
    ) -> list[AccountResponse]:
        try:
            with self.engine.connect() as conn:
                rows = self._account_rows(
                    conn, user_id, include_inactive=include_inactive, account_id=account_id
                )
                balances = self._view_balances(conn, user_id, [row["id"] for row in rows])
        except Exception:
            logger.warning(
                "Balance view query failed, falling back to per-account function",
                extra={"user_id": user_id, "operation": "list_accounts"},
                exc_info=True,
            )
            return self._accounts_with_function_balances(
                user_id, include_inactive=include_inactive, account_id=account_id
            )
        return [to_account_response(row, balances[row["id"]]) for row in rows]

    def _view_balances(
        self, conn: Connection, user_id: int, account_ids: list[int]
    ) -> dict[int, Decimal]:
        if not account_ids:
            return {}
        rows = conn.execute(
            select(
                transactions.c.account_id,
                transactions.c.amount,
                categories.c.category_type,
            )
            .select_from(
                transactions.join(
                    categories,
                    (categories.c.id == transactions.c.category_id)
                    & categories.c.active.is_(True),
                )
            )
            .where(
                transactions.c.user_id == user_id,
                transactions.c.account_id.in_(account_ids),
                transactions.c.active.is_(True),
            )
        ).mappings()
        entries = [
            LedgerEntry(
                account_id=row["account_id"],
                amount=row["amount"],
                category_type=row["category_type"],
            )
            for row in rows
        ]
        return compute_balances(entries, account_ids)

    def _accounts_with_function_balances(
        self,
        user_id: int,
        *,
        include_inactive: bool = False,
        account_id: int | None = None,
    ) -> list[AccountResponse]:
        with store_errors("Failed to fetch accounts"):
            with self.engine.connect() as conn:
                rows = self._account_rows(
                    conn, user_id, include_inactive=include_inactive, account_id=account_id
                )
        if not rows:
            return []
        workers = min(self.fallback_workers, len(rows))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            balances = list(
                pool.map(lambda row: self.function_balance(row["id"], user_id), rows)
            )
        return [to_account_response(row, balance) for row, balance in zip(rows, balances)]

    def function_balance(self, account_id: int, user_id: int) -> Decimal:
        """Balance from the store-side function; zero when the call fails."""
        try:
            with self.engine.connect() as conn:
                value = conn.execute(
                    select(func.calculate_account_balance(account_id, user_id))
                ).scalar()
        except Exception:
            logger.warning(
                "calculate_account_balance failed for account %s",
                account_id,
                extra={"user_id": user_id, "operation": "calculate_account_balance"},
                exc_info=True,
            )
            return ZERO
        if value is None:
            return ZERO
        return value if isinstance(value, Decimal) else Decimal(str(value))

from datetime import datetime, timezone
from decimal import Decimal

from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event, insert, select
from sqlalchemy.pool import StaticPool

from expense_tracker.auth import hash_password
from expense_tracker.db import accounts, categories, currencies, init_db, transactions, users
from expense_tracker.main import app


# Same body as the PostgreSQL calculate_account_balance function.
ACCOUNT_BALANCE_SQL = (
    "SELECT COALESCE(SUM(CASE WHEN c.category_type = 'income' "
    "THEN t.amount ELSE -t.amount END), 0) "
    "FROM transactions t "
    "JOIN categories c ON c.id = t.category_id AND c.active "
    "WHERE t.account_id = ? AND t.user_id = ? AND t.active"
)


def register_balance_function(dbapi_connection, connection_record) -> None:
    def calculate_account_balance(account_id, user_id):
        total = dbapi_connection.execute(ACCOUNT_BALANCE_SQL, (account_id, user_id)).fetchone()[0]
        return round(total, 2)

    dbapi_connection.create_function("calculate_account_balance", 2, calculate_account_balance)


def make_engine(balance_function: bool = True):
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    if balance_function:
        event.listen(engine, "connect", register_balance_function)
    init_db(engine)
    return engine


def make_client(engine) -> TestClient:
    app.state.engine = engine
    return TestClient(app, raise_server_exceptions=False)


def create_user(engine, email: str = "user@example.com", password: str = "secret123") -> int:
    with engine.begin() as conn:
        return conn.execute(
            insert(users)
            .values(email=email, hashed_password=hash_password(password))
            .returning(users.c.id)
        ).scalar_one()


def currency_id(engine, code: str) -> int:
    with engine.connect() as conn:
        return conn.execute(select(currencies.c.id).where(currencies.c.code == code)).scalar_one()


def create_account(engine, user_id: int, name: str = "Wallet", code: str = "PLN") -> int:
    resolved_currency = currency_id(engine, code)
    with engine.begin() as conn:
        return conn.execute(
            insert(accounts)
            .values(
                user_id=user_id,
                name=name,
                currency_id=resolved_currency,
                active=True,
            )
            .returning(accounts.c.id)
        ).scalar_one()


def create_category(
    engine,
    user_id: int,
    name: str = "Food",
    category_type: str = "expense",
    parent_id: int = 0,
    active: bool = True,
) -> int:
    with engine.begin() as conn:
        return conn.execute(
            insert(categories)
            .values(
                user_id=user_id,
                name=name,
                category_type=category_type,
                parent_id=parent_id,
                active=active,
            )
            .returning(categories.c.id)
        ).scalar_one()


def create_transaction(
    engine,
    user_id: int,
    account_id: int,
    category_id: int,
    amount: str,
    *,
    when: datetime | None = None,
    comment: str | None = None,
    code: str = "PLN",
) -> int:
    resolved_currency = currency_id(engine, code)
    with engine.begin() as conn:
        return conn.execute(
            insert(transactions)
            .values(
                user_id=user_id,
                transaction_date=when or datetime(2024, 1, 15, 10, tzinfo=timezone.utc),
                account_id=account_id,
                category_id=category_id,
                amount=Decimal(amount),
                currency_id=resolved_currency,
                comment=comment,
                active=True,
            )
            .returning(transactions.c.id)
        ).scalar_one()


def auth_headers(user_id: int) -> dict[str, str]:
    return {"x-user-id": str(user_id)}

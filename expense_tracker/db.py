import logging
from contextlib import contextmanager
from typing import Any, Iterator

from fastapi import Request
from sqlalchemy import (
    DDL,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    create_engine,
    event,
    func,
    insert,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from expense_tracker.errors import (
    ApiError,
    DatabaseError,
    InvalidReferenceError,
    ServiceUnavailableError,
)

logger = logging.getLogger(__name__)

metadata = MetaData()

DEFAULT_CURRENCIES = [
    ("PLN", "Polski Złoty"),
    ("EUR", "Euro"),
    ("USD", "US Dollar"),
    ("GBP", "British Pound"),
    ("CHF", "Swiss Franc"),
    ("CZK", "Czech Koruna"),
]

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), unique=True, nullable=False),
    Column("hashed_password", String(255), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)

currencies = Table(
    "currencies",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("code", String(3), unique=True, nullable=False),
    Column("description", String(100), nullable=False),
    Column("active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column(
        "updated_at",
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    ),
)

accounts = Table(
    "accounts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("name", String(100), nullable=False),
    Column("currency_id", Integer, ForeignKey("currencies.id"), nullable=False),
    Column("tag", String(10)),
    Column("active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column(
        "updated_at",
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    ),
)

categories = Table(
    "categories",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("name", String(100), nullable=False),
    Column("category_type", String(10), nullable=False),
    Column("parent_id", Integer, nullable=False, default=0),
    Column("tag", String(10)),
    Column("active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column(
        "updated_at",
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    ),
)

transactions = Table(
    "transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("transaction_date", DateTime(timezone=True), nullable=False),
    Column("account_id", Integer, ForeignKey("accounts.id"), nullable=False, index=True),
    Column("category_id", Integer, ForeignKey("categories.id"), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("currency_id", Integer, ForeignKey("currencies.id"), nullable=False),
    Column("comment", String(1000)),
    Column("active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column(
        "updated_at",
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    ),
)

# Signed balance of one account: income adds, expense subtracts. Only active
# transactions in active categories count.
CALCULATE_ACCOUNT_BALANCE = DDL(
    """
    CREATE OR REPLACE FUNCTION calculate_account_balance(p_account_id integer, p_user_id integer)
    RETURNS numeric AS $$
        SELECT COALESCE(SUM(
            CASE WHEN c.category_type = 'income' THEN t.amount ELSE -t.amount END
        ), 0)
        FROM transactions t
        JOIN categories c ON c.id = t.category_id AND c.active
        WHERE t.account_id = p_account_id
          AND t.user_id = p_user_id
          AND t.active
    $$ LANGUAGE sql STABLE
    """
)

event.listen(
    metadata,
    "after_create",
    CALCULATE_ACCOUNT_BALANCE.execute_if(dialect="postgresql"),
)


def build_engine(database_url: str) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    return create_engine(database_url, connect_args=connect_args)


def seed_currencies(conn) -> None:
    existing = conn.execute(select(currencies.c.id).limit(1)).first()
    if existing:
        return
    conn.execute(
        insert(currencies),
        [
            {"code": code, "description": description, "active": True}
            for code, description in DEFAULT_CURRENCIES
        ],
    )


def init_db(engine: Engine) -> None:
    metadata.create_all(engine)
    with engine.begin() as conn:
        seed_currencies(conn)


def check_connection(engine: Engine) -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Database connectivity check failed")
        return False
    return True


@contextmanager
def store_errors(operation: str, **database_error: Any) -> Iterator[None]:
    """Translate SQLAlchemy failures raised inside the block into API errors.

    Typed API errors raised inside the block pass through untouched.
    """
    try:
        yield
    except ApiError:
        raise
    except IntegrityError as exc:
        logger.warning("%s: integrity violation", operation, extra={"operation": operation})
        raise InvalidReferenceError() from exc
    except SQLAlchemyError as exc:
        logger.error(
            "%s: %s", operation, exc.__class__.__name__, extra={"operation": operation}, exc_info=True
        )
        raise DatabaseError(operation, **database_error) from exc


def get_engine(request: Request) -> Engine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise ServiceUnavailableError()
    return engine

import logging
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import Engine

from expense_tracker.account_service import AccountService
from expense_tracker.auth import CurrentUser, authenticate_user, get_current_user, register_user
from expense_tracker.category_service import CategoryService
from expense_tracker.config import get_settings
from expense_tracker.currency_service import list_currencies
from expense_tracker.db import build_engine, check_connection, get_engine, init_db
from expense_tracker.error_handlers import register_error_handlers
from expense_tracker.errors import ApiError, InvalidDateRangeError, PageNotFoundError
from expense_tracker.observability import log_security_event, setup_logging
from expense_tracker.report_service import monthly_summary
from expense_tracker.request import json_body
from expense_tracker.responses import PUBLIC_FIVE_MINUTES, respond
from expense_tracker.schemas import (
    AccountCreate,
    AccountsQuery,
    AccountUpdate,
    CategoriesQuery,
    CategoryCreate,
    CategoryUpdate,
    CredentialsPayload,
    MonthlySummaryQuery,
    RegisterPayload,
    TransactionCreate,
    TransactionsQuery,
    TransactionUpdate,
)
from expense_tracker.transaction_service import TransactionService
from expense_tracker.validation import parse_id, validate_payload, validate_query

logger = logging.getLogger(__name__)

MAX_PAGE = 10000
SUSPICIOUS_PAGE = 1000
MAX_SEARCH_LENGTH = 100
MAX_DATE_RANGE_DAYS = 3650

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level, settings.log_format)
    if getattr(app.state, "engine", None) is None:
        app.state.engine = build_engine(settings.database_url)
    init_db(app.state.engine)
    logger.info("Expense tracker API started")
    yield
    app.state.engine.dispose()


app = FastAPI(title="Expense Tracker API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)


@app.middleware("http")
async def record_start_time(request: Request, call_next):
    request.state.started_at = time.perf_counter()
    return await call_next(request)


def started_at(request: Request) -> float:
    return getattr(request.state, "started_at", time.perf_counter())


def account_id_param(account_id: str) -> int:
    return parse_id(
        account_id,
        code="INVALID_ACCOUNT_ID",
        message="Invalid account ID format. Must be a positive integer",
        field_message="Account ID must be a positive integer",
    )


def category_id_param(category_id: str) -> int:
    return parse_id(
        category_id,
        code="INVALID_CATEGORY_ID",
        message="Invalid category ID",
        field_message="Category ID must be a positive integer",
    )


def transaction_id_param(transaction_id: str) -> int:
    return parse_id(
        transaction_id,
        code="INVALID_TRANSACTION_ID",
        message="Invalid transaction ID format",
        field_message="Transaction ID must be a positive integer",
    )


@app.get("/health")
def health(request: Request) -> dict:
    engine = getattr(request.app.state, "engine", None)
    database = "ok" if engine is not None and check_connection(engine) else "unavailable"
    return {"status": "ok", "database": database}


@app.post("/api/auth/register")
def register(
    request: Request,
    engine: Engine = Depends(get_engine),
    body: dict = Depends(json_body),
):
    payload = validate_payload(RegisterPayload, body)
    user = register_user(engine, payload)
    return respond(user, 201, started_at=started_at(request))


@app.post("/api/auth/login")
def login(
    request: Request,
    engine: Engine = Depends(get_engine),
    body: dict = Depends(json_body),
):
    payload = validate_payload(CredentialsPayload, body)
    user = authenticate_user(engine, payload)
    return respond(user, started_at=started_at(request))


@app.get("/api/currencies")
def get_currencies(request: Request, engine: Engine = Depends(get_engine)):
    return respond(
        list_currencies(engine),
        started_at=started_at(request),
        cache_control=PUBLIC_FIVE_MINUTES,
    )


@app.get("/api/accounts")
def list_accounts(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    query = validate_query(AccountsQuery, request.query_params)
    service = AccountService(engine, settings.balance_fallback_workers)
    accounts = service.list_accounts(user.id, include_inactive=query.include_inactive)
    return respond(accounts, started_at=started_at(request))


@app.post("/api/accounts")
def create_account(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    body: dict = Depends(json_body),
):
    payload = validate_payload(AccountCreate, body)
    account = AccountService(engine, settings.balance_fallback_workers).create_account(
        payload, user.id
    )
    return respond(account, 201, started_at=started_at(request))


@app.get("/api/accounts/{account_id}")
def get_account(
    account_id: str,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    account = AccountService(engine, settings.balance_fallback_workers).get_account(
        account_id_param(account_id), user.id
    )
    return respond(account, started_at=started_at(request))


@app.patch("/api/accounts/{account_id}")
def update_account(
    account_id: str,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    body: dict = Depends(json_body),
):
    resolved_id = account_id_param(account_id)
    payload = validate_payload(AccountUpdate, body)
    account = AccountService(engine, settings.balance_fallback_workers).update_account(
        resolved_id, payload, user.id
    )
    return respond(account, started_at=started_at(request))


@app.delete("/api/accounts/{account_id}")
def delete_account(
    account_id: str,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    AccountService(engine, settings.balance_fallback_workers).soft_delete_account(
        account_id_param(account_id), user.id
    )
    return respond(status_code=204, started_at=started_at(request))


@app.get("/api/categories")
def list_categories(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    query = validate_query(CategoriesQuery, request.query_params)
    categories = CategoryService(engine).list_categories(query, user.id)
    return respond(categories, started_at=started_at(request))


@app.post("/api/categories")
def create_category(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    body: dict = Depends(json_body),
):
    payload = validate_payload(CategoryCreate, body)
    category = CategoryService(engine).create_category(payload, user.id)
    return respond(category, 201, started_at=started_at(request))


@app.get("/api/categories/{category_id}")
def get_category(
    category_id: str,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    category = CategoryService(engine).get_category(category_id_param(category_id), user.id)
    return respond(category, started_at=started_at(request))


@app.patch("/api/categories/{category_id}")
def update_category(
    category_id: str,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    body: dict = Depends(json_body),
):
    resolved_id = category_id_param(category_id)
    payload = validate_payload(CategoryUpdate, body)
    category = CategoryService(engine).update_category(resolved_id, payload, user.id)
    return respond(category, started_at=started_at(request))


@app.delete("/api/categories/{category_id}")
def delete_category(
    category_id: str,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    CategoryService(engine).delete_category(category_id_param(category_id), user.id)
    return respond(status_code=204, started_at=started_at(request))


def check_transactions_query(query: TransactionsQuery, user_id: int) -> None:
    if query.page > MAX_PAGE:
        raise ApiError(
            f"Page number cannot exceed {MAX_PAGE}",
            code="PAGINATION_LIMIT_EXCEEDED",
            status_code=400,
        )
    if query.page > SUSPICIOUS_PAGE:
        log_security_event(
            "HIGH_PAGE_NUMBER_REQUEST", user_id, {"page": query.page}, severity="low"
        )
    if query.date_from and query.date_to:
        if query.date_from > query.date_to:
            raise InvalidDateRangeError()
        if (query.date_to - query.date_from).days > MAX_DATE_RANGE_DAYS:
            raise ApiError(
                "Date range cannot exceed 10 years",
                code="DATE_RANGE_TOO_LARGE",
                status_code=400,
            )
    if query.search and len(query.search) > MAX_SEARCH_LENGTH:
        log_security_event(
            "SEARCH_TERM_TOO_LONG", user_id, {"length": len(query.search)}, severity="medium"
        )
        raise ApiError(
            f"Search term cannot exceed {MAX_SEARCH_LENGTH} characters",
            code="SEARCH_TERM_TOO_LONG",
            status_code=400,
        )


@app.get("/api/transactions")
def list_transactions(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    query = validate_query(TransactionsQuery, request.query_params, code="INVALID_PARAMETERS")
    check_transactions_query(query, user.id)
    page = TransactionService(engine).list_transactions(query, user.id)
    if not page.data and query.page > 1 and page.pagination.total_items > 0:
        raise PageNotFoundError(
            f"Requested page {query.page} does not exist. "
            f"Maximum available page: {page.pagination.total_pages}"
        )
    return respond(page, wrap=False, started_at=started_at(request))


@app.post("/api/transactions")
def create_transaction(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    body: dict = Depends(json_body),
):
    payload = validate_payload(TransactionCreate, body)
    transaction = TransactionService(engine).create_transaction(payload, user.id)
    return respond(transaction, 201, started_at=started_at(request))


@app.get("/api/transactions/{transaction_id}")
def get_transaction(
    transaction_id: str,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    transaction = TransactionService(engine).get_transaction(
        transaction_id_param(transaction_id), user.id
    )
    return respond(transaction, started_at=started_at(request))


@app.patch("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: str,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    body: dict = Depends(json_body),
):
    resolved_id = transaction_id_param(transaction_id)
    payload = validate_payload(TransactionUpdate, body)
    if not payload.provided():
        raise ApiError(
            "At least one field must be provided for update",
            code="NO_FIELDS_TO_UPDATE",
            status_code=400,
        )
    transaction = TransactionService(engine).update_transaction(resolved_id, payload, user.id)
    return respond(transaction, started_at=started_at(request))


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: str,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    TransactionService(engine).delete_transaction(transaction_id_param(transaction_id), user.id)
    return respond(status_code=204, started_at=started_at(request))


@app.get("/api/reports/monthly-summary")
def get_monthly_summary(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    query = validate_query(MonthlySummaryQuery, request.query_params)
    summary = monthly_summary(engine, query, user.id)
    return respond(summary, started_at=started_at(request))

import re
from datetime import datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Annotated, Any, ClassVar

from pydantic import BaseModel, ConfigDict, PlainSerializer, StrictInt, field_validator

MAX_AMOUNT = Decimal("9999999999.99")
MAX_PAGE_LIMIT = 100
DEFAULT_PAGE_LIMIT = 50
DEFAULT_SORT = "transaction_date:desc"

_DIGITS = re.compile(r"^\d+$")
_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class CategoryType:
    values = {"income", "expense"}

    @classmethod
    def validate(cls, value: str) -> str:
        if value not in cls.values:
            raise ValueError("Category type must be either 'income' or 'expense'")
        return value


class TransactionSort:
    values = {
        "transaction_date:asc",
        "transaction_date:desc",
        "amount:asc",
        "amount:desc",
    }

    @classmethod
    def validate(cls, value: str) -> str:
        if value not in cls.values:
            raise ValueError(
                "Sort must be one of: " + ", ".join(sorted(cls.values))
            )
        return value


def clean_name(value: str | None, label: str = "Name") -> str:
    if value is None:
        raise ValueError(f"{label} cannot be empty")
    cleaned = value.strip()
    if not cleaned:
        raise ValueError(f"{label} cannot be empty")
    if len(cleaned) > 100:
        raise ValueError(f"{label} cannot exceed 100 characters")
    return cleaned


def clean_tag(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    if len(cleaned) > 10:
        raise ValueError("Tag cannot exceed 10 characters")
    return cleaned or None


def require_positive(value: int, label: str) -> int:
    if value <= 0:
        raise ValueError(f"{label} must be a positive integer")
    return value


def parse_query_int(value: Any, message: str) -> int:
    if isinstance(value, bool):
        raise ValueError(message)
    if isinstance(value, int):
        return value
    if isinstance(value, str) and _DIGITS.match(value.strip()):
        return int(value.strip())
    raise ValueError(message)


def parse_query_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value == "true":
        return True
    if value == "false":
        return False
    raise ValueError("Must be 'true' or 'false'")


def parse_iso_datetime(
    value: Any,
    message: str,
    *,
    allow_date: bool = False,
    end_of_day: bool = False,
) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        raw = value.strip()
        is_date = bool(_DATE_ONLY.match(raw))
        if is_date and not allow_date:
            raise ValueError(message)
        if raw.endswith(("Z", "z")):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError as exc:
            raise ValueError(message) from exc
        if is_date and end_of_day:
            parsed = datetime.combine(parsed.date(), time.max)
    else:
        raise ValueError(message)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_amount(value: Any) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise ValueError("Amount must be a number")
    try:
        amount = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError("Amount must be a number") from exc
    if not amount.is_finite():
        raise ValueError("Amount must be a number")
    if amount <= 0:
        raise ValueError("Amount must be positive")
    if amount > MAX_AMOUNT:
        raise ValueError("Amount exceeds maximum allowed value")
    if amount.as_tuple().exponent < -2 and amount != amount.quantize(Decimal("0.01")):
        raise ValueError("Amount cannot have more than 2 decimal places")
    return amount.quantize(Decimal("0.01"))


def clean_comment(value: str | None) -> str | None:
    if value is None:
        return None
    if len(value) > 500:
        raise ValueError("Comment cannot exceed 500 characters")
    return value


class CommandModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    required_messages: ClassVar[dict[str, str]] = {}

    def provided(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class AccountCreate(CommandModel):
    name: str
    currency_id: StrictInt
    tag: str | None = None

    required_messages: ClassVar[dict[str, str]] = {
        "name": "Name is required",
        "currency_id": "Currency ID is required",
    }

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        return clean_name(value)

    @field_validator("currency_id")
    @classmethod
    def validate_currency_id(cls, value: int) -> int:
        return require_positive(value, "Currency ID")

    @field_validator("tag")
    @classmethod
    def validate_tag(cls, value: str | None) -> str | None:
        return clean_tag(value)


class AccountUpdate(CommandModel):
    name: str | None = None
    currency_id: StrictInt | None = None
    tag: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str | None) -> str:
        return clean_name(value)

    @field_validator("currency_id")
    @classmethod
    def validate_currency_id(cls, value: int | None) -> int:
        if value is None:
            raise ValueError("Currency ID must be a positive integer")
        return require_positive(value, "Currency ID")

    @field_validator("tag")
    @classmethod
    def validate_tag(cls, value: str | None) -> str | None:
        return clean_tag(value)


class CategoryCreate(CommandModel):
    name: str
    category_type: str
    parent_id: StrictInt = 0
    tag: str | None = None

    required_messages: ClassVar[dict[str, str]] = {
        "name": "Name is required",
        "category_type": "Category type is required",
    }

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        return clean_name(value)

    @field_validator("category_type")
    @classmethod
    def validate_category_type(cls, value: str) -> str:
        return CategoryType.validate(value)

    @field_validator("parent_id")
    @classmethod
    def validate_parent_id(cls, value: int) -> int:
        if value < 0:
            raise ValueError("Parent ID must be a positive integer")
        return value

    @field_validator("tag")
    @classmethod
    def validate_tag(cls, value: str | None) -> str | None:
        return clean_tag(value)


class CategoryUpdate(CommandModel):
    name: str | None = None
    category_type: str | None = None
    parent_id: StrictInt | None = None
    tag: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str | None) -> str:
        return clean_name(value)

    @field_validator("category_type")
    @classmethod
    def validate_category_type(cls, value: str | None) -> str:
        if value is None:
            raise ValueError("Category type must be either 'income' or 'expense'")
        return CategoryType.validate(value)

    @field_validator("parent_id")
    @classmethod
    def validate_parent_id(cls, value: int | None) -> int:
        if value is None or value < 0:
            raise ValueError("Parent ID must be a positive integer")
        return value

    @field_validator("tag")
    @classmethod
    def validate_tag(cls, value: str | None) -> str | None:
        return clean_tag(value)


class TransactionCreate(CommandModel):
    transaction_date: datetime
    account_id: StrictInt
    category_id: StrictInt
    amount: Decimal
    currency_id: StrictInt
    comment: str | None = None

    required_messages: ClassVar[dict[str, str]] = {
        "transaction_date": "Transaction date is required",
        "account_id": "Account ID is required",
        "category_id": "Category ID is required",
        "amount": "Amount is required",
        "currency_id": "Currency ID is required",
    }

    @field_validator("transaction_date", mode="before")
    @classmethod
    def validate_transaction_date(cls, value: Any) -> datetime:
        return parse_iso_datetime(value, "Transaction date must be a valid ISO datetime")

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, value: Any) -> Decimal:
        return parse_amount(value)

    @field_validator("account_id")
    @classmethod
    def validate_account_id(cls, value: int) -> int:
        return require_positive(value, "Account ID")

    @field_validator("category_id")
    @classmethod
    def validate_category_id(cls, value: int) -> int:
        return require_positive(value, "Category ID")

    @field_validator("currency_id")
    @classmethod
    def validate_currency_id(cls, value: int) -> int:
        return require_positive(value, "Currency ID")

    @field_validator("comment")
    @classmethod
    def validate_comment(cls, value: str | None) -> str | None:
        return clean_comment(value)


class TransactionUpdate(CommandModel):
    transaction_date: datetime | None = None
    account_id: StrictInt | None = None
    category_id: StrictInt | None = None
    amount: Decimal | None = None
    currency_id: StrictInt | None = None
    comment: str | None = None

    @field_validator("transaction_date", mode="before")
    @classmethod
    def validate_transaction_date(cls, value: Any) -> datetime:
        return parse_iso_datetime(value, "Transaction date must be a valid ISO datetime")

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, value: Any) -> Decimal:
        return parse_amount(value)

    @field_validator("account_id", "category_id", "currency_id")
    @classmethod
    def validate_reference(cls, value: int | None) -> int:
        if value is None:
            raise ValueError("ID must be a positive integer")
        return require_positive(value, "ID")

    @field_validator("comment")
    @classmethod
    def validate_comment(cls, value: str | None) -> str | None:
        return clean_comment(value)


class AccountsQuery(CommandModel):
    include_inactive: bool = False

    @field_validator("include_inactive", mode="before")
    @classmethod
    def validate_include_inactive(cls, value: Any) -> bool:
        return parse_query_bool(value)


class CategoriesQuery(CommandModel):
    type: str | None = None
    parent_id: int | None = None
    include_inactive: bool = False

    @field_validator("type")
    @classmethod
    def validate_type(cls, value: str | None) -> str | None:
        if value is None:
            return None
        if value not in CategoryType.values:
            raise ValueError("Type must be either 'income' or 'expense'")
        return value

    @field_validator("parent_id", mode="before")
    @classmethod
    def validate_parent_id(cls, value: Any) -> int:
        return parse_query_int(
            value, "Parent ID must be 0 or greater (0 for main categories)"
        )

    @field_validator("include_inactive", mode="before")
    @classmethod
    def validate_include_inactive(cls, value: Any) -> bool:
        return parse_query_bool(value)


class TransactionsQuery(CommandModel):
    page: int = 1
    limit: int = DEFAULT_PAGE_LIMIT
    sort: str = DEFAULT_SORT
    account_id: int | None = None
    category_id: int | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    search: str | None = None
    include_inactive: bool = False

    @field_validator("page", mode="before")
    @classmethod
    def validate_page(cls, value: Any) -> int:
        page = parse_query_int(value, "Page must be a positive integer")
        return require_positive(page, "Page")

    @field_validator("limit", mode="before")
    @classmethod
    def validate_limit(cls, value: Any) -> int:
        limit = parse_query_int(value, "Limit must be a positive integer")
        if not 1 <= limit <= MAX_PAGE_LIMIT:
            raise ValueError(f"Limit must be between 1 and {MAX_PAGE_LIMIT}")
        return limit

    @field_validator("sort")
    @classmethod
    def validate_sort(cls, value: str) -> str:
        return TransactionSort.validate(value)

    @field_validator("account_id", mode="before")
    @classmethod
    def validate_account_id(cls, value: Any) -> int:
        account_id = parse_query_int(value, "Account ID must be a positive integer")
        return require_positive(account_id, "Account ID")

    @field_validator("category_id", mode="before")
    @classmethod
    def validate_category_id(cls, value: Any) -> int:
        category_id = parse_query_int(value, "Category ID must be a positive integer")
        return require_positive(category_id, "Category ID")

    @field_validator("date_from", mode="before")
    @classmethod
    def validate_date_from(cls, value: Any) -> datetime:
        return parse_iso_datetime(
            value, "Date from must be a valid ISO datetime", allow_date=True
        )

    @field_validator("date_to", mode="before")
    @classmethod
    def validate_date_to(cls, value: Any) -> datetime:
        return parse_iso_datetime(
            value,
            "Date to must be a valid ISO datetime",
            allow_date=True,
            end_of_day=True,
        )

    @field_validator("search")
    @classmethod
    def validate_search(cls, value: str | None) -> str | None:
        if value is None:
            return None
        if len(value) < 1:
            raise ValueError("Search term cannot be empty")
        return value

    @field_validator("include_inactive", mode="before")
    @classmethod
    def validate_include_inactive(cls, value: Any) -> bool:
        return parse_query_bool(value)

    def filters(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "category_id": self.category_id,
            "date_from": self.date_from,
            "date_to": self.date_to,
            "search": self.search,
        }


class MonthlySummaryQuery(CommandModel):
    year: int | None = None
    month: int | None = None

    @field_validator("year", mode="before")
    @classmethod
    def validate_year(cls, value: Any) -> int:
        year = parse_query_int(value, "Year must be an integer")
        if not 2000 <= year <= 2100:
            raise ValueError("Year must be between 2000 and 2100")
        return year

    @field_validator("month", mode="before")
    @classmethod
    def validate_month(cls, value: Any) -> int:
        month = parse_query_int(value, "Month must be an integer")
        if not 1 <= month <= 12:
            raise ValueError("Month must be between 1 and 12")
        return month


class CredentialsPayload(CommandModel):
    email: str
    password: str

    required_messages: ClassVar[dict[str, str]] = {
        "email": "Email is required",
        "password": "Password is required",
    }

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        email = value.strip().lower()
        if not _EMAIL.match(email):
            raise ValueError("Invalid email address")
        return email

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        if not value:
            raise ValueError("Password is required")
        return value


class RegisterPayload(CredentialsPayload):
    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        if len(value) < 6:
            raise ValueError("Password should be at least 6 characters")
        return value


class ResponseModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class UserResponse(ResponseModel):
    id: int
    email: str
    created_at: datetime | None = None


class CurrencyResponse(ResponseModel):
    id: int
    code: str
    description: str
    active: bool


class AccountResponse(ResponseModel):
    id: int
    user_id: int
    name: str
    currency_id: int
    currency_code: str
    currency_description: str
    tag: str | None = None
    balance: Money
    active: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None


class CategoryResponse(ResponseModel):
    id: int
    user_id: int
    name: str
    category_type: str
    parent_id: int
    tag: str | None = None
    active: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None


class TransactionResponse(ResponseModel):
    id: int
    user_id: int
    transaction_date: datetime
    account_id: int
    account_name: str
    category_id: int
    category_name: str
    category_type: str
    amount: Money
    currency_id: int
    currency_code: str
    comment: str | None = None
    active: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None


class PaginationResponse(ResponseModel):
    total_items: int
    total_pages: int
    current_page: int
    per_page: int


class TransactionPage(ResponseModel):
    data: list[TransactionResponse]
    pagination: PaginationResponse


class CategorySummaryResponse(ResponseModel):
    category_id: int
    category_name: str
    category_type: str
    parent_id: int
    total_amount: Money
    transaction_count: int


class SummaryTotalsResponse(ResponseModel):
    total_income: Money
    total_expenses: Money
    net_balance: Money


class MonthlySummaryResponse(ResponseModel):
    year: int
    month: int
    report_date: str
    income_categories: list[CategorySummaryResponse]
    expense_categories: list[CategorySummaryResponse]
    totals: SummaryTotalsResponse

"""Typed API errors and the substring rule tables for untyped failures.

Every error raised by a service is an ``ApiError`` subclass carrying its code,
HTTP status, public message and optional details. Failures that arrive as
plain exceptions are classified by ordered rule tables, first match wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Sequence

GENERIC_INTERNAL_MESSAGE = "An unexpected error occurred"
GENERIC_DATABASE_MESSAGE = "Database operation failed"


class ApiError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500
    default_message = GENERIC_INTERNAL_MESSAGE

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        details: Any = None,
    ):
        self.message = message or self.default_message
        super().__init__(self.message)
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def to_response(self) -> dict:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            error["details"] = self.details
        return {"error": error}


def field_detail(field: str, message: str) -> list[dict[str, str]]:
    return [{"field": field, "message": message}]


class RequestBodyError(ApiError):
    status_code = 400


class ValidationFailed(ApiError):
    code = "VALIDATION_ERROR"
    status_code = 400
    default_message = "Validation failed"

    def __init__(
        self,
        details: list[dict[str, str]],
        message: str | None = None,
        *,
        code: str | None = None,
    ):
        super().__init__(message, code=code, details=details)


class InvalidIdError(ApiError):
    status_code = 400

    def __init__(self, code: str, message: str, field_message: str):
        super().__init__(message, code=code, details=field_detail("id", field_message))


class UnauthenticatedError(ApiError):
    code = "UNAUTHENTICATED"
    status_code = 401
    default_message = "Authentication required"


class InvalidCredentialsError(ApiError):
    code = "INVALID_CREDENTIALS"
    status_code = 401
    default_message = "Invalid email or password"


class ServiceUnavailableError(ApiError):
    code = "SERVICE_UNAVAILABLE"
    status_code = 503
    default_message = "Database connection not available"


class AccountNotFoundError(ApiError):
    code = "ACCOUNT_NOT_FOUND"
    status_code = 404
    default_message = "Account not found"


class CategoryNotFoundError(ApiError):
    code = "CATEGORY_NOT_FOUND"
    status_code = 404
    default_message = "Category not found"


class TransactionNotFoundError(ApiError):
    code = "TRANSACTION_NOT_FOUND"
    status_code = 404
    default_message = "Transaction not found"


class CurrencyNotFoundError(ApiError):
    code = "CURRENCY_NOT_FOUND"
    status_code = 404
    default_message = "Currency does not exist"

    def __init__(self, message: str | None = None):
        super().__init__(
            message,
            details=field_detail("currency_id", "The specified currency does not exist"),
        )


class ReferenceNotFoundError(ApiError):
    """A referenced row is missing, inactive or owned by someone else."""

    code = "RESOURCE_NOT_FOUND"
    status_code = 400


class InvalidReferenceError(ApiError):
    code = "INVALID_REFERENCE"
    status_code = 400
    default_message = "Referenced account, category, or currency no longer exists"


class DuplicateResourceError(ApiError):
    code = "DUPLICATE_RESOURCE"
    status_code = 409
    default_message = "Resource already exists"


class HierarchyError(ApiError):
    code = "HIERARCHY_ERROR"
    status_code = 400
    default_message = "Maximum category depth is 2 levels"

    def __init__(self, message: str | None = None):
        super().__init__(
            message,
            details=field_detail(
                "parent_id", "Parent category cannot be a subcategory"
            ),
        )


class TypeMismatchError(ApiError):
    code = "TYPE_MISMATCH_ERROR"
    status_code = 400
    default_message = "Subcategory type must match parent category type"

    def __init__(self, message: str | None = None):
        super().__init__(
            message,
            details=field_detail(
                "category_type", "Subcategory type must match parent category type"
            ),
        )


class CategoryInUseError(ApiError):
    code = "CATEGORY_IN_USE"
    status_code = 409
    default_message = "Cannot delete category with active transactions"

    def __init__(self, transaction_count: int):
        self.transaction_count = transaction_count
        super().__init__(details={"transaction_count": transaction_count})


class InvalidDateRangeError(ApiError):
    code = "INVALID_DATE_RANGE"
    status_code = 400
    default_message = "Date from cannot be later than date to"


class PageNotFoundError(ApiError):
    code = "PAGE_NOT_FOUND"
    status_code = 404
    default_message = "Requested page does not exist"


class DatabaseError(ApiError):
    """Store failure; the public message never carries driver text."""

    code = "DATABASE_ERROR"
    status_code = 500
    default_message = GENERIC_DATABASE_MESSAGE

    def __init__(
        self,
        operation: str,
        message: str | None = None,
        *,
        status_code: int | None = None,
        details: Any = None,
    ):
        self.operation = operation
        super().__init__(message, status_code=status_code, details=details)


@dataclass(frozen=True)
class ClassificationRule:
    needles: tuple[str, ...]
    code: str
    status_code: int
    message: str | None = None
    details: Any = None

    def matches(self, message: str) -> bool:
        return any(needle in message for needle in self.needles)

    def build(self, message: str) -> ApiError:
        return ApiError(
            self.message or message,
            code=self.code,
            status_code=self.status_code,
            details=self.details,
        )


TRANSACTION_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule(
        ("Transaction not found or access denied",),
        "TRANSACTION_NOT_FOUND",
        404,
        "Transaction not found",
    ),
    ClassificationRule(("not found", "not accessible"), "RESOURCE_NOT_FOUND", 400),
    ClassificationRule(("already exists",), "DUPLICATE_RESOURCE", 409),
    ClassificationRule(("no longer exists",), "INVALID_REFERENCE", 400),
    ClassificationRule(("Invalid date range",), "INVALID_DATE_RANGE", 400),
    ClassificationRule(("does not exist",), "PAGE_NOT_FOUND", 404),
    ClassificationRule(("Invalid transaction data",), "DATA_INTEGRITY_ERROR", 500),
    ClassificationRule(
        ("Database schema error",),
        "DATABASE_SCHEMA_ERROR",
        500,
        "Database configuration error",
    ),
    ClassificationRule(
        ("Access denied", "insufficient permissions"),
        "ACCESS_DENIED",
        403,
        "Access denied: insufficient permissions",
    ),
    ClassificationRule(
        (
            "Failed to create transaction",
            "Failed to fetch",
            "Database connection",
            "Failed to update transaction",
            "Failed to verify",
            "Failed to delete transaction",
        ),
        "DATABASE_ERROR",
        500,
        GENERIC_DATABASE_MESSAGE,
    ),
)

ACCOUNT_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule(
        ("Account not found", "access denied"), "ACCOUNT_NOT_FOUND", 404, "Account not found"
    ),
    ClassificationRule(
        ("CURRENCY_NOT_FOUND", "Currency not found"),
        "CURRENCY_NOT_FOUND",
        404,
        "Currency does not exist",
    ),
    ClassificationRule(("Failed to",), "DATABASE_ERROR", 500, GENERIC_DATABASE_MESSAGE),
)

CATEGORY_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule(
        ("Category not found", "access denied"), "CATEGORY_NOT_FOUND", 404, "Category not found"
    ),
    ClassificationRule(
        ("Parent category does not exist",),
        "VALIDATION_ERROR",
        400,
        "Validation failed",
        field_detail("parent_id", "Parent category does not exist or is not active"),
    ),
    ClassificationRule(
        ("category with this name already exists",),
        "VALIDATION_ERROR",
        400,
        "Validation failed",
        field_detail("name", "A category with this name already exists in the same location"),
    ),
    ClassificationRule(("Maximum category depth",), "HIERARCHY_ERROR", 400),
    ClassificationRule(("type must match parent",), "TYPE_MISMATCH_ERROR", 400),
    ClassificationRule(
        ("cannot be its own parent",),
        "VALIDATION_ERROR",
        400,
        "Validation failed",
        field_detail("parent_id", "Category cannot be its own parent"),
    ),
    ClassificationRule(
        ("Cannot delete category with active transactions",), "CATEGORY_IN_USE", 409
    ),
    ClassificationRule(
        ("Failed to", "Database"),
        "DATABASE_ERROR",
        503,
        "Unable to process category request at this time",
        {"message": GENERIC_DATABASE_MESSAGE},
    ),
)

RULES_BY_PREFIX: tuple[tuple[str, tuple[ClassificationRule, ...]], ...] = (
    ("/api/transactions", TRANSACTION_RULES),
    ("/api/accounts", ACCOUNT_RULES),
    ("/api/categories", CATEGORY_RULES),
)


def rules_for_path(path: str) -> Sequence[ClassificationRule]:
    for prefix, rules in RULES_BY_PREFIX:
        if path.startswith(prefix):
            return rules
    return ()


def classify_message(message: str, rules: Iterable[ClassificationRule]) -> ApiError:
    for rule in rules:
        if rule.matches(message):
            return rule.build(message)
    return ApiError()


def classify_error(exc: BaseException, rules: Iterable[ClassificationRule] = ()) -> ApiError:
    if isinstance(exc, ApiError):
        return exc
    return classify_message(str(exc), rules)

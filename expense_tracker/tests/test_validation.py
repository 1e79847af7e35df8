import unittest
from datetime import datetime, timezone
from decimal import Decimal

from expense_tracker.errors import InvalidIdError, ValidationFailed
from expense_tracker.schemas import (
    AccountCreate,
    AccountsQuery,
    CategoriesQuery,
    CategoryCreate,
    MonthlySummaryQuery,
    TransactionCreate,
    TransactionsQuery,
    TransactionUpdate,
)
from expense_tracker.validation import parse_id, validate_payload, validate_query


def details_of(ctx) -> dict[str, str]:
    return {item["field"]: item["message"] for item in ctx.exception.details}


class PayloadValidationTests(unittest.TestCase):
    def test_account_name_is_trimmed(self) -> None:
        payload = validate_payload(AccountCreate, {"name": "  Wallet  ", "currency_id": 1})
        self.assertEqual(payload.name, "Wallet")
        self.assertIsNone(payload.tag)

    def test_missing_required_fields_use_field_messages(self) -> None:
        with self.assertRaises(ValidationFailed) as ctx:
            validate_payload(AccountCreate, {})
        self.assertEqual(ctx.exception.code, "VALIDATION_ERROR")
        self.assertEqual(
            details_of(ctx),
            {"name": "Name is required", "currency_id": "Currency ID is required"},
        )

    def test_account_constraints(self) -> None:
        with self.assertRaises(ValidationFailed) as ctx:
            validate_payload(
                AccountCreate,
                {"name": "x" * 101, "currency_id": 0, "tag": "far-too-long-tag"},
            )
        self.assertEqual(
            details_of(ctx),
            {
                "name": "Name cannot exceed 100 characters",
                "currency_id": "Currency ID must be a positive integer",
                "tag": "Tag cannot exceed 10 characters",
            },
        )

    def test_whitespace_name_is_empty(self) -> None:
        with self.assertRaises(ValidationFailed) as ctx:
            validate_payload(AccountCreate, {"name": "   ", "currency_id": 1})
        self.assertEqual(details_of(ctx), {"name": "Name cannot be empty"})

    def test_ids_must_be_json_integers(self) -> None:
        with self.assertRaises(ValidationFailed) as ctx:
            validate_payload(AccountCreate, {"name": "Wallet", "currency_id": "1"})
        self.assertIn("currency_id", details_of(ctx))

    def test_unknown_fields_are_dropped(self) -> None:
        payload = validate_payload(
            AccountCreate, {"name": "Wallet", "currency_id": 1, "balance": 100}
        )
        self.assertNotIn("balance", payload.model_dump())

    def test_category_type_enum(self) -> None:
        with self.assertRaises(ValidationFailed) as ctx:
            validate_payload(CategoryCreate, {"name": "Food", "category_type": "transfer"})
        self.assertEqual(
            details_of(ctx),
            {"category_type": "Category type must be either 'income' or 'expense'"},
        )

    def test_category_defaults_to_main_category(self) -> None:
        payload = validate_payload(CategoryCreate, {"name": "Food", "category_type": "expense"})
        self.assertEqual(payload.parent_id, 0)

    def test_transaction_payload_parses_amount_and_date(self) -> None:
        payload = validate_payload(
            TransactionCreate,
            {
                "transaction_date": "2024-01-15T10:00:00Z",
                "account_id": 1,
                "category_id": 2,
                "amount": 12.5,
                "currency_id": 1,
            },
        )
        self.assertEqual(payload.amount, Decimal("12.50"))
        self.assertEqual(
            payload.transaction_date, datetime(2024, 1, 15, 10, tzinfo=timezone.utc)
        )

    def test_transaction_date_with_short_fraction(self) -> None:
        payload = validate_payload(
            TransactionCreate,
            {
                "transaction_date": "2024-01-15T10:00:00.5Z",
                "account_id": 1,
                "category_id": 2,
                "amount": 1,
                "currency_id": 1,
            },
        )
        self.assertEqual(
            payload.transaction_date,
            datetime(2024, 1, 15, 10, 0, 0, 500000, tzinfo=timezone.utc),
        )

    def test_transaction_amount_rules(self) -> None:
        base = {
            "transaction_date": "2024-01-15T10:00:00Z",
            "account_id": 1,
            "category_id": 2,
            "currency_id": 1,
        }
        cases = {
            "50": "Amount must be a number",
            -5: "Amount must be positive",
            0: "Amount must be positive",
            10.123: "Amount cannot have more than 2 decimal places",
            10000000000: "Amount exceeds maximum allowed value",
        }
        for amount, message in cases.items():
            with self.subTest(amount=amount):
                with self.assertRaises(ValidationFailed) as ctx:
                    validate_payload(TransactionCreate, {**base, "amount": amount})
                self.assertEqual(details_of(ctx), {"amount": message})

    def test_transaction_date_must_be_datetime(self) -> None:
        with self.assertRaises(ValidationFailed) as ctx:
            validate_payload(
                TransactionCreate,
                {
                    "transaction_date": "yesterday",
                    "account_id": 1,
                    "category_id": 2,
                    "amount": 1,
                    "currency_id": 1,
                },
            )
        self.assertEqual(
            details_of(ctx),
            {"transaction_date": "Transaction date must be a valid ISO datetime"},
        )

    def test_partial_update_tracks_provided_fields(self) -> None:
        payload = validate_payload(TransactionUpdate, {"comment": None})
        self.assertEqual(payload.provided(), {"comment": None})
        self.assertEqual(validate_payload(TransactionUpdate, {}).provided(), {})


class QueryValidationTests(unittest.TestCase):
    def test_include_inactive_accepts_only_literals(self) -> None:
        self.assertTrue(validate_query(AccountsQuery, {"include_inactive": "true"}).include_inactive)
        self.assertFalse(validate_query(AccountsQuery, {}).include_inactive)
        with self.assertRaises(ValidationFailed) as ctx:
            validate_query(AccountsQuery, {"include_inactive": "maybe"})
        self.assertEqual(ctx.exception.message, "Invalid query parameters")
        self.assertEqual(
            ctx.exception.details,
            [{"field": "include_inactive", "message": "Must be 'true' or 'false'"}],
        )

    def test_transactions_query_defaults(self) -> None:
        query = validate_query(TransactionsQuery, {})
        self.assertEqual(query.page, 1)
        self.assertEqual(query.limit, 50)
        self.assertEqual(query.sort, "transaction_date:desc")

    def test_transactions_query_error_code_override(self) -> None:
        with self.assertRaises(ValidationFailed) as ctx:
            validate_query(
                TransactionsQuery, {"limit": "500", "page": "abc"}, code="INVALID_PARAMETERS"
            )
        self.assertEqual(ctx.exception.code, "INVALID_PARAMETERS")
        self.assertEqual(
            details_of(ctx),
            {
                "limit": "Limit must be between 1 and 100",
                "page": "Page must be a positive integer",
            },
        )

    def test_date_only_bounds_cover_whole_days(self) -> None:
        query = validate_query(
            TransactionsQuery, {"date_from": "2024-01-01", "date_to": "2024-01-31"}
        )
        self.assertEqual(query.date_from, datetime(2024, 1, 1, tzinfo=timezone.utc))
        self.assertEqual(query.date_to.date().isoformat(), "2024-01-31")
        self.assertEqual(query.date_to.hour, 23)

    def test_sort_enum(self) -> None:
        with self.assertRaises(ValidationFailed):
            validate_query(TransactionsQuery, {"sort": "comment:asc"})

    def test_categories_query_allows_main_parent(self) -> None:
        query = validate_query(CategoriesQuery, {"parent_id": "0", "type": "income"})
        self.assertEqual(query.parent_id, 0)
        self.assertEqual(query.type, "income")

    def test_monthly_summary_bounds(self) -> None:
        with self.assertRaises(ValidationFailed) as ctx:
            validate_query(MonthlySummaryQuery, {"year": "1999", "month": "13"})
        self.assertEqual(
            details_of(ctx),
            {
                "year": "Year must be between 2000 and 2100",
                "month": "Month must be between 1 and 12",
            },
        )


class ParseIdTests(unittest.TestCase):
    def test_accepts_positive_integers(self) -> None:
        self.assertEqual(
            parse_id("42", code="INVALID_ACCOUNT_ID", message="bad", field_message="bad id"), 42
        )

    def test_rejects_everything_else(self) -> None:
        for raw in ("abc", "0", "-1", "1.5", ""):
            with self.subTest(raw=raw):
                with self.assertRaises(InvalidIdError) as ctx:
                    parse_id(
                        raw,
                        code="INVALID_CATEGORY_ID",
                        message="Invalid category ID",
                        field_message="Category ID must be a positive integer",
                    )
                self.assertEqual(ctx.exception.code, "INVALID_CATEGORY_ID")
                self.assertEqual(
                    ctx.exception.details,
                    [{"field": "id", "message": "Category ID must be a positive integer"}],
                )


if __name__ == "__main__":
    unittest.main()

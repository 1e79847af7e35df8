import unittest
from unittest import mock

from sqlalchemy.exc import OperationalError

from expense_tracker.category_service import CategoryService
from expense_tracker.tests.support import (
    auth_headers,
    create_account,
    create_category,
    create_transaction,
    create_user,
    make_client,
    make_engine,
)


class CategoriesApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_engine()
        self.client = make_client(self.engine)
        self.user_id = create_user(self.engine)
        self.headers = auth_headers(self.user_id)

    def post(self, payload: dict):
        return self.client.post("/api/categories", headers=self.headers, json=payload)

    def test_create_main_category(self) -> None:
        response = self.post({"name": "Food", "category_type": "expense", "tag": "daily"})
        self.assertEqual(response.status_code, 201)
        data = response.json()["data"]
        self.assertEqual(data["parent_id"], 0)
        self.assertEqual(data["category_type"], "expense")
        self.assertEqual(data["tag"], "daily")

    def test_create_subcategory(self) -> None:
        parent = create_category(self.engine, self.user_id, "Food", "expense")
        response = self.post({"name": "Groceries", "category_type": "expense", "parent_id": parent})
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["data"]["parent_id"], parent)

    def test_missing_parent(self) -> None:
        response = self.post({"name": "Groceries", "category_type": "expense", "parent_id": 999})
        self.assertEqual(response.status_code, 400)
        body = response.json()["error"]
        self.assertEqual(body["code"], "VALIDATION_ERROR")
        self.assertEqual(body["details"][0]["field"], "parent_id")

    def test_depth_is_limited_to_two_levels(self) -> None:
        parent = create_category(self.engine, self.user_id, "Food", "expense")
        child = create_category(self.engine, self.user_id, "Groceries", "expense", parent_id=parent)
        response = self.post({"name": "Fruit", "category_type": "expense", "parent_id": child})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["code"], "HIERARCHY_ERROR")

    def test_subcategory_type_must_match_parent(self) -> None:
        parent = create_category(self.engine, self.user_id, "Salary", "income")
        response = self.post({"name": "Bonus", "category_type": "expense", "parent_id": parent})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["code"], "TYPE_MISMATCH_ERROR")

    def test_names_are_unique_case_insensitively_per_parent(self) -> None:
        create_category(self.engine, self.user_id, "Food", "expense")
        response = self.post({"name": "FOOD", "category_type": "expense"})
        self.assertEqual(response.status_code, 400)
        body = response.json()["error"]
        self.assertEqual(body["code"], "VALIDATION_ERROR")
        self.assertEqual(body["details"][0]["field"], "name")

    def test_same_name_allowed_under_different_parent(self) -> None:
        parent = create_category(self.engine, self.user_id, "Food", "expense")
        create_category(self.engine, self.user_id, "Other", "expense")
        response = self.post({"name": "Other", "category_type": "expense", "parent_id": parent})
        self.assertEqual(response.status_code, 201)

    def test_list_filters_and_ordering(self) -> None:
        food = create_category(self.engine, self.user_id, "Food", "expense")
        create_category(self.engine, self.user_id, "Salary", "income")
        create_category(self.engine, self.user_id, "Bakery", "expense", parent_id=food)
        create_category(self.engine, self.user_id, "Archived", "expense", active=False)

        everything = self.client.get("/api/categories", headers=self.headers).json()["data"]
        self.assertEqual([item["name"] for item in everything], ["Food", "Salary", "Bakery"])

        main_expenses = self.client.get(
            "/api/categories?type=expense&parent_id=0", headers=self.headers
        ).json()["data"]
        self.assertEqual([item["name"] for item in main_expenses], ["Food"])

        with_inactive = self.client.get(
            "/api/categories?include_inactive=true", headers=self.headers
        ).json()["data"]
        self.assertIn("Archived", [item["name"] for item in with_inactive])

    def test_list_rejects_bad_type(self) -> None:
        response = self.client.get("/api/categories?type=transfer", headers=self.headers)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["details"][0]["field"], "type")

    def test_get_category(self) -> None:
        food = create_category(self.engine, self.user_id)
        response = self.client.get(f"/api/categories/{food}", headers=self.headers)
        self.assertEqual(response.json()["data"]["name"], "Food")

    def test_get_missing_category(self) -> None:
        response = self.client.get("/api/categories/77", headers=self.headers)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(
            response.json()["error"],
            {"code": "CATEGORY_NOT_FOUND", "message": "Category with ID 77 not found"},
        )

    def test_invalid_category_id(self) -> None:
        response = self.client.get("/api/categories/0", headers=self.headers)
        self.assertEqual(response.status_code, 400)
        body = response.json()["error"]
        self.assertEqual(body["code"], "INVALID_CATEGORY_ID")
        self.assertEqual(
            body["details"], [{"field": "id", "message": "Category ID must be a positive integer"}]
        )

    def test_update_rename(self) -> None:
        food = create_category(self.engine, self.user_id)
        response = self.client.patch(
            f"/api/categories/{food}", headers=self.headers, json={"name": "Meals"}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["name"], "Meals")

    def test_update_cannot_be_own_parent(self) -> None:
        food = create_category(self.engine, self.user_id)
        response = self.client.patch(
            f"/api/categories/{food}", headers=self.headers, json={"parent_id": food}
        )
        self.assertEqual(response.status_code, 400)
        body = response.json()["error"]
        self.assertEqual(body["code"], "VALIDATION_ERROR")
        self.assertEqual(body["details"][0]["message"], "Category cannot be its own parent")

    def test_update_type_must_still_match_parent(self) -> None:
        food = create_category(self.engine, self.user_id, "Food", "expense")
        bakery = create_category(self.engine, self.user_id, "Bakery", "expense", parent_id=food)
        response = self.client.patch(
            f"/api/categories/{bakery}", headers=self.headers, json={"category_type": "income"}
        )
        self.assertEqual(response.json()["error"]["code"], "TYPE_MISMATCH_ERROR")

    def test_delete_refused_while_in_use(self) -> None:
        food = create_category(self.engine, self.user_id)
        wallet = create_account(self.engine, self.user_id)
        for amount in ("1.00", "2.00", "3.00"):
            create_transaction(self.engine, self.user_id, wallet, food, amount)

        response = self.client.delete(f"/api/categories/{food}", headers=self.headers)

        self.assertEqual(response.status_code, 409)
        body = response.json()["error"]
        self.assertEqual(body["code"], "CATEGORY_IN_USE")
        self.assertEqual(body["details"], {"transaction_count": 3})

    def test_delete_unused_category(self) -> None:
        food = create_category(self.engine, self.user_id)
        response = self.client.delete(f"/api/categories/{food}", headers=self.headers)
        self.assertEqual(response.status_code, 204)
        listed = self.client.get("/api/categories", headers=self.headers).json()["data"]
        self.assertEqual(listed, [])

    def test_store_failure_is_service_unavailable(self) -> None:
        failure = OperationalError("SELECT", {}, Exception("connection reset"))
        with mock.patch.object(CategoryService, "_fetch", side_effect=failure):
            response = self.client.get("/api/categories/1", headers=self.headers)
        self.assertEqual(response.status_code, 503)
        body = response.json()["error"]
        self.assertEqual(body["code"], "DATABASE_ERROR")
        self.assertEqual(body["details"], {"message": "Database operation failed"})
        self.assertNotIn("connection reset", response.text)


if __name__ == "__main__":
    unittest.main()

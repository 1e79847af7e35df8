import logging
from typing import Any, Mapping

from sqlalchemy import func, insert, select, update
from sqlalchemy.engine import Connection, Engine

from expense_tracker.db import categories, store_errors, transactions
from expense_tracker.errors import (
    GENERIC_DATABASE_MESSAGE,
    CategoryInUseError,
    CategoryNotFoundError,
    HierarchyError,
    TypeMismatchError,
    ValidationFailed,
    field_detail,
)
from expense_tracker.observability import log_mutation
from expense_tracker.schemas import (
    CategoriesQuery,
    CategoryCreate,
    CategoryResponse,
    CategoryUpdate,
)

logger = logging.getLogger(__name__)

MAIN_CATEGORY = 0


def category_store_errors(operation: str, message: str):
    return store_errors(
        operation,
        message=message,
        status_code=503,
        details={"message": GENERIC_DATABASE_MESSAGE},
    )


def to_category_response(row: Mapping[str, Any]) -> CategoryResponse:
    return CategoryResponse(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        category_type=row["category_type"],
        parent_id=row["parent_id"],
        tag=row["tag"],
        active=row["active"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class CategoryService:
    def __init__(self, engine: Engine):
        self.engine = engine

    def list_categories(self, query: CategoriesQuery, user_id: int) -> list[CategoryResponse]:
        stmt = select(categories).where(categories.c.user_id == user_id)
        if not query.include_inactive:
            stmt = stmt.where(categories.c.active.is_(True))
        if query.type is not None:
            stmt = stmt.where(categories.c.category_type == query.type)
        if query.parent_id is not None:
            stmt = stmt.where(categories.c.parent_id == query.parent_id)
        stmt = stmt.order_by(categories.c.parent_id.asc(), categories.c.name.asc())
        with category_store_errors(
            "Failed to fetch categories", "Unable to retrieve categories at this time"
        ):
            with self.engine.connect() as conn:
                rows = conn.execute(stmt).mappings().all()
        return [to_category_response(row) for row in rows]

    def get_category(self, category_id: int, user_id: int) -> CategoryResponse:
        with category_store_errors(
            "Failed to fetch category", "Unable to retrieve category at this time"
        ):
            with self.engine.connect() as conn:
                row = self._fetch(conn, category_id, user_id)
        if not row:
            raise CategoryNotFoundError(f"Category with ID {category_id} not found")
        return to_category_response(row)

    def create_category(self, payload: CategoryCreate, user_id: int) -> CategoryResponse:
        with category_store_errors(
            "Failed to create category", "Unable to create category at this time"
        ):
            with self.engine.begin() as conn:
                if payload.parent_id != MAIN_CATEGORY:
                    self._validate_parent(conn, payload.parent_id, payload.category_type, user_id)
                self._ensure_unique_name(conn, payload.name, payload.parent_id, user_id)
                row = conn.execute(
                    insert(categories)
                    .values(
                        user_id=user_id,
                        name=payload.name,
                        category_type=payload.category_type,
                        parent_id=payload.parent_id,
                        tag=payload.tag,
                        active=True,
                    )
                    .returning(*categories.c)
                ).mappings().one()
        log_mutation("create_category", user_id, success=True, category_id=row["id"])
        return to_category_response(row)

    def update_category(
        self, category_id: int, payload: CategoryUpdate, user_id: int
    ) -> CategoryResponse:
        values = payload.provided()
        with category_store_errors(
            "Failed to update category", "Unable to update category at this time"
        ):
            with self.engine.begin() as conn:
                current = self._fetch(conn, category_id, user_id)
                if not current:
                    raise CategoryNotFoundError(f"Category with ID {category_id} not found")

                parent_id = values.get("parent_id", current["parent_id"])
                category_type = values.get("category_type", current["category_type"])
                if parent_id == category_id:
                    raise ValidationFailed(
                        field_detail("parent_id", "Category cannot be its own parent")
                    )
                if parent_id != MAIN_CATEGORY and (
                    "parent_id" in values or "category_type" in values
                ):
                    self._validate_parent(conn, parent_id, category_type, user_id)
                if "parent_id" in values and parent_id != MAIN_CATEGORY:
                    self._ensure_not_parent(conn, category_id, user_id)

                name = values.get("name", current["name"])
                if name.lower() != current["name"].lower() or parent_id != current["parent_id"]:
                    self._ensure_unique_name(conn, name, parent_id, user_id, exclude_id=category_id)

                if values:
                    conn.execute(
                        update(categories)
                        .where(categories.c.id == category_id, categories.c.user_id == user_id)
                        .values(**values, updated_at=func.now())
                    )
                row = self._fetch(conn, category_id, user_id)
        log_mutation("update_category", user_id, success=True, category_id=category_id)
        return to_category_response(row)

    def delete_category(self, category_id: int, user_id: int) -> None:
        with category_store_errors(
            "Failed to delete category", "Unable to delete category at this time"
        ):
            with self.engine.begin() as conn:
                if not self._fetch(conn, category_id, user_id):
                    raise CategoryNotFoundError(f"Category with ID {category_id} not found")
                in_use = conn.execute(
                    select(func.count())
                    .select_from(transactions)
                    .where(
                        transactions.c.category_id == category_id,
                        transactions.c.user_id == user_id,
                        transactions.c.active.is_(True),
                    )
                ).scalar_one()
                if in_use:
                    raise CategoryInUseError(in_use)
                conn.execute(
                    update(categories)
                    .where(categories.c.id == category_id, categories.c.user_id == user_id)
                    .values(active=False, updated_at=func.now())
                )
        log_mutation("delete_category", user_id, success=True, category_id=category_id)

    def _fetch(self, conn: Connection, category_id: int, user_id: int):
        return conn.execute(
            select(categories).where(
                categories.c.id == category_id, categories.c.user_id == user_id
            )
        ).mappings().first()

    def _validate_parent(
        self, conn: Connection, parent_id: int, category_type: str, user_id: int
    ) -> None:
        parent = conn.execute(
            select(categories).where(
                categories.c.id == parent_id,
                categories.c.user_id == user_id,
                categories.c.active.is_(True),
            )
        ).mappings().first()
        if not parent:
            raise ValidationFailed(
                field_detail("parent_id", "Parent category does not exist or is not active")
            )
        if parent["parent_id"] != MAIN_CATEGORY:
            raise HierarchyError()
        if parent["category_type"] != category_type:
            raise TypeMismatchError()

    def _ensure_not_parent(self, conn: Connection, category_id: int, user_id: int) -> None:
        child = conn.execute(
            select(categories.c.id)
            .where(
                categories.c.parent_id == category_id,
                categories.c.user_id == user_id,
                categories.c.active.is_(True),
            )
            .limit(1)
        ).first()
        if child:
            raise HierarchyError()

    def _ensure_unique_name(
        self,
        conn: Connection,
        name: str,
        parent_id: int,
        user_id: int,
        exclude_id: int | None = None,
    ) -> None:
        stmt = select(categories.c.id).where(
            categories.c.user_id == user_id,
            categories.c.parent_id == parent_id,
            categories.c.active.is_(True),
            func.lower(categories.c.name) == name.lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(categories.c.id != exclude_id)
        if conn.execute(stmt.limit(1)).first():
            raise ValidationFailed(
                field_detail(
                    "name", "A category with this name already exists in the same location"
                )
            )

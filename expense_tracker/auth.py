import logging
from dataclasses import dataclass

import bcrypt
from fastapi import Header, Request
from sqlalchemy import insert, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from expense_tracker.db import get_engine, store_errors, users
from expense_tracker.errors import (
    DuplicateResourceError,
    InvalidCredentialsError,
    UnauthenticatedError,
)
from expense_tracker.observability import log_security_event
from expense_tracker.schemas import CredentialsPayload, RegisterPayload, UserResponse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    id: int
    email: str


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))


def get_current_user(
    request: Request,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> CurrentUser:
    if not x_user_id or not x_user_id.strip().isdigit():
        raise UnauthenticatedError()
    engine = get_engine(request)
    with store_errors("Failed to verify user"):
        with engine.connect() as conn:
            row = conn.execute(
                select(users.c.id, users.c.email).where(users.c.id == int(x_user_id.strip()))
            ).mappings().first()
    if not row:
        raise UnauthenticatedError()
    return CurrentUser(id=row["id"], email=row["email"])


def register_user(engine: Engine, payload: RegisterPayload) -> UserResponse:
    stmt = (
        insert(users)
        .values(email=payload.email, hashed_password=hash_password(payload.password))
        .returning(users.c.id, users.c.email, users.c.created_at)
    )
    with store_errors("Failed to create user"):
        try:
            with engine.begin() as conn:
                row = conn.execute(stmt).mappings().first()
        except IntegrityError as exc:
            raise DuplicateResourceError(
                "Email already in use", code="EMAIL_IN_USE"
            ) from exc
    logger.info("User registered", extra={"user_id": row["id"], "operation": "register"})
    return UserResponse(id=row["id"], email=row["email"], created_at=row["created_at"])


def authenticate_user(engine: Engine, payload: CredentialsPayload) -> UserResponse:
    with store_errors("Failed to fetch user"):
        with engine.connect() as conn:
            row = conn.execute(
                select(users).where(users.c.email == payload.email)
            ).mappings().first()

    if not row or not verify_password(payload.password, row["hashed_password"]):
        log_security_event("LOGIN_FAILED", row["id"] if row else None, severity="low")
        raise InvalidCredentialsError()

    return UserResponse(id=row["id"], email=row["email"], created_at=row["created_at"])

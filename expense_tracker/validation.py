from typing import Any, Mapping, TypeVar

from pydantic import ValidationError

from expense_tracker.errors import InvalidIdError, ValidationFailed
from expense_tracker.schemas import CommandModel

ModelT = TypeVar("ModelT", bound=CommandModel)


def _error_message(error: dict, required_messages: Mapping[str, str]) -> str:
    if error["type"] == "missing":
        field = str(error["loc"][0]) if error["loc"] else ""
        return required_messages.get(field, "Required")
    ctx = error.get("ctx") or {}
    if error["type"] == "value_error" and "error" in ctx:
        return str(ctx["error"])
    return error["msg"]


def format_validation_errors(
    exc: ValidationError, required_messages: Mapping[str, str] | None = None
) -> list[dict[str, str]]:
    """One detail per failing field, in the order pydantic reports them."""
    details: list[dict[str, str]] = []
    seen: set[str] = set()
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"]) or "unknown"
        if field in seen:
            continue
        seen.add(field)
        details.append(
            {"field": field, "message": _error_message(error, required_messages or {})}
        )
    return details


def validate_payload(model: type[ModelT], data: Mapping[str, Any]) -> ModelT:
    try:
        return model.model_validate(dict(data))
    except ValidationError as exc:
        raise ValidationFailed(
            format_validation_errors(exc, model.required_messages)
        ) from exc


def validate_query(
    model: type[ModelT],
    params: Mapping[str, str],
    *,
    code: str | None = None,
    message: str = "Invalid query parameters",
) -> ModelT:
    try:
        return model.model_validate(dict(params))
    except ValidationError as exc:
        raise ValidationFailed(
            format_validation_errors(exc, model.required_messages),
            message,
            code=code,
        ) from exc


def parse_id(raw: str, *, code: str, message: str, field_message: str) -> int:
    value = raw.strip()
    if not value.isdigit() or not value.isascii() or int(value) <= 0:
        raise InvalidIdError(code, message, field_message)
    return int(value)

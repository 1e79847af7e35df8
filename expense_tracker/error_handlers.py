"""Global exception handlers: the single top-level catch for every route.

Typed API errors render as-is, FastAPI request validation becomes
VALIDATION_ERROR, and anything else goes through the path's rule table.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from expense_tracker.errors import ApiError, ValidationFailed, classify_error, rules_for_path
from expense_tracker.observability import log_security_event
from expense_tracker.responses import error_response

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    _register_api_error_handler(app)
    _register_validation_error_handler(app)
    _register_generic_error_handler(app)


def _started_at(request: Request) -> float | None:
    return getattr(request.state, "started_at", None)


def _user_id(request: Request) -> int | None:
    raw = request.headers.get("x-user-id", "")
    return int(raw) if raw.strip().isdigit() else None


def _log_server_error(request: Request, error: ApiError) -> None:
    if error.status_code >= 500:
        log_security_event(
            "SERVER_ERROR",
            _user_id(request),
            {"path": request.url.path, "code": error.code},
            severity="high",
        )


def _register_api_error_handler(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        logger.info(
            "%s: %s",
            exc.code,
            exc.message,
            extra={"error_code": exc.code, "path": request.url.path},
        )
        _log_server_error(request, exc)
        return error_response(exc, started_at=_started_at(request))


def _register_validation_error_handler(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.warning(
            "Validation error on %s", request.url.path, extra={"path": request.url.path}
        )
        details = []
        seen = set()
        for error in exc.errors():
            field = ".".join(str(part) for part in error["loc"]) or "unknown"
            if field in seen:
                continue
            seen.add(field)
            details.append({"field": field, "message": error["msg"]})
        return error_response(ValidationFailed(details), started_at=_started_at(request))


def _register_generic_error_handler(app: FastAPI) -> None:
    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        error = classify_error(exc, rules_for_path(request.url.path))
        logger.error(
            "Unhandled exception on %s: %s",
            request.url.path,
            exc.__class__.__name__,
            extra={"error_code": error.code, "path": request.url.path},
            exc_info=exc,
        )
        if error.code == "INTERNAL_ERROR":
            log_security_event(
                "UNEXPECTED_ERROR",
                _user_id(request),
                {"path": request.url.path},
                severity="high",
            )
        else:
            _log_server_error(request, error)
        return error_response(error, started_at=_started_at(request))

import json
import time
from typing import Any

from fastapi import Response
from fastapi.encoders import jsonable_encoder

from expense_tracker.config import get_settings
from expense_tracker.errors import ApiError

NO_STORE = "no-cache, no-store, must-revalidate"
PUBLIC_FIVE_MINUTES = "public, max-age=300"


def base_headers(cache_control: str = NO_STORE) -> dict[str, str]:
    return {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Cache-Control": cache_control,
    }


def elapsed_ms(started_at: float) -> int:
    return int(round((time.perf_counter() - started_at) * 1000))


def timing_headers(
    started_at: float | None, slow_after_ms: int | None = None
) -> dict[str, str]:
    if started_at is None:
        return {}
    if slow_after_ms is None:
        slow_after_ms = get_settings().slow_response_ms
    duration = elapsed_ms(started_at)
    headers = {"X-Response-Time": f"{duration}ms"}
    if duration > slow_after_ms:
        headers["X-Performance-Warning"] = "Query execution time exceeded 2 seconds"
    return headers


def _json_response(
    content: Any,
    status_code: int,
    headers: dict[str, str],
) -> Response:
    body = json.dumps(
        jsonable_encoder(content), ensure_ascii=False, separators=(",", ":")
    ).encode("utf-8")
    return Response(
        content=body,
        status_code=status_code,
        headers=headers,
        media_type="application/json",
    )


def respond(
    payload: Any = None,
    status_code: int = 200,
    *,
    started_at: float | None = None,
    wrap: bool = True,
    cache_control: str = NO_STORE,
    headers: dict[str, str] | None = None,
) -> Response:
    """Build a success response.

    ``wrap`` places the payload under ``data``; pass ``wrap=False`` for
    payloads that are already enveloped (paginated collections) or for a bare
    ``null`` body.
    """
    all_headers = base_headers(cache_control)
    all_headers.update(timing_headers(started_at))
    if headers:
        all_headers.update(headers)
    if status_code == 204:
        return Response(status_code=204, headers=all_headers)
    content = {"data": payload} if wrap else payload
    return _json_response(content, status_code, all_headers)


def error_response(error: ApiError, *, started_at: float | None = None) -> Response:
    all_headers = base_headers()
    all_headers.update(timing_headers(started_at))
    return _json_response(error.to_response(), error.status_code, all_headers)

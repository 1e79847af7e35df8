import json

from fastapi import Request

from expense_tracker.config import get_settings
from expense_tracker.errors import RequestBodyError


def ensure_within_limit(content_length: str | None, max_bytes: int) -> None:
    if content_length is None:
        return
    try:
        declared = int(content_length.strip())
    except ValueError:
        return
    if declared > max_bytes:
        raise RequestBodyError(
            "Request payload exceeds maximum allowed size",
            code="PAYLOAD_TOO_LARGE",
            status_code=413,
        )


def parse_json_body(
    raw: bytes | str,
    content_length: str | None = None,
    max_bytes: int = 10000,
) -> dict:
    ensure_within_limit(content_length, max_bytes)

    if isinstance(raw, bytes):
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise RequestBodyError(
                "Request body must be valid JSON", code="INVALID_JSON"
            ) from exc
    else:
        text = raw

    if not text.strip():
        raise RequestBodyError("Request body cannot be empty", code="EMPTY_BODY")

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise RequestBodyError("Request body must be valid JSON", code="INVALID_JSON") from exc

    if not isinstance(payload, dict):
        raise RequestBodyError(
            "Request body must be a valid object", code="INVALID_REQUEST_STRUCTURE"
        )
    return payload


async def json_body(request: Request) -> dict:
    max_bytes = get_settings().max_body_bytes
    content_length = request.headers.get("content-length")
    # Reject oversized payloads before the stream is read.
    ensure_within_limit(content_length, max_bytes)
    raw = await request.body()
    return parse_json_body(raw, content_length, max_bytes)

import os
from dataclasses import dataclass
from functools import lru_cache

DEFAULT_DATABASE_URL = "sqlite:///./expense_tracker.db"
DEFAULT_MAX_BODY_BYTES = 10000
DEFAULT_SLOW_RESPONSE_MS = 2000
DEFAULT_BALANCE_FALLBACK_WORKERS = 4


def normalize_log_format(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in {"json", "text"}:
        return "json"
    return normalized


def read_int_env(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        return default
    if value < minimum:
        return default
    return value


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    frontend_origin: str = "http://localhost:3000"
    log_level: str = "INFO"
    log_format: str = "json"
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES
    slow_response_ms: int = DEFAULT_SLOW_RESPONSE_MS
    balance_fallback_workers: int = DEFAULT_BALANCE_FALLBACK_WORKERS


def load_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
        frontend_origin=os.getenv("FRONTEND_ORIGIN", "http://localhost:3000"),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        log_format=normalize_log_format(os.getenv("LOG_FORMAT", "json")),
        max_body_bytes=read_int_env("MAX_BODY_BYTES", DEFAULT_MAX_BODY_BYTES),
        slow_response_ms=read_int_env("SLOW_RESPONSE_MS", DEFAULT_SLOW_RESPONSE_MS),
        balance_fallback_workers=read_int_env(
            "BALANCE_FALLBACK_WORKERS", DEFAULT_BALANCE_FALLBACK_WORKERS
        ),
    )


@lru_cache
def get_settings() -> Settings:
    return load_settings()

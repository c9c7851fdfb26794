import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    allocation_max_retries: int
    allocation_retry_backoff_ms: int
    sqlite_busy_timeout: float


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}.") from e


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///coleta.db"),
        allocation_max_retries=_getenv_int("ALLOCATION_MAX_RETRIES", 5),
        allocation_retry_backoff_ms=_getenv_int("ALLOCATION_RETRY_BACKOFF_MS", 10),
        sqlite_busy_timeout=float(_getenv_int("SQLITE_BUSY_TIMEOUT", 30)),
    )


def load_config() -> dict:
    s = load_settings()
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "ALLOCATION_MAX_RETRIES": s.allocation_max_retries,
        "ALLOCATION_RETRY_BACKOFF_MS": s.allocation_retry_backoff_ms,
        "SQLITE_BUSY_TIMEOUT": s.sqlite_busy_timeout,
    }

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class Settings:
    """
    Application settings loaded from environment variables.

    Env vars:
    - PERSISTENCE_BACKEND: 'memory' (default) or 'sqlite'
    - SQLITE_DB_PATH: path to sqlite db file. Default './data/tasks.db'
    - CORS_ALLOW_ORIGINS: comma-separated list of allowed origins; '*' by default
    - SYNC_API_BASE_URL: base URL of the remote reconciliation service
    - SYNC_BATCH_SIZE: max queue entries submitted per sync pass (default 50)
    - SYNC_PROBE_TIMEOUT: seconds allowed for the liveness probe (default 5)
    - SYNC_REQUEST_TIMEOUT: seconds allowed for the batch request (default 30)
    - SYNC_MAX_RETRIES: failed attempts before an entry is dead-lettered (default 5)
    - SYNC_INTERVAL_SECONDS: periodic sync interval; 0 disables the loop (default 0)
    - LOG_LEVEL: root log level name (default INFO)
    """

    persistence_backend: str
    sqlite_db_path: str
    cors_allow_origins: List[str]
    sync_api_base_url: str
    sync_batch_size: int
    sync_probe_timeout: float
    sync_request_timeout: float
    sync_max_retries: int
    sync_interval_seconds: float
    log_level: str


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name, default)
    if value is None or value == "":
        return default
    return value


def _parse_int(value: str, default: int, minimum: int = 0) -> int:
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return parsed if parsed >= minimum else default


def _parse_float(value: str, default: float, minimum: float = 0.0) -> float:
    try:
        parsed = float(value.strip())
    except ValueError:
        return default
    return parsed if parsed >= minimum else default


def _parse_origins(origins_value: str) -> List[str]:
    """
    Parse CORS origins from env. Supports:
    - '*' to allow all origins
    - Comma-separated list of origins
    """
    value = origins_value.strip()
    if value == "*":
        return ["*"]
    return [o.strip() for o in value.split(",") if o.strip()]


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """Return application settings loaded from environment variables."""
    backend = _get_env("PERSISTENCE_BACKEND", "memory").strip().lower()
    if backend not in {"memory", "sqlite"}:
        # Fallback to memory if unsupported
        backend = "memory"

    sqlite_path = _get_env("SQLITE_DB_PATH", "./data/tasks.db").strip()
    origins = _parse_origins(_get_env("CORS_ALLOW_ORIGINS", "*"))

    base_url = _get_env("SYNC_API_BASE_URL", "http://localhost:3000/api").strip().rstrip("/")

    log_level = _get_env("LOG_LEVEL", "INFO").strip().upper()

    return Settings(
        persistence_backend=backend,
        sqlite_db_path=sqlite_path,
        cors_allow_origins=origins,
        sync_api_base_url=base_url,
        sync_batch_size=_parse_int(_get_env("SYNC_BATCH_SIZE", "50"), 50, minimum=1),
        sync_probe_timeout=_parse_float(_get_env("SYNC_PROBE_TIMEOUT", "5"), 5.0, minimum=0.1),
        sync_request_timeout=_parse_float(_get_env("SYNC_REQUEST_TIMEOUT", "30"), 30.0, minimum=0.1),
        sync_max_retries=_parse_int(_get_env("SYNC_MAX_RETRIES", "5"), 5, minimum=1),
        sync_interval_seconds=_parse_float(_get_env("SYNC_INTERVAL_SECONDS", "0"), 0.0),
        log_level=log_level,
    )

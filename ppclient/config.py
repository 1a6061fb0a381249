from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_BASE_URL = "http://localhost:8000"


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, "") or default)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, "") or default)
    except ValueError:
        return default


@dataclass
class Settings:
    base_url: str = DEFAULT_BASE_URL
    poll_interval_ms: int = 2000
    http_timeout: float = 30.0
    http_retries: int = 3
    http_retry_wait: float = 1.0
    max_polls: int = 0  # 0 = poll until the server reports done/error
    logfile: Optional[str] = None


def load_settings() -> Settings:
    """Read PP_* variables from the environment (call load_dotenv() first for .env support)."""
    return Settings(
        base_url=os.getenv("PP_BASE_URL") or DEFAULT_BASE_URL,
        poll_interval_ms=max(0, _env_int("PP_POLL_INTERVAL_MS", 2000)),
        http_timeout=_env_float("PP_HTTP_TIMEOUT", 30.0),
        http_retries=max(1, _env_int("PP_HTTP_RETRIES", 3)),
        http_retry_wait=max(0.0, _env_float("PP_HTTP_RETRY_WAIT", 1.0)),
        max_polls=max(0, _env_int("PP_MAX_POLLS", 0)),
        logfile=os.getenv("PP_LOGFILE") or None,
    )

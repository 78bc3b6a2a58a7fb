"""
Runtime settings read from the environment.

Call ``env.load_env()`` first when a ``.env`` file should be honoured.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DEFAULT_API_BASE_URL = "http://localhost:8000"
DEFAULT_ENGINE_URL = "https://astro-api-a3kq.onrender.com/calculate-compatibility"
DEFAULT_DB_PATH = "data/astromatch.db"
DEFAULT_PAGE_SIZE = 20


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_str(name: str, default: Optional[str]) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip()


@dataclass(frozen=True)
class Settings:
    api_base_url: str
    engine_url: str
    db_path: Path
    page_size: int
    max_workers: int
    log_level: str
    viewer_id: Optional[str] = None


def load_settings() -> Settings:
    page_size = _env_int("ASTROMATCH_PAGE_SIZE", DEFAULT_PAGE_SIZE)
    max_workers = _env_int("ASTROMATCH_MAX_WORKERS", 1)
    return Settings(
        api_base_url=_env_str("ASTROMATCH_API_BASE_URL", DEFAULT_API_BASE_URL).rstrip("/"),
        engine_url=_env_str("ASTROMATCH_ENGINE_URL", DEFAULT_ENGINE_URL),
        db_path=Path(_env_str("ASTROMATCH_DB_PATH", DEFAULT_DB_PATH)),
        page_size=page_size if page_size > 0 else DEFAULT_PAGE_SIZE,
        max_workers=max(1, max_workers),
        log_level=(_env_str("ASTROMATCH_LOG_LEVEL", "INFO")).upper(),
        viewer_id=_env_str("ASTROMATCH_VIEWER_ID", None),
    )

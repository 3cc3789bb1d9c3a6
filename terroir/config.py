"""
Runtime configuration.

Values come from the environment, optionally seeded from a ``.env`` file in
the working directory.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_DATABASE_URL = "sqlite:///data/terroir.db"
SQLITE_BEGIN_MODES = {"DEFERRED", "IMMEDIATE", "EXCLUSIVE"}


def load_env() -> None:
    """Load .env from the working directory if present."""
    env_path = Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(dotenv_path=env_path)


@dataclass
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    merge_max_retries: int = 3
    merge_base_delay: float = 0.2
    merge_max_delay: float = 5.0
    sqlite_begin: str = "IMMEDIATE"
    log_level: str = "INFO"
    log_dir: Optional[Path] = None


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def load_settings(use_dotenv: bool = True) -> Settings:
    """
    Build settings from the environment.

    Args:
        use_dotenv: Read .env from the working directory first

    Returns:
        Settings instance
    """
    if use_dotenv:
        load_env()

    begin = os.getenv("TERROIR_SQLITE_BEGIN", "IMMEDIATE").strip().upper()
    if begin not in SQLITE_BEGIN_MODES:
        raise ValueError(
            f"TERROIR_SQLITE_BEGIN must be one of {sorted(SQLITE_BEGIN_MODES)}, got {begin!r}"
        )

    log_dir = os.getenv("TERROIR_LOG_DIR")

    return Settings(
        database_url=os.getenv("TERROIR_DATABASE_URL", DEFAULT_DATABASE_URL),
        merge_max_retries=max(0, _int_env("TERROIR_MERGE_MAX_RETRIES", 3)),
        merge_base_delay=_float_env("TERROIR_MERGE_BASE_DELAY", 0.2),
        merge_max_delay=_float_env("TERROIR_MERGE_MAX_DELAY", 5.0),
        sqlite_begin=begin,
        log_level=os.getenv("TERROIR_LOG_LEVEL", "INFO").upper(),
        log_dir=Path(log_dir) if log_dir else None,
    )

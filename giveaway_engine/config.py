"""Environment-driven settings for the giveaway engine."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .db.utils import resolve_sqlite_url

# Project root directory (repo root)
ROOT_DIR = Path(__file__).resolve().parents[1]
DEFAULT_DB_URL = "sqlite:///./dev.db"
DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class Settings:
    """Runtime configuration read from the process environment.

    Attributes
    ----------
    database_url : str
        SQLAlchemy URL. Relative SQLite paths are resolved against the repo root.
    draw_lock_timeout_s : float
        Seconds a draw or reroll waits for the per-giveaway lock before
        giving up with :class:`~giveaway_engine.errors.ConcurrencyConflict`.
    realtime_relay_url : Optional[str]
        Base URL of an external realtime relay. When unset, count updates are
        only delivered to in-process subscribers.
    log_level : str
        Name of the root log level.
    """

    database_url: str = DEFAULT_DB_URL
    draw_lock_timeout_s: float = 10.0
    realtime_relay_url: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        timeout_raw = os.getenv("DRAW_LOCK_TIMEOUT_S")
        try:
            timeout = float(timeout_raw) if timeout_raw else 10.0
        except ValueError as exc:
            raise ValueError(
                f"DRAW_LOCK_TIMEOUT_S must be a number, got {timeout_raw!r}"
            ) from exc
        return cls(
            database_url=resolve_sqlite_url(
                os.getenv("DB_URL", DEFAULT_DB_URL), ROOT_DIR
            ),
            draw_lock_timeout_s=timeout,
            realtime_relay_url=os.getenv("REALTIME_RELAY_URL") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(level: Optional[str] = None) -> None:
    """Install a basic root handler at ``level`` (defaults to ``LOG_LEVEL``)."""
    resolved = level or Settings.from_env().log_level
    logging.basicConfig(level=resolved, format=DEFAULT_LOG_FORMAT)


__all__ = ["Settings", "configure_logging", "ROOT_DIR", "DEFAULT_DB_URL"]

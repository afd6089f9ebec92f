from __future__ import annotations

import logging
import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable

from .settings import settings

logger = logging.getLogger("asr")

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def configure_logging() -> None:
    logging.basicConfig(
        level=_LEVELS.get(settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def journal_enabled() -> bool:
    return bool(settings.db_path)


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory (Docker creates one when a missing
    bind-mounted file is mounted), the journal file is placed inside it.
    """
    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "asr.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create tables if they do not exist."""
    if not journal_enabled():
        return
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              criterion TEXT,
              target TEXT,
              message TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS reloads (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              outcome TEXT NOT NULL, -- committed|rejected
              revision INTEGER NOT NULL,
              removed INTEGER NOT NULL DEFAULT 0,
              added INTEGER NOT NULL DEFAULT 0,
              failed_targets INTEGER NOT NULL DEFAULT 0,
              error TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            """
        )


def log_event(level: str, message: str, criterion: str | None = None, target: str | None = None) -> None:
    """Log through the ``asr`` logger and append the event to the journal.

    Journal failures are reported on the logger only; callers on the
    reconcile path never see them.
    """
    level = level.upper()
    parts = [message]
    if criterion:
        parts.append(f"criterion={criterion}")
    if target:
        parts.append(f"target={target}")
    logger.log(_LEVELS.get(level, logging.INFO), " ".join(parts))

    if not journal_enabled():
        return
    try:
        with connect() as conn:
            conn.execute(
                "INSERT INTO events (ts, level, criterion, target, message) VALUES (?, ?, ?, ?, ?)",
                (utc_now(), level, criterion, target, message),
            )
    except sqlite3.Error as e:
        logger.warning(f"Event journal write failed: {e}")


@dataclass(frozen=True)
class ReloadRow:
    id: int
    ts: str
    outcome: str
    revision: int
    removed: int
    added: int
    failed_targets: int
    error: str | None


def _rows_to_dataclass(rows: Iterable[sqlite3.Row], cls: Any) -> list[Any]:
    out: list[Any] = []
    for r in rows:
        out.append(cls(**dict(r)))
    return out


def record_reload(
    outcome: str,
    revision: int,
    removed: int = 0,
    added: int = 0,
    failed_targets: int = 0,
    error: str | None = None,
) -> None:
    if not journal_enabled():
        return
    try:
        with connect() as conn:
            conn.execute(
                """
                INSERT INTO reloads (ts, outcome, revision, removed, added, failed_targets, error)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (utc_now(), outcome, revision, removed, added, failed_targets, error),
            )
    except sqlite3.Error as e:
        logger.warning(f"Reload journal write failed: {e}")


def latest_reloads(limit: int = 20) -> list[ReloadRow]:
    if not journal_enabled():
        return []
    with connect() as conn:
        rows = conn.execute("SELECT * FROM reloads ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return _rows_to_dataclass(rows, ReloadRow)


def latest_events(limit: int = 100) -> list[dict[str, Any]]:
    if not journal_enabled():
        return []
    with connect() as conn:
        rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]

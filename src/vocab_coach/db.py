from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from .errors import ContractViolation, StorageUnavailableError

logger = logging.getLogger(__name__)

PACKAGE_ROOT = Path(__file__).resolve().parent
PROJECT_ROOT = PACKAGE_ROOT.parent.parent
DATA_DIR = PROJECT_ROOT / "data"
DEFAULT_DB_PATH = DATA_DIR / "vocab_coach.db"
DB_PATH = Path(os.environ.get("VOCAB_COACH_DB_PATH", DEFAULT_DB_PATH))


@contextmanager
def storage_errors(action: str) -> Iterator[None]:
    """Translate sqlite3 failures into the error kinds callers handle."""

    try:
        yield
    except sqlite3.IntegrityError as exc:
        raise ContractViolation(f"Rejected by proficiency schema while {action}: {exc}") from exc
    except (sqlite3.Error, OSError) as exc:
        logger.warning("Storage failure while %s: %s", action, exc)
        raise StorageUnavailableError(f"Proficiency storage unavailable while {action}") from exc


def _open_connection(db_path: Path | None = None) -> sqlite3.Connection:
    path = Path(db_path or DB_PATH)
    with storage_errors("opening the database"):
        path.parent.mkdir(parents=True, exist_ok=True)
        # autocommit mode; transactions are opened explicitly with BEGIN
        connection = sqlite3.connect(path, timeout=10.0, isolation_level=None, check_same_thread=False)
        connection.row_factory = sqlite3.Row
    return connection


@contextmanager
def connect(db_path: Path | None = None) -> Iterator[sqlite3.Connection]:
    """Yield a connection that is always closed afterwards."""

    connection = _open_connection(db_path)
    try:
        yield connection
    finally:
        connection.close()


def now_iso(value: datetime | None = None) -> str:
    """Return the UTC timestamp (microsecond precision) as ISO 8601."""

    moment = value or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    else:
        moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="microseconds")


def parse_iso(value: str) -> datetime:
    moment = datetime.fromisoformat(value)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def init_db(db_path: Path | None = None) -> None:
    """Initialise the database schema if tables are missing."""

    with connect(db_path) as connection, storage_errors("creating the schema"):
        _create_tables(connection)


def _create_tables(connection: sqlite3.Connection) -> None:
    connection.execute(
        """
        CREATE TABLE IF NOT EXISTS proficiencies (
            student_id TEXT NOT NULL,
            level TEXT NOT NULL,
            scope_key TEXT NOT NULL,
            alpha REAL NOT NULL,
            beta REAL NOT NULL,
            mean_ability REAL NOT NULL,
            confidence REAL NOT NULL,
            sample_count INTEGER NOT NULL DEFAULT 0,
            forgetting_rate REAL NOT NULL,
            last_updated TEXT NOT NULL,
            created_at TEXT NOT NULL,
            PRIMARY KEY (student_id, level, scope_key),
            CHECK(level IN ('domain','module','item')),
            CHECK(alpha > 0 AND beta > 0),
            CHECK(sample_count >= 0)
        )
        """
    )
    connection.execute(
        "CREATE INDEX IF NOT EXISTS idx_proficiencies_student_level ON proficiencies(student_id, level)"
    )


__all__ = [
    "connect",
    "DB_PATH",
    "DEFAULT_DB_PATH",
    "init_db",
    "now_iso",
    "parse_iso",
    "storage_errors",
]

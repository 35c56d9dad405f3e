"""SQLite-backed store of proficiency records with per-student transactions."""

from __future__ import annotations

import logging
import sqlite3
import threading
import weakref
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator

from .bayes import check_invariants, new_record, reset_record
from .config import EngineConfig, load_config
from .db import connect, init_db, now_iso, parse_iso, storage_errors
from .errors import ContractViolation
from .models import (
    ITEM_KEY_SEPARATOR,
    Level,
    ProficiencyRecord,
    ensure_level,
    item_scope_key,
    validate_scope_key,
)

logger = logging.getLogger(__name__)

# entries drop out once no transaction holds the student's lock
_student_locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
_locks_guard = threading.Lock()


def _student_lock(student_id: str) -> threading.Lock:
    with _locks_guard:
        lock = _student_locks.get(student_id)
        if lock is None:
            lock = threading.Lock()
            _student_locks[student_id] = lock
        return lock


def _row_to_record(row: Any) -> ProficiencyRecord:
    return ProficiencyRecord(
        student_id=str(row["student_id"]),
        level=ensure_level(str(row["level"])),
        scope_key=str(row["scope_key"]),
        alpha=float(row["alpha"]),
        beta=float(row["beta"]),
        mean_ability=float(row["mean_ability"]),
        confidence=float(row["confidence"]),
        sample_count=int(row["sample_count"]),
        forgetting_rate=float(row["forgetting_rate"]),
        last_updated=parse_iso(str(row["last_updated"])),
    )


def _select(connection: sqlite3.Connection, student_id: str, level: Level, scope_key: str) -> ProficiencyRecord | None:
    row = connection.execute(
        "SELECT * FROM proficiencies WHERE student_id = ? AND level = ? AND scope_key = ?",
        (student_id, level, scope_key),
    ).fetchone()
    if row is None:
        return None
    return _row_to_record(row)


def _upsert(connection: sqlite3.Connection, record: ProficiencyRecord) -> None:
    connection.execute(
        """
        INSERT INTO proficiencies (
            student_id, level, scope_key, alpha, beta, mean_ability, confidence,
            sample_count, forgetting_rate, last_updated, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(student_id, level, scope_key) DO UPDATE SET
            alpha = excluded.alpha,
            beta = excluded.beta,
            mean_ability = excluded.mean_ability,
            confidence = excluded.confidence,
            sample_count = excluded.sample_count,
            forgetting_rate = excluded.forgetting_rate,
            last_updated = excluded.last_updated
        """,
        (
            record.student_id, record.level, record.scope_key, record.alpha, record.beta,
            record.mean_ability, record.confidence, record.sample_count, record.forgetting_rate,
            now_iso(record.last_updated), now_iso(),
        ),
    )


def _now(value: datetime | None) -> datetime:
    return value or datetime.now(timezone.utc)


class UnitOfWork:
    """Records read and staged inside one store transaction.

    Nothing is written until the surrounding ``ProficiencyStore.transaction``
    exits cleanly; then every staged record is written before COMMIT.
    """

    def __init__(self, connection: sqlite3.Connection, student_id: str, config: EngineConfig) -> None:
        self._connection = connection
        self.student_id = student_id
        self._config = config
        self._staged: dict[tuple[Level, str], ProficiencyRecord] = {}

    def get(self, level: Level, scope_key: str) -> ProficiencyRecord | None:
        staged = self._staged.get((level, scope_key))
        if staged is not None:
            return staged
        with storage_errors("reading a proficiency record"):
            return _select(self._connection, self.student_id, level, scope_key)

    def get_or_create(self, level: Level, scope_key: str, *, now: datetime | None = None) -> ProficiencyRecord:
        validate_scope_key(level, scope_key)
        record = self.get(level, scope_key)
        if record is None:
            record = new_record(self.student_id, level, scope_key, now=_now(now), config=self._config)
            self.stage(record)
        return record

    def stage(self, record: ProficiencyRecord) -> None:
        if record.student_id != self.student_id:
            raise ContractViolation(
                f"Record for {record.student_id!r} staged in a transaction for {self.student_id!r}"
            )
        validate_scope_key(record.level, record.scope_key)
        check_invariants(record)
        self._staged[(record.level, record.scope_key)] = record

    @property
    def staged(self) -> list[ProficiencyRecord]:
        return list(self._staged.values())

    def _flush(self) -> None:
        for record in self._staged.values():
            _upsert(self._connection, record)


class ProficiencyStore:
    def __init__(self, config: EngineConfig | None = None, db_path: Path | None = None) -> None:
        self.config = config or load_config()
        self.db_path = db_path

    def init_db(self) -> None:
        init_db(self.db_path)

    @contextmanager
    def transaction(self, student_id: str) -> Iterator[UnitOfWork]:
        """Serialise read-modify-write for one student and commit all-or-nothing."""

        if not isinstance(student_id, str) or not student_id.strip():
            raise ContractViolation(f"student_id must be a non-empty string, got {student_id!r}")
        with _student_lock(student_id), connect(self.db_path) as connection:
            with storage_errors("starting a transaction"):
                connection.execute("BEGIN IMMEDIATE")
            unit = UnitOfWork(connection, student_id, self.config)
            try:
                yield unit
                with storage_errors("committing proficiency updates"):
                    unit._flush()
                    connection.execute("COMMIT")
            except BaseException:
                if connection.in_transaction:
                    try:
                        connection.rollback()
                    except sqlite3.Error as exc:
                        logger.warning("Rollback failed for student %s: %s", student_id, exc)
                raise

    def get(self, student_id: str, level: Level, scope_key: str) -> ProficiencyRecord | None:
        level = ensure_level(level)
        validate_scope_key(level, scope_key)
        with connect(self.db_path) as connection, storage_errors("reading a proficiency record"):
            return _select(connection, student_id, level, scope_key)

    def get_or_create(
        self,
        student_id: str,
        level: Level,
        scope_key: str,
        *,
        now: datetime | None = None,
    ) -> ProficiencyRecord:
        level = ensure_level(level)
        with self.transaction(student_id) as unit:
            return unit.get_or_create(level, scope_key, now=now)

    def save(self, record: ProficiencyRecord) -> None:
        with self.transaction(record.student_id) as unit:
            unit.stage(record)

    def list_records(self, student_id: str, level: Level | None = None) -> list[ProficiencyRecord]:
        query = "SELECT * FROM proficiencies WHERE student_id = ?"
        params: list[Any] = [student_id]
        if level is not None:
            query += " AND level = ?"
            params.append(ensure_level(level))
        query += " ORDER BY level, scope_key"
        with connect(self.db_path) as connection, storage_errors("listing proficiency records"):
            rows = connection.execute(query, params).fetchall()
        return [_row_to_record(row) for row in rows]

    def list_items(self, student_id: str, module_id: str) -> list[ProficiencyRecord]:
        """Item records belonging to ``module_id``."""
        validate_scope_key("module", module_id)
        prefix = f"{module_id}{ITEM_KEY_SEPARATOR}"
        with connect(self.db_path) as connection, storage_errors("listing item records"):
            rows = connection.execute(
                """
                SELECT * FROM proficiencies
                WHERE student_id = ? AND level = 'item' AND substr(scope_key, 1, ?) = ?
                ORDER BY scope_key
                """,
                (student_id, len(prefix), prefix),
            ).fetchall()
        return [_row_to_record(row) for row in rows]

    def bulk_initialize(
        self,
        student_id: str,
        module_id: str,
        domain: str,
        item_ids: Iterable[str],
        *,
        now: datetime | None = None,
    ) -> int:
        """Create missing domain, module and item records. Returns how many were created."""
        scopes: list[tuple[Level, str]] = [("domain", domain), ("module", module_id)]
        scopes.extend(("item", item_scope_key(module_id, item_id)) for item_id in item_ids)
        with self.transaction(student_id) as unit:
            for level, scope_key in scopes:
                unit.get_or_create(level, scope_key, now=now)
            created = len(unit.staged)
        if created:
            logger.info("Initialised %d proficiency records for %s in %s", created, student_id, module_id)
        return created

    def reset(self, student_id: str, level: Level, scope_key: str, *, now: datetime | None = None) -> ProficiencyRecord:
        level = ensure_level(level)
        with self.transaction(student_id) as unit:
            record = unit.get_or_create(level, scope_key, now=now)
            fresh = reset_record(record, now=_now(now), config=self.config)
            unit.stage(fresh)
        logger.info("Reset %s %s for %s", level, scope_key, student_id)
        return fresh


__all__ = [
    "ProficiencyStore",
    "UnitOfWork",
]

"""Tests for store.py: get-or-create, upserts, bulk init, transactions, errors."""

from __future__ import annotations

import gc
import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from vocab_coach import store as store_module
from vocab_coach.bayes import update
from vocab_coach.config import EngineConfig
from vocab_coach.errors import ContractViolation, StorageUnavailableError
from vocab_coach.store import ProficiencyStore

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def fresh_db(tmp_path):
    """Use a temp file DB for each test."""
    from vocab_coach import db
    db_path = tmp_path / "test.db"
    db.DB_PATH = db_path
    db.init_db()
    yield
    if db_path.exists():
        db_path.unlink()


@pytest.fixture
def store() -> ProficiencyStore:
    return ProficiencyStore(EngineConfig())


class TestGetOrCreate:
    def test_missing_record_reads_as_none(self, store):
        assert store.get("s1", "module", "r003.1") is None

    def test_creates_with_prior(self, store):
        record = store.get_or_create("s1", "item", "r003.1/ship", now=NOW)
        assert (record.alpha, record.beta, record.sample_count) == (1.0, 1.0, 0)
        fetched = store.get("s1", "item", "r003.1/ship")
        assert fetched == record

    def test_second_call_returns_existing(self, store):
        first = store.get_or_create("s1", "module", "r003.1", now=NOW)
        store.save(update(first, [True, True], now=NOW, config=store.config))
        again = store.get_or_create("s1", "module", "r003.1", now=NOW + timedelta(days=1))
        assert again.alpha == 3.0
        assert again.last_updated == NOW

    def test_keys_are_scoped_per_student_and_level(self, store):
        store.get_or_create("s1", "module", "reading", now=NOW)
        assert store.get("s2", "module", "reading") is None
        assert store.get("s1", "domain", "reading") is None

    def test_malformed_key_rejected(self, store):
        with pytest.raises(ContractViolation):
            store.get_or_create("s1", "item", "no-separator")
        with pytest.raises(ContractViolation):
            store.get_or_create("s1", "chapter", "r003.1")  # type: ignore[arg-type]


class TestSave:
    def test_roundtrips_all_fields(self, store):
        record = store.get_or_create("s1", "module", "r003.1", now=NOW)
        updated = update(record, [True, False, True], now=NOW + timedelta(hours=1), config=store.config)
        store.save(updated)
        fetched = store.get("s1", "module", "r003.1")
        assert fetched == updated

    def test_rejects_non_positive_parameters(self, store):
        record = store.get_or_create("s1", "module", "r003.1", now=NOW)
        broken = replace(record, beta=0.0)
        with pytest.raises(AssertionError):
            store.save(broken)
        assert store.get("s1", "module", "r003.1").beta == 1.0


class TestListing:
    def test_list_items_only_returns_module_items(self, store):
        store.bulk_initialize("s1", "r003.1", "reading", ["ship", "grog"], now=NOW)
        store.bulk_initialize("s1", "r003.10", "reading", ["sea"], now=NOW)
        items = store.list_items("s1", "r003.1")
        assert [record.item_id for record in items] == ["grog", "ship"]

    def test_list_records_by_level(self, store):
        store.bulk_initialize("s1", "r003.1", "reading", ["ship"], now=NOW)
        assert len(store.list_records("s1")) == 3
        assert [r.scope_key for r in store.list_records("s1", "domain")] == ["reading"]


class TestBulkInitialize:
    def test_creates_all_levels(self, store):
        created = store.bulk_initialize("s1", "r003.1", "reading", ["ship", "grog", "key"], now=NOW)
        assert created == 5
        assert store.get("s1", "domain", "reading") is not None
        assert store.get("s1", "module", "r003.1") is not None
        assert store.get("s1", "item", "r003.1/key") is not None

    def test_idempotent_and_keeps_evidence(self, store):
        store.bulk_initialize("s1", "r003.1", "reading", ["ship"], now=NOW)
        module = store.get("s1", "module", "r003.1")
        store.save(update(module, [True] * 5, now=NOW, config=store.config))

        created = store.bulk_initialize("s1", "r003.1", "reading", ["ship", "grog"], now=NOW)
        assert created == 1
        assert store.get("s1", "module", "r003.1").sample_count == 5


class TestTransaction:
    def test_commits_staged_records_together(self, store):
        with store.transaction("s1") as unit:
            module = unit.get_or_create("module", "r003.1", now=NOW)
            domain = unit.get_or_create("domain", "reading", now=NOW)
            unit.stage(update(module, [True], now=NOW, config=store.config))
            unit.stage(update(domain, [True], now=NOW, config=store.config))
        assert store.get("s1", "module", "r003.1").alpha == 2.0
        assert store.get("s1", "domain", "reading").alpha == 2.0

    def test_failure_rolls_back_everything(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction("s1") as unit:
                module = unit.get_or_create("module", "r003.1", now=NOW)
                unit.stage(update(module, [True], now=NOW, config=store.config))
                raise RuntimeError("boom")
        assert store.get("s1", "module", "r003.1") is None

    def test_reads_see_staged_values(self, store):
        with store.transaction("s1") as unit:
            module = unit.get_or_create("module", "r003.1", now=NOW)
            unit.stage(update(module, [False], now=NOW, config=store.config))
            assert unit.get("module", "r003.1").beta == 2.0

    def test_cannot_stage_other_students_record(self, store):
        other = store.get_or_create("s2", "module", "r003.1", now=NOW)
        with pytest.raises(ContractViolation):
            with store.transaction("s1") as unit:
                unit.stage(other)

    def test_concurrent_updates_do_not_lose_evidence(self, store):
        store.get_or_create("s1", "module", "r003.1", now=NOW)
        errors: list[BaseException] = []

        def submit() -> None:
            try:
                for _ in range(5):
                    with store.transaction("s1") as unit:
                        record = unit.get_or_create("module", "r003.1", now=NOW)
                        unit.stage(update(record, [True, False], now=NOW, config=store.config))
            except BaseException as exc:  # pragma: no cover - surfaced below
                errors.append(exc)

        threads = [threading.Thread(target=submit) for _ in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert not errors
        record = store.get("s1", "module", "r003.1")
        assert record.sample_count == 60
        assert record.alpha == 31.0
        assert record.beta == 31.0

    def test_student_locks_are_released_after_use(self, store):
        held = store_module._student_lock("s-held")
        assert store_module._student_lock("s-held") is held

        with store.transaction("s-passing") as unit:
            unit.get_or_create("module", "r003.1", now=NOW)
            assert "s-passing" in store_module._student_locks
        gc.collect()
        assert "s-passing" not in store_module._student_locks
        assert "s-held" in store_module._student_locks


class TestReset:
    def test_reset_clears_evidence(self, store):
        record = store.get_or_create("s1", "module", "r003.1", now=NOW)
        store.save(update(record, [True] * 9, now=NOW, config=store.config))
        fresh = store.reset("s1", "module", "r003.1", now=NOW + timedelta(days=2))
        assert (fresh.alpha, fresh.beta, fresh.sample_count) == (1.0, 1.0, 0)
        assert store.get("s1", "module", "r003.1") == fresh


class TestStorageErrors:
    def test_missing_schema_is_storage_unavailable(self, tmp_path):
        store = ProficiencyStore(EngineConfig(), db_path=tmp_path / "empty.db")
        with pytest.raises(StorageUnavailableError):
            store.get("s1", "module", "r003.1")
        with pytest.raises(StorageUnavailableError):
            store.get_or_create("s1", "module", "r003.1")

    def test_explicit_path_can_be_initialised(self, tmp_path):
        store = ProficiencyStore(EngineConfig(), db_path=tmp_path / "own.db")
        store.init_db()
        assert store.get_or_create("s1", "domain", "reading").sample_count == 0

"""Tests for recommend.py: difficulty policy, question counts, focus items, skip and mastery."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from vocab_coach.bayes import confidence_for, new_record, update
from vocab_coach.config import EngineConfig
from vocab_coach.models import DIFFICULTIES, ItemResult
from vocab_coach.recommend import SKIP_REASON, RecommendationEngine, bucket_for
from vocab_coach.store import ProficiencyStore

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
MODULE = "r003.1"


@pytest.fixture(autouse=True)
def fresh_db(tmp_path):
    from vocab_coach import db
    db.DB_PATH = tmp_path / "test.db"
    db.init_db()
    yield


@pytest.fixture
def store() -> ProficiencyStore:
    return ProficiencyStore(EngineConfig())


@pytest.fixture
def engine(store) -> RecommendationEngine:
    return RecommendationEngine(store)


def _save(store, level, key, alpha, beta, samples, *, student="s1", when=NOW):
    record = new_record(student, level, key, now=when, config=store.config)
    record = replace(
        record,
        alpha=alpha,
        beta=beta,
        mean_ability=alpha / (alpha + beta),
        confidence=confidence_for(level, alpha, beta, store.config),
        sample_count=samples,
    )
    store.save(record)
    return record


def _submit(store, outcomes, *, student="s1", when=NOW):
    """Apply one activity's outcomes to the module record."""
    record = store.get_or_create(student, "module", MODULE, now=when)
    updated = update(record, outcomes, now=when, config=store.config)
    store.save(updated)
    return updated


class TestSelectDifficulty:
    def test_thresholds(self, engine):
        assert engine.select_difficulty(0.10) == "easy"
        assert engine.select_difficulty(0.5999) == "easy"
        assert engine.select_difficulty(0.60) == "medium"
        assert engine.select_difficulty(0.7499) == "medium"
        assert engine.select_difficulty(0.75) == "hard"
        assert engine.select_difficulty(0.99) == "hard"

    def test_monotone_in_ability(self, engine):
        ranks = [DIFFICULTIES.index(engine.select_difficulty(i / 200)) for i in range(201)]
        assert ranks == sorted(ranks)

    def test_thresholds_come_from_config(self, store):
        old_tuning = RecommendationEngine(store, EngineConfig(hard_threshold=0.80, medium_threshold=0.65))
        assert old_tuning.select_difficulty(0.78) == "medium"
        assert RecommendationEngine(store).select_difficulty(0.78) == "hard"


class TestQuestionCount:
    @pytest.mark.parametrize(
        "ability,confidence,expected",
        [
            (0.90, 0.90, 5),
            (0.85, 0.80, 5),
            (0.90, 0.70, 7),
            (0.75, 0.90, 7),
            (0.75, 0.60, 7),
            (0.90, 0.10, 10),
            (0.50, 1.00, 10),
            (0.69, 0.99, 10),
        ],
    )
    def test_default_table(self, engine, ability, confidence, expected):
        assert engine.question_count(ability, confidence) == expected

    def test_table_is_swappable(self, store):
        counts = {
            "high": {"high": 3, "mid": 4, "low": 6},
            "mid": {"high": 6, "mid": 8, "low": 12},
            "low": {"high": 12, "mid": 12, "low": 15},
        }
        engine = RecommendationEngine(store, EngineConfig(question_counts=counts))
        assert engine.question_count(0.95, 0.95) == 3
        assert engine.question_count(0.1, 0.1) == 15

    def test_bucket_edges_are_inclusive(self):
        edges = {"high": 0.8, "mid": 0.6}
        assert bucket_for(0.8, edges) == "high"
        assert bucket_for(0.6, edges) == "mid"
        assert bucket_for(0.5999, edges) == "low"


class TestScenarios:
    def test_a_perfect_first_attempt_goes_hard(self, store, engine):
        record = _submit(store, [True] * 10)
        assert (record.alpha, record.beta) == (11.0, 1.0)
        assert record.mean_ability == pytest.approx(11 / 12)
        assert engine.recommend("s1", MODULE, "spelling", now=NOW).difficulty == "hard"

    def test_b_then_eight_of_ten_stays_hard(self, store, engine):
        _submit(store, [True] * 10)
        record = _submit(store, [True] * 8 + [False] * 2)
        assert (record.alpha, record.beta) == (19.0, 3.0)
        assert record.mean_ability == pytest.approx(19 / 22)
        assert engine.recommend("s1", MODULE, "spelling", now=NOW).difficulty == "hard"

    def test_c_exact_threshold_resolves_to_hard(self, store, engine):
        _submit(store, [True] * 10)
        _submit(store, [True] * 8 + [False] * 2)
        record = _submit(store, [True] * 5 + [False] * 5)
        assert (record.alpha, record.beta) == (24.0, 8.0)
        assert record.mean_ability == 0.75
        assert engine.recommend("s1", MODULE, "spelling", now=NOW).difficulty == "hard"

    def test_d_mastery_gate_at_exactly_min_samples(self, store, engine):
        record = _submit(store, [True] * 10)
        assert record.sample_count == 10
        assert engine.check_mastery("s1", MODULE, now=NOW) is True

    def test_d_one_sample_short_is_not_mastery(self, store, engine):
        record = _submit(store, [True] * 9)
        assert record.mean_ability > 0.85
        assert engine.check_mastery("s1", MODULE, now=NOW) is False

    def test_e_optional_activity_is_skipped_at_high_ability(self, store, engine):
        _save(store, "module", MODULE, 19.0, 1.0, 18)
        recommendation = engine.recommend("s1", MODULE, "bubble_pop", True, now=NOW)
        assert recommendation.ability == pytest.approx(0.95)
        assert recommendation.skip_activity is True
        assert recommendation.difficulty == "skip"
        assert recommendation.num_items == 0
        assert recommendation.skip_reason == SKIP_REASON

    def test_e_required_activity_is_never_skipped(self, store, engine):
        _save(store, "module", MODULE, 19.0, 1.0, 18)
        recommendation = engine.recommend("s1", MODULE, "spelling", False, now=NOW)
        assert recommendation.skip_activity is False
        assert recommendation.skip_reason is None
        assert recommendation.difficulty == "hard"

    def test_required_activity_never_skips_at_any_ability(self, store, engine):
        _save(store, "module", MODULE, 999.0, 1.0, 998)
        assert engine.recommend("s1", MODULE, "spelling", now=NOW).skip_activity is False


class TestDefaults:
    def test_no_record_gives_prior_defaults(self, engine):
        recommendation = engine.recommend("new-student", MODULE, "spelling", True, now=NOW)
        assert recommendation.difficulty == "easy"
        assert recommendation.num_items == 10
        assert recommendation.focus_items == []
        assert recommendation.skip_activity is False
        assert recommendation.ability == 0.5

    def test_initialised_but_unplayed_module_gives_defaults(self, store, engine):
        store.bulk_initialize("s1", MODULE, "reading", ["ship", "grog"], now=NOW)
        recommendation = engine.recommend("s1", MODULE, "spelling", now=NOW)
        assert recommendation.difficulty == "easy"
        assert recommendation.focus_items == []

    def test_domain_ability_defaults_to_prior(self, engine):
        assert engine.domain_ability("s1", "reading", now=NOW) == 0.5


class TestFocusItems:
    def test_weakest_first_ties_by_least_evidence(self, store, engine):
        _save(store, "module", MODULE, 10.0, 8.0, 16)
        _save(store, "item", f"{MODULE}/grog", 2.0, 2.0, 2)
        _save(store, "item", f"{MODULE}/ship", 1.0, 1.0, 0)
        _save(store, "item", f"{MODULE}/mast", 1.0, 4.0, 3)
        _save(store, "item", f"{MODULE}/cat", 9.0, 1.0, 8)
        focus = engine.focus_items("s1", MODULE, NOW)
        assert focus == ["mast", "ship", "grog"]

    def test_capped_at_five(self, store, engine):
        for index in range(8):
            _save(store, "item", f"{MODULE}/w{index}", 1.0, 1.0 + index, index)
        focus = engine.focus_items("s1", MODULE, NOW)
        assert focus == ["w7", "w6", "w5", "w4", "w3"]

    def test_items_at_weakness_threshold_excluded(self, store, engine):
        _save(store, "item", f"{MODULE}/even", 7.0, 3.0, 8)
        assert engine.focus_items("s1", MODULE, NOW) == []

    def test_no_history_is_empty(self, engine):
        assert engine.focus_items("s1", MODULE, NOW) == []

    def test_other_modules_ignored(self, store, engine):
        _save(store, "item", "r004.2/grog", 1.0, 5.0, 4)
        assert engine.focus_items("s1", MODULE, NOW) == []

    def test_decay_can_lift_item_into_focus(self, store, engine):
        # 0.8 stored; after 60 days decays to about 0.51
        _save(store, "item", f"{MODULE}/ship", 8.0, 2.0, 8)
        assert engine.focus_items("s1", MODULE, NOW) == []
        assert engine.focus_items("s1", MODULE, NOW + timedelta(days=60)) == ["ship"]


class TestMastery:
    def test_missing_record_is_not_mastered(self, engine):
        assert engine.check_mastery("s1", MODULE, now=NOW) is False

    def test_low_ability_with_plenty_of_samples(self, store, engine):
        _save(store, "module", MODULE, 30.0, 20.0, 48)
        assert engine.check_mastery("s1", MODULE, now=NOW) is False

    def test_record_mastered(self, store, engine):
        assert engine.record_mastered(None, NOW) is False
        fresh = store.get_or_create("s1", "module", MODULE, now=NOW)
        assert engine.record_mastered(fresh, NOW) is False
        record = _submit(store, [True] * 10)
        assert engine.record_mastered(record, NOW) is True
        assert engine.record_mastered(record, NOW + timedelta(days=30)) is False

    def test_mastery_is_recomputed_after_decay(self, store, engine):
        _submit(store, [True] * 10)
        assert engine.check_mastery("s1", MODULE, now=NOW) is True
        assert engine.check_mastery("s1", MODULE, now=NOW + timedelta(days=30)) is False

    def test_module_state_machine(self, store, engine):
        assert engine.module_state("s1", MODULE, now=NOW) == "unseen"
        _submit(store, [True] * 5 + [False] * 5)
        assert engine.module_state("s1", MODULE, now=NOW) == "practicing"
        _submit(store, [True] * 30)
        assert engine.module_state("s1", MODULE, now=NOW) == "mastered"
        assert engine.module_state("s1", MODULE, now=NOW + timedelta(days=120)) == "practicing"


class TestDecayedRecommendation:
    def test_long_break_lowers_difficulty(self, store, engine):
        _submit(store, [True] * 10)
        later = NOW + timedelta(days=30)
        recommendation = engine.recommend("s1", MODULE, "spelling", now=later)
        assert recommendation.ability < 0.60
        assert recommendation.difficulty == "easy"

    def test_domain_ability_decays(self, store, engine):
        _save(store, "domain", "reading", 11.0, 1.0, 10)
        assert engine.domain_ability("s1", "reading", now=NOW) == pytest.approx(11 / 12)
        assert engine.domain_ability("s1", "reading", now=NOW + timedelta(days=3650)) == pytest.approx(0.5)


def test_item_results_dataclass_is_hashable():
    assert len({ItemResult("ship", True), ItemResult("ship", True)}) == 1

"""Turn decayed proficiency into tuning decisions for the next activity."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Mapping

from .bayes import PRIOR_MEAN, decay
from .config import EngineConfig
from .models import (
    SKIP,
    Difficulty,
    ModuleState,
    ProficiencyRecord,
    TuningRecommendation,
)
from .store import ProficiencyStore

logger = logging.getLogger(__name__)

SKIP_REASON = "You've mastered this content! This is a bonus activity - skip or play for fun."


def bucket_for(value: float, edges: Mapping[str, float]) -> str:
    """Map a value onto the high/mid/low buckets of a config table."""
    if value >= edges["high"]:
        return "high"
    if value >= edges["mid"]:
        return "mid"
    return "low"


class RecommendationEngine:
    def __init__(self, store: ProficiencyStore, config: EngineConfig | None = None) -> None:
        self.store = store
        self.config = config or store.config

    # ── Pure policy ───────────────────────────────────────────────────────

    def select_difficulty(self, ability: float) -> Difficulty:
        """Step function over ability; a tie with a threshold resolves upward."""
        if ability >= self.config.hard_threshold:
            return "hard"
        if ability >= self.config.medium_threshold:
            return "medium"
        return "easy"

    def question_count(self, ability: float, confidence: float) -> int:
        ability_bucket = bucket_for(ability, self.config.ability_buckets)
        confidence_bucket = bucket_for(confidence, self.config.confidence_buckets)
        return self.config.question_counts[ability_bucket][confidence_bucket]

    def is_mastered(self, ability: float, sample_count: int) -> bool:
        return (
            ability >= self.config.mastery_threshold
            and sample_count >= self.config.min_samples_for_confidence
        )

    def rank_focus_items(self, items: list[ProficiencyRecord], now: datetime) -> list[str]:
        """Weakest items first; among equals, the least-assessed first."""
        ranked: list[tuple[float, int, str]] = []
        for record in items:
            item_id = record.item_id
            if item_id is None:
                continue
            ability = decay(record, now).mean_ability
            if ability < self.config.weakness_threshold:
                ranked.append((ability, record.sample_count, item_id))
        ranked.sort()
        return [item_id for _, _, item_id in ranked[: self.config.max_focus_items]]

    # ── Store-backed reads ────────────────────────────────────────────────

    def _module_record(self, student_id: str, module_id: str) -> ProficiencyRecord | None:
        record = self.store.get(student_id, "module", module_id)
        if record is None or record.sample_count == 0:
            return None
        return record

    def focus_items(self, student_id: str, module_id: str, now: datetime | None = None) -> list[str]:
        now = now or datetime.now(timezone.utc)
        return self.rank_focus_items(self.store.list_items(student_id, module_id), now)

    def recommend(
        self,
        student_id: str,
        module_id: str,
        activity_type: str,
        is_optional: bool = False,
        *,
        now: datetime | None = None,
    ) -> TuningRecommendation:
        now = now or datetime.now(timezone.utc)
        module_record = self._module_record(student_id, module_id)
        if module_record is None:
            logger.debug("No evidence for %s in %s, using defaults", student_id, module_id)
            return TuningRecommendation(
                difficulty=self.select_difficulty(PRIOR_MEAN),
                num_items=self.question_count(PRIOR_MEAN, 0.0),
                ability=PRIOR_MEAN,
            )

        view = decay(module_record, now)
        ability = view.mean_ability
        if is_optional and ability >= self.config.skip_threshold:
            logger.info("Offering skip of optional %s to %s (ability %.3f)", activity_type, student_id, ability)
            return TuningRecommendation(
                difficulty=SKIP,
                num_items=0,
                skip_activity=True,
                skip_reason=SKIP_REASON,
                ability=ability,
            )

        recommendation = TuningRecommendation(
            difficulty=self.select_difficulty(ability),
            num_items=self.question_count(ability, view.confidence),
            focus_items=self.focus_items(student_id, module_id, now),
            ability=ability,
        )
        logger.debug(
            "Recommendation for %s/%s/%s: %s x%d (ability %.3f)",
            student_id, module_id, activity_type,
            recommendation.difficulty, recommendation.num_items, ability,
        )
        return recommendation

    def record_mastered(self, record: ProficiencyRecord | None, now: datetime) -> bool:
        """Mastery of a module record as read at ``now``; no record or no samples is not mastery."""
        if record is None or record.sample_count == 0:
            return False
        return self.is_mastered(decay(record, now).mean_ability, record.sample_count)

    def check_mastery(self, student_id: str, module_id: str, *, now: datetime | None = None) -> bool:
        """Recomputed on every call: decay can take mastery away again."""
        now = now or datetime.now(timezone.utc)
        return self.record_mastered(self.store.get(student_id, "module", module_id), now)

    def module_state(self, student_id: str, module_id: str, *, now: datetime | None = None) -> ModuleState:
        if self._module_record(student_id, module_id) is None:
            return "unseen"
        if self.check_mastery(student_id, module_id, now=now):
            return "mastered"
        return "practicing"

    def domain_ability(self, student_id: str, domain: str, *, now: datetime | None = None) -> float:
        now = now or datetime.now(timezone.utc)
        record = self.store.get(student_id, "domain", domain)
        if record is None or record.sample_count == 0:
            return PRIOR_MEAN
        return decay(record, now).mean_ability


__all__ = [
    "RecommendationEngine",
    "SKIP_REASON",
    "bucket_for",
]

"""Activity-start and activity-end entry points over the store and engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .bayes import rollup_evidence, update
from .config import EngineConfig, load_config
from .curriculum import ModuleCurriculum
from .errors import ContractViolation
from .models import ActivitySubmission, ItemResult, ProficiencyRecord, TuningRecommendation
from .recommend import RecommendationEngine
from .store import ProficiencyStore
from .tuning import unlocked_activities

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ActivityOutcome:
    score: int
    total: int
    mastered: bool
    newly_mastered: bool = False
    records: list[ProficiencyRecord] = field(default_factory=list)
    unlocked_activities: list[str] = field(default_factory=list)


def validate_results(results: object) -> list[ItemResult]:
    """Reject payloads whose shape would otherwise become zero-evidence updates."""
    if not isinstance(results, (list, tuple)):
        raise ContractViolation(f"results must be a sequence of ItemResult, got {type(results).__name__}")
    checked: list[ItemResult] = []
    for index, result in enumerate(results):
        if not isinstance(result, ItemResult):
            raise ContractViolation(f"results[{index}] is not an ItemResult: {result!r}")
        if not isinstance(result.item_id, str) or not result.item_id.strip():
            raise ContractViolation(f"results[{index}] has no item id")
        if not isinstance(result.correct, bool):
            raise ContractViolation(f"results[{index}] has non-boolean correct={result.correct!r}")
        checked.append(result)
    return checked


class ProficiencyService:
    def __init__(
        self,
        store: ProficiencyStore | None = None,
        engine: RecommendationEngine | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self.config = config or (store.config if store is not None else load_config())
        self.store = store or ProficiencyStore(self.config)
        self.engine = engine or RecommendationEngine(self.store, self.config)

    def start_module(self, student_id: str, curriculum: ModuleCurriculum, *, now: datetime | None = None) -> int:
        return self.store.bulk_initialize(
            student_id, curriculum.module_id, curriculum.domain, curriculum.item_ids, now=now
        )

    def recommend(
        self,
        student_id: str,
        curriculum: ModuleCurriculum,
        activity_type: str,
        *,
        now: datetime | None = None,
    ) -> TuningRecommendation:
        return self.engine.recommend(
            student_id,
            curriculum.module_id,
            activity_type,
            curriculum.is_optional(activity_type),
            now=now,
        )

    def check_mastery(self, student_id: str, module_id: str, *, now: datetime | None = None) -> bool:
        return self.engine.check_mastery(student_id, module_id, now=now)

    def record_activity(self, submission: ActivitySubmission, *, now: datetime | None = None) -> ActivityOutcome:
        """Fold one attempt into item, module and domain records in a single transaction."""
        now = now or datetime.now(timezone.utc)
        results = validate_results(submission.results)
        total = submission.total if submission.total is not None else len(results)
        if total != len(results):
            raise ContractViolation(
                f"Attempt claims {total} graded items but carries {len(results)} results"
            )

        if not results:
            mastered = self.engine.check_mastery(submission.student_id, submission.module_id, now=now)
            return ActivityOutcome(score=0, total=0, mastered=mastered)

        scopes = rollup_evidence(submission.module_id, submission.domain, results)
        # the mastery transition is judged under the same per-student lock as the write
        with self.store.transaction(submission.student_id) as unit:
            was_mastered = self.engine.record_mastered(unit.get("module", submission.module_id), now)
            for level, scope_key, outcomes in scopes:
                record = unit.get_or_create(level, scope_key, now=now)
                unit.stage(update(record, outcomes, now=now, config=self.config))
            mastered = self.engine.record_mastered(unit.get("module", submission.module_id), now)
            records = unit.staged

        score = submission.score
        logger.info(
            "Recorded %s for %s in %s: %d/%d correct",
            submission.activity_type, submission.student_id, submission.module_id, score, total,
        )
        if mastered and not was_mastered:
            logger.info("%s reached mastery of %s", submission.student_id, submission.module_id)
        return ActivityOutcome(
            score=score,
            total=total,
            mastered=mastered,
            newly_mastered=mastered and not was_mastered,
            records=records,
            unlocked_activities=unlocked_activities(
                submission.activity_type, submission.difficulty, score, total
            ),
        )


__all__ = [
    "ActivityOutcome",
    "ProficiencyService",
    "validate_results",
]

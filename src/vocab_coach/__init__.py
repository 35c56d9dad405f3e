"""Adaptive proficiency estimation and activity tuning for vocabulary practice."""

from .bayes import decay, new_record, reset_record, rollup_evidence, update
from .config import EngineConfig, load_config
from .errors import ConfigError, ContractViolation, CurriculumNotFoundError, StorageUnavailableError
from .models import (
    ActivitySubmission,
    DecayedView,
    ItemResult,
    ProficiencyRecord,
    TuningRecommendation,
)
from .recommend import RecommendationEngine
from .service import ActivityOutcome, ProficiencyService
from .store import ProficiencyStore

__all__ = [
    "ActivityOutcome",
    "ActivitySubmission",
    "ConfigError",
    "ContractViolation",
    "CurriculumNotFoundError",
    "DecayedView",
    "EngineConfig",
    "ItemResult",
    "ProficiencyRecord",
    "ProficiencyService",
    "ProficiencyStore",
    "RecommendationEngine",
    "StorageUnavailableError",
    "TuningRecommendation",
    "decay",
    "load_config",
    "new_record",
    "reset_record",
    "rollup_evidence",
    "update",
]

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Sequence, cast

from .errors import ContractViolation

Level = Literal["domain", "module", "item"]
Difficulty = Literal["easy", "medium", "hard", "skip"]
ModuleState = Literal["unseen", "practicing", "mastered"]

LEVELS: tuple[Level, ...] = ("domain", "module", "item")
DIFFICULTIES: tuple[Difficulty, ...] = ("easy", "medium", "hard")
SKIP: Difficulty = "skip"

ITEM_KEY_SEPARATOR = "/"


@dataclass(slots=True)
class ProficiencyRecord:
    student_id: str
    level: Level
    scope_key: str
    alpha: float
    beta: float
    mean_ability: float
    confidence: float
    sample_count: int
    forgetting_rate: float
    last_updated: datetime

    @property
    def evidence(self) -> float:
        return self.alpha + self.beta

    @property
    def item_id(self) -> str | None:
        if self.level != "item":
            return None
        return split_item_key(self.scope_key)[1]


@dataclass(slots=True, frozen=True)
class DecayedView:
    """Read-time ability estimate; the stored record is left untouched."""

    mean_ability: float
    stored_mean: float
    elapsed_days: int
    evidence: float
    sample_count: int
    confidence: float


@dataclass(slots=True)
class TuningRecommendation:
    difficulty: Difficulty
    num_items: int
    focus_items: list[str] = field(default_factory=list)
    skip_activity: bool = False
    skip_reason: str | None = None
    ability: float = 0.5


@dataclass(slots=True, frozen=True)
class ItemResult:
    item_id: str
    correct: bool


@dataclass(slots=True)
class ActivitySubmission:
    """One completed activity attempt, already normalised by the caller."""

    student_id: str
    module_id: str
    domain: str
    activity_type: str
    results: Sequence[ItemResult]
    total: int | None = None
    difficulty: str | None = None

    @property
    def score(self) -> int:
        return sum(1 for result in self.results if result.correct is True)


def ensure_level(value: str) -> Level:
    """Normalise and validate a level string."""

    normalized = value.strip().lower()
    if normalized not in LEVELS:
        raise ContractViolation(f"Unsupported proficiency level: {value!r}")
    return cast(Level, normalized)


def _check_key_part(value: object, what: str) -> str:
    if not isinstance(value, str) or not value:
        raise ContractViolation(f"{what} must be a non-empty string, got {value!r}")
    if value != value.strip():
        raise ContractViolation(f"{what} must not carry surrounding whitespace: {value!r}")
    return value


def item_scope_key(module_id: str, item_id: str) -> str:
    module_id = _check_key_part(module_id, "module_id")
    item_id = _check_key_part(item_id, "item_id")
    if ITEM_KEY_SEPARATOR in module_id:
        raise ContractViolation(f"module_id must not contain {ITEM_KEY_SEPARATOR!r}: {module_id!r}")
    return f"{module_id}{ITEM_KEY_SEPARATOR}{item_id}"


def split_item_key(scope_key: str) -> tuple[str, str]:
    module_id, sep, item_id = scope_key.partition(ITEM_KEY_SEPARATOR)
    if not sep or not module_id or not item_id:
        raise ContractViolation(f"Malformed item scope key: {scope_key!r}")
    return module_id, item_id


def validate_scope_key(level: Level, scope_key: str) -> str:
    """Reject keys that cannot identify a scope at ``level``."""

    _check_key_part(scope_key, "scope_key")
    if level == "item":
        split_item_key(scope_key)
    elif level == "module" and ITEM_KEY_SEPARATOR in scope_key:
        raise ContractViolation(f"Module scope key must not contain {ITEM_KEY_SEPARATOR!r}: {scope_key!r}")
    return scope_key


__all__ = [
    "ActivitySubmission",
    "DIFFICULTIES",
    "DecayedView",
    "Difficulty",
    "ITEM_KEY_SEPARATOR",
    "ItemResult",
    "LEVELS",
    "Level",
    "ModuleState",
    "ProficiencyRecord",
    "SKIP",
    "TuningRecommendation",
    "ensure_level",
    "item_scope_key",
    "split_item_key",
    "validate_scope_key",
]

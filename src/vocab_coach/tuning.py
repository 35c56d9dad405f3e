"""Activity-specific settings and the activity unlock sequence."""

from __future__ import annotations

from typing import Any

from .models import SKIP, Difficulty, TuningRecommendation

ACTIVITY_SEQUENCE: tuple[str, ...] = (
    "multiple_choice",
    "fill_in_the_blank",
    "spelling",
    "bubble_pop",
    "fluent_reading",
)

UNLOCK_SCORE = 0.80

# multiple choice difficulty is the number of answer options shown
_MULTIPLE_CHOICE_OPTIONS: dict[Difficulty, int] = {"easy": 3, "medium": 4, "hard": 5}
_FILL_IN_THE_BLANK_LEVELS: dict[Difficulty, str] = {"easy": "easy", "medium": "easy", "hard": "moderate"}
_BUBBLE_SPEED: dict[Difficulty, float] = {"easy": 1.0, "medium": 1.5, "hard": 2.0}
_BUBBLE_ERROR_RATE: dict[Difficulty, float] = {"easy": 0.2, "medium": 0.3, "hard": 0.4}


def activity_difficulty(activity_type: str, difficulty: Difficulty) -> str:
    """The difficulty label an activity's UI understands."""
    if difficulty == SKIP:
        return SKIP
    if activity_type == "multiple_choice":
        return str(_MULTIPLE_CHOICE_OPTIONS[difficulty])
    if activity_type == "fill_in_the_blank":
        return _FILL_IN_THE_BLANK_LEVELS[difficulty]
    return difficulty


def is_hardest(activity_type: str, activity_level: str) -> bool:
    if activity_type == "multiple_choice":
        return activity_level == str(_MULTIPLE_CHOICE_OPTIONS["hard"])
    if activity_type == "fill_in_the_blank":
        return activity_level == _FILL_IN_THE_BLANK_LEVELS["hard"]
    return activity_level == "hard"


def activity_settings(activity_type: str, recommendation: TuningRecommendation) -> dict[str, Any]:
    settings: dict[str, Any] = {
        "difficulty": activity_difficulty(activity_type, recommendation.difficulty),
        "num_questions": recommendation.num_items,
    }
    if recommendation.difficulty == SKIP:
        return settings
    if activity_type == "multiple_choice":
        settings["num_choices"] = _MULTIPLE_CHOICE_OPTIONS[recommendation.difficulty]
    elif activity_type == "bubble_pop":
        settings["bubble_speed"] = _BUBBLE_SPEED[recommendation.difficulty]
        settings["error_rate"] = _BUBBLE_ERROR_RATE[recommendation.difficulty]
    return settings


def next_activity(activity_type: str) -> str | None:
    try:
        index = ACTIVITY_SEQUENCE.index(activity_type)
    except ValueError:
        return None
    if index + 1 < len(ACTIVITY_SEQUENCE):
        return ACTIVITY_SEQUENCE[index + 1]
    return None


def unlocked_activities(activity_type: str, activity_level: str | None, score: int, total: int) -> list[str]:
    """A score of at least 80% at the hardest level unlocks the next activity."""
    if total <= 0 or activity_level is None:
        return []
    if score / total < UNLOCK_SCORE or not is_hardest(activity_type, activity_level):
        return []
    upcoming = next_activity(activity_type)
    return [upcoming] if upcoming else []


__all__ = [
    "ACTIVITY_SEQUENCE",
    "UNLOCK_SCORE",
    "activity_difficulty",
    "activity_settings",
    "is_hardest",
    "next_activity",
    "unlocked_activities",
]

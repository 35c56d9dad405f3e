"""Curriculum provider: read-only module content loaded from JSON files."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import DATA_DIR
from .errors import ContractViolation, CurriculumNotFoundError
from .models import ITEM_KEY_SEPARATOR, validate_scope_key

CURRICULUM_DIR = DATA_DIR / "curriculum"

DEFAULT_ITEM_DIFFICULTY = 0.5
DEFAULT_ITEM_IMPORTANCE = 1.0


@dataclass(slots=True, frozen=True)
class CurriculumItem:
    item_id: str
    definition: str = ""
    difficulty: float = DEFAULT_ITEM_DIFFICULTY
    importance: float = DEFAULT_ITEM_IMPORTANCE


@dataclass(slots=True)
class ModuleCurriculum:
    module_id: str
    domain: str
    title: str = ""
    items: list[CurriculumItem] = field(default_factory=list)
    optional_exercises: list[str] = field(default_factory=list)

    @property
    def item_ids(self) -> list[str]:
        return [item.item_id for item in self.items]

    def is_optional(self, activity_type: str) -> bool:
        return activity_type in self.optional_exercises

    def item_difficulty(self, item_id: str) -> float:
        for item in self.items:
            if item.item_id == item_id:
                return item.difficulty
        return DEFAULT_ITEM_DIFFICULTY


_curriculum_cache: dict[str, ModuleCurriculum] = {}


def _number(item_id: str, entry: dict[str, Any], key: str, default: float) -> float:
    value = entry.get(key, default)
    if isinstance(value, bool):
        raise ContractViolation(f"Item {item_id!r} has non-numeric {key} {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ContractViolation(f"Item {item_id!r} has non-numeric {key} {value!r}") from exc


def _parse_item(entry: object) -> CurriculumItem | None:
    if not isinstance(entry, dict):
        raise ContractViolation(f"Vocabulary entries must be objects, got {entry!r}")
    item_id = str(entry.get("word") or entry.get("id") or "").strip()
    if not item_id:
        return None
    difficulty = _number(item_id, entry, "difficulty", DEFAULT_ITEM_DIFFICULTY)
    if not 0.0 <= difficulty <= 1.0:
        raise ContractViolation(f"Item {item_id!r} has difficulty {difficulty} outside [0, 1]")
    return CurriculumItem(
        item_id=item_id,
        definition=str(entry.get("definition") or ""),
        difficulty=difficulty,
        importance=_number(item_id, entry, "importance", DEFAULT_ITEM_IMPORTANCE),
    )


def parse_module(module_id: str, raw: object) -> ModuleCurriculum:
    """Build a ModuleCurriculum from the JSON document the front-end also loads."""
    if ITEM_KEY_SEPARATOR in module_id:
        raise ContractViolation(f"module_id must not contain {ITEM_KEY_SEPARATOR!r}: {module_id!r}")
    if not isinstance(raw, dict):
        raise ContractViolation(f"Curriculum for {module_id!r} must be a JSON object")
    domain = str(raw.get("domain") or "").strip()
    if not domain:
        raise ContractViolation(f"Curriculum for {module_id!r} names no domain")
    content = raw.get("content") or {}
    if not isinstance(content, dict):
        raise ContractViolation(f"Curriculum for {module_id!r} has a non-object content section")
    vocabulary = content.get("vocabulary") or []
    optional = raw.get("optional_exercises") or []
    if not isinstance(vocabulary, list) or not isinstance(optional, list):
        raise ContractViolation(f"Curriculum for {module_id!r} must list vocabulary and optional_exercises")
    items: list[CurriculumItem] = []
    seen: set[str] = set()
    for entry in vocabulary:
        item = _parse_item(entry)
        if item is None or item.item_id in seen:
            continue
        seen.add(item.item_id)
        items.append(item)
    return ModuleCurriculum(
        module_id=module_id,
        domain=domain,
        title=str(raw.get("title") or module_id),
        items=items,
        optional_exercises=[str(name) for name in optional],
    )


def load_module(module_id: str, path: Path | None = None) -> ModuleCurriculum:
    """Load ``data/curriculum/<module_id>.json``. Cached in memory unless a path is passed."""
    validate_scope_key("module", module_id)
    if path is None and module_id in _curriculum_cache:
        return _curriculum_cache[module_id]

    file_path = path or CURRICULUM_DIR / f"{module_id}.json"
    if not file_path.exists():
        raise CurriculumNotFoundError(f"No curriculum for module {module_id!r}")
    with open(file_path, encoding="utf-8") as f:
        try:
            raw = json.load(f)
        except json.JSONDecodeError as exc:
            raise ContractViolation(f"Curriculum {file_path} is not valid JSON: {exc}") from exc

    module = parse_module(module_id, raw)
    if path is None:
        _curriculum_cache[module_id] = module
    return module


def clear_cache() -> None:
    """Clear the in-memory curriculum cache."""
    _curriculum_cache.clear()


__all__ = [
    "CURRICULUM_DIR",
    "CurriculumItem",
    "ModuleCurriculum",
    "clear_cache",
    "load_module",
    "parse_module",
]

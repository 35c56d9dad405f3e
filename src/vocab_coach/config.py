"""Engine configuration: thresholds, priors, decay and the question-count table."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

PACKAGE_ROOT = Path(__file__).resolve().parent
PROJECT_ROOT = PACKAGE_ROOT.parent.parent
DATA_DIR = PROJECT_ROOT / "data"
DEFAULT_CONFIG_FILE = DATA_DIR / "proficiency.yaml"
CONFIG_ENV_VAR = "VOCAB_COACH_CONFIG"

BUCKETS: tuple[str, ...] = ("high", "mid", "low")


def _default_confidence_scale() -> dict[str, float]:
    return {"item": 20.0, "module": 50.0, "domain": 100.0}


def _default_ability_buckets() -> dict[str, float]:
    return {"high": 0.85, "mid": 0.70}


def _default_confidence_buckets() -> dict[str, float]:
    return {"high": 0.80, "mid": 0.60}


def _default_question_counts() -> dict[str, dict[str, int]]:
    # rows: ability bucket, columns: confidence bucket
    return {
        "high": {"high": 5, "mid": 7, "low": 10},
        "mid": {"high": 7, "mid": 7, "low": 10},
        "low": {"high": 10, "mid": 10, "low": 10},
    }


@dataclass(frozen=True, slots=True)
class EngineConfig:
    prior_alpha: float = 1.0
    prior_beta: float = 1.0
    forgetting_rate: float = 0.05  # per day
    hard_threshold: float = 0.75
    medium_threshold: float = 0.60
    mastery_threshold: float = 0.85
    skip_threshold: float = 0.90
    min_samples_for_confidence: int = 10
    weakness_threshold: float = 0.70
    max_focus_items: int = 5
    confidence_scale: Mapping[str, float] = field(default_factory=_default_confidence_scale)
    ability_buckets: Mapping[str, float] = field(default_factory=_default_ability_buckets)
    confidence_buckets: Mapping[str, float] = field(default_factory=_default_confidence_buckets)
    question_counts: Mapping[str, Mapping[str, int]] = field(default_factory=_default_question_counts)

    def __post_init__(self) -> None:
        validate_config(self)

    @property
    def prior_mean(self) -> float:
        return self.prior_alpha / (self.prior_alpha + self.prior_beta)


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_count(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check_number(name: str, value: object) -> None:
    if not _is_number(value):
        raise ConfigError(f"{name} must be a number, got {value!r}")


def _check_unit(name: str, value: object) -> None:
    _check_number(name, value)
    if not 0.0 <= value <= 1.0:  # type: ignore[operator]
        raise ConfigError(f"{name} must lie in [0, 1], got {value}")


def _check_mapping(name: str, value: object) -> None:
    if not isinstance(value, Mapping):
        raise ConfigError(f"{name} must be a mapping, got {value!r}")


def _check_edges(name: str, edges: Mapping[str, float]) -> None:
    _check_mapping(name, edges)
    if set(edges) != {"high", "mid"}:
        raise ConfigError(f"{name} needs exactly 'high' and 'mid' edges, got {sorted(map(str, edges))}")
    for key, value in edges.items():
        _check_unit(f"{name}.{key}", value)
    if edges["mid"] > edges["high"]:
        raise ConfigError(f"{name}: mid edge {edges['mid']} is above high edge {edges['high']}")


def validate_config(config: EngineConfig) -> None:
    """Raise ConfigError when ``config`` cannot drive the engine."""

    for name in ("prior_alpha", "prior_beta", "forgetting_rate"):
        _check_number(name, getattr(config, name))
    if config.prior_alpha <= 0 or config.prior_beta <= 0:
        raise ConfigError("prior_alpha and prior_beta must be positive")
    if config.forgetting_rate < 0:
        raise ConfigError("forgetting_rate must not be negative")
    for name in (
        "hard_threshold",
        "medium_threshold",
        "mastery_threshold",
        "skip_threshold",
        "weakness_threshold",
    ):
        _check_unit(name, getattr(config, name))
    if config.medium_threshold > config.hard_threshold:
        raise ConfigError("medium_threshold must not exceed hard_threshold")
    if config.skip_threshold <= config.mastery_threshold:
        raise ConfigError("skip_threshold must be strictly above mastery_threshold")
    for name in ("min_samples_for_confidence", "max_focus_items"):
        value = getattr(config, name)
        if not _is_count(value) or value < 0:
            raise ConfigError(f"{name} must be a non-negative integer, got {value!r}")
    _check_mapping("confidence_scale", config.confidence_scale)
    for level in ("domain", "module", "item"):
        scale = config.confidence_scale.get(level)
        if not _is_number(scale) or scale <= 0:
            raise ConfigError(f"confidence_scale.{level} must be positive")
    _check_edges("ability_buckets", config.ability_buckets)
    _check_edges("confidence_buckets", config.confidence_buckets)
    _check_mapping("question_counts", config.question_counts)
    for ability_bucket in BUCKETS:
        row = config.question_counts.get(ability_bucket)
        if row is None:
            raise ConfigError(f"question_counts is missing row {ability_bucket!r}")
        _check_mapping(f"question_counts.{ability_bucket}", row)
        for confidence_bucket in BUCKETS:
            count = row.get(confidence_bucket)
            if not _is_count(count) or count <= 0:
                raise ConfigError(
                    f"question_counts.{ability_bucket}.{confidence_bucket} must be a positive integer"
                )


_config_cache: EngineConfig | None = None


def config_from_mapping(raw: Mapping[str, Any]) -> EngineConfig:
    known = {f.name for f in fields(EngineConfig)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")
    return EngineConfig(**raw)


def load_config(path: Path | None = None) -> EngineConfig:
    """Read the YAML config file, falling back to defaults when it is absent.

    The file is looked up in ``path``, then ``$VOCAB_COACH_CONFIG``, then
    ``data/proficiency.yaml``. Cached in memory unless a path is passed.
    """
    global _config_cache
    if _config_cache is not None and path is None:
        return _config_cache

    env_path = os.environ.get(CONFIG_ENV_VAR)
    file_path = path or (Path(env_path) if env_path else DEFAULT_CONFIG_FILE)
    if file_path.exists():
        with open(file_path, encoding="utf-8") as f:
            try:
                raw = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise ConfigError(f"Cannot parse {file_path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigError(f"{file_path} must hold a mapping at the top level")
        config = config_from_mapping(raw)
        logger.debug("Loaded engine config from %s", file_path)
    else:
        logger.debug("No config file at %s, using defaults", file_path)
        config = EngineConfig()

    if path is None:
        _config_cache = config
    return config


def clear_cache() -> None:
    """Clear the in-memory config cache."""
    global _config_cache
    _config_cache = None


__all__ = [
    "BUCKETS",
    "CONFIG_ENV_VAR",
    "DATA_DIR",
    "EngineConfig",
    "clear_cache",
    "config_from_mapping",
    "load_config",
    "validate_config",
]

"""Beta-Bernoulli proficiency updates and read-time forgetting decay."""

from __future__ import annotations

import math
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable, Sequence

from .config import EngineConfig
from .errors import ContractViolation
from .models import (
    DecayedView,
    ItemResult,
    Level,
    ProficiencyRecord,
    item_scope_key,
    validate_scope_key,
)

PRIOR_MEAN = 0.5
MAX_DECAY_EXPONENT = 700.0  # exp(-700) is still a normal float


def normalize_datetime(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def confidence_for(level: Level, alpha: float, beta: float, config: EngineConfig) -> float:
    """Normalised evidence mass, saturating at 1.0."""
    return min(1.0, (alpha + beta) / config.confidence_scale[level])


def new_record(
    student_id: str,
    level: Level,
    scope_key: str,
    *,
    now: datetime,
    config: EngineConfig,
) -> ProficiencyRecord:
    """Fresh record at the configured prior."""
    if not isinstance(student_id, str) or not student_id.strip():
        raise ContractViolation(f"student_id must be a non-empty string, got {student_id!r}")
    validate_scope_key(level, scope_key)
    alpha, beta = config.prior_alpha, config.prior_beta
    return ProficiencyRecord(
        student_id=student_id,
        level=level,
        scope_key=scope_key,
        alpha=alpha,
        beta=beta,
        mean_ability=alpha / (alpha + beta),
        confidence=confidence_for(level, alpha, beta, config),
        sample_count=0,
        forgetting_rate=config.forgetting_rate,
        last_updated=normalize_datetime(now),
    )


def decay(record: ProficiencyRecord, now: datetime, *, prior_mean: float = PRIOR_MEAN) -> DecayedView:
    """Pull the stored mean toward ``prior_mean`` by whole days since the last write.

    decayed = stored * e^(-rate * days) + prior * (1 - e^(-rate * days))

    Reads on the same day, or with ``now`` before ``last_updated``, see the
    stored mean unchanged. Evidence mass is never touched.
    """
    elapsed_days = (normalize_datetime(now) - normalize_datetime(record.last_updated)).days
    stored = record.mean_ability
    if elapsed_days <= 0 or record.forgetting_rate <= 0:
        decayed = stored
    else:
        exponent = min(record.forgetting_rate * elapsed_days, MAX_DECAY_EXPONENT)
        factor = math.exp(-exponent)
        decayed = stored * factor + prior_mean * (1.0 - factor)
    return DecayedView(
        mean_ability=decayed,
        stored_mean=stored,
        elapsed_days=max(elapsed_days, 0),
        evidence=record.evidence,
        sample_count=record.sample_count,
        confidence=record.confidence,
    )


def check_invariants(record: ProficiencyRecord) -> None:
    assert record.alpha > 0 and record.beta > 0, f"non-positive Beta parameters on {record.scope_key}"
    assert 0.0 < record.mean_ability < 1.0, f"mean out of range on {record.scope_key}"
    assert 0.0 <= record.confidence <= 1.0, f"confidence out of range on {record.scope_key}"
    assert record.sample_count >= 0, f"negative sample count on {record.scope_key}"


def update(
    record: ProficiencyRecord,
    outcomes: Sequence[bool],
    *,
    now: datetime,
    config: EngineConfig,
    expected_count: int | None = None,
) -> ProficiencyRecord:
    """Fold graded outcomes into the record's Beta distribution.

    An empty batch returns the record untouched so a no-op call never bumps
    ``last_updated``. ``expected_count`` is the number of outcomes the
    caller claims to be sending; a mismatch is a contract violation.
    """
    if expected_count is not None and expected_count != len(outcomes):
        raise ContractViolation(
            f"Caller claimed {expected_count} outcomes for {record.scope_key!r} but sent {len(outcomes)}"
        )
    for outcome in outcomes:
        if not isinstance(outcome, bool):
            raise ContractViolation(f"Outcomes must be booleans, got {outcome!r}")
    if not outcomes:
        return record

    n_correct = sum(1 for outcome in outcomes if outcome)
    n_incorrect = len(outcomes) - n_correct
    alpha = record.alpha + n_correct
    beta = record.beta + n_incorrect
    updated = replace(
        record,
        alpha=alpha,
        beta=beta,
        mean_ability=alpha / (alpha + beta),
        confidence=confidence_for(record.level, alpha, beta, config),
        sample_count=record.sample_count + n_correct + n_incorrect,
        last_updated=normalize_datetime(now),
    )
    check_invariants(updated)
    return updated


def reset_record(record: ProficiencyRecord, *, now: datetime, config: EngineConfig) -> ProficiencyRecord:
    """Forget all evidence: back to the prior, keeping identity."""
    fresh = new_record(record.student_id, record.level, record.scope_key, now=now, config=config)
    return replace(fresh, forgetting_rate=record.forgetting_rate)


def rollup_evidence(
    module_id: str,
    domain: str,
    item_results: Iterable[ItemResult],
) -> list[tuple[Level, str, list[bool]]]:
    """Group one activity's outcomes by the scopes they count toward.

    Domain and module each receive the whole batch; every item receives
    only its own outcomes. Order: domain, module, then items by first
    appearance.
    """
    batch: list[bool] = []
    per_item: dict[str, list[bool]] = {}
    for result in item_results:
        batch.append(result.correct)
        per_item.setdefault(item_scope_key(module_id, result.item_id), []).append(result.correct)

    scopes: list[tuple[Level, str, list[bool]]] = [
        ("domain", validate_scope_key("domain", domain), list(batch)),
        ("module", validate_scope_key("module", module_id), list(batch)),
    ]
    scopes.extend(("item", key, outcomes) for key, outcomes in per_item.items())
    return scopes


__all__ = [
    "MAX_DECAY_EXPONENT",
    "PRIOR_MEAN",
    "check_invariants",
    "confidence_for",
    "decay",
    "new_record",
    "normalize_datetime",
    "reset_record",
    "rollup_evidence",
    "update",
]

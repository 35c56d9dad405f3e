"""Error kinds callers can tell apart when choosing a fallback."""

from __future__ import annotations


class ContractViolation(ValueError):
    """The caller broke the input contract (bad scope key, bad evidence, count mismatch)."""


class StorageUnavailableError(RuntimeError):
    """The proficiency database could not be read or written."""


class CurriculumNotFoundError(LookupError):
    """No curriculum file exists for the requested module."""


class ConfigError(ValueError):
    """Engine configuration is missing a value or holds an invalid one."""


__all__ = [
    "ConfigError",
    "ContractViolation",
    "CurriculumNotFoundError",
    "StorageUnavailableError",
]

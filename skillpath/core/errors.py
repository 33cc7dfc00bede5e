"""
Error taxonomy for skillpath.

Every failure the core raises derives from SkillPathError so callers can
catch the whole family at an API boundary, while still telling apart
input problems (never retried) from dependency problems (retryable).
"""

from __future__ import annotations

from typing import Any


class SkillPathError(Exception):
    """Base class for all skillpath errors."""

    retryable: bool = False


class ValidationError(SkillPathError):
    """Malformed input: rejected immediately, never retried."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class InvalidObservationError(ValidationError):
    """A practice observation whose correctness flag is not a boolean."""


class NotFoundError(SkillPathError):
    """Skill or learner state absent. Callers treat this as nothing to show."""

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class GraphIntegrityError(SkillPathError):
    """Cycle detected in the prerequisite subgraph."""

    def __init__(self, message: str, cycle: list[str] | None = None):
        super().__init__(message)
        self.cycle = cycle or []


class InsufficientDataError(SkillPathError):
    """Parameter fit requested with too few observations; defaults stay in force."""

    def __init__(self, reason: str, sample_size: int, required: int, defaults: Any = None):
        super().__init__(reason)
        self.reason = reason
        self.sample_size = sample_size
        self.required = required
        self.defaults = defaults


class DependencyUnavailableError(SkillPathError):
    """Store or text generator timed out or failed."""

    retryable = True

    def __init__(self, dependency: str, message: str):
        super().__init__(f"{dependency} unavailable: {message}")
        self.dependency = dependency


class ConcurrentUpdateError(SkillPathError):
    """A learner-state write lost an optimistic version check."""

    retryable = True

    def __init__(self, learner_id: str, skill_id: str, expected: int | None, actual: int | None):
        super().__init__(
            f"Stale write for ({learner_id}, {skill_id}): expected version {expected}, found {actual}"
        )
        self.learner_id = learner_id
        self.skill_id = skill_id
        self.expected = expected
        self.actual = actual

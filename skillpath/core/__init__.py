"""
Core Module - Shared records and error taxonomy.

Components:
- models: Skill, PrerequisiteEdge, BKTParams, LearnerSkillState
- errors: SkillPathError hierarchy

All domain modules (learning/, study/, adaptive/, tutoring/) import
records from skillpath.core rather than redefining them.
"""

from skillpath.core.errors import (
    ConcurrentUpdateError,
    DependencyUnavailableError,
    GraphIntegrityError,
    InsufficientDataError,
    InvalidObservationError,
    NotFoundError,
    SkillPathError,
    ValidationError,
)
from skillpath.core.models import (
    BLOOM_LABELS,
    BKTParams,
    LearnerSkillState,
    MasteryStatus,
    PrerequisiteEdge,
    Skill,
    parse_record,
    utcnow,
)

__all__ = [
    # Errors
    "SkillPathError",
    "ValidationError",
    "InvalidObservationError",
    "NotFoundError",
    "GraphIntegrityError",
    "InsufficientDataError",
    "DependencyUnavailableError",
    "ConcurrentUpdateError",
    # Records
    "BLOOM_LABELS",
    "BKTParams",
    "LearnerSkillState",
    "MasteryStatus",
    "PrerequisiteEdge",
    "Skill",
    "parse_record",
    "utcnow",
]

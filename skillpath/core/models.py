"""
Boundary records for skills, prerequisite edges and learner state.

Records that cross a store or API boundary are strict pydantic models:
unknown or malformed fields fail fast as ValidationError instead of
leaking undefined values into the numeric core.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from skillpath.core.errors import ValidationError

RecordT = TypeVar("RecordT", bound=BaseModel)

BLOOM_LABELS = {
    1: "Remember",
    2: "Understand",
    3: "Apply",
    4: "Analyze",
    5: "Evaluate",
    6: "Create",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MasteryStatus(str, Enum):
    """Derived mastery status of a learner-skill pair."""
    NOT_STARTED = "not_started"
    LEARNING = "learning"
    MASTERED = "mastered"


class Skill(BaseModel):
    """A learnable skill scoped to one notebook."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    notebook_id: str = Field(min_length=1)
    description: str = ""
    bloom_level: int = Field(default=1, ge=1, le=6)
    mastery_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    estimated_minutes: int = Field(default=30, ge=0)
    is_threshold_concept: bool = False
    keywords: tuple[str, ...] = ()

    @property
    def bloom_label(self) -> str:
        return BLOOM_LABELS[self.bloom_level]


class PrerequisiteEdge(BaseModel):
    """Directed prerequisite: from_skill_id must be learned before to_skill_id."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    from_skill_id: str = Field(min_length=1)
    to_skill_id: str = Field(min_length=1)
    strength: Literal["required", "recommended"] = "required"
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _reject_self_loop(self) -> PrerequisiteEdge:
        if self.from_skill_id == self.to_skill_id:
            raise ValueError(f"skill {self.from_skill_id} cannot be its own prerequisite")
        return self

    @property
    def is_required(self) -> bool:
        return self.strength == "required"


class BKTParams(BaseModel):
    """Bayesian Knowledge Tracing parameters."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    p_init: float = Field(default=0.0, ge=0.0, le=1.0)
    p_learn: float = Field(default=0.1, ge=0.0, le=1.0)
    p_slip: float = Field(default=0.1, ge=0.0, le=1.0)
    p_guess: float = Field(default=0.2, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_identifiable(self) -> BKTParams:
        # With slip + guess >= 1 a correct answer is evidence against mastery.
        if self.p_slip + self.p_guess >= 1.0:
            raise ValueError("p_slip + p_guess must be below 1")
        return self

    @classmethod
    def from_settings(cls, settings: Any) -> BKTParams:
        return cls(**settings.get_bkt_defaults())


class LearnerSkillState(BaseModel):
    """Mastery and review state for one (learner, skill) pair."""

    model_config = ConfigDict(extra="forbid")

    learner_id: str = Field(min_length=1)
    skill_id: str = Field(min_length=1)
    notebook_id: str | None = None
    bkt_params: BKTParams = Field(default_factory=BKTParams)
    p_mastery: float = Field(ge=0.0, le=1.0)
    mastery_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    mastery_status: MasteryStatus = MasteryStatus.NOT_STARTED

    total_attempts: int = Field(default=0, ge=0)
    correct_attempts: int = Field(default=0, ge=0)
    consecutive_correct: int = Field(default=0, ge=0)
    consecutive_incorrect: int = Field(default=0, ge=0)

    # SM-2
    easiness_factor: float = Field(default=2.5, ge=1.3)
    repetition_count: int = Field(default=0, ge=0)
    interval_days: int = Field(default=0, ge=0)
    due_at: datetime | None = None
    last_grade: int | None = Field(default=None, ge=0, le=5)

    scaffold_level: int = Field(default=3, ge=0)
    version: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("p_mastery")
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("p_mastery must be finite")
        return value

    @property
    def is_mastered(self) -> bool:
        return self.p_mastery >= self.mastery_threshold

    def evolve(self, **changes: Any) -> LearnerSkillState:
        """Validated copy with the given fields replaced."""
        return parse_record(LearnerSkillState, {**self.model_dump(), **changes})

    @property
    def accuracy(self) -> float:
        if self.total_attempts == 0:
            return 0.0
        return self.correct_attempts / self.total_attempts

    @classmethod
    def initial(
        cls,
        learner_id: str,
        skill_id: str,
        params: BKTParams,
        mastery_threshold: float = 0.8,
        notebook_id: str | None = None,
        easiness_factor: float = 2.5,
        scaffold_level: int = 3,
    ) -> LearnerSkillState:
        """State for a pair that has never been practiced."""
        return cls(
            learner_id=learner_id,
            skill_id=skill_id,
            notebook_id=notebook_id,
            bkt_params=params,
            p_mastery=params.p_init,
            mastery_threshold=mastery_threshold,
            easiness_factor=easiness_factor,
            scaffold_level=scaffold_level,
        )


def parse_record(model: type[RecordT], data: Any) -> RecordT:
    """
    Validate a raw record (dict or model) into a strict model.

    Raises:
        ValidationError: If the record does not match the model
    """
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        raise ValidationError(f"Invalid {model.__name__}: {e}", field=field) from e

"""
ORM models for the skill graph and learner state.

Tables:
- skills: skill records scoped to a notebook
- prerequisite_edges: required/recommended edges between skills
- learner_skill_states: BKT + SM-2 state per (learner, skill), versioned
- applied_attempts: attempt ids already folded into a state (idempotency)

Generic column types only, so the same models run on PostgreSQL and SQLite.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from skillpath.db.database import Base


class SkillRecord(Base):
    """A skill extracted for a notebook."""

    __tablename__ = "skills"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    notebook_id: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    bloom_level: Mapped[int] = mapped_column(Integer, default=1)
    mastery_threshold: Mapped[float] = mapped_column(Float, default=0.8)
    estimated_minutes: Mapped[int] = mapped_column(Integer, default=30)
    is_threshold_concept: Mapped[bool] = mapped_column(Boolean, default=False)
    keywords: Mapped[list] = mapped_column(JSON, default=list)

    def __repr__(self) -> str:
        return f"<SkillRecord({self.id}, bloom={self.bloom_level})>"


class PrerequisiteEdgeRecord(Base):
    """
    Directed prerequisite edge.

    Attributes:
        strength: 'required' (blocks readiness) or 'recommended' (ordering hint)
    """

    __tablename__ = "prerequisite_edges"
    __table_args__ = (UniqueConstraint("from_skill_id", "to_skill_id", name="uq_prerequisite_edge"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    from_skill_id: Mapped[str] = mapped_column(ForeignKey("skills.id", ondelete="CASCADE"), index=True)
    to_skill_id: Mapped[str] = mapped_column(ForeignKey("skills.id", ondelete="CASCADE"), index=True)
    strength: Mapped[str] = mapped_column(String(16), default="required")
    confidence: Mapped[float | None] = mapped_column(Float)

    def __repr__(self) -> str:
        return f"<PrerequisiteEdgeRecord({self.from_skill_id} -> {self.to_skill_id}, {self.strength})>"


class LearnerSkillStateRecord(Base):
    """Persisted LearnerSkillState."""

    __tablename__ = "learner_skill_states"

    learner_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    skill_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    notebook_id: Mapped[str | None] = mapped_column(String(128), index=True)

    # BKT
    p_init: Mapped[float] = mapped_column(Float)
    p_learn: Mapped[float] = mapped_column(Float)
    p_slip: Mapped[float] = mapped_column(Float)
    p_guess: Mapped[float] = mapped_column(Float)
    p_mastery: Mapped[float] = mapped_column(Float)
    mastery_threshold: Mapped[float] = mapped_column(Float, default=0.8)
    mastery_status: Mapped[str] = mapped_column(String(16), default="not_started")

    total_attempts: Mapped[int] = mapped_column(Integer, default=0)
    correct_attempts: Mapped[int] = mapped_column(Integer, default=0)
    consecutive_correct: Mapped[int] = mapped_column(Integer, default=0)
    consecutive_incorrect: Mapped[int] = mapped_column(Integer, default=0)

    # SM-2
    easiness_factor: Mapped[float] = mapped_column(Float, default=2.5)
    repetition_count: Mapped[int] = mapped_column(Integer, default=0)
    interval_days: Mapped[int] = mapped_column(Integer, default=0)
    due_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)
    last_grade: Mapped[int | None] = mapped_column(Integer)

    scaffold_level: Mapped[int] = mapped_column(Integer, default=3)
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())

    def __repr__(self) -> str:
        return f"<LearnerSkillStateRecord({self.learner_id}, {self.skill_id}, p={self.p_mastery:.3f}, v{self.version})>"


class AppliedAttempt(Base):
    """Attempt ids already applied to a learner-skill state."""

    __tablename__ = "applied_attempts"

    learner_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    skill_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    attempt_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())

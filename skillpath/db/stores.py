"""
SQLAlchemy-backed graph and learner-state stores.

Sessions are synchronous; each store call runs in a worker thread via
asyncio.to_thread so the event loop never blocks on the database.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, TypeVar

from loguru import logger
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from skillpath.core.errors import ConcurrentUpdateError, DependencyUnavailableError
from skillpath.core.models import BKTParams, LearnerSkillState, PrerequisiteEdge, Skill, parse_record
from skillpath.db.database import session_scope
from skillpath.db.models import AppliedAttempt, LearnerSkillStateRecord, PrerequisiteEdgeRecord, SkillRecord

T = TypeVar("T")


async def _run_in_thread(fn: Callable[..., T], *args: Any) -> T:
    try:
        return await asyncio.to_thread(fn, *args)
    except OperationalError as e:
        raise DependencyUnavailableError("database", str(e.orig or e)) from e


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _skill_from_row(row: SkillRecord) -> Skill:
    return parse_record(Skill, {
        "id": row.id,
        "notebook_id": row.notebook_id,
        "name": row.name,
        "description": row.description or "",
        "bloom_level": row.bloom_level,
        "mastery_threshold": row.mastery_threshold,
        "estimated_minutes": row.estimated_minutes,
        "is_threshold_concept": bool(row.is_threshold_concept),
        "keywords": list(row.keywords or []),
    })


def _edge_from_row(row: PrerequisiteEdgeRecord) -> PrerequisiteEdge:
    return parse_record(PrerequisiteEdge, {
        "from_skill_id": row.from_skill_id,
        "to_skill_id": row.to_skill_id,
        "strength": row.strength,
        "confidence": row.confidence,
    })


def _state_from_row(row: LearnerSkillStateRecord) -> LearnerSkillState:
    return parse_record(LearnerSkillState, {
        "learner_id": row.learner_id,
        "skill_id": row.skill_id,
        "notebook_id": row.notebook_id,
        "bkt_params": BKTParams(
            p_init=row.p_init, p_learn=row.p_learn, p_slip=row.p_slip, p_guess=row.p_guess
        ),
        "p_mastery": row.p_mastery,
        "mastery_threshold": row.mastery_threshold,
        "mastery_status": row.mastery_status,
        "total_attempts": row.total_attempts,
        "correct_attempts": row.correct_attempts,
        "consecutive_correct": row.consecutive_correct,
        "consecutive_incorrect": row.consecutive_incorrect,
        "easiness_factor": row.easiness_factor,
        "repetition_count": row.repetition_count,
        "interval_days": row.interval_days,
        "due_at": _aware(row.due_at),
        "last_grade": row.last_grade,
        "scaffold_level": row.scaffold_level,
        "version": row.version,
        "created_at": _aware(row.created_at),
        "updated_at": _aware(row.updated_at),
    })


def _state_columns(state: LearnerSkillState) -> dict[str, Any]:
    return {
        "notebook_id": state.notebook_id,
        "p_init": state.bkt_params.p_init,
        "p_learn": state.bkt_params.p_learn,
        "p_slip": state.bkt_params.p_slip,
        "p_guess": state.bkt_params.p_guess,
        "p_mastery": state.p_mastery,
        "mastery_threshold": state.mastery_threshold,
        "mastery_status": state.mastery_status.value,
        "total_attempts": state.total_attempts,
        "correct_attempts": state.correct_attempts,
        "consecutive_correct": state.consecutive_correct,
        "consecutive_incorrect": state.consecutive_incorrect,
        "easiness_factor": state.easiness_factor,
        "repetition_count": state.repetition_count,
        "interval_days": state.interval_days,
        "due_at": state.due_at,
        "last_grade": state.last_grade,
        "scaffold_level": state.scaffold_level,
        "version": state.version,
        "created_at": state.created_at,
        "updated_at": state.updated_at,
    }


class SqlGraphStore:
    """Graph store over the skills and prerequisite_edges tables."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._factory = session_factory

    async def get_skill(self, skill_id: str) -> Skill | None:
        def _query() -> Skill | None:
            with session_scope(self._factory) as session:
                row = session.get(SkillRecord, skill_id)
                return _skill_from_row(row) if row else None
        return await _run_in_thread(_query)

    async def get_prerequisites_of(self, skill_id: str) -> list[PrerequisiteEdge]:
        def _query() -> list[PrerequisiteEdge]:
            with session_scope(self._factory) as session:
                rows = session.scalars(
                    select(PrerequisiteEdgeRecord)
                    .where(PrerequisiteEdgeRecord.to_skill_id == skill_id)
                    .order_by(PrerequisiteEdgeRecord.from_skill_id)
                )
                return [_edge_from_row(r) for r in rows]
        return await _run_in_thread(_query)

    async def get_dependents_of(self, skill_id: str) -> list[PrerequisiteEdge]:
        def _query() -> list[PrerequisiteEdge]:
            with session_scope(self._factory) as session:
                rows = session.scalars(
                    select(PrerequisiteEdgeRecord)
                    .where(PrerequisiteEdgeRecord.from_skill_id == skill_id)
                    .order_by(PrerequisiteEdgeRecord.to_skill_id)
                )
                return [_edge_from_row(r) for r in rows]
        return await _run_in_thread(_query)

    async def list_skills(self, notebook_id: str) -> list[Skill]:
        def _query() -> list[Skill]:
            with session_scope(self._factory) as session:
                rows = session.scalars(
                    select(SkillRecord)
                    .where(SkillRecord.notebook_id == notebook_id)
                    .order_by(SkillRecord.id)
                )
                return [_skill_from_row(r) for r in rows]
        return await _run_in_thread(_query)

    async def list_edges(self, notebook_id: str) -> list[PrerequisiteEdge]:
        def _query() -> list[PrerequisiteEdge]:
            with session_scope(self._factory) as session:
                in_notebook = select(SkillRecord.id).where(SkillRecord.notebook_id == notebook_id)
                rows = session.scalars(
                    select(PrerequisiteEdgeRecord)
                    .where(PrerequisiteEdgeRecord.from_skill_id.in_(in_notebook))
                    .where(PrerequisiteEdgeRecord.to_skill_id.in_(in_notebook))
                    .order_by(PrerequisiteEdgeRecord.to_skill_id, PrerequisiteEdgeRecord.from_skill_id)
                )
                return [_edge_from_row(r) for r in rows]
        return await _run_in_thread(_query)

    async def save_graph(self, skills: list[Skill], edges: list[PrerequisiteEdge]) -> None:
        """Insert or replace skills and edges (used by importers and tests)."""
        def _write() -> None:
            with session_scope(self._factory) as session:
                for skill in skills:
                    session.merge(SkillRecord(
                        id=skill.id,
                        notebook_id=skill.notebook_id,
                        name=skill.name,
                        description=skill.description,
                        bloom_level=skill.bloom_level,
                        mastery_threshold=skill.mastery_threshold,
                        estimated_minutes=skill.estimated_minutes,
                        is_threshold_concept=skill.is_threshold_concept,
                        keywords=list(skill.keywords),
                    ))
                session.flush()
                for edge in edges:
                    session.execute(
                        delete(PrerequisiteEdgeRecord)
                        .where(PrerequisiteEdgeRecord.from_skill_id == edge.from_skill_id)
                        .where(PrerequisiteEdgeRecord.to_skill_id == edge.to_skill_id)
                    )
                    session.add(PrerequisiteEdgeRecord(
                        from_skill_id=edge.from_skill_id,
                        to_skill_id=edge.to_skill_id,
                        strength=edge.strength,
                        confidence=edge.confidence,
                    ))
            logger.info(f"Saved {len(skills)} skills and {len(edges)} prerequisite edges")
        await _run_in_thread(_write)


class SqlLearnerStateStore:
    """
    Learner-state store over learner_skill_states.

    put_state is a conditional UPDATE on the version column (or an INSERT
    for a new pair) plus an applied_attempts row, in one transaction.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._factory = session_factory

    async def get_state(self, learner_id: str, skill_id: str) -> LearnerSkillState | None:
        def _query() -> LearnerSkillState | None:
            with session_scope(self._factory) as session:
                row = session.get(LearnerSkillStateRecord, (learner_id, skill_id))
                return _state_from_row(row) if row else None
        return await _run_in_thread(_query)

    async def put_state(self, state: LearnerSkillState, attempt_id: str | None = None) -> LearnerSkillState:
        return await _run_in_thread(self._put_state, state, attempt_id)

    def _put_state(self, state: LearnerSkillState, attempt_id: str | None) -> LearnerSkillState:
        key = (state.learner_id, state.skill_id)
        try:
            with session_scope(self._factory) as session:
                if attempt_id is not None and session.get(AppliedAttempt, (*key, attempt_id)) is not None:
                    row = session.get(LearnerSkillStateRecord, key)
                    if row is not None:
                        logger.debug(f"Attempt {attempt_id} already applied to {key}")
                        return _state_from_row(row)

                expected = state.version - 1
                if expected == 0:
                    session.add(LearnerSkillStateRecord(
                        learner_id=state.learner_id,
                        skill_id=state.skill_id,
                        **_state_columns(state),
                    ))
                    session.flush()
                else:
                    result = session.execute(
                        update(LearnerSkillStateRecord)
                        .where(LearnerSkillStateRecord.learner_id == state.learner_id)
                        .where(LearnerSkillStateRecord.skill_id == state.skill_id)
                        .where(LearnerSkillStateRecord.version == expected)
                        .values(**_state_columns(state))
                    )
                    if result.rowcount != 1:
                        current = session.get(LearnerSkillStateRecord, key)
                        raise ConcurrentUpdateError(
                            state.learner_id, state.skill_id, expected, current.version if current else None
                        )

                if attempt_id is not None:
                    session.add(AppliedAttempt(
                        learner_id=state.learner_id, skill_id=state.skill_id, attempt_id=attempt_id
                    ))
                    session.flush()
                return state
        except IntegrityError as e:
            # Another writer inserted the same pair or attempt first
            raise ConcurrentUpdateError(state.learner_id, state.skill_id, state.version - 1, None) from e

    async def list_states(self, learner_id: str, notebook_id: str | None = None) -> list[LearnerSkillState]:
        def _query() -> list[LearnerSkillState]:
            with session_scope(self._factory) as session:
                stmt = select(LearnerSkillStateRecord).where(LearnerSkillStateRecord.learner_id == learner_id)
                if notebook_id is not None:
                    stmt = stmt.where(LearnerSkillStateRecord.notebook_id == notebook_id)
                rows = session.scalars(stmt.order_by(LearnerSkillStateRecord.skill_id))
                return [_state_from_row(r) for r in rows]
        return await _run_in_thread(_query)

    async def delete_states(self, learner_id: str, notebook_id: str) -> int:
        def _write() -> int:
            with session_scope(self._factory) as session:
                skill_ids = list(session.scalars(
                    select(LearnerSkillStateRecord.skill_id)
                    .where(LearnerSkillStateRecord.learner_id == learner_id)
                    .where(LearnerSkillStateRecord.notebook_id == notebook_id)
                ))
                if not skill_ids:
                    return 0
                session.execute(
                    delete(AppliedAttempt)
                    .where(AppliedAttempt.learner_id == learner_id)
                    .where(AppliedAttempt.skill_id.in_(skill_ids))
                )
                session.execute(
                    delete(LearnerSkillStateRecord)
                    .where(LearnerSkillStateRecord.learner_id == learner_id)
                    .where(LearnerSkillStateRecord.skill_id.in_(skill_ids))
                )
                logger.info(f"Reset {len(skill_ids)} skill states for learner {learner_id} in {notebook_id}")
                return len(skill_ids)
        return await _run_in_thread(_write)

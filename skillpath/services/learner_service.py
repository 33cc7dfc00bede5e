"""
Learner Service - caller-facing operations of the learner model.

Orchestrates stores and the pure components:
- record_practice_attempt: BKT + SM-2 as one atomic read-modify-write
- compute_zpd / generate_learning_path: planning over a fresh graph snapshot
- start/advance/complete dialogue: Socratic sessions with phrasing and analysis fallbacks
- due reviews, progress summary, progress reset, parameter fitting

Concurrency:
- one asyncio.Lock per (learner, skill) serializes attempts in-process
- stores reject stale versions, and the whole read-modify-write is retried
- every store call is bounded by a timeout; reads and idempotent writes
  are retried with exponential backoff
"""

from __future__ import annotations

import asyncio
import weakref
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar
from uuid import uuid4

from loguru import logger
from sqlalchemy import make_url

from config import Settings, get_settings
from skillpath.adaptive.path_planner import LearningPath, PathPlanner, PathPreferences, ZPDEntry
from skillpath.adaptive.readiness import MasterySnapshot
from skillpath.core.errors import (
    ConcurrentUpdateError,
    DependencyUnavailableError,
    InvalidObservationError,
    NotFoundError,
    ValidationError,
)
from skillpath.core.models import BKTParams, LearnerSkillState, MasteryStatus, Skill
from skillpath.db.database import create_session_factory
from skillpath.db.stores import SqlGraphStore, SqlLearnerStateStore
from skillpath.graph.skill_graph import SkillGraph
from skillpath.graph.stores import GraphStore
from skillpath.integrations.text_generator import HttpTextGenerator
from skillpath.learning.bkt_fitting import FitResult, fit_parameters
from skillpath.learning.mastery_tracker import MasteryTracker
from skillpath.learning.state_store import LearnerStateStore
from skillpath.study.review_scheduler import ReviewScheduler, due_for_review
from skillpath.tutoring.analysis import ResponseAnalyzer
from skillpath.tutoring.dialogue import DialogueEngine, DialogueState, DialogueStatus, DialogueSummary, ResponseAnalysis
from skillpath.tutoring.phrasing import Question, QuestionPhraser

T = TypeVar("T")


@dataclass
class LearnerProgress:
    """Progress summary for one learner in one notebook."""

    learner_id: str
    notebook_id: str
    total_skills: int
    mastered: int
    learning: int
    not_started: int
    average_mastery: float
    due_for_review: int
    mastered_skill_ids: list[str] = field(default_factory=list)

    @property
    def completion_rate(self) -> float:
        return self.mastered / self.total_skills if self.total_skills else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "learner_id": self.learner_id,
            "notebook_id": self.notebook_id,
            "total_skills": self.total_skills,
            "mastered": self.mastered,
            "learning": self.learning,
            "not_started": self.not_started,
            "average_mastery": round(self.average_mastery, 3),
            "due_for_review": self.due_for_review,
            "completion_rate": round(self.completion_rate, 3),
        }


class LearnerService:
    """
    Caller-facing learner-model operations.

    Holds no learner data of its own: everything is read from and written
    to the stores it is given.
    """

    def __init__(
        self,
        graph_store: GraphStore,
        state_store: LearnerStateStore,
        settings: Settings | None = None,
        phraser: QuestionPhraser | None = None,
        analyzer: ResponseAnalyzer | None = None,
    ):
        self.settings = settings or get_settings()
        self.graph_store = graph_store
        self.state_store = state_store
        self.tracker = MasteryTracker.from_settings(self.settings)
        self.scheduler = ReviewScheduler.from_settings(self.settings)
        self.dialogues = DialogueEngine.from_settings(self.settings)

        self.generator: HttpTextGenerator | None = None
        if self.settings.text_generator_enabled and (phraser is None or analyzer is None):
            self.generator = HttpTextGenerator.from_settings(self.settings)
        generator_timeout = self.settings.text_generator_timeout_ms / 1000.0
        self.phraser = phraser or QuestionPhraser(self.generator, timeout_seconds=generator_timeout)
        self.analyzer = analyzer or ResponseAnalyzer(self.generator, timeout_seconds=generator_timeout)

        store_config = self.settings.get_store_config()
        self.timeout_seconds = store_config["timeout_ms"] / 1000.0
        self.retry_attempts = store_config["retry_attempts"]
        self.backoff_base_seconds = store_config["backoff_base_ms"] / 1000.0
        self.write_attempts = store_config["optimistic_write_attempts"]

        self._locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = weakref.WeakValueDictionary()

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> LearnerService:
        """Service over the SQL stores at settings.database_url."""
        settings = settings or get_settings()
        factory = create_session_factory(settings.database_url, echo=settings.log_level == "DEBUG")
        logger.info(f"Learner service using database {make_url(settings.database_url).render_as_string(hide_password=True)}")
        return cls(SqlGraphStore(factory), SqlLearnerStateStore(factory), settings=settings)

    async def close(self) -> None:
        """Release the text generator client, if this service created one."""
        if self.generator is not None:
            await self.generator.close()

    # =========================================================================
    # Store access
    # =========================================================================

    async def _call(self, name: str, operation: Callable[[], Awaitable[T]], retry: bool) -> T:
        """
        Run a store operation with a timeout, retrying when allowed.

        Raises:
            DependencyUnavailableError: On timeout or store failure once attempts run out
        """
        attempts = self.retry_attempts if retry else 1
        last_error: DependencyUnavailableError | None = None

        for attempt in range(attempts):
            try:
                return await asyncio.wait_for(operation(), timeout=self.timeout_seconds)
            except asyncio.TimeoutError:
                last_error = DependencyUnavailableError("store", f"{name} timed out after {self.timeout_seconds}s")
            except DependencyUnavailableError as e:
                last_error = e

            if attempt < attempts - 1:
                wait_time = self.backoff_base_seconds * (2 ** attempt)
                logger.warning(f"{name} failed on attempt {attempt + 1}/{attempts}: {last_error}. Retrying in {wait_time}s")
                await asyncio.sleep(wait_time)

        logger.error(f"{name} failed after {attempts} attempts: {last_error}")
        raise last_error or DependencyUnavailableError("store", f"{name} failed")

    def _lock_for(self, learner_id: str, skill_id: str) -> asyncio.Lock:
        key = (learner_id, skill_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def load_graph(self, notebook_id: str) -> SkillGraph:
        """Read a fresh snapshot of a notebook's skill graph."""
        if not notebook_id:
            raise ValidationError("notebook_id is required", field="notebook_id")
        skills = await self._call("list_skills", lambda: self.graph_store.list_skills(notebook_id), retry=True)
        edges = await self._call("list_edges", lambda: self.graph_store.list_edges(notebook_id), retry=True)
        return SkillGraph(skills, edges)

    # =========================================================================
    # Practice attempts
    # =========================================================================

    async def record_practice_attempt(
        self,
        learner_id: str,
        skill_id: str,
        is_correct: bool,
        mastery_threshold: float | None = None,
        response_time_ms: int | None = None,
        expected_time_ms: int | None = None,
        attempt_id: str | None = None,
        now: datetime | None = None,
    ) -> LearnerSkillState:
        """
        Record a practice attempt: update mastery and review schedule together.

        Args:
            learner_id: Learner identifier
            skill_id: Skill practiced
            is_correct: Whether the attempt was correct (must be a bool)
            mastery_threshold: Override of the skill's mastery threshold
            response_time_ms: Time taken to answer
            expected_time_ms: Expected time for this skill
            attempt_id: Idempotency key; repeated ids are applied once
            now: Reference time for scheduling

        Returns:
            The stored LearnerSkillState

        Raises:
            ValidationError: On malformed input
            NotFoundError: If the skill does not exist
            DependencyUnavailableError: If the store cannot be reached
        """
        if not learner_id:
            raise ValidationError("learner_id is required", field="learner_id")
        if not skill_id:
            raise ValidationError("skill_id is required", field="skill_id")
        if not isinstance(is_correct, bool):
            raise InvalidObservationError(
                f"is_correct must be a boolean, got {type(is_correct).__name__}", field="is_correct"
            )
        if mastery_threshold is not None and not 0.0 <= mastery_threshold <= 1.0:
            raise ValidationError(f"mastery_threshold must be in [0, 1], got {mastery_threshold}", field="mastery_threshold")

        skill = await self._call("get_skill", lambda: self.graph_store.get_skill(skill_id), retry=True)
        if skill is None:
            raise NotFoundError("skill", skill_id)
        threshold = skill.mastery_threshold if mastery_threshold is None else mastery_threshold
        attempt_id = attempt_id or uuid4().hex

        async with self._lock_for(learner_id, skill_id):
            for write_attempt in range(self.write_attempts):
                state = await self._call(
                    "get_state", lambda: self.state_store.get_state(learner_id, skill_id), retry=True
                )
                if state is None:
                    state = self.tracker.new_state(
                        learner_id,
                        skill_id,
                        mastery_threshold=threshold,
                        notebook_id=skill.notebook_id,
                        easiness_factor=self.settings.sm2_initial_easiness,
                    )
                elif state.mastery_threshold != threshold:
                    state = state.evolve(mastery_threshold=threshold)

                updated = self.tracker.update(state, is_correct)
                updated = self.scheduler.schedule(
                    updated,
                    is_correct,
                    response_time_ms=response_time_ms,
                    expected_time_ms=expected_time_ms,
                    prior_p_mastery=state.p_mastery,
                    now=now,
                )
                updated = updated.evolve(version=state.version + 1)

                try:
                    # Safe to retry: the store applies each attempt id once
                    return await self._call(
                        "put_state", lambda: self.state_store.put_state(updated, attempt_id), retry=True
                    )
                except ConcurrentUpdateError as e:
                    logger.warning(f"{e}; retrying ({write_attempt + 1}/{self.write_attempts})")

        raise ConcurrentUpdateError(learner_id, skill_id, None, None)

    async def get_state(self, learner_id: str, skill_id: str) -> LearnerSkillState:
        state = await self._call("get_state", lambda: self.state_store.get_state(learner_id, skill_id), retry=True)
        if state is None:
            raise NotFoundError("learner state", f"{learner_id}/{skill_id}")
        return state

    async def list_states(self, learner_id: str, notebook_id: str | None = None) -> list[LearnerSkillState]:
        return await self._call(
            "list_states", lambda: self.state_store.list_states(learner_id, notebook_id), retry=True
        )

    # =========================================================================
    # Planning
    # =========================================================================

    def _planner(self, graph: SkillGraph) -> PathPlanner:
        return PathPlanner.from_settings(graph, self.settings)

    async def compute_zpd(self, notebook_id: str, mastered_skill_ids: Iterable[str]) -> list[Skill]:
        """Skills in the Zone of Proximal Development, best first."""
        entries = await self.compute_zpd_entries(notebook_id, mastered_skill_ids)
        return [e.skill for e in entries]

    async def compute_zpd_entries(self, notebook_id: str, mastered_skill_ids: Iterable[str]) -> list[ZPDEntry]:
        graph = await self.load_graph(notebook_id)
        return self._planner(graph).compute_zpd(MasterySnapshot.from_ids(graph, mastered_skill_ids))

    async def compute_zpd_for_learner(self, learner_id: str, notebook_id: str) -> list[ZPDEntry]:
        """ZPD from the learner's stored states rather than an id list."""
        graph = await self.load_graph(notebook_id)
        states = await self.list_states(learner_id, notebook_id)
        return self._planner(graph).compute_zpd(MasterySnapshot.from_states(graph, states))

    async def generate_learning_path(
        self,
        notebook_id: str,
        goal_skill_id: str,
        mastered_skill_ids: Iterable[str],
        preferences: PathPreferences | None = None,
    ) -> LearningPath:
        """
        Generate an ordered path to a goal skill.

        Raises:
            ValidationError: If goal_skill_id is missing
            GraphIntegrityError: If the goal's required prerequisites form a cycle
        """
        if not goal_skill_id:
            raise ValidationError("goal_skill_id is required", field="goal_skill_id")
        graph = await self.load_graph(notebook_id)
        return self._planner(graph).generate_learning_path(
            goal_skill_id,
            MasterySnapshot.from_ids(graph, mastered_skill_ids),
            preferences,
        )

    # =========================================================================
    # Socratic dialogue
    # =========================================================================

    async def start_dialogue(
        self,
        skill_id: str,
        target_concept: str,
        misconceptions: Iterable[str] = (),
        max_exchanges: int | None = None,
    ) -> DialogueState:
        """Start a dialogue; the returned state carries the opening question."""
        skill = await self._call("get_skill", lambda: self.graph_store.get_skill(skill_id), retry=True) if skill_id else None
        state = self.dialogues.create_state(
            skill_id,
            target_concept,
            tuple(misconceptions),
            max_exchanges,
            skill_name=skill.name if skill is not None else None,
        )

        state, opening = self.dialogues.begin(state)
        question = await self.phraser.phrase(state, opening)
        logger.info(f"Dialogue {state.dialogue_id} started on {skill_id} ({question.source} opening)")
        return self.dialogues.with_question(state, question.text)

    async def advance_dialogue(
        self,
        state: DialogueState,
        response: str,
        analysis: ResponseAnalysis | dict[str, Any] | None = None,
    ) -> tuple[DialogueState, Question | None]:
        """
        Record a response and phrase the next question, if any.

        Without a caller-supplied analysis the response is analyzed here,
        by the text generator or the keyword heuristic.
        """
        if analysis is None and state.is_active:
            if not isinstance(response, str):
                raise ValidationError("response must be a string", field="response")
            analysis = await self.analyzer.analyze(state, response)
        state, next_type = self.dialogues.advance(state, response, analysis)
        if next_type is None:
            return state, None
        question = await self.phraser.phrase(state, next_type)
        return self.dialogues.with_question(state, question.text), question

    async def complete_dialogue(
        self,
        learner_id: str,
        state: DialogueState,
        report_to_mastery: bool = True,
    ) -> tuple[DialogueState, DialogueSummary, LearnerSkillState | None]:
        """
        End a dialogue and optionally feed its outcome into mastery.

        Discovery counts as a correct attempt, an exhausted dialogue as an
        incorrect one. Dialogues ended early report nothing.
        """
        ended, summary = self.dialogues.end(state)
        mastery_state = None
        if report_to_mastery and state.status in (DialogueStatus.DISCOVERY, DialogueStatus.EXHAUSTED):
            mastery_state = await self.record_practice_attempt(
                learner_id,
                state.skill_id,
                is_correct=state.status == DialogueStatus.DISCOVERY,
                attempt_id=f"dialogue:{state.dialogue_id}",
            )
        logger.info(
            f"Dialogue {state.dialogue_id} ended: {summary.outcome.value}, "
            f"score={summary.effectiveness.score:.2f}"
        )
        return ended, summary, mastery_state

    # =========================================================================
    # Reviews and progress
    # =========================================================================

    async def get_due_reviews(
        self,
        learner_id: str,
        notebook_id: str | None = None,
        now: datetime | None = None,
        limit: int | None = 20,
    ) -> list[LearnerSkillState]:
        states = await self.list_states(learner_id, notebook_id)
        return due_for_review(states, now=now, limit=limit)

    async def get_progress(self, learner_id: str, notebook_id: str, now: datetime | None = None) -> LearnerProgress:
        """Mastery counts across every skill in a notebook."""
        graph = await self.load_graph(notebook_id)
        states = {s.skill_id: s for s in await self.list_states(learner_id, notebook_id) if s.skill_id in graph}
        snapshot = MasterySnapshot.from_states(graph, states)

        mastered = len(snapshot.mastered_ids)
        learning = sum(
            1 for s in states.values()
            if s.mastery_status != MasteryStatus.NOT_STARTED and not snapshot.is_mastered(s.skill_id)
        )
        average = sum(s.p_mastery for s in states.values()) / len(graph) if len(graph) else 0.0
        return LearnerProgress(
            learner_id=learner_id,
            notebook_id=notebook_id,
            total_skills=len(graph),
            mastered=mastered,
            learning=learning,
            not_started=len(graph) - mastered - learning,
            average_mastery=average,
            due_for_review=len(due_for_review(states.values(), now=now)),
            mastered_skill_ids=sorted(snapshot.mastered_ids),
        )

    async def reset_progress(self, learner_id: str, notebook_id: str) -> int:
        """Delete a learner's states in a notebook. Returns the number removed."""
        if not learner_id or not notebook_id:
            raise ValidationError("learner_id and notebook_id are required")
        removed = await self._call(
            "delete_states", lambda: self.state_store.delete_states(learner_id, notebook_id), retry=True
        )
        logger.info(f"Reset progress for {learner_id} in {notebook_id}: {removed} states removed")
        return removed

    def fit_skill_parameters(
        self,
        sequences: Sequence[Sequence[bool]],
        initial: BKTParams | None = None,
    ) -> FitResult:
        """
        Fit BKT parameters for one skill from per-learner sequences.

        Raises:
            InsufficientDataError: Below the configured sample size; keep the defaults
        """
        fit_config = self.settings.get_fit_config()
        return fit_parameters(
            sequences,
            initial=initial or self.tracker.default_params,
            min_samples=int(fit_config["min_samples"]),
            max_iterations=int(fit_config["max_iterations"]),
            tolerance=float(fit_config["tolerance"]),
        )

"""
Review Scheduler - SM-2 Spaced Repetition.

Turns each practice attempt into a recall-quality grade (0-5) and applies
the SM-2 update to the learner-skill state:
- grade < 3 resets the repetition streak and schedules tomorrow
- otherwise the interval grows 1 -> 6 -> round(previous * EF)
- EF moves with grade quality and never drops below 1.3

Based on:
- Wozniak (SuperMemo SM-2)
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any

from loguru import logger

from skillpath.core.errors import InvalidObservationError, ValidationError
from skillpath.core.models import LearnerSkillState, utcnow


# =============================================================================
# SM-2 CONSTANTS
# =============================================================================

MIN_EASINESS = 1.3
INITIAL_EASINESS = 2.5
FIRST_INTERVAL_DAYS = 1
SECOND_INTERVAL_DAYS = 6
PASSING_GRADE = 3

# Recall-quality grades
GRADE_BLACKOUT = 0    # Miss despite a confident belief
GRADE_WRONG = 1       # Miss at middling belief
GRADE_NEAR_MISS = 2   # Miss on a skill still being learned
GRADE_SLOW = 3        # Correct, slower than expected
GRADE_GOOD = 4        # Correct, normal pace (or untimed)
GRADE_PERFECT = 5     # Correct, well under expected time

FAST_RATIO = 0.5
EXPECTED_RATIO = 1.0


def next_easiness(easiness: float, grade: int) -> float:
    miss = 5 - grade
    return max(MIN_EASINESS, easiness + (0.1 - miss * (0.08 + miss * 0.02)))


class ReviewScheduler:
    """
    SM-2 scheduler over LearnerSkillState.

    Independent from the mastery tracker, but the learner service applies
    both to the same state in one atomic write.
    """

    def __init__(self, high_prior: float = 0.8, mid_prior: float = 0.4):
        self.high_prior = high_prior
        self.mid_prior = mid_prior

    @classmethod
    def from_settings(cls, settings: Any) -> ReviewScheduler:
        return cls(high_prior=settings.grade_high_prior, mid_prior=settings.grade_mid_prior)

    def grade_response(
        self,
        is_correct: bool,
        response_time_ms: int | None = None,
        expected_time_ms: int | None = None,
        prior_p_mastery: float = 0.0,
    ) -> int:
        """
        Derive an SM-2 grade from correctness and timing.

        Args:
            is_correct: Whether the attempt was correct
            response_time_ms: Time taken to answer
            expected_time_ms: Expected time for this skill
            prior_p_mastery: Belief before this attempt (grades misses)

        Returns:
            Grade 0-5
        """
        if not isinstance(is_correct, bool):
            raise InvalidObservationError(
                f"is_correct must be a boolean, got {type(is_correct).__name__}",
                field="is_correct",
            )
        if response_time_ms is not None and response_time_ms < 0:
            raise ValidationError(f"response_time_ms must be >= 0, got {response_time_ms}", field="response_time_ms")
        if expected_time_ms is not None and expected_time_ms <= 0:
            raise ValidationError(f"expected_time_ms must be > 0, got {expected_time_ms}", field="expected_time_ms")

        if not is_correct:
            # A miss the model did not expect is the worst kind of miss
            if prior_p_mastery >= self.high_prior:
                return GRADE_BLACKOUT
            if prior_p_mastery >= self.mid_prior:
                return GRADE_WRONG
            return GRADE_NEAR_MISS

        if response_time_ms is None or expected_time_ms is None:
            return GRADE_GOOD

        ratio = response_time_ms / expected_time_ms
        if ratio < FAST_RATIO:
            return GRADE_PERFECT
        if ratio < EXPECTED_RATIO:
            return GRADE_GOOD
        return GRADE_SLOW

    def apply_grade(self, state: LearnerSkillState, grade: int, now: datetime | None = None) -> LearnerSkillState:
        """Apply the SM-2 update for an already-derived grade."""
        if not 0 <= grade <= 5:
            raise ValidationError(f"Grade must be in 0..5, got {grade}", field="grade")
        now = now or utcnow()

        if grade < PASSING_GRADE:
            repetitions = 0
            interval = FIRST_INTERVAL_DAYS
        else:
            repetitions = state.repetition_count + 1
            if repetitions == 1:
                interval = FIRST_INTERVAL_DAYS
            elif repetitions == 2:
                interval = SECOND_INTERVAL_DAYS
            else:
                interval = round(state.interval_days * state.easiness_factor)

        easiness = next_easiness(state.easiness_factor, grade)
        return state.evolve(
            repetition_count=repetitions,
            interval_days=interval,
            easiness_factor=easiness,
            due_at=now + timedelta(days=interval),
            last_grade=grade,
        )

    def schedule(
        self,
        state: LearnerSkillState,
        is_correct: bool,
        response_time_ms: int | None = None,
        expected_time_ms: int | None = None,
        prior_p_mastery: float | None = None,
        now: datetime | None = None,
    ) -> LearnerSkillState:
        """
        Grade an attempt and reschedule the skill.

        Args:
            state: Current learner-skill state
            is_correct: Whether the attempt was correct
            response_time_ms: Time taken to answer
            expected_time_ms: Expected time for this skill
            prior_p_mastery: Belief before the attempt; defaults to state.p_mastery
            now: Reference time for due_at

        Returns:
            New state with SM-2 fields and due_at updated
        """
        prior = state.p_mastery if prior_p_mastery is None else prior_p_mastery
        grade = self.grade_response(is_correct, response_time_ms, expected_time_ms, prior)
        new_state = self.apply_grade(state, grade, now)
        logger.debug(
            f"SM-2 {state.learner_id}/{state.skill_id}: grade={grade}, "
            f"interval={new_state.interval_days}d, ef={new_state.easiness_factor:.2f}"
        )
        return new_state


def due_for_review(
    states: Iterable[LearnerSkillState],
    now: datetime | None = None,
    limit: int | None = None,
) -> list[LearnerSkillState]:
    """States whose review is due, most overdue first."""
    now = now or utcnow()
    due = [s for s in states if s.due_at is not None and s.due_at <= now]
    due.sort(key=lambda s: (s.due_at, s.skill_id))
    return due[:limit] if limit is not None else due

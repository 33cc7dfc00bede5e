"""
Unit tests for the SM-2 review scheduler.
"""

from datetime import datetime, timedelta, timezone

import pytest

from skillpath.core.errors import InvalidObservationError, ValidationError
from skillpath.core.models import BKTParams, LearnerSkillState
from skillpath.study.review_scheduler import MIN_EASINESS, ReviewScheduler, due_for_review, next_easiness

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def scheduler():
    return ReviewScheduler()


@pytest.fixture
def fresh_state():
    """A never-reviewed learner-skill state."""
    return LearnerSkillState.initial("learner-1", "A", BKTParams())


class TestGrading:
    """Tests for grade derivation from correctness and timing."""

    def test_untimed_correct_is_good(self, scheduler):
        assert scheduler.grade_response(True) == 4

    @pytest.mark.parametrize(
        "response_ms,grade",
        [(2000, 5), (7000, 4), (10000, 3), (15000, 3)],
    )
    def test_correct_graded_by_speed(self, scheduler, response_ms, grade):
        """Under half the expected time is perfect; at or over it is slow."""
        assert scheduler.grade_response(True, response_ms, 10000) == grade

    @pytest.mark.parametrize(
        "prior,grade",
        [(0.9, 0), (0.8, 0), (0.5, 1), (0.4, 1), (0.1, 2)],
    )
    def test_miss_graded_by_prior_belief(self, scheduler, prior, grade):
        """Misses the model did not expect grade lowest."""
        assert scheduler.grade_response(False, prior_p_mastery=prior) == grade

    def test_non_boolean_rejected(self, scheduler):
        with pytest.raises(InvalidObservationError):
            scheduler.grade_response("true")

    def test_negative_response_time_rejected(self, scheduler):
        with pytest.raises(ValidationError):
            scheduler.grade_response(True, -1, 1000)

    def test_zero_expected_time_rejected(self, scheduler):
        with pytest.raises(ValidationError):
            scheduler.grade_response(True, 500, 0)


class TestSM2Update:
    """Tests for the SM-2 interval and easiness updates."""

    def test_interval_sequence_for_good_grades(self, scheduler, fresh_state):
        """Grade 4 keeps EF at 2.5: intervals 1, 6, 15."""
        state = fresh_state
        intervals = []
        for _ in range(3):
            state = scheduler.apply_grade(state, 4, now=NOW)
            intervals.append(state.interval_days)

        assert intervals == [1, 6, 15]
        assert state.repetition_count == 3
        assert state.easiness_factor == pytest.approx(2.5)

    def test_intervals_non_decreasing_for_passing_streak(self, scheduler, fresh_state):
        state = fresh_state
        previous = 0
        for _ in range(8):
            state = scheduler.apply_grade(state, 5, now=NOW)
            assert state.interval_days >= previous
            previous = state.interval_days

    def test_perfect_grade_raises_easiness(self, scheduler, fresh_state):
        state = scheduler.apply_grade(fresh_state, 5, now=NOW)

        assert state.easiness_factor == pytest.approx(2.6)

    def test_failure_resets_repetitions(self, scheduler, fresh_state):
        """A grade below 3 restarts the schedule at one day."""
        state = fresh_state
        for _ in range(3):
            state = scheduler.apply_grade(state, 4, now=NOW)
        state = scheduler.apply_grade(state, 2, now=NOW)

        assert state.repetition_count == 0
        assert state.interval_days == 1
        assert state.last_grade == 2

    def test_easiness_floor(self, scheduler, fresh_state):
        state = fresh_state
        for _ in range(5):
            state = scheduler.apply_grade(state, 0, now=NOW)
            assert state.easiness_factor >= MIN_EASINESS

        assert state.easiness_factor == pytest.approx(MIN_EASINESS)

    def test_due_at_is_now_plus_interval(self, scheduler, fresh_state):
        state = scheduler.apply_grade(fresh_state, 4, now=NOW)
        state = scheduler.apply_grade(state, 4, now=NOW)

        assert state.due_at == NOW + timedelta(days=6)

    def test_grade_out_of_range_rejected(self, scheduler, fresh_state):
        with pytest.raises(ValidationError):
            scheduler.apply_grade(fresh_state, 6)

    def test_next_easiness_formula(self):
        # 2.5 + (0.1 - 2 * (0.08 + 2 * 0.02)) = 2.36
        assert next_easiness(2.5, 3) == pytest.approx(2.36)


class TestSchedule:
    """Tests for grade-and-reschedule in one step."""

    def test_schedule_uses_prior_belief_for_misses(self, scheduler, fresh_state):
        state = scheduler.schedule(fresh_state, False, prior_p_mastery=0.85, now=NOW)

        assert state.last_grade == 0
        assert state.due_at == NOW + timedelta(days=1)

    def test_schedule_defaults_prior_to_state_belief(self, scheduler, fresh_state):
        confident = fresh_state.evolve(p_mastery=0.9)
        state = scheduler.schedule(confident, False, now=NOW)

        assert state.last_grade == 0

    def test_schedule_does_not_touch_mastery(self, scheduler, fresh_state):
        state = scheduler.schedule(fresh_state, True, now=NOW)

        assert state.p_mastery == fresh_state.p_mastery
        assert state.total_attempts == fresh_state.total_attempts


class TestDueForReview:
    """Tests for due-review selection."""

    def test_returns_overdue_first(self, fresh_state):
        states = [
            fresh_state.evolve(skill_id="late", due_at=NOW - timedelta(days=1)),
            fresh_state.evolve(skill_id="later", due_at=NOW - timedelta(days=5)),
            fresh_state.evolve(skill_id="future", due_at=NOW + timedelta(days=1)),
            fresh_state.evolve(skill_id="never"),
        ]

        due = due_for_review(states, now=NOW)

        assert [s.skill_id for s in due] == ["later", "late"]

    def test_limit(self, fresh_state):
        states = [
            fresh_state.evolve(skill_id=f"s{i}", due_at=NOW - timedelta(hours=i))
            for i in range(5)
        ]

        assert len(due_for_review(states, now=NOW, limit=2)) == 2

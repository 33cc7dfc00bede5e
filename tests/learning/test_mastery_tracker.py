"""
Unit tests for MasteryTracker.

Tests:
- BKT update formula and probability bounds
- Monotonicity of correct answers
- Scaffold-level hysteresis
- Confidence interval computation
"""

import random

import pytest

from skillpath.core.errors import InvalidObservationError, ValidationError
from skillpath.core.models import BKTParams, LearnerSkillState, MasteryStatus
from skillpath.learning.mastery_tracker import (
    P_MAX,
    P_MIN,
    MasteryTracker,
    bkt_update,
    derive_status,
    predict_correct,
)


@pytest.fixture
def params():
    """Parameters used in the worked examples."""
    return BKTParams(p_init=0.3, p_learn=0.3, p_slip=0.1, p_guess=0.2)


@pytest.fixture
def tracker():
    """Tracker with default parameters and bands."""
    return MasteryTracker()


class TestBayesianUpdate:
    """Tests for the two-step BKT update."""

    def test_correct_answer_posterior(self, params):
        """Test the evidence step followed by the learning transition."""
        # posterior = 0.27 / 0.41, then + (1 - posterior) * 0.3
        posterior = 0.27 / 0.41
        expected = posterior + (1 - posterior) * 0.3

        assert bkt_update(0.3, True, params) == pytest.approx(expected)

    def test_incorrect_answer_posterior(self, params):
        """Test the update after a miss."""
        posterior = (0.3 * 0.1) / (0.3 * 0.1 + 0.7 * 0.8)
        expected = posterior + (1 - posterior) * 0.3

        assert bkt_update(0.3, False, params) == pytest.approx(expected)

    def test_ten_correct_answers_reach_mastery(self, params):
        """Ten correct answers from 0.3 end well above a 0.8 threshold."""
        p = 0.3
        for _ in range(10):
            p = bkt_update(p, True, params)

        assert p > 0.8
        assert p <= P_MAX

    def test_correct_answers_never_decrease_belief(self, params):
        """Test monotonicity across the whole belief range."""
        for i in range(1, 100):
            p = i / 100
            once = bkt_update(p, True, params)
            twice = bkt_update(once, True, params)
            assert once >= p
            assert twice >= once

    def test_miss_from_high_belief_decreases(self, params):
        """Test that a confident miss lowers the belief but never below zero."""
        result = bkt_update(0.99, False, params)

        assert result < 0.99
        assert result >= P_MIN

    def test_belief_stays_inside_open_interval(self):
        """Test bounds over random sequences and extreme parameters."""
        rng = random.Random(42)
        for p_learn in (0.0, 0.01, 0.5, 1.0):
            params = BKTParams(p_init=0.0, p_learn=p_learn, p_slip=0.001, p_guess=0.001)
            p = params.p_init
            for _ in range(200):
                p = bkt_update(p, rng.random() < 0.5, params)
                assert 0.0 < p < 1.0

    def test_non_boolean_observation_rejected(self, params):
        """Test that 1/0 and strings are not accepted as observations."""
        with pytest.raises(InvalidObservationError):
            bkt_update(0.5, 1, params)
        with pytest.raises(InvalidObservationError):
            bkt_update(0.5, "yes", params)

    def test_non_finite_belief_rejected(self, params):
        with pytest.raises(ValidationError):
            bkt_update(float("nan"), True, params)

    def test_predict_correct(self, params):
        """P(correct) mixes 1 - slip and guess by belief."""
        assert predict_correct(0.5, params) == pytest.approx(0.5 * 0.9 + 0.5 * 0.2)


class TestDeriveStatus:
    """Tests for mastery status derivation."""

    def test_not_started_without_attempts(self):
        assert derive_status(0.95, 0.8, 0) == MasteryStatus.NOT_STARTED

    def test_mastered_at_threshold(self):
        assert derive_status(0.8, 0.8, 3) == MasteryStatus.MASTERED

    def test_learning_below_threshold(self):
        assert derive_status(0.79, 0.8, 3) == MasteryStatus.LEARNING


class TestTrackerUpdate:
    """Tests for state updates through MasteryTracker."""

    def test_new_state_uses_defaults(self, tracker):
        state = tracker.new_state("learner-1", "A")

        assert state.p_mastery == 0.0
        assert state.scaffold_level == 3
        assert state.mastery_status == MasteryStatus.NOT_STARTED
        assert state.version == 0

    def test_update_counts_attempts(self, tracker):
        """Test counters and streaks after mixed attempts."""
        state = tracker.new_state("learner-1", "A")
        for outcome in (True, True, False, True):
            state = tracker.update(state, outcome)

        assert state.total_attempts == 4
        assert state.correct_attempts == 3
        assert state.consecutive_correct == 1
        assert state.consecutive_incorrect == 0
        assert state.accuracy == pytest.approx(0.75)

    def test_update_does_not_mutate_input(self, tracker):
        state = tracker.new_state("learner-1", "A")
        tracker.update(state, True)

        assert state.total_attempts == 0
        assert state.p_mastery == 0.0

    def test_status_becomes_mastered(self, tracker):
        """Four correct answers from the defaults cross the 0.8 threshold."""
        state = tracker.new_state("learner-1", "A")
        for _ in range(4):
            state = tracker.update(state, True)

        assert state.p_mastery >= 0.8
        assert state.mastery_status == MasteryStatus.MASTERED
        assert state.is_mastered

    def test_invalid_observation_leaves_state_untouched(self, tracker):
        state = tracker.new_state("learner-1", "A")

        with pytest.raises(InvalidObservationError):
            tracker.update(state, None)
        assert state.total_attempts == 0


class TestScaffolding:
    """Tests for scaffold-level hysteresis."""

    def test_crossing_bands_removes_support(self, tracker):
        """0 -> 0.1 (no band), -> 0.4 (crosses 0.3), -> 0.775 (crosses 0.5 and 0.7)."""
        state = tracker.new_state("learner-1", "A")
        levels = []
        for _ in range(3):
            state = tracker.update(state, True)
            levels.append(state.scaffold_level)

        assert levels == [3, 2, 1]

    def test_every_second_miss_adds_support(self, tracker):
        """Test that support grows on miss streaks of 2 and 4, capped at max."""
        state = LearnerSkillState(
            learner_id="learner-1",
            skill_id="A",
            bkt_params=BKTParams(),
            p_mastery=0.2,
            scaffold_level=1,
        )
        levels = []
        for _ in range(6):
            state = tracker.update(state, False)
            levels.append(state.scaffold_level)

        assert levels == [1, 2, 2, 3, 3, 3]

    def test_correct_answer_resets_miss_streak(self, tracker):
        state = LearnerSkillState(
            learner_id="learner-1",
            skill_id="A",
            bkt_params=BKTParams(),
            p_mastery=0.2,
            scaffold_level=1,
        )
        state = tracker.update(state, False)
        state = tracker.update(state, True)
        state = tracker.update(state, False)

        assert state.consecutive_incorrect == 1
        assert state.scaffold_level <= 1

    def test_level_never_drops_below_zero(self):
        tracker = MasteryTracker(max_scaffold_level=1)
        state = tracker.new_state("learner-1", "A")
        for _ in range(6):
            state = tracker.update(state, True)

        assert state.scaffold_level == 0


class TestConfidenceInterval:
    """Tests for mastery_with_confidence."""

    def test_no_observations_is_uninformative(self, tracker):
        estimate = tracker.mastery_with_confidence([])

        assert estimate.lower == 0.0
        assert estimate.upper == 1.0
        assert estimate.n_effective == 0.0

    def test_interval_contains_estimate(self, tracker):
        estimate = tracker.mastery_with_confidence([True, False, True, True, True])

        assert 0.0 <= estimate.lower <= estimate.p_mastery <= estimate.upper <= 1.0

    def test_more_evidence_narrows_interval(self, tracker):
        """Test that the interval shrinks as evidence accumulates."""
        few = tracker.mastery_with_confidence([True, False] * 3)
        many = tracker.mastery_with_confidence([True, False] * 30)

        assert many.width < few.width

    def test_effective_sample_discounts_correlation(self, tracker):
        estimate = tracker.mastery_with_confidence([True] * 10)

        assert estimate.n_effective < 10

    def test_invalid_level_rejected(self, tracker):
        with pytest.raises(ValidationError):
            tracker.mastery_with_confidence([True], level=1.5)

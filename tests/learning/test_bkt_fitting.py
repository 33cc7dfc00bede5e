"""
Unit tests for BKT parameter fitting and calibration metrics.
"""

import math
import random

import pytest

from skillpath.core.errors import InsufficientDataError, InvalidObservationError
from skillpath.core.models import BKTParams
from skillpath.learning.bkt_fitting import (
    _constrain,
    auc_score,
    brier_score,
    calibration_metrics,
    expected_calibration_error,
    fit_parameters,
    fit_quality_from_brier,
    log_loss,
)


def simulate_learners(true_params: BKTParams, learners: int, attempts: int, seed: int = 7) -> list[list[bool]]:
    """Draw observation sequences from the BKT generative model."""
    rng = random.Random(seed)
    sequences = []
    for _ in range(learners):
        mastered = rng.random() < true_params.p_init
        seq = []
        for _ in range(attempts):
            if mastered:
                seq.append(rng.random() >= true_params.p_slip)
            else:
                seq.append(rng.random() < true_params.p_guess)
            if not mastered and rng.random() < true_params.p_learn:
                mastered = True
        sequences.append(seq)
    return sequences


@pytest.fixture
def true_params():
    return BKTParams(p_init=0.2, p_learn=0.15, p_slip=0.1, p_guess=0.2)


@pytest.fixture
def synthetic_sequences(true_params):
    return simulate_learners(true_params, learners=200, attempts=10)


class TestFitParameters:
    """Tests for EM fitting."""

    def test_insufficient_data_keeps_defaults(self):
        """Test that a small sample raises with the defaults attached."""
        defaults = BKTParams()
        sequences = [[True, False, True]] * 5

        with pytest.raises(InsufficientDataError) as exc_info:
            fit_parameters(sequences, initial=defaults, min_samples=30)

        assert exc_info.value.sample_size == 15
        assert exc_info.value.required == 30
        assert exc_info.value.defaults == defaults
        assert "15 observations" in exc_info.value.reason

    def test_non_boolean_observation_rejected(self):
        with pytest.raises(InvalidObservationError):
            fit_parameters([[True, 1, False]] * 20, min_samples=1)

    def test_fit_respects_constraints(self, synthetic_sequences):
        """Test that every fitted parameter stays inside its box."""
        result = fit_parameters(synthetic_sequences, initial=BKTParams())
        params = result.params

        assert 0.001 <= params.p_init <= 0.999
        assert 0.001 <= params.p_learn <= 0.999
        assert 0.001 <= params.p_slip <= 0.5
        assert 0.001 <= params.p_guess <= 0.5
        assert params.p_slip + params.p_guess < 1
        assert result.sample_size == 2000
        assert math.isfinite(result.log_likelihood)

    def test_fit_improves_on_starting_point(self, synthetic_sequences):
        """EM should not predict worse than the parameters it started from."""
        initial = BKTParams()
        result = fit_parameters(synthetic_sequences, initial=initial)
        baseline = calibration_metrics(synthetic_sequences, initial)

        assert result.metrics.log_loss <= baseline.log_loss + 1e-3

    def test_fit_is_informative(self, synthetic_sequences):
        """Fitted predictions separate correct from incorrect answers."""
        result = fit_parameters(synthetic_sequences, initial=BKTParams())

        assert result.metrics.auc > 0.55
        assert result.fit_quality in ("excellent", "good", "acceptable", "poor")
        assert result.iterations >= 1

    def test_non_convergence_is_reported(self, synthetic_sequences):
        result = fit_parameters(synthetic_sequences, initial=BKTParams(), max_iterations=1, tolerance=1e-12)

        assert result.converged is False
        assert result.warnings

    def test_empty_sequences_are_ignored(self, synthetic_sequences):
        result = fit_parameters(synthetic_sequences + [[], []], initial=BKTParams())

        assert result.sample_size == 2000


class TestConstraints:
    """Tests for post-M-step clamping."""

    def test_clamps_to_box(self):
        params = _constrain(0.0, 1.0, 0.0, 0.9)

        assert params.p_init == 0.001
        assert params.p_learn == 0.999
        assert params.p_slip == 0.001
        assert params.p_guess == 0.5

    def test_rescales_unidentifiable_errors(self):
        """slip + guess >= 1 is rescaled to sum to 0.9."""
        params = _constrain(0.5, 0.5, 0.5, 0.5)

        assert params.p_slip + params.p_guess == pytest.approx(0.9)
        assert params.p_slip == pytest.approx(params.p_guess)


class TestMetrics:
    """Tests for calibration metrics."""

    def test_auc_classic_example(self):
        predictions = [0.1, 0.4, 0.35, 0.8]
        actuals = [False, False, True, True]

        assert auc_score(predictions, actuals) == pytest.approx(0.75)

    def test_auc_ties_count_half(self):
        assert auc_score([0.5, 0.5], [True, False]) == pytest.approx(0.5)

    def test_auc_single_class(self):
        assert auc_score([0.2, 0.9], [True, True]) == 0.5

    def test_brier_score(self):
        assert brier_score([1.0, 0.0], [True, True]) == pytest.approx(0.5)

    def test_calibration_error_perfect_bin(self):
        """A bin predicting 0.75 with 3 of 4 correct is perfectly calibrated."""
        assert expected_calibration_error([0.75] * 4, [True, True, True, False]) == pytest.approx(0.0)

    def test_calibration_error_miscalibrated(self):
        assert expected_calibration_error([0.95] * 2, [False, False]) == pytest.approx(0.95)

    def test_log_loss_coin_flip(self):
        assert log_loss([0.5], [True]) == pytest.approx(math.log(2))

    def test_log_loss_is_finite_at_extremes(self):
        assert math.isfinite(log_loss([1.0, 0.0], [False, True]))

    def test_metrics_for_tiny_sample(self):
        metrics = calibration_metrics([[True]], BKTParams())

        assert metrics.sample_size == 1
        assert metrics.auc == 0.5

    def test_metrics_to_dict(self, synthetic_sequences, true_params):
        data = calibration_metrics(synthetic_sequences, true_params).to_dict()

        assert set(data) == {"auc", "brier_score", "calibration_error", "accuracy", "log_loss", "sample_size"}
        assert data["sample_size"] == 2000

    @pytest.mark.parametrize(
        "brier,quality",
        [(0.10, "excellent"), (0.15, "good"), (0.30, "acceptable"), (0.35, "poor")],
    )
    def test_fit_quality_bands(self, brier, quality):
        assert fit_quality_from_brier(brier) == quality

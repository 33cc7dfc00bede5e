"""
Offline BKT parameter fitting and calibration metrics.

Fits {p_init, p_learn, p_slip, p_guess} for one skill from per-learner
observation sequences with Expectation-Maximization over the two-state
hidden Markov model behind BKT (not mastered -> mastered, no forgetting).

Metrics compare the predicted probability of a correct answer before
each attempt against the actual outcome:
- AUC (Mann-Whitney, ties count one half)
- Brier score
- Expected calibration error (10 equal-width bins)
- Accuracy at a 0.5 cut and log loss
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Literal

from loguru import logger

from skillpath.core.errors import InsufficientDataError, InvalidObservationError
from skillpath.core.models import BKTParams
from skillpath.learning.mastery_tracker import bkt_update, predict_correct

FitQuality = Literal["excellent", "good", "acceptable", "poor"]

# Box constraints applied after every M-step
PARAM_FLOOR = 0.001
PARAM_CEILING = 0.999
ERROR_CEILING = 0.5  # slip and guess above one half are not identifiable

CALIBRATION_BINS = 10
LOG_LOSS_EPSILON = 1e-15


@dataclass
class CalibrationMetrics:
    """Predictive quality of a parameter set."""

    auc: float
    brier_score: float
    calibration_error: float
    accuracy: float
    log_loss: float
    sample_size: int

    def to_dict(self) -> dict:
        return {
            "auc": round(self.auc, 4),
            "brier_score": round(self.brier_score, 4),
            "calibration_error": round(self.calibration_error, 4),
            "accuracy": round(self.accuracy, 4),
            "log_loss": round(self.log_loss, 4),
            "sample_size": self.sample_size,
        }


@dataclass
class FitResult:
    """Outcome of an EM parameter fit."""

    params: BKTParams
    log_likelihood: float
    iterations: int
    converged: bool
    fit_quality: FitQuality
    metrics: CalibrationMetrics
    sample_size: int
    warnings: list[str] = field(default_factory=list)

    @property
    def accepted(self) -> bool:
        """A poor fit leaves the defaults in force."""
        return self.fit_quality != "poor"


def fit_quality_from_brier(brier: float) -> FitQuality:
    if brier < 0.15:
        return "excellent"
    if brier < 0.25:
        return "good"
    if brier < 0.35:
        return "acceptable"
    return "poor"


def _validate_sequences(sequences: Sequence[Sequence[bool]]) -> list[list[bool]]:
    cleaned = []
    for i, seq in enumerate(sequences):
        for j, obs in enumerate(seq):
            if not isinstance(obs, bool):
                raise InvalidObservationError(
                    f"Observation {j} of sequence {i} is {type(obs).__name__}, expected bool",
                    field="is_correct",
                )
        if seq:
            cleaned.append(list(seq))
    return cleaned


def _constrain(p_init: float, p_learn: float, p_slip: float, p_guess: float) -> BKTParams:
    p_init = min(PARAM_CEILING, max(PARAM_FLOOR, p_init))
    p_learn = min(PARAM_CEILING, max(PARAM_FLOOR, p_learn))
    p_slip = min(ERROR_CEILING, max(PARAM_FLOOR, p_slip))
    p_guess = min(ERROR_CEILING, max(PARAM_FLOOR, p_guess))
    if p_slip + p_guess >= 1:
        scale = 0.9 / (p_slip + p_guess)
        p_slip *= scale
        p_guess *= scale
    return BKTParams(p_init=p_init, p_learn=p_learn, p_slip=p_slip, p_guess=p_guess)


@dataclass
class _SufficientStats:
    initial_mastered: float = 0.0
    sequences: int = 0
    learn_transitions: float = 0.0
    unmastered_exits: float = 0.0
    mastered_total: float = 0.0
    mastered_incorrect: float = 0.0
    unmastered_total: float = 0.0
    unmastered_correct: float = 0.0
    log_likelihood: float = 0.0


def _emission(obs: bool, params: BKTParams) -> tuple[float, float]:
    """P(obs | not mastered), P(obs | mastered)."""
    if obs:
        return params.p_guess, 1 - params.p_slip
    return 1 - params.p_guess, params.p_slip


def _accumulate(seq: list[bool], params: BKTParams, stats: _SufficientStats) -> None:
    """Scaled forward-backward for one sequence, adding its expected counts."""
    t_len = len(seq)
    learn = params.p_learn

    alpha: list[tuple[float, float]] = []
    scale: list[float] = []
    e0, e1 = _emission(seq[0], params)
    a0, a1 = (1 - params.p_init) * e0, params.p_init * e1
    c = a0 + a1
    alpha.append((a0 / c, a1 / c))
    scale.append(c)
    for t in range(1, t_len):
        e0, e1 = _emission(seq[t], params)
        prev0, prev1 = alpha[t - 1]
        a0 = prev0 * (1 - learn) * e0
        a1 = (prev0 * learn + prev1) * e1
        c = a0 + a1
        alpha.append((a0 / c, a1 / c))
        scale.append(c)

    beta: list[tuple[float, float]] = [(1.0, 1.0)] * t_len
    for t in range(t_len - 2, -1, -1):
        e0, e1 = _emission(seq[t + 1], params)
        n0, n1 = beta[t + 1]
        b0 = ((1 - learn) * e0 * n0 + learn * e1 * n1) / scale[t + 1]
        b1 = (e1 * n1) / scale[t + 1]
        beta[t] = (b0, b1)

    for t in range(t_len):
        g0 = alpha[t][0] * beta[t][0]
        g1 = alpha[t][1] * beta[t][1]
        norm = g0 + g1
        g0, g1 = g0 / norm, g1 / norm
        if t == 0:
            stats.initial_mastered += g1
        stats.mastered_total += g1
        stats.unmastered_total += g0
        if seq[t]:
            stats.unmastered_correct += g0
        else:
            stats.mastered_incorrect += g1

        if t < t_len - 1:
            _, e1 = _emission(seq[t + 1], params)
            stats.learn_transitions += alpha[t][0] * learn * e1 * beta[t + 1][1] / scale[t + 1]
            stats.unmastered_exits += g0

    stats.sequences += 1
    stats.log_likelihood += sum(math.log(c + 1e-300) for c in scale)


def fit_parameters(
    sequences: Sequence[Sequence[bool]],
    initial: BKTParams | None = None,
    min_samples: int = 30,
    max_iterations: int = 100,
    tolerance: float = 1e-4,
) -> FitResult:
    """
    Fit BKT parameters by Expectation-Maximization.

    Args:
        sequences: One chronological list of correctness flags per learner
        initial: Starting parameters (also the fallback defaults)
        min_samples: Minimum total observation count for an accepted fit
        max_iterations: EM iteration cap
        tolerance: Stop once the log-likelihood changes by less than this

    Returns:
        FitResult with fitted params, fit quality and calibration metrics

    Raises:
        InvalidObservationError: If any observation is not a boolean
        InsufficientDataError: If the sample is below min_samples
    """
    initial = initial or BKTParams()
    data = _validate_sequences(sequences)
    sample_size = sum(len(seq) for seq in data)

    if sample_size < min_samples:
        reason = (
            f"Only {sample_size} observations across {len(data)} sequences; "
            f"at least {min_samples} are needed to fit BKT parameters"
        )
        logger.info(reason)
        raise InsufficientDataError(reason, sample_size=sample_size, required=min_samples, defaults=initial)

    params = _constrain(initial.p_init, initial.p_learn, initial.p_slip, initial.p_guess)
    prev_ll = -math.inf
    converged = False
    iterations = 0

    for iteration in range(max_iterations):
        iterations = iteration + 1
        stats = _SufficientStats()
        for seq in data:
            _accumulate(seq, params, stats)

        if abs(stats.log_likelihood - prev_ll) < tolerance:
            converged = True
            prev_ll = stats.log_likelihood
            break
        prev_ll = stats.log_likelihood

        params = _constrain(
            p_init=stats.initial_mastered / stats.sequences,
            p_learn=stats.learn_transitions / (stats.unmastered_exits + 1e-10),
            p_slip=stats.mastered_incorrect / (stats.mastered_total + 1e-10),
            p_guess=stats.unmastered_correct / (stats.unmastered_total + 1e-10),
        )

    warnings = []
    if not converged:
        warnings.append(f"EM did not converge within {max_iterations} iterations")
        logger.warning(warnings[-1])

    metrics = calibration_metrics(data, params)
    quality = fit_quality_from_brier(metrics.brier_score)
    logger.info(
        f"BKT fit: {sample_size} observations, {iterations} iterations, "
        f"quality={quality}, auc={metrics.auc:.3f}, brier={metrics.brier_score:.3f}"
    )
    return FitResult(
        params=params,
        log_likelihood=prev_ll,
        iterations=iterations,
        converged=converged,
        fit_quality=quality,
        metrics=metrics,
        sample_size=sample_size,
        warnings=warnings,
    )


def calibration_metrics(sequences: Sequence[Sequence[bool]], params: BKTParams) -> CalibrationMetrics:
    """Score a parameter set against observed sequences."""
    data = _validate_sequences(sequences)
    predictions: list[float] = []
    actuals: list[bool] = []
    for seq in data:
        p = params.p_init
        for obs in seq:
            predictions.append(predict_correct(p, params))
            actuals.append(obs)
            p = bkt_update(p, obs, params)

    if len(predictions) < 2:
        return CalibrationMetrics(
            auc=0.5,
            brier_score=0.25,
            calibration_error=0.0,
            accuracy=0.5,
            log_loss=math.log(2),
            sample_size=len(predictions),
        )

    return CalibrationMetrics(
        auc=auc_score(predictions, actuals),
        brier_score=brier_score(predictions, actuals),
        calibration_error=expected_calibration_error(predictions, actuals),
        accuracy=sum((p >= 0.5) == a for p, a in zip(predictions, actuals)) / len(predictions),
        log_loss=log_loss(predictions, actuals),
        sample_size=len(predictions),
    )


def auc_score(predictions: Sequence[float], actuals: Sequence[bool]) -> float:
    """Area under the ROC curve from average ranks; 0.5 when one class is missing."""
    positives = sum(1 for a in actuals if a)
    negatives = len(actuals) - positives
    if positives == 0 or negatives == 0:
        return 0.5

    order = sorted(range(len(predictions)), key=lambda i: predictions[i])
    ranks = [0.0] * len(predictions)
    i = 0
    while i < len(order):
        j = i
        while j + 1 < len(order) and predictions[order[j + 1]] == predictions[order[i]]:
            j += 1
        avg_rank = (i + j) / 2 + 1
        for k in range(i, j + 1):
            ranks[order[k]] = avg_rank
        i = j + 1

    rank_sum = sum(r for r, a in zip(ranks, actuals) if a)
    u = rank_sum - positives * (positives + 1) / 2
    return u / (positives * negatives)


def brier_score(predictions: Sequence[float], actuals: Sequence[bool]) -> float:
    return sum((p - (1.0 if a else 0.0)) ** 2 for p, a in zip(predictions, actuals)) / len(predictions)


def expected_calibration_error(
    predictions: Sequence[float],
    actuals: Sequence[bool],
    bins: int = CALIBRATION_BINS,
) -> float:
    totals = [0] * bins
    pred_sums = [0.0] * bins
    actual_sums = [0.0] * bins
    for p, a in zip(predictions, actuals):
        idx = min(int(p * bins), bins - 1)
        totals[idx] += 1
        pred_sums[idx] += p
        actual_sums[idx] += 1.0 if a else 0.0

    n = len(predictions)
    return sum(
        (totals[b] / n) * abs(pred_sums[b] / totals[b] - actual_sums[b] / totals[b])
        for b in range(bins)
        if totals[b]
    )


def log_loss(predictions: Sequence[float], actuals: Sequence[bool]) -> float:
    total = 0.0
    for p, a in zip(predictions, actuals):
        p = min(1 - LOG_LOSS_EPSILON, max(LOG_LOSS_EPSILON, p))
        total -= math.log(p) if a else math.log(1 - p)
    return total / len(predictions)

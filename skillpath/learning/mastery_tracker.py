"""
Mastery Tracker with Bayesian Knowledge Tracing.

This module tracks learner mastery per skill using:
- The standard two-step BKT update (evidence, then learning transition)
- Scaffold-level hysteresis driven by mastery bands and miss streaks
- Wilson confidence intervals over an effective sample size

All functions here are pure: they take a LearnerSkillState and return a
new one. Persistence and locking belong to the learner service.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from statistics import NormalDist
from typing import Any

from loguru import logger

from skillpath.core.errors import InvalidObservationError, ValidationError
from skillpath.core.models import BKTParams, LearnerSkillState, MasteryStatus, utcnow

# Keeps beliefs away from certainty so later evidence can still move them.
P_MIN = 1e-6
P_MAX = 1.0 - 1e-6


def clamp_probability(p: float) -> float:
    if not math.isfinite(p):
        raise ValidationError(f"Probability is not finite: {p}", field="p_mastery")
    return min(P_MAX, max(P_MIN, p))


def bkt_update(p_mastery: float, is_correct: bool, params: BKTParams) -> float:
    """
    Apply one BKT observation to a mastery belief.

    Args:
        p_mastery: Prior probability the skill is mastered
        is_correct: Observed correctness of the attempt
        params: BKT parameters for the skill

    Returns:
        Posterior belief after the learning transition, clamped to (0, 1)
    """
    if not isinstance(is_correct, bool):
        raise InvalidObservationError(
            f"is_correct must be a boolean, got {type(is_correct).__name__}",
            field="is_correct",
        )

    p = clamp_probability(p_mastery)
    s, g, learn = params.p_slip, params.p_guess, params.p_learn

    if is_correct:
        numerator = p * (1 - s)
        denominator = numerator + (1 - p) * g
    else:
        numerator = p * s
        denominator = numerator + (1 - p) * (1 - g)

    if denominator <= 0 or not math.isfinite(denominator):
        raise ValidationError(
            f"BKT parameters give a degenerate posterior (slip={s}, guess={g})",
            field="bkt_params",
        )

    posterior = numerator / denominator
    return clamp_probability(posterior + (1 - posterior) * learn)


def predict_correct(p_mastery: float, params: BKTParams) -> float:
    """Probability the next attempt is correct given the current belief."""
    p = clamp_probability(p_mastery)
    return (1 - params.p_slip) * p + params.p_guess * (1 - p)


def derive_status(p_mastery: float, threshold: float, total_attempts: int) -> MasteryStatus:
    if total_attempts == 0:
        return MasteryStatus.NOT_STARTED
    if p_mastery >= threshold:
        return MasteryStatus.MASTERED
    return MasteryStatus.LEARNING


@dataclass
class MasteryEstimate:
    """Mastery belief with a confidence interval."""

    p_mastery: float
    lower: float
    upper: float
    level: float
    n_effective: float

    @property
    def width(self) -> float:
        return self.upper - self.lower


class MasteryTracker:
    """
    Track per-(learner, skill) mastery with Bayesian Knowledge Tracing.

    Scaffold level (hint intensity) follows a hysteresis rule:
    - one level less support each time pMastery crosses a band upward
    - one level more support on every second consecutive miss
    """

    def __init__(
        self,
        default_params: BKTParams | None = None,
        scaffold_bands: Sequence[float] = (0.3, 0.5, 0.7),
        max_scaffold_level: int = 3,
        default_threshold: float = 0.8,
    ):
        self.default_params = default_params or BKTParams()
        self.scaffold_bands = tuple(sorted(scaffold_bands))
        self.max_scaffold_level = max_scaffold_level
        self.default_threshold = default_threshold

    @classmethod
    def from_settings(cls, settings: Any) -> MasteryTracker:
        return cls(
            default_params=BKTParams.from_settings(settings),
            scaffold_bands=settings.scaffold_bands,
            max_scaffold_level=settings.scaffold_max_level,
            default_threshold=settings.mastery_threshold,
        )

    def new_state(
        self,
        learner_id: str,
        skill_id: str,
        mastery_threshold: float | None = None,
        notebook_id: str | None = None,
        params: BKTParams | None = None,
        easiness_factor: float = 2.5,
    ) -> LearnerSkillState:
        """State for a pair's first practice attempt."""
        return LearnerSkillState.initial(
            learner_id=learner_id,
            skill_id=skill_id,
            params=params or self.default_params,
            mastery_threshold=self.default_threshold if mastery_threshold is None else mastery_threshold,
            notebook_id=notebook_id,
            easiness_factor=easiness_factor,
            scaffold_level=self.max_scaffold_level,
        )

    def update(self, state: LearnerSkillState, is_correct: bool) -> LearnerSkillState:
        """
        Update mastery belief from one practice attempt.

        Args:
            state: Current learner-skill state
            is_correct: Whether the attempt was correct (must be a bool)

        Returns:
            New state with belief, counters, status and scaffold level updated

        Raises:
            InvalidObservationError: If is_correct is not a boolean
            ValidationError: If the stored belief or parameters are unusable
        """
        prior = state.p_mastery
        new_p = bkt_update(prior, is_correct, state.bkt_params)

        total = state.total_attempts + 1
        correct = state.correct_attempts + (1 if is_correct else 0)
        streak_correct = state.consecutive_correct + 1 if is_correct else 0
        streak_incorrect = 0 if is_correct else state.consecutive_incorrect + 1

        scaffold = self._next_scaffold_level(state.scaffold_level, prior, new_p, streak_incorrect)
        if scaffold != state.scaffold_level:
            logger.debug(
                f"Scaffold {state.learner_id}/{state.skill_id}: "
                f"{state.scaffold_level} -> {scaffold} (p={new_p:.3f})"
            )

        status = derive_status(new_p, state.mastery_threshold, total)
        if status == MasteryStatus.MASTERED and state.mastery_status != MasteryStatus.MASTERED:
            logger.info(f"Learner {state.learner_id} mastered skill {state.skill_id} (p={new_p:.3f})")

        return state.evolve(
            p_mastery=new_p,
            mastery_status=status,
            total_attempts=total,
            correct_attempts=correct,
            consecutive_correct=streak_correct,
            consecutive_incorrect=streak_incorrect,
            scaffold_level=scaffold,
            updated_at=utcnow(),
        )

    def _next_scaffold_level(self, level: int, prior: float, new_p: float, streak_incorrect: int) -> int:
        crossed = any(prior < band <= new_p for band in self.scaffold_bands)
        if crossed:
            level = max(0, level - 1)
        if streak_incorrect >= 2 and streak_incorrect % 2 == 0:
            level = min(self.max_scaffold_level, level + 1)
        return level

    def replay(self, observations: Sequence[bool], params: BKTParams | None = None) -> list[float]:
        """Beliefs after each observation, starting from params.p_init."""
        params = params or self.default_params
        p = params.p_init
        beliefs = []
        for obs in observations:
            p = bkt_update(p, obs, params)
            beliefs.append(p)
        return beliefs

    def mastery_with_confidence(
        self,
        observations: Sequence[bool],
        params: BKTParams | None = None,
        level: float = 0.95,
    ) -> MasteryEstimate:
        """
        Mastery estimate with a Wilson score interval.

        Successive attempts are correlated through learning, so the interval
        uses an effective sample size n / (1 + 2 * p_learn * (n - 1) / n).

        Args:
            observations: Chronological correctness flags
            params: BKT parameters (defaults to the tracker's)
            level: Confidence level in (0, 1)

        Returns:
            MasteryEstimate with bounds clipped to [0, 1]
        """
        if not 0 < level < 1:
            raise ValidationError(f"Confidence level must be in (0, 1), got {level}", field="level")

        params = params or self.default_params
        beliefs = self.replay(observations, params)
        p = beliefs[-1] if beliefs else clamp_probability(params.p_init)

        n = len(observations)
        if n == 0:
            return MasteryEstimate(p_mastery=p, lower=0.0, upper=1.0, level=level, n_effective=0.0)

        correlation = 1 + 2 * params.p_learn * (n - 1) / n
        n_eff = max(1.0, n / correlation)
        lower, upper = wilson_interval(p, n_eff, level)
        return MasteryEstimate(p_mastery=p, lower=lower, upper=upper, level=level, n_effective=n_eff)


def wilson_interval(p: float, n: float, level: float = 0.95) -> tuple[float, float]:
    z = NormalDist().inv_cdf((1 + level) / 2)
    z2 = z * z
    center = (p + z2 / (2 * n)) / (1 + z2 / n)
    margin = (z / (1 + z2 / n)) * math.sqrt(p * (1 - p) / n + z2 / (4 * n * n))
    return max(0.0, center - margin), min(1.0, center + margin)

"""
Learning: mastery tracking for the learner model.

- mastery_tracker: BKT update, scaffold hysteresis, confidence intervals
- bkt_fitting: EM parameter fitting and calibration metrics
- state_store: learner-state store protocol and in-memory store
"""

from skillpath.learning.bkt_fitting import CalibrationMetrics, FitResult, calibration_metrics, fit_parameters
from skillpath.learning.mastery_tracker import MasteryEstimate, MasteryTracker, bkt_update, predict_correct
from skillpath.learning.state_store import InMemoryLearnerStateStore, LearnerStateStore

__all__ = [
    # Tracking
    "MasteryTracker",
    "MasteryEstimate",
    "bkt_update",
    "predict_correct",
    # Fitting
    "fit_parameters",
    "calibration_metrics",
    "FitResult",
    "CalibrationMetrics",
    # Storage
    "LearnerStateStore",
    "InMemoryLearnerStateStore",
]

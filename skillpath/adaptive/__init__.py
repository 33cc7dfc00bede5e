"""
Adaptive: readiness and path planning.

- readiness: required-prerequisite gating and readiness score
- path_planner: ZPD, goal paths, threshold concepts, daily chunking
"""

from skillpath.adaptive.path_planner import (
    BloomLevelSummary,
    DailyChunk,
    LearningPath,
    PathPlanner,
    PathPreferences,
    ZPDEntry,
    chunk_by_day,
)
from skillpath.adaptive.readiness import BlockingPrerequisite, MasterySnapshot, Readiness, ReadinessEngine

__all__ = [
    # Readiness
    "ReadinessEngine",
    "Readiness",
    "BlockingPrerequisite",
    "MasterySnapshot",
    # Planning
    "PathPlanner",
    "PathPreferences",
    "LearningPath",
    "DailyChunk",
    "ZPDEntry",
    "BloomLevelSummary",
    "chunk_by_day",
]

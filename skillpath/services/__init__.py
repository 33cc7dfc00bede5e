"""
Services: caller-facing operations over the stores.
"""

from skillpath.services.learner_service import LearnerProgress, LearnerService

__all__ = ["LearnerService", "LearnerProgress"]

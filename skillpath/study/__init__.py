"""
Study: review scheduling.
"""

from skillpath.study.review_scheduler import ReviewScheduler, due_for_review, next_easiness

__all__ = ["ReviewScheduler", "due_for_review", "next_easiness"]

"""
skillpath: learner modeling and learning-path planning.

Tracks per-skill mastery with Bayesian Knowledge Tracing, schedules reviews
with SM-2, computes the Zone of Proximal Development and goal-directed
learning paths over a prerequisite graph, and drives Socratic dialogues.
"""

__version__ = "1.0.0"

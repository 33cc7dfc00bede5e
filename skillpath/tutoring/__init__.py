"""
Tutoring: Socratic dialogue state machine, question phrasing and response analysis.
"""

from skillpath.tutoring.analysis import ResponseAnalyzer, heuristic_analysis, parse_analysis
from skillpath.tutoring.dialogue import (
    QUESTION_PROGRESSION,
    DialogueEffectiveness,
    DialogueEngine,
    DialogueState,
    DialogueStatus,
    DialogueSummary,
    Exchange,
    QuestionType,
    ResponseAnalysis,
    UnderstandingLevel,
)
from skillpath.tutoring.phrasing import Question, QuestionPhraser, fallback_question

__all__ = [
    # State machine
    "DialogueEngine",
    "DialogueState",
    "DialogueStatus",
    "DialogueSummary",
    "DialogueEffectiveness",
    "Exchange",
    "QuestionType",
    "QUESTION_PROGRESSION",
    "ResponseAnalysis",
    "UnderstandingLevel",
    # Phrasing
    "Question",
    "QuestionPhraser",
    "fallback_question",
    # Analysis
    "ResponseAnalyzer",
    "heuristic_analysis",
    "parse_analysis",
]

"""
Question phrasing for Socratic dialogues.

The text generator is an optional enrichment. When it fails, times out or
is not configured, questions come from fixed templates chosen by exchange
count, so the same dialogue always gets the same fallback text.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Literal

from loguru import logger

from skillpath.core.errors import DependencyUnavailableError
from skillpath.integrations.text_generator import TextGenerator
from skillpath.tutoring.dialogue import DialogueState, QuestionType


# =============================================================================
# Prompts
# =============================================================================

SOCRATIC_PROMPT = """You are a Socratic tutor. Guide the learner toward understanding
through questions, NOT by giving answers directly.

## Rules
1. NEVER reveal the answer
2. Ask ONE focused question
3. Build on what the learner already said

Skill: {skill}
Target concept: {concept}
Known misconceptions: {misconceptions}
Question type: {question_type} ({question_hint})

## Dialogue so far
{history}

Reply with the next question only."""

QUESTION_HINTS = {
    QuestionType.CLARIFYING: "find out what the learner already knows",
    QuestionType.PROBING_ASSUMPTION: "surface the assumption behind their answer",
    QuestionType.HYPOTHESIS_TESTING: "have them predict what happens in a concrete case",
    QuestionType.GENERALIZING: "have them extend the idea to a new situation",
}

FALLBACK_TEMPLATES = {
    QuestionType.CLARIFYING: [
        "Before we dive in, what's your current understanding of {concept}?",
        "What comes to mind when you think about {concept}?",
        "How would you describe {concept} in your own words?",
    ],
    QuestionType.PROBING_ASSUMPTION: [
        "What makes you think that about {concept}?",
        "What are you assuming about {concept} when you say that?",
        "Is there a case where that reasoning about {concept} might not hold?",
    ],
    QuestionType.HYPOTHESIS_TESTING: [
        "If your idea about {concept} is right, what would you expect to happen in a simple example?",
        "How could you check whether that is true for {concept}?",
        "What would change if one part of {concept} were different?",
    ],
    QuestionType.GENERALIZING: [
        "Where else might the idea behind {concept} apply?",
        "What general rule about {concept} can you draw from this?",
        "How does {concept} connect to something you already know well?",
    ],
}


@dataclass
class Question:
    """A phrased question ready to show the learner."""
    question_type: QuestionType
    text: str
    source: Literal["generator", "template"]


def fallback_question(question_type: QuestionType, concept: str, exchange_count: int = 0) -> str:
    templates = FALLBACK_TEMPLATES[question_type]
    return templates[exchange_count % len(templates)].format(concept=concept)


class QuestionPhraser:
    """Turn a question type into text, with a deterministic fallback."""

    def __init__(self, generator: TextGenerator | None = None, timeout_seconds: float = 8.0):
        self.generator = generator
        self.timeout_seconds = timeout_seconds

    def build_prompt(self, state: DialogueState, question_type: QuestionType) -> str:
        return SOCRATIC_PROMPT.format(
            skill=state.skill_name or state.skill_id,
            concept=state.target_concept,
            misconceptions=", ".join(sorted(state.open_misconceptions)) or "none known",
            question_type=question_type.value,
            question_hint=QUESTION_HINTS[question_type],
            history=state.get_dialogue_history() or "(no exchanges yet)",
        )

    async def phrase(self, state: DialogueState, question_type: QuestionType) -> Question:
        """
        Phrase the next question.

        Args:
            state: Dialogue state the question belongs to
            question_type: Kind of question chosen by the engine

        Returns:
            Question from the generator, or from templates when it is unavailable
        """
        if self.generator is not None:
            try:
                text = await asyncio.wait_for(
                    self.generator.generate(self.build_prompt(state, question_type)),
                    timeout=self.timeout_seconds,
                )
                text = text.strip()
                if text:
                    return Question(question_type=question_type, text=text, source="generator")
                logger.warning("Text generator returned no question, using template")
            except asyncio.TimeoutError:
                logger.warning(f"Question phrasing timed out after {self.timeout_seconds}s, using template")
            except DependencyUnavailableError as e:
                logger.warning(f"Question phrasing failed: {e}, using template")
            except Exception as e:
                logger.error(f"Question generation failed: {e}, using template")

        return Question(
            question_type=question_type,
            text=fallback_question(question_type, state.target_concept, state.exchange_count),
            source="template",
        )

"""
Response analysis for Socratic dialogues.

Judges a learner reply (understanding level, discovery moment, addressed
misconceptions) so the dialogue engine can pick its next question. The
text generator is asked first; when it fails, times out, is not
configured or replies with something unparseable, a keyword heuristic
gives the judgement instead.
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any

from loguru import logger

from skillpath.core.models import parse_record
from skillpath.integrations.text_generator import TextGenerator
from skillpath.tutoring.dialogue import DialogueState, ResponseAnalysis, UnderstandingLevel


ANALYSIS_PROMPT = """Analyze this learner response in a Socratic tutoring dialogue.

Skill: {skill}
Target concept: {concept}

Tutor's question: "{question}"
Learner's response: "{response}"

Known misconceptions still open:
{misconceptions}

Decide:
1. What level of understanding does the response show?
2. Is this a discovery moment, where the learner reached the insight themselves?
3. Did the learner reason on their own rather than guess?
4. Which of the listed misconceptions does the response correct?

Return JSON only:
{{"understanding_level": "none" | "partial" | "misconception" | "correct" | "advanced",
  "is_discovery": true/false,
  "discovery_description": "what they discovered, or null",
  "self_reasoning": true/false,
  "addressed_misconceptions": ["exact text of each corrected misconception"]}}"""

# Discovery indicators and their weights
INSIGHT_PATTERNS = [
    re.compile(r"\boh\b"),
    re.compile(r"\baha\b"),
    re.compile(r"\bi see\b"),
    re.compile(r"\bi get it\b"),
    re.compile(r"\bthat makes sense\b"),
    re.compile(r"\bnow i understand\b"),
    re.compile(r"\bso that'?s why\b"),
    re.compile(r"\bi didn'?t realize\b"),
    re.compile(r"\bthat means\b"),
]
EXPLANATION_PATTERN = re.compile(r"\b(because|so that|which means|therefore)\b")
SELF_CORRECTION_PATTERN = re.compile(r"\b(wait|actually|i was wrong)\b")
CONNECTION_PATTERN = re.compile(r"\b(similar to|connects to|just like|same as)\b")
CONFUSION_PATTERNS = [
    re.compile(r"\bdon'?t know\b"),
    re.compile(r"\bno idea\b"),
    re.compile(r"\bnot sure\b"),
    re.compile(r"\bconfused\b"),
    re.compile(r"\bi'?m lost\b"),
]

INSIGHT_WEIGHT = 0.2
EXPLANATION_WEIGHT = 0.15
SELF_CORRECTION_WEIGHT = 0.2
CONNECTION_WEIGHT = 0.15
DISCOVERY_CONFIDENCE = 0.3

ANALYSIS_FIELDS = set(ResponseAnalysis.model_fields)


def heuristic_analysis(state: DialogueState, response: str) -> ResponseAnalysis:
    """
    Judge a response from its wording alone.

    Insight phrases, explanations, self-correction and connection-making
    each add confidence; 0.3 or more counts as a discovery moment.
    Confusion wording means no understanding. Restating an open
    misconception marks the response as a misconception.
    """
    text = " ".join(response.lower().split())

    confidence = sum(INSIGHT_WEIGHT for p in INSIGHT_PATTERNS if p.search(text))
    explained = bool(EXPLANATION_PATTERN.search(text))
    corrected = bool(SELF_CORRECTION_PATTERN.search(text))
    if explained:
        confidence += EXPLANATION_WEIGHT
    if corrected:
        confidence += SELF_CORRECTION_WEIGHT
    if CONNECTION_PATTERN.search(text):
        confidence += CONNECTION_WEIGHT

    restated = any(m.lower() in text for m in state.open_misconceptions)
    confused = any(p.search(text) for p in CONFUSION_PATTERNS)

    if confused or not text:
        level = UnderstandingLevel.NONE
    elif restated:
        level = UnderstandingLevel.MISCONCEPTION
    elif confidence >= DISCOVERY_CONFIDENCE:
        level = UnderstandingLevel.CORRECT
    else:
        level = UnderstandingLevel.PARTIAL

    is_discovery = level == UnderstandingLevel.CORRECT
    return ResponseAnalysis(
        understanding_level=level,
        is_discovery=is_discovery,
        discovery_description=f"Reasoned toward {state.target_concept}" if is_discovery else None,
        self_reasoning=level != UnderstandingLevel.NONE and (explained or corrected),
    )


def parse_analysis(text: str, state: DialogueState) -> ResponseAnalysis:
    """
    Parse a generator reply into a ResponseAnalysis.

    Raises:
        ValueError: If the reply holds no JSON object
        ValidationError: If the object does not describe a valid analysis
    """
    match = re.search(r"\{.*\}", text, re.DOTALL)
    if not match:
        raise ValueError("no JSON object in analysis reply")
    data = json.loads(match.group())
    if not isinstance(data, dict):
        raise ValueError("analysis reply is not a JSON object")

    fields: dict[str, Any] = {k: v for k, v in data.items() if k in ANALYSIS_FIELDS}
    addressed = fields.get("addressed_misconceptions") or []
    if isinstance(addressed, str):
        addressed = [addressed]
    # Only misconceptions this dialogue tracks can be addressed
    fields["addressed_misconceptions"] = [m for m in addressed if m in state.misconceptions]
    return parse_record(ResponseAnalysis, fields)


class ResponseAnalyzer:
    """Analyze learner responses, falling back to the keyword heuristic."""

    def __init__(self, generator: TextGenerator | None = None, timeout_seconds: float = 8.0):
        self.generator = generator
        self.timeout_seconds = timeout_seconds

    def build_prompt(self, state: DialogueState, response: str) -> str:
        misconceptions = sorted(state.open_misconceptions)
        return ANALYSIS_PROMPT.format(
            skill=state.skill_name or state.skill_id,
            concept=state.target_concept,
            question=state.pending_question or "",
            response=response,
            misconceptions="\n".join(f"{i}. {m}" for i, m in enumerate(misconceptions, 1)) or "none known",
        )

    async def analyze(self, state: DialogueState, response: str) -> ResponseAnalysis:
        """
        Analyze one learner response.

        Args:
            state: Dialogue the response answers, before it is recorded
            response: Learner's reply to the pending question

        Returns:
            Analysis from the generator, or from the heuristic when it is unavailable
        """
        if self.generator is not None:
            try:
                reply = await asyncio.wait_for(
                    self.generator.generate(self.build_prompt(state, response)),
                    timeout=self.timeout_seconds,
                )
                return parse_analysis(reply, state)
            except asyncio.TimeoutError:
                logger.warning(f"Response analysis timed out after {self.timeout_seconds}s, using heuristic")
            except Exception as e:
                logger.warning(f"Response analysis failed: {e}, using heuristic")

        return heuristic_analysis(state, response)

"""
Socratic Dialogue Engine: guided questioning toward a discovery moment.

A pure state machine:

    not_started -> questioning -> (discovery | exhausted) -> ended

Each learner response arrives with an externally computed analysis
(understanding level, discovery flag). The engine never interprets text
itself; it only decides which kind of question comes next and when to
stop asking. Phrasing lives in skillpath.tutoring.phrasing.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from loguru import logger
from pydantic import BaseModel, ConfigDict

from skillpath.core.errors import ValidationError
from skillpath.core.models import parse_record, utcnow


class DialogueStatus(str, Enum):
    """Lifecycle of a Socratic dialogue."""
    NOT_STARTED = "not_started"
    QUESTIONING = "questioning"
    DISCOVERY = "discovery"     # Learner reached the insight
    EXHAUSTED = "exhausted"     # Budget spent or nothing left to explore
    ENDED = "ended"


class QuestionType(str, Enum):
    """Question kinds, in progression order."""
    CLARIFYING = "clarifying"                   # "What do you already know about X?"
    PROBING_ASSUMPTION = "probing_assumption"   # "Why do you think that holds?"
    HYPOTHESIS_TESTING = "hypothesis_testing"   # "What would happen if...?"
    GENERALIZING = "generalizing"               # "Where else does this apply?"


QUESTION_PROGRESSION: tuple[QuestionType, ...] = tuple(QuestionType)


class UnderstandingLevel(str, Enum):
    """Externally judged understanding shown by a response."""
    NONE = "none"
    PARTIAL = "partial"
    MISCONCEPTION = "misconception"
    CORRECT = "correct"
    ADVANCED = "advanced"


class ResponseAnalysis(BaseModel):
    """Analysis of one learner response, from the caller or ResponseAnalyzer."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    understanding_level: UnderstandingLevel = UnderstandingLevel.PARTIAL
    is_discovery: bool = False
    discovery_description: str | None = None
    self_reasoning: bool = False
    addressed_misconceptions: frozenset[str] = frozenset()


@dataclass(frozen=True)
class Exchange:
    """One question/response pair. Never modified once recorded."""
    question_type: QuestionType
    tutor_question: str
    student_response: str
    understanding_level: UnderstandingLevel
    led_to_discovery: bool
    self_reasoning: bool
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class DialogueState:
    """Snapshot of a Socratic dialogue. Every transition returns a new one."""
    skill_id: str
    target_concept: str
    misconceptions: frozenset[str] = frozenset()
    open_misconceptions: frozenset[str] = frozenset()
    exchanges: tuple[Exchange, ...] = ()
    status: DialogueStatus = DialogueStatus.NOT_STARTED
    stage_index: int = 0
    pending_question_type: QuestionType | None = None
    pending_question: str | None = None
    discovery_made: bool = False
    discovery_description: str | None = None
    max_exchanges: int = 6
    dialogue_id: str = field(default_factory=lambda: uuid4().hex)
    skill_name: str | None = None
    started_at: datetime = field(default_factory=utcnow)
    ended_at: datetime | None = None

    @property
    def exchange_count(self) -> int:
        return len(self.exchanges)

    @property
    def is_active(self) -> bool:
        return self.status == DialogueStatus.QUESTIONING

    @property
    def misconceptions_addressed(self) -> bool:
        return bool(self.misconceptions) and not self.open_misconceptions

    def get_dialogue_history(self) -> str:
        """Format dialogue history for generator context."""
        lines = []
        for exchange in self.exchanges:
            lines.append(f"Tutor: {exchange.tutor_question}")
            lines.append(f"Learner: {exchange.student_response}")
        return "\n".join(lines)


@dataclass
class DialogueEffectiveness:
    """Descriptive quality of a finished dialogue. Never gates behavior."""
    score: float
    self_discovery_rate: float
    exchange_efficiency: float
    misconception_addressed: bool
    interpretation: str


@dataclass
class DialogueSummary:
    """What remains of a dialogue once it has ended."""
    dialogue_id: str
    skill_id: str
    outcome: DialogueStatus
    exchange_count: int
    discovery_made: bool
    discovery_description: str | None
    question_types: list[QuestionType]
    effectiveness: DialogueEffectiveness
    duration_seconds: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "dialogue_id": self.dialogue_id,
            "skill_id": self.skill_id,
            "outcome": self.outcome.value,
            "exchange_count": self.exchange_count,
            "discovery_made": self.discovery_made,
            "discovery_description": self.discovery_description,
            "question_types": [q.value for q in self.question_types],
            "effectiveness": {
                "score": round(self.effectiveness.score, 3),
                "self_discovery_rate": round(self.effectiveness.self_discovery_rate, 3),
                "exchange_efficiency": round(self.effectiveness.exchange_efficiency, 3),
                "misconception_addressed": self.effectiveness.misconception_addressed,
                "interpretation": self.effectiveness.interpretation,
            },
            "duration_seconds": round(self.duration_seconds, 1),
        }


class DialogueEngine:
    """
    Socratic dialogue state machine.

    Question selection:
    - a misconception steps back to probing assumptions
    - a correct or advanced answer skips a stage
    - no understanding repeats the current stage
    - partial understanding moves one stage on
    The last stage repeats until the dialogue stops.
    """

    def __init__(self, max_exchanges: int = 6):
        if max_exchanges < 1:
            raise ValidationError("max_exchanges must be at least 1", field="max_exchanges")
        self.max_exchanges = max_exchanges

    @classmethod
    def from_settings(cls, settings: Any) -> DialogueEngine:
        return cls(max_exchanges=settings.dialogue_max_exchanges)

    def create_state(
        self,
        skill_id: str,
        target_concept: str,
        misconceptions: Any = (),
        max_exchanges: int | None = None,
        skill_name: str | None = None,
    ) -> DialogueState:
        """New dialogue in the not_started state."""
        if not skill_id:
            raise ValidationError("skill_id is required", field="skill_id")
        if not target_concept or not target_concept.strip():
            raise ValidationError("target_concept is required", field="target_concept")
        if isinstance(misconceptions, str):
            raise ValidationError("misconceptions must be a collection of strings", field="misconceptions")
        budget = self.max_exchanges if max_exchanges is None else max_exchanges
        if budget < 1:
            raise ValidationError("max_exchanges must be at least 1", field="max_exchanges")

        known = frozenset(m.strip() for m in misconceptions if m and m.strip())
        return DialogueState(
            skill_id=skill_id,
            target_concept=target_concept.strip(),
            misconceptions=known,
            open_misconceptions=known,
            max_exchanges=budget,
            skill_name=skill_name,
        )

    def begin(self, state: DialogueState) -> tuple[DialogueState, QuestionType]:
        """Move a new dialogue to questioning and pick the opening question type."""
        if state.status != DialogueStatus.NOT_STARTED:
            raise ValidationError(f"Dialogue {state.dialogue_id} already started", field="status")
        opening = QUESTION_PROGRESSION[0]
        return replace(
            state,
            status=DialogueStatus.QUESTIONING,
            stage_index=0,
            pending_question_type=opening,
        ), opening

    def with_question(self, state: DialogueState, text: str) -> DialogueState:
        """Attach the phrased text of the pending question."""
        if state.pending_question_type is None:
            raise ValidationError("No question is pending", field="pending_question")
        return replace(state, pending_question=text)

    def advance(
        self,
        state: DialogueState,
        response: str,
        analysis: ResponseAnalysis | dict[str, Any],
    ) -> tuple[DialogueState, QuestionType | None]:
        """
        Record a learner response and choose what to ask next.

        Args:
            state: Dialogue in the questioning state
            response: Learner's answer to the pending question
            analysis: External judgement of the response

        Returns:
            (new_state, next question type), or (new_state, None) once the
            dialogue stops on discovery, addressed misconceptions, or budget

        Raises:
            ValidationError: If the dialogue is not questioning or inputs are malformed
        """
        if state.status != DialogueStatus.QUESTIONING:
            raise ValidationError(
                f"Cannot advance dialogue {state.dialogue_id} in state {state.status.value}",
                field="status",
            )
        if not isinstance(response, str):
            raise ValidationError("response must be a string", field="response")
        analysis = parse_record(ResponseAnalysis, analysis)

        exchange = Exchange(
            question_type=state.pending_question_type or QUESTION_PROGRESSION[state.stage_index],
            tutor_question=state.pending_question or "",
            student_response=response,
            understanding_level=analysis.understanding_level,
            led_to_discovery=analysis.is_discovery,
            self_reasoning=analysis.self_reasoning,
        )
        exchanges = state.exchanges + (exchange,)
        open_misconceptions = state.open_misconceptions - analysis.addressed_misconceptions
        updated = replace(
            state,
            exchanges=exchanges,
            open_misconceptions=open_misconceptions,
            pending_question=None,
        )

        if analysis.is_discovery:
            logger.info(f"Dialogue {state.dialogue_id}: discovery after {len(exchanges)} exchanges")
            return replace(
                updated,
                status=DialogueStatus.DISCOVERY,
                discovery_made=True,
                discovery_description=analysis.discovery_description,
                pending_question_type=None,
            ), None

        if state.misconceptions and not open_misconceptions:
            logger.info(f"Dialogue {state.dialogue_id}: all misconceptions addressed")
            return replace(updated, status=DialogueStatus.EXHAUSTED, pending_question_type=None), None

        if len(exchanges) >= state.max_exchanges:
            logger.info(f"Dialogue {state.dialogue_id}: exchange budget of {state.max_exchanges} spent")
            return replace(updated, status=DialogueStatus.EXHAUSTED, pending_question_type=None), None

        stage = self._next_stage(state.stage_index, analysis.understanding_level)
        next_type = QUESTION_PROGRESSION[stage]
        return replace(updated, stage_index=stage, pending_question_type=next_type), next_type

    @staticmethod
    def _next_stage(stage: int, level: UnderstandingLevel) -> int:
        last = len(QUESTION_PROGRESSION) - 1
        if level == UnderstandingLevel.MISCONCEPTION:
            return QUESTION_PROGRESSION.index(QuestionType.PROBING_ASSUMPTION)
        if level in (UnderstandingLevel.CORRECT, UnderstandingLevel.ADVANCED):
            return min(last, stage + 2)
        if level == UnderstandingLevel.NONE:
            return stage
        return min(last, stage + 1)

    def end(self, state: DialogueState, now: datetime | None = None) -> tuple[DialogueState, DialogueSummary]:
        """Close a dialogue and summarize it."""
        if state.status == DialogueStatus.ENDED:
            raise ValidationError(f"Dialogue {state.dialogue_id} already ended", field="status")
        now = now or utcnow()
        ended = replace(state, status=DialogueStatus.ENDED, ended_at=now, pending_question_type=None)
        summary = DialogueSummary(
            dialogue_id=state.dialogue_id,
            skill_id=state.skill_id,
            outcome=state.status,
            exchange_count=state.exchange_count,
            discovery_made=state.discovery_made,
            discovery_description=state.discovery_description,
            question_types=[e.question_type for e in state.exchanges],
            effectiveness=self.effectiveness(state),
            duration_seconds=(now - state.started_at).total_seconds(),
        )
        return ended, summary

    @staticmethod
    def effectiveness(state: DialogueState) -> DialogueEffectiveness:
        """
        Score a dialogue.

        score = 0.4 * self-discovery rate + 0.3 * exchange efficiency
                + 0.2 * discovery made + 0.1 * misconceptions addressed
        """
        count = state.exchange_count
        if count == 0:
            return DialogueEffectiveness(
                score=0.0,
                self_discovery_rate=0.0,
                exchange_efficiency=0.0,
                misconception_addressed=False,
                interpretation="No exchanges yet",
            )

        self_discovery_rate = sum(1 for e in state.exchanges if e.self_reasoning or e.led_to_discovery) / count
        budget = state.max_exchanges
        if budget <= 1:
            efficiency = 1.0
        else:
            efficiency = (1 / count - 1 / budget) / (1 - 1 / budget)
        efficiency = min(1.0, max(0.0, efficiency))
        addressed = state.misconceptions_addressed

        score = (
            0.4 * self_discovery_rate
            + 0.3 * efficiency
            + (0.2 if state.discovery_made else 0.0)
            + (0.1 if addressed else 0.0)
        )

        if score >= 0.7:
            interpretation = "Excellent Socratic dialogue - the learner discovered the insight themselves"
        elif score >= 0.5:
            interpretation = "Good dialogue with meaningful progress toward understanding"
        elif score >= 0.3:
            interpretation = "Some progress made, but more scaffolding may help"
        else:
            interpretation = "Consider adjusting the question types or adding more scaffolding"

        return DialogueEffectiveness(
            score=score,
            self_discovery_rate=self_discovery_rate,
            exchange_efficiency=efficiency,
            misconception_addressed=addressed,
            interpretation=interpretation,
        )

"""
Unit tests for learner response analysis.

Tests:
- Keyword heuristic judgements
- Parsing generator replies into ResponseAnalysis
- Generator-first analysis with heuristic fallback
"""

import asyncio
import json

import pytest

from skillpath.core.errors import DependencyUnavailableError, ValidationError
from skillpath.tutoring.analysis import ResponseAnalyzer, heuristic_analysis, parse_analysis
from skillpath.tutoring.dialogue import DialogueEngine, UnderstandingLevel

MISCONCEPTION = "masks can have gaps"


class StubGenerator:
    """Generator returning a fixed reply, or raising."""

    def __init__(self, reply: str = "", error: Exception | None = None, delay: float = 0.0):
        self.reply = reply
        self.error = error
        self.delay = delay
        self.prompts = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.reply


@pytest.fixture
def dialogue_state():
    engine = DialogueEngine()
    state = engine.create_state("B", "subnet masks", [MISCONCEPTION], skill_name="Subnetting")
    state, _ = engine.begin(state)
    return engine.with_question(state, "What does a subnet mask tell you?")


def generator_reply(**fields) -> str:
    payload = {
        "understanding_level": "advanced",
        "is_discovery": True,
        "discovery_description": "the ones in a mask are contiguous",
        "self_reasoning": True,
        "addressed_misconceptions": [MISCONCEPTION],
    }
    payload.update(fields)
    return json.dumps(payload)


class TestHeuristicAnalysis:
    """Tests for the keyword fallback."""

    def test_insight_with_explanation_is_discovery(self, dialogue_state):
        analysis = heuristic_analysis(
            dialogue_state, "Oh, I see! The ones come first because they mark the network part"
        )

        assert analysis.understanding_level == UnderstandingLevel.CORRECT
        assert analysis.is_discovery
        assert analysis.self_reasoning
        assert "subnet masks" in analysis.discovery_description

    def test_confusion_means_no_understanding(self, dialogue_state):
        analysis = heuristic_analysis(dialogue_state, "I don't know, sorry")

        assert analysis.understanding_level == UnderstandingLevel.NONE
        assert not analysis.is_discovery
        assert not analysis.self_reasoning

    def test_restated_misconception(self, dialogue_state):
        analysis = heuristic_analysis(dialogue_state, "I think Masks can have gaps anywhere")

        assert analysis.understanding_level == UnderstandingLevel.MISCONCEPTION
        assert not analysis.is_discovery

    def test_plain_answer_is_partial(self, dialogue_state):
        analysis = heuristic_analysis(dialogue_state, "it is about the number of hosts")

        assert analysis.understanding_level == UnderstandingLevel.PARTIAL
        assert not analysis.is_discovery
        assert not analysis.self_reasoning

    def test_single_explanation_is_not_discovery(self, dialogue_state):
        analysis = heuristic_analysis(dialogue_state, "fewer hosts because of the longer prefix")

        assert analysis.understanding_level == UnderstandingLevel.PARTIAL
        assert not analysis.is_discovery
        assert analysis.self_reasoning

    def test_word_boundaries(self, dialogue_state):
        """'ohm' and 'waiting' are not insight or self-correction words."""
        analysis = heuristic_analysis(dialogue_state, "ohm values keep waiting")

        assert analysis.understanding_level == UnderstandingLevel.PARTIAL
        assert not analysis.self_reasoning

    def test_never_addresses_misconceptions(self, dialogue_state):
        analysis = heuristic_analysis(dialogue_state, "Aha, that makes sense now")

        assert analysis.addressed_misconceptions == frozenset()


class TestParseAnalysis:
    """Tests for parsing generator replies."""

    def test_parses_json_object(self, dialogue_state):
        analysis = parse_analysis(generator_reply(), dialogue_state)

        assert analysis.understanding_level == UnderstandingLevel.ADVANCED
        assert analysis.is_discovery
        assert analysis.addressed_misconceptions == frozenset({MISCONCEPTION})

    def test_json_inside_prose(self, dialogue_state):
        reply = f"Here is my analysis:\n```json\n{generator_reply(is_discovery=False)}\n```"

        analysis = parse_analysis(reply, dialogue_state)

        assert not analysis.is_discovery

    def test_unknown_keys_and_misconceptions_dropped(self, dialogue_state):
        reply = generator_reply(
            addressed_misconceptions=[MISCONCEPTION, "an invented one"],
            reasoning="extra field",
        )

        analysis = parse_analysis(reply, dialogue_state)

        assert analysis.addressed_misconceptions == frozenset({MISCONCEPTION})

    def test_no_json(self, dialogue_state):
        with pytest.raises(ValueError):
            parse_analysis("The learner seems fine.", dialogue_state)

    def test_invalid_level(self, dialogue_state):
        with pytest.raises(ValidationError):
            parse_analysis(generator_reply(understanding_level="brilliant"), dialogue_state)


class TestResponseAnalyzer:
    """Tests for ResponseAnalyzer."""

    @pytest.mark.asyncio
    async def test_without_generator_uses_heuristic(self, dialogue_state):
        response = "I don't know"

        analysis = await ResponseAnalyzer().analyze(dialogue_state, response)

        assert analysis == heuristic_analysis(dialogue_state, response)

    @pytest.mark.asyncio
    async def test_generator_judgement_is_used(self, dialogue_state):
        generator = StubGenerator(reply=generator_reply())

        analysis = await ResponseAnalyzer(generator).analyze(dialogue_state, "I don't know")

        assert analysis.understanding_level == UnderstandingLevel.ADVANCED
        assert analysis.addressed_misconceptions == frozenset({MISCONCEPTION})

    @pytest.mark.asyncio
    async def test_prompt_carries_context(self, dialogue_state):
        generator = StubGenerator(reply=generator_reply())

        await ResponseAnalyzer(generator).analyze(dialogue_state, "the ones are contiguous")

        prompt = generator.prompts[0]
        assert "Subnetting" in prompt
        assert "What does a subnet mask tell you?" in prompt
        assert "the ones are contiguous" in prompt
        assert f"1. {MISCONCEPTION}" in prompt

    @pytest.mark.asyncio
    @pytest.mark.parametrize("generator", [
        StubGenerator(error=DependencyUnavailableError("text generator", "down")),
        StubGenerator(error=RuntimeError("generator crashed")),
        StubGenerator(reply="no json here"),
        StubGenerator(reply='["a", "list"]'),
        StubGenerator(reply=generator_reply(understanding_level="brilliant")),
    ])
    async def test_failures_fall_back_to_heuristic(self, dialogue_state, generator):
        response = "Oh, I see, because the mask marks the network"

        analysis = await ResponseAnalyzer(generator).analyze(dialogue_state, response)

        assert analysis == heuristic_analysis(dialogue_state, response)

    @pytest.mark.asyncio
    async def test_slow_generator_falls_back(self, dialogue_state):
        generator = StubGenerator(reply=generator_reply(), delay=1.0)

        analysis = await ResponseAnalyzer(generator, timeout_seconds=0.01).analyze(dialogue_state, "I don't know")

        assert analysis.understanding_level == UnderstandingLevel.NONE

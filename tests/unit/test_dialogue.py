"""
Unit tests for the Socratic dialogue state machine.
"""

from datetime import timedelta

import pytest

from skillpath.core.errors import ValidationError
from skillpath.tutoring.dialogue import (
    DialogueEngine,
    DialogueStatus,
    QuestionType,
    ResponseAnalysis,
    UnderstandingLevel,
)


@pytest.fixture
def engine():
    return DialogueEngine(max_exchanges=6)


def started(engine, misconceptions=(), max_exchanges=None):
    """A dialogue in the questioning state with its opening question phrased."""
    state = engine.create_state("B", "why subnet masks are contiguous", misconceptions, max_exchanges)
    state, opening = engine.begin(state)
    return engine.with_question(state, f"opening {opening.value}")


def analysis(level=UnderstandingLevel.PARTIAL, **kwargs) -> ResponseAnalysis:
    return ResponseAnalysis(understanding_level=level, **kwargs)


class TestLifecycle:
    """Tests for state transitions."""

    def test_create_state(self, engine):
        state = engine.create_state("B", "  subnetting  ", ["bigger mask, bigger network"])

        assert state.status == DialogueStatus.NOT_STARTED
        assert state.target_concept == "subnetting"
        assert state.open_misconceptions == frozenset({"bigger mask, bigger network"})
        assert state.max_exchanges == 6

    def test_begin_opens_with_clarifying(self, engine):
        state = engine.create_state("B", "subnetting")
        state, opening = engine.begin(state)

        assert opening == QuestionType.CLARIFYING
        assert state.status == DialogueStatus.QUESTIONING
        assert state.is_active

    def test_begin_twice_rejected(self, engine):
        state = started(engine)

        with pytest.raises(ValidationError):
            engine.begin(state)

    def test_states_are_immutable(self, engine):
        state = started(engine)
        next_state, _ = engine.advance(state, "I think it's about hosts", analysis())

        assert state.exchange_count == 0
        assert next_state.exchange_count == 1
        with pytest.raises(AttributeError):
            state.status = DialogueStatus.ENDED

    @pytest.mark.parametrize("concept", ["", "   "])
    def test_blank_concept_rejected(self, engine, concept):
        with pytest.raises(ValidationError):
            engine.create_state("B", concept)

    def test_misconceptions_must_be_a_collection(self, engine):
        with pytest.raises(ValidationError):
            engine.create_state("B", "subnetting", "just one string")

    def test_budget_must_be_positive(self, engine):
        with pytest.raises(ValidationError):
            engine.create_state("B", "subnetting", max_exchanges=0)


class TestQuestionSelection:
    """Tests for the next-question rule."""

    def test_partial_moves_one_stage(self, engine):
        _, next_type = engine.advance(started(engine), "hmm", analysis(UnderstandingLevel.PARTIAL))

        assert next_type == QuestionType.PROBING_ASSUMPTION

    def test_correct_skips_a_stage(self, engine):
        state, next_type = engine.advance(started(engine), "a", analysis(UnderstandingLevel.PARTIAL))
        state = engine.with_question(state, "q2")
        _, next_type = engine.advance(state, "b", analysis(UnderstandingLevel.CORRECT))

        assert next_type == QuestionType.GENERALIZING

    def test_none_repeats_the_stage(self, engine):
        _, next_type = engine.advance(started(engine), "no idea", analysis(UnderstandingLevel.NONE))

        assert next_type == QuestionType.CLARIFYING

    def test_misconception_returns_to_probing(self, engine):
        state, _ = engine.advance(started(engine), "a", analysis(UnderstandingLevel.ADVANCED))
        state = engine.with_question(state, "q2")
        _, next_type = engine.advance(state, "b", analysis(UnderstandingLevel.MISCONCEPTION))

        assert next_type == QuestionType.PROBING_ASSUMPTION

    def test_last_stage_repeats(self, engine):
        state = started(engine)
        for _ in range(3):
            state, next_type = engine.advance(state, "yes", analysis(UnderstandingLevel.ADVANCED))
            state = engine.with_question(state, "next")

        assert next_type == QuestionType.GENERALIZING

    def test_exchange_records_question_and_answer(self, engine):
        state, _ = engine.advance(started(engine), "my answer", analysis(self_reasoning=True))
        exchange = state.exchanges[0]

        assert exchange.question_type == QuestionType.CLARIFYING
        assert exchange.tutor_question == "opening clarifying"
        assert exchange.student_response == "my answer"
        assert exchange.self_reasoning is True
        assert "Learner: my answer" in state.get_dialogue_history()

    def test_analysis_as_dict(self, engine):
        _, next_type = engine.advance(started(engine), "a", {"understanding_level": "correct"})

        assert next_type == QuestionType.HYPOTHESIS_TESTING

    def test_malformed_analysis_rejected(self, engine):
        with pytest.raises(ValidationError):
            engine.advance(started(engine), "a", {"understanding": "lots"})


class TestStopping:
    """Tests for discovery, misconception and budget stops."""

    def test_budget_exhausted_after_exact_count(self, engine):
        """Budget 3 without discovery: exhausted after the third exchange."""
        state = started(engine, max_exchanges=3)
        next_types = []
        for i in range(3):
            state, next_type = engine.advance(state, f"answer {i}", analysis())
            next_types.append(next_type)
            if next_type is not None:
                state = engine.with_question(state, f"q{i}")

        assert next_types[-1] is None
        assert None not in next_types[:-1]
        assert state.status == DialogueStatus.EXHAUSTED
        assert state.exchange_count == 3
        with pytest.raises(ValidationError):
            engine.advance(state, "one more", analysis())

    def test_discovery_stops_immediately(self, engine):
        state, next_type = engine.advance(
            started(engine),
            "Oh, the mask has to be contiguous ones!",
            analysis(UnderstandingLevel.ADVANCED, is_discovery=True, discovery_description="contiguous mask"),
        )

        assert next_type is None
        assert state.status == DialogueStatus.DISCOVERY
        assert state.discovery_made
        assert state.discovery_description == "contiguous mask"

    def test_addressing_all_misconceptions_stops(self, engine):
        state = started(engine, misconceptions=["m1", "m2"])
        state, next_type = engine.advance(state, "a", analysis(addressed_misconceptions={"m1"}))
        assert next_type is not None
        state = engine.with_question(state, "q2")

        state, next_type = engine.advance(state, "b", analysis(addressed_misconceptions={"m2"}))

        assert next_type is None
        assert state.status == DialogueStatus.EXHAUSTED
        assert state.misconceptions_addressed

    def test_no_misconceptions_means_no_early_stop(self, engine):
        _, next_type = engine.advance(started(engine), "a", analysis())

        assert next_type is not None


class TestEndAndEffectiveness:
    """Tests for closing a dialogue and scoring it."""

    def test_end_summarizes(self, engine):
        state, _ = engine.advance(started(engine), "a", analysis(is_discovery=True))
        ended, summary = engine.end(state, now=state.started_at + timedelta(seconds=90))

        assert ended.status == DialogueStatus.ENDED
        assert summary.outcome == DialogueStatus.DISCOVERY
        assert summary.exchange_count == 1
        assert summary.question_types == [QuestionType.CLARIFYING]
        assert summary.duration_seconds == pytest.approx(90)
        assert summary.to_dict()["outcome"] == "discovery"

    def test_end_twice_rejected(self, engine):
        ended, _ = engine.end(started(engine))

        with pytest.raises(ValidationError):
            engine.end(ended)

    def test_effectiveness_weights(self, engine):
        """Two self-reasoned exchanges ending in discovery, budget 6."""
        state = started(engine)
        state, _ = engine.advance(state, "a", analysis(self_reasoning=True))
        state = engine.with_question(state, "q2")
        state, _ = engine.advance(state, "b", analysis(self_reasoning=True, is_discovery=True))

        result = DialogueEngine.effectiveness(state)

        # efficiency = (1/2 - 1/6) / (1 - 1/6) = 0.4
        assert result.exchange_efficiency == pytest.approx(0.4)
        assert result.self_discovery_rate == pytest.approx(1.0)
        assert result.score == pytest.approx(0.4 + 0.3 * 0.4 + 0.2)
        assert result.misconception_addressed is False

    def test_single_exchange_discovery_is_fully_efficient(self, engine):
        state, _ = engine.advance(started(engine), "a", analysis(is_discovery=True))

        result = DialogueEngine.effectiveness(state)

        assert result.exchange_efficiency == pytest.approx(1.0)
        assert result.score == pytest.approx(0.4 + 0.3 + 0.2)

    def test_no_exchanges_scores_zero(self, engine):
        assert DialogueEngine.effectiveness(started(engine)).score == 0.0

"""
Readiness Engine.

Decides whether a learner may start a skill: every *required*
prerequisite must be mastered. Recommended prerequisites never block,
they only feed the continuous prerequisite score used for ranking.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from skillpath.core.models import LearnerSkillState
from skillpath.graph.skill_graph import SkillGraph


@dataclass
class BlockingPrerequisite:
    """A required prerequisite that is not yet mastered."""

    skill_id: str
    skill_name: str
    required_mastery: float
    current_mastery: float | None


@dataclass
class Readiness:
    """Readiness of one skill for one learner."""

    skill_id: str
    ready: bool
    score: float
    required_count: int
    mastered_count: int
    blocking: list[BlockingPrerequisite] = field(default_factory=list)

    @property
    def mastered_prerequisites(self) -> int:
        return self.mastered_count

    @property
    def pending_prerequisites(self) -> list[str]:
        return [b.skill_id for b in self.blocking]


class MasterySnapshot:
    """
    Which skills a learner has mastered, frozen at read time.

    Built either from learner states (each compared against the threshold
    stored with it) or from a plain set of mastered skill ids.
    """

    def __init__(self, graph: SkillGraph, mastered_ids: Iterable[str], beliefs: Mapping[str, float] | None = None):
        self.graph = graph
        self.mastered_ids = frozenset(mastered_ids)
        self.beliefs = dict(beliefs or {})

    @classmethod
    def from_ids(cls, graph: SkillGraph, mastered_ids: Iterable[str]) -> MasterySnapshot:
        return cls(graph, mastered_ids)

    @classmethod
    def from_states(
        cls,
        graph: SkillGraph,
        states: Mapping[str, LearnerSkillState] | Iterable[LearnerSkillState],
    ) -> MasterySnapshot:
        values = states.values() if isinstance(states, Mapping) else states
        mastered = []
        beliefs = {}
        for state in values:
            beliefs[state.skill_id] = state.p_mastery
            # The stored threshold is the one the state's status was derived from
            if state.p_mastery >= state.mastery_threshold:
                mastered.append(state.skill_id)
        return cls(graph, mastered, beliefs)

    def is_mastered(self, skill_id: str) -> bool:
        return skill_id in self.mastered_ids

    def belief(self, skill_id: str) -> float | None:
        if skill_id in self.beliefs:
            return self.beliefs[skill_id]
        return 1.0 if skill_id in self.mastered_ids else None

    def highest_mastered_bloom(self) -> int | None:
        levels = [self.graph.get_skill(s).bloom_level for s in self.mastered_ids if s in self.graph]
        return max(levels) if levels else None


class ReadinessEngine:
    """Required-prerequisite readiness over a skill graph."""

    def __init__(self, graph: SkillGraph):
        self.graph = graph

    def snapshot(
        self,
        learner_states: Mapping[str, LearnerSkillState] | Iterable[LearnerSkillState] | MasterySnapshot,
    ) -> MasterySnapshot:
        if isinstance(learner_states, MasterySnapshot):
            return learner_states
        return MasterySnapshot.from_states(self.graph, learner_states)

    def readiness(
        self,
        skill_id: str,
        learner_states: Mapping[str, LearnerSkillState] | Iterable[LearnerSkillState] | MasterySnapshot,
    ) -> Readiness:
        """
        Check whether every required prerequisite of a skill is mastered.

        Args:
            skill_id: Skill to check
            learner_states: Learner states keyed by skill id, or a MasterySnapshot

        Returns:
            Readiness with score = mastered / required (1.0 with no requirements)

        Raises:
            NotFoundError: If skill_id is not in the graph
        """
        snapshot = self.snapshot(learner_states)
        required = self.graph.get_prerequisites_of(skill_id, required_only=True)

        blocking = []
        for edge in required:
            prereq = self.graph.get_skill(edge.from_skill_id)
            if not snapshot.is_mastered(prereq.id):
                blocking.append(BlockingPrerequisite(
                    skill_id=prereq.id,
                    skill_name=prereq.name,
                    required_mastery=prereq.mastery_threshold,
                    current_mastery=snapshot.belief(prereq.id),
                ))

        mastered_count = len(required) - len(blocking)
        score = mastered_count / len(required) if required else 1.0
        return Readiness(
            skill_id=skill_id,
            ready=not blocking,
            score=score,
            required_count=len(required),
            mastered_count=mastered_count,
            blocking=blocking,
        )

    def prerequisite_score(self, skill_id: str, snapshot: MasterySnapshot) -> float:
        """Fraction of all prerequisites (required and recommended) mastered."""
        edges = self.graph.get_prerequisites_of(skill_id)
        if not edges:
            return 1.0
        return sum(1 for e in edges if snapshot.is_mastered(e.from_skill_id)) / len(edges)

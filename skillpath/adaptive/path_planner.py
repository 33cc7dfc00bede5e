"""
Learning Path Planner.

Determines what a learner should study next based on:
- Zone of Proximal Development (ready, unmastered, not too far up Bloom's taxonomy)
- Goal-directed paths (reverse traversal + topological sort)
- Threshold concepts (bottlenecks that gate much of the path)
- Daily chunking against a minute budget

Every operation is a pure function of a SkillGraph and a mastery
snapshot. Nothing is cached between calls.
"""

from __future__ import annotations

import heapq
from collections import defaultdict, deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from skillpath.adaptive.readiness import MasterySnapshot, ReadinessEngine
from skillpath.core.errors import GraphIntegrityError, ValidationError
from skillpath.core.models import BLOOM_LABELS, LearnerSkillState, Skill
from skillpath.graph.skill_graph import SkillGraph

# ZPD composite weights
WEIGHT_BLOOM_JUMP = 0.5
WEIGHT_PREREQUISITES = 0.3
WEIGHT_MINUTES = 0.2


@dataclass
class ZPDEntry:
    """A skill in the learner's Zone of Proximal Development."""

    skill: Skill
    bloom_jump: int
    readiness_score: float
    prerequisite_score: float
    composite_score: float
    mastered_prerequisites: list[str] = field(default_factory=list)
    # Only recommended prerequisites can still be pending here
    pending_prerequisites: list[str] = field(default_factory=list)


@dataclass
class PathPreferences:
    """Optional caller preferences for path generation."""

    max_daily_minutes: int | None = None
    # Accepted for compatibility; no reordering rule is defined yet.
    prioritize_threshold: bool = False


@dataclass
class DailyChunk:
    """Skills scheduled for one study day."""

    day: int
    skills: list[Skill]
    total_minutes: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "day": self.day,
            "skills": [s.id for s in self.skills],
            "total_minutes": self.total_minutes,
        }


@dataclass
class LearningPath:
    """Ordered path from the learner's current state to a goal skill."""

    goal_skill_id: str
    path: list[Skill] = field(default_factory=list)
    total_estimated_minutes: int = 0
    threshold_concepts: list[Skill] = field(default_factory=list)
    daily_chunks: list[DailyChunk] = field(default_factory=list)
    message: str | None = None

    @property
    def skill_ids(self) -> list[str]:
        return [s.id for s in self.path]

    @property
    def is_empty(self) -> bool:
        return not self.path

    def to_dict(self) -> dict[str, Any]:
        return {
            "goal_skill_id": self.goal_skill_id,
            "path": self.skill_ids,
            "total_estimated_minutes": self.total_estimated_minutes,
            "threshold_concepts": [s.id for s in self.threshold_concepts],
            "daily_chunks": [c.to_dict() for c in self.daily_chunks],
            "message": self.message,
        }


@dataclass
class BloomLevelSummary:
    """Curriculum overview row for one Bloom level."""

    level: int
    label: str
    skills: list[Skill]
    total_minutes: int
    threshold_count: int
    mastered_count: int = 0


def chunk_by_day(path: list[Skill], max_daily_minutes: int) -> list[DailyChunk]:
    """
    Greedily pack a path into day buckets without reordering.

    A skill longer than the budget still gets its own day.

    Raises:
        ValidationError: If max_daily_minutes is not positive
    """
    if max_daily_minutes <= 0:
        raise ValidationError(
            f"max_daily_minutes must be positive, got {max_daily_minutes}",
            field="max_daily_minutes",
        )

    chunks: list[DailyChunk] = []
    current: list[Skill] = []
    used = 0
    for skill in path:
        if current and used + skill.estimated_minutes > max_daily_minutes:
            chunks.append(DailyChunk(day=len(chunks) + 1, skills=current, total_minutes=used))
            current, used = [], 0
        current.append(skill)
        used += skill.estimated_minutes
    if current:
        chunks.append(DailyChunk(day=len(chunks) + 1, skills=current, total_minutes=used))
    return chunks


class PathPlanner:
    """
    Plan ZPD sets and goal-directed learning paths over a skill graph.
    """

    def __init__(
        self,
        graph: SkillGraph,
        max_bloom_jump: int = 1,
        threshold_fraction: float = 0.3,
    ):
        self.graph = graph
        self.readiness = ReadinessEngine(graph)
        self.max_bloom_jump = max_bloom_jump
        self.threshold_fraction = threshold_fraction

    @classmethod
    def from_settings(cls, graph: SkillGraph, settings: Any) -> PathPlanner:
        return cls(
            graph,
            max_bloom_jump=settings.zpd_max_bloom_jump,
            threshold_fraction=settings.threshold_concept_fraction,
        )

    def _snapshot(
        self,
        mastery: MasterySnapshot | Mapping[str, LearnerSkillState] | Iterable[str] | Iterable[LearnerSkillState],
    ) -> MasterySnapshot:
        if isinstance(mastery, MasterySnapshot):
            return mastery
        if isinstance(mastery, Mapping):
            return MasterySnapshot.from_states(self.graph, mastery)
        items = list(mastery)
        if items and all(isinstance(i, LearnerSkillState) for i in items):
            return MasterySnapshot.from_states(self.graph, items)
        return MasterySnapshot.from_ids(self.graph, items)

    # =========================================================================
    # Zone of Proximal Development
    # =========================================================================

    def compute_zpd(self, mastery: Any) -> list[ZPDEntry]:
        """
        Compute the learner's Zone of Proximal Development.

        Args:
            mastery: MasterySnapshot, learner states, or mastered skill ids

        Returns:
            Ready, unmastered skills at most max_bloom_jump levels above the
            learner's baseline, best first
        """
        snapshot = self._snapshot(mastery)

        candidates = [
            skill for skill in self.graph.list_skills()
            if not snapshot.is_mastered(skill.id)
            and self.readiness.readiness(skill.id, snapshot).ready
        ]
        if not candidates:
            return []

        baseline = snapshot.highest_mastered_bloom()
        if baseline is None:
            # Nothing mastered yet: the easiest entry points set the baseline
            baseline = min(s.bloom_level for s in candidates)
        ceiling = baseline + self.max_bloom_jump
        proximal = [s for s in candidates if s.bloom_level <= ceiling]
        if not proximal:
            return []

        max_minutes = max(s.estimated_minutes for s in proximal) or 1
        entries = []
        for skill in proximal:
            jump = max(0, skill.bloom_level - baseline)
            prereq_score = self.readiness.prerequisite_score(skill.id, snapshot)
            prereq_ids = sorted(e.from_skill_id for e in self.graph.get_prerequisites_of(skill.id))
            composite = (
                WEIGHT_BLOOM_JUMP * (1 - jump / (self.max_bloom_jump + 1))
                + WEIGHT_PREREQUISITES * prereq_score
                + WEIGHT_MINUTES * (1 - skill.estimated_minutes / max_minutes)
            )
            entries.append(ZPDEntry(
                skill=skill,
                bloom_jump=jump,
                readiness_score=1.0,
                prerequisite_score=prereq_score,
                composite_score=round(composite, 6),
                mastered_prerequisites=[p for p in prereq_ids if snapshot.is_mastered(p)],
                pending_prerequisites=[p for p in prereq_ids if not snapshot.is_mastered(p)],
            ))

        entries.sort(key=lambda e: (
            -e.composite_score,
            e.skill.bloom_level,
            e.skill.estimated_minutes,
            e.skill.id,
        ))
        return entries

    # =========================================================================
    # Goal-directed paths
    # =========================================================================

    def generate_learning_path(
        self,
        goal_skill_id: str | None,
        mastered_skill_ids: Iterable[str] | MasterySnapshot = (),
        preferences: PathPreferences | None = None,
    ) -> LearningPath:
        """
        Generate an ordered learning path to a goal skill.

        Args:
            goal_skill_id: Skill the learner wants to reach
            mastered_skill_ids: Skills already mastered (or a MasterySnapshot)
            preferences: Optional daily budget and ordering preferences

        Returns:
            LearningPath with the goal last; empty with a message when the goal
            is unknown or already mastered

        Raises:
            ValidationError: If goal_skill_id is missing
            GraphIntegrityError: If the required prerequisites of the goal form a cycle
        """
        if not goal_skill_id:
            raise ValidationError("goal_skill_id is required", field="goal_skill_id")
        preferences = preferences or PathPreferences()
        snapshot = self._snapshot(mastered_skill_ids)

        if goal_skill_id not in self.graph:
            return LearningPath(goal_skill_id=goal_skill_id, message=f"Goal skill {goal_skill_id} does not exist")
        if snapshot.is_mastered(goal_skill_id):
            return LearningPath(goal_skill_id=goal_skill_id, message="Goal skill is already mastered")

        closure = self._required_closure(goal_skill_id)
        cycle = self._find_cycle(closure)
        if cycle:
            raise GraphIntegrityError(
                f"Prerequisite cycle blocks the path to {goal_skill_id}: {' -> '.join(cycle)}",
                cycle=cycle,
            )

        pending = {s for s in closure if not snapshot.is_mastered(s)}
        required_order = self._ordering_edges(pending, closure, snapshot)
        recommended_order = self._recommended_edges(pending)

        order = self._topological_order(pending, required_order | recommended_order)
        if order is None:
            logger.warning(f"Recommended edges toward {goal_skill_id} form a cycle; ordering by required edges only")
            order = self._topological_order(pending, required_order)
        if order is None:
            raise GraphIntegrityError(f"Unable to order prerequisites of {goal_skill_id}")

        path = [self.graph.get_skill(s) for s in order]
        if preferences.prioritize_threshold:
            logger.debug("prioritize_threshold requested; path order unchanged")

        result = LearningPath(
            goal_skill_id=goal_skill_id,
            path=path,
            total_estimated_minutes=sum(s.estimated_minutes for s in path),
            threshold_concepts=self.find_threshold_concepts(path, required_order),
        )
        if preferences.max_daily_minutes is not None:
            result.daily_chunks = chunk_by_day(path, preferences.max_daily_minutes)

        logger.info(
            f"Path to {goal_skill_id}: {len(path)} skills, "
            f"{result.total_estimated_minutes} min, {len(result.threshold_concepts)} threshold concepts"
        )
        return result

    def _required_closure(self, goal_skill_id: str) -> set[str]:
        """Goal plus every skill it transitively requires."""
        seen = {goal_skill_id}
        queue = deque([goal_skill_id])
        while queue:
            current = queue.popleft()
            for prereq in self.graph.required_prerequisite_ids(current):
                if prereq not in seen:
                    seen.add(prereq)
                    queue.append(prereq)
        return seen

    def _find_cycle(self, nodes: set[str]) -> list[str] | None:
        """Return one required-edge cycle within nodes, in prerequisite order."""
        WHITE, GRAY, BLACK = 0, 1, 2
        color = {n: WHITE for n in nodes}

        for start in sorted(nodes):
            if color[start] != WHITE:
                continue
            stack = [(start, iter(sorted(self.graph.required_prerequisite_ids(start))))]
            trail = [start]
            color[start] = GRAY
            while stack:
                node, prereqs = stack[-1]
                advanced = False
                for prereq in prereqs:
                    if prereq not in color:
                        continue
                    if color[prereq] == GRAY:
                        # trail walks dependent -> prerequisite
                        loop = trail[trail.index(prereq):] + [prereq]
                        return list(reversed(loop))
                    if color[prereq] == WHITE:
                        color[prereq] = GRAY
                        trail.append(prereq)
                        stack.append((prereq, iter(sorted(self.graph.required_prerequisite_ids(prereq)))))
                        advanced = True
                        break
                if not advanced:
                    color[node] = BLACK
                    trail.pop()
                    stack.pop()
        return None

    def _ordering_edges(self, pending: set[str], closure: set[str], snapshot: MasterySnapshot) -> set[tuple[str, str]]:
        """
        Required ordering between pending skills.

        Mastered skills are dropped from the path, so constraints are carried
        through them to the next pending skill downstream.
        """
        edges = set()
        for source in pending:
            stack = [e.to_skill_id for e in self.graph.get_dependents_of(source, required_only=True)]
            visited = set()
            while stack:
                node = stack.pop()
                if node in visited or node not in closure:
                    continue
                visited.add(node)
                if node in pending:
                    edges.add((source, node))
                    continue
                if snapshot.is_mastered(node):
                    stack.extend(e.to_skill_id for e in self.graph.get_dependents_of(node, required_only=True))
        return edges

    def _recommended_edges(self, pending: set[str]) -> set[tuple[str, str]]:
        """Recommended edges between skills the path already requires."""
        return {
            (e.from_skill_id, e.to_skill_id)
            for target in pending
            for e in self.graph.get_prerequisites_of(target)
            if not e.is_required and e.from_skill_id in pending
        }

    def _topological_order(self, nodes: set[str], edges: set[tuple[str, str]]) -> list[str] | None:
        """Kahn's algorithm; ties by Bloom level, minutes, id. None on a cycle."""
        in_degree = {n: 0 for n in nodes}
        successors: dict[str, list[str]] = defaultdict(list)
        for source, target in sorted(edges):
            successors[source].append(target)
            in_degree[target] += 1

        def key(skill_id: str) -> tuple[int, int, str]:
            skill = self.graph.get_skill(skill_id)
            return (skill.bloom_level, skill.estimated_minutes, skill.id)

        heap = [key(n) for n in nodes if in_degree[n] == 0]
        heapq.heapify(heap)
        order = []
        while heap:
            _, _, current = heapq.heappop(heap)
            order.append(current)
            for nxt in successors[current]:
                in_degree[nxt] -= 1
                if in_degree[nxt] == 0:
                    heapq.heappush(heap, key(nxt))

        return order if len(order) == len(nodes) else None

    # =========================================================================
    # Threshold concepts
    # =========================================================================

    def find_threshold_concepts(
        self,
        path: list[Skill],
        edges: set[tuple[str, str]] | None = None,
    ) -> list[Skill]:
        """
        Flag bottleneck skills on a path.

        A skill is a threshold concept when it is marked as one, or when
        removing it leaves more than threshold_fraction of the other path
        skills unreachable from the path's entry skills.
        """
        ids = [s.id for s in path]
        id_set = set(ids)
        if edges is None:
            edges = {
                (e.from_skill_id, s)
                for s in ids
                for e in self.graph.get_prerequisites_of(s, required_only=True)
                if e.from_skill_id in id_set
            }

        successors: dict[str, list[str]] = defaultdict(list)
        has_incoming = set()
        for source, target in edges:
            if source in id_set and target in id_set:
                successors[source].append(target)
                has_incoming.add(target)
        entries = [s for s in ids if s not in has_incoming]

        flagged = []
        others = len(ids) - 1
        for skill in path:
            if skill.is_threshold_concept:
                flagged.append(skill)
                continue
            if others <= 0:
                continue
            reachable = self._reachable(entries, successors, removed=skill.id)
            disconnected = others - len(reachable)
            if disconnected / others > self.threshold_fraction:
                flagged.append(skill)
        return flagged

    @staticmethod
    def _reachable(entries: list[str], successors: Mapping[str, list[str]], removed: str) -> set[str]:
        seen = set()
        queue = deque(e for e in entries if e != removed)
        while queue:
            node = queue.popleft()
            if node in seen:
                continue
            seen.add(node)
            queue.extend(n for n in successors.get(node, ()) if n != removed and n not in seen)
        return seen

    # =========================================================================
    # Curriculum overview
    # =========================================================================

    def curriculum_overview(self, mastery: Any = ()) -> list[BloomLevelSummary]:
        """Skills grouped by Bloom level, lowest level first."""
        snapshot = self._snapshot(mastery)
        by_level: dict[int, list[Skill]] = defaultdict(list)
        for skill in self.graph.list_skills():
            by_level[skill.bloom_level].append(skill)

        overview = []
        for level in sorted(by_level):
            skills = sorted(by_level[level], key=lambda s: (s.name, s.id))
            overview.append(BloomLevelSummary(
                level=level,
                label=BLOOM_LABELS[level],
                skills=skills,
                total_minutes=sum(s.estimated_minutes for s in skills),
                threshold_count=sum(1 for s in skills if s.is_threshold_concept),
                mastered_count=sum(1 for s in skills if snapshot.is_mastered(s.id)),
            ))
        return overview

    def root_skills(self) -> list[Skill]:
        return self.graph.root_skills()

"""
Skill Graph: read-only view of a notebook's skills and prerequisite edges.

Built once per request from store records and handed to the readiness
engine and path planner. Nothing here mutates after construction.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping
from typing import Any

from loguru import logger

from skillpath.core.errors import NotFoundError, ValidationError
from skillpath.core.models import PrerequisiteEdge, Skill, parse_record


class SkillGraph:
    """
    Directed prerequisite graph over skills.

    Edges point from prerequisite to dependent: an edge A -> B means
    B requires (or recommends) A.
    """

    def __init__(self, skills: Iterable[Skill], edges: Iterable[PrerequisiteEdge]):
        self._skills: dict[str, Skill] = {}
        for skill in skills:
            if skill.id in self._skills:
                raise ValidationError(f"Duplicate skill id: {skill.id}", field="id")
            self._skills[skill.id] = skill

        self._incoming: dict[str, dict[str, PrerequisiteEdge]] = defaultdict(dict)
        self._outgoing: dict[str, dict[str, PrerequisiteEdge]] = defaultdict(dict)
        for edge in edges:
            for endpoint in (edge.from_skill_id, edge.to_skill_id):
                if endpoint not in self._skills:
                    raise ValidationError(
                        f"Prerequisite edge {edge.from_skill_id} -> {edge.to_skill_id} "
                        f"references unknown skill {endpoint}",
                        field="skill_id",
                    )
            existing = self._incoming[edge.to_skill_id].get(edge.from_skill_id)
            if existing is not None:
                if existing.is_required or not edge.is_required:
                    continue
                logger.debug(f"Upgrading duplicate edge {edge.from_skill_id} -> {edge.to_skill_id} to required")
            self._incoming[edge.to_skill_id][edge.from_skill_id] = edge
            self._outgoing[edge.from_skill_id][edge.to_skill_id] = edge

    @classmethod
    def from_records(
        cls,
        skills: Iterable[Mapping[str, Any] | Skill],
        edges: Iterable[Mapping[str, Any] | PrerequisiteEdge],
    ) -> SkillGraph:
        """Build a graph from raw records, validating each one."""
        return cls(
            [parse_record(Skill, s) for s in skills],
            [parse_record(PrerequisiteEdge, e) for e in edges],
        )

    def __contains__(self, skill_id: object) -> bool:
        return skill_id in self._skills

    def __len__(self) -> int:
        return len(self._skills)

    def get_skill(self, skill_id: str) -> Skill:
        try:
            return self._skills[skill_id]
        except KeyError:
            raise NotFoundError("skill", skill_id) from None

    def list_skills(self) -> list[Skill]:
        """All skills ordered by id."""
        return [self._skills[k] for k in sorted(self._skills)]

    def list_edges(self) -> list[PrerequisiteEdge]:
        return [
            edge
            for to_id in sorted(self._incoming)
            for _, edge in sorted(self._incoming[to_id].items())
        ]

    def get_prerequisites_of(self, skill_id: str, required_only: bool = False) -> list[PrerequisiteEdge]:
        """Edges pointing into skill_id, ordered by prerequisite id."""
        self.get_skill(skill_id)
        edges = [e for _, e in sorted(self._incoming.get(skill_id, {}).items())]
        if required_only:
            edges = [e for e in edges if e.is_required]
        return edges

    def get_dependents_of(self, skill_id: str, required_only: bool = False) -> list[PrerequisiteEdge]:
        """Edges leaving skill_id, ordered by dependent id."""
        self.get_skill(skill_id)
        edges = [e for _, e in sorted(self._outgoing.get(skill_id, {}).items())]
        if required_only:
            edges = [e for e in edges if e.is_required]
        return edges

    def required_prerequisite_ids(self, skill_id: str) -> list[str]:
        return [e.from_skill_id for e in self.get_prerequisites_of(skill_id, required_only=True)]

    def root_skills(self) -> list[Skill]:
        """Entry points: skills with no prerequisites of any strength."""
        roots = [s for s in self._skills.values() if not self._incoming.get(s.id)]
        return sorted(roots, key=lambda s: (s.bloom_level, s.name, s.id))

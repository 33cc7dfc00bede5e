"""
Graph store interface and in-memory reference implementation.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, Protocol

from skillpath.core.models import PrerequisiteEdge, Skill, parse_record


class GraphStore(Protocol):
    """Protocol for reading the skill graph of a notebook."""

    async def get_skill(self, skill_id: str) -> Skill | None:
        ...

    async def get_prerequisites_of(self, skill_id: str) -> list[PrerequisiteEdge]:
        ...

    async def get_dependents_of(self, skill_id: str) -> list[PrerequisiteEdge]:
        ...

    async def list_skills(self, notebook_id: str) -> list[Skill]:
        ...

    async def list_edges(self, notebook_id: str) -> list[PrerequisiteEdge]:
        ...


class InMemoryGraphStore:
    """Dictionary-backed graph store for tests and the CLI."""

    def __init__(
        self,
        skills: Iterable[Skill | Mapping[str, Any]] = (),
        edges: Iterable[PrerequisiteEdge | Mapping[str, Any]] = (),
    ):
        self._skills: dict[str, Skill] = {}
        self._edges: list[PrerequisiteEdge] = []
        for skill in skills:
            self.add_skill(skill)
        for edge in edges:
            self.add_edge(edge)

    def add_skill(self, skill: Skill | Mapping[str, Any]) -> Skill:
        record = parse_record(Skill, skill)
        self._skills[record.id] = record
        return record

    def add_edge(self, edge: PrerequisiteEdge | Mapping[str, Any]) -> PrerequisiteEdge:
        record = parse_record(PrerequisiteEdge, edge)
        self._edges.append(record)
        return record

    async def get_skill(self, skill_id: str) -> Skill | None:
        return self._skills.get(skill_id)

    async def get_prerequisites_of(self, skill_id: str) -> list[PrerequisiteEdge]:
        return [e for e in self._edges if e.to_skill_id == skill_id]

    async def get_dependents_of(self, skill_id: str) -> list[PrerequisiteEdge]:
        return [e for e in self._edges if e.from_skill_id == skill_id]

    async def list_skills(self, notebook_id: str) -> list[Skill]:
        return [s for s in self._skills.values() if s.notebook_id == notebook_id]

    async def list_edges(self, notebook_id: str) -> list[PrerequisiteEdge]:
        in_notebook = {s.id for s in self._skills.values() if s.notebook_id == notebook_id}
        return [
            e for e in self._edges
            if e.from_skill_id in in_notebook and e.to_skill_id in in_notebook
        ]

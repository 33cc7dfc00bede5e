"""
Learner-state store interface and in-memory reference implementation.

Writes are compare-and-swap on LearnerSkillState.version: a state read at
version n must be written back as version n + 1. Writes carrying an
attempt id are idempotent per (learner, skill, attempt).
"""

from __future__ import annotations

from typing import Protocol

from skillpath.core.errors import ConcurrentUpdateError
from skillpath.core.models import LearnerSkillState


class LearnerStateStore(Protocol):
    """Protocol for persisting per-(learner, skill) state."""

    async def get_state(self, learner_id: str, skill_id: str) -> LearnerSkillState | None:
        ...

    async def put_state(self, state: LearnerSkillState, attempt_id: str | None = None) -> LearnerSkillState:
        """
        Atomically upsert a state.

        Returns the stored state. When attempt_id was already applied the
        current state is returned unchanged.

        Raises:
            ConcurrentUpdateError: If the stored version moved since the read
        """
        ...

    async def list_states(self, learner_id: str, notebook_id: str | None = None) -> list[LearnerSkillState]:
        ...

    async def delete_states(self, learner_id: str, notebook_id: str) -> int:
        ...


class InMemoryLearnerStateStore:
    """
    Dictionary-backed learner-state store.

    Each method body runs without awaiting, so it is atomic with respect to
    other coroutines on the same event loop.
    """

    def __init__(self) -> None:
        self._states: dict[tuple[str, str], LearnerSkillState] = {}
        self._applied: set[tuple[str, str, str]] = set()

    async def get_state(self, learner_id: str, skill_id: str) -> LearnerSkillState | None:
        return self._states.get((learner_id, skill_id))

    async def put_state(self, state: LearnerSkillState, attempt_id: str | None = None) -> LearnerSkillState:
        key = (state.learner_id, state.skill_id)
        current = self._states.get(key)

        if attempt_id is not None and (*key, attempt_id) in self._applied and current is not None:
            return current

        current_version = current.version if current is not None else 0
        if state.version != current_version + 1:
            raise ConcurrentUpdateError(state.learner_id, state.skill_id, state.version - 1, current_version)

        self._states[key] = state
        if attempt_id is not None:
            self._applied.add((*key, attempt_id))
        return state

    async def list_states(self, learner_id: str, notebook_id: str | None = None) -> list[LearnerSkillState]:
        states = [
            s for (lid, _), s in self._states.items()
            if lid == learner_id and (notebook_id is None or s.notebook_id == notebook_id)
        ]
        return sorted(states, key=lambda s: s.skill_id)

    async def delete_states(self, learner_id: str, notebook_id: str) -> int:
        doomed = [
            key for key, s in self._states.items()
            if key[0] == learner_id and s.notebook_id == notebook_id
        ]
        for key in doomed:
            del self._states[key]
        self._applied = {a for a in self._applied if (a[0], a[1]) not in doomed}
        return len(doomed)

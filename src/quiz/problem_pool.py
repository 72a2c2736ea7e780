"""
Problem Pool storage.

Generated problems are shared across learners and keyed by (skill, level).
Entries are append-only: they are created when a problem is generated on
demand and afterwards only read (plus a used counter). Which entries a
learner has already seen is tracked in the attempt history, never here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol

from src.core.practice import GeneratedProblem


@dataclass
class ProblemPoolEntry:
    id: str
    skill_id: str
    level: int
    problem: GeneratedProblem
    used_count: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class PoolStats:
    skill_id: str
    level: int
    count: int


class ProblemPoolStore(Protocol):
    """Persistence for pool entries. Listing order is creation time, oldest first."""

    async def list_problems(self, skill_id: str, level: int) -> list[ProblemPoolEntry]: ...

    async def add(self, entry: ProblemPoolEntry) -> None: ...

    async def count(self, skill_id: str, level: int) -> int: ...

    async def increment_used(self, entry_id: str) -> None: ...

    async def stats(self) -> list[PoolStats]: ...


class InMemoryProblemPoolStore:
    """Process-local pool for tests and offline runs."""

    def __init__(self, entries: list[ProblemPoolEntry] | None = None):
        self._entries: list[ProblemPoolEntry] = list(entries or [])

    async def list_problems(self, skill_id: str, level: int) -> list[ProblemPoolEntry]:
        matches = [e for e in self._entries if e.skill_id == skill_id and e.level == level]
        return sorted(matches, key=lambda e: e.created_at)

    async def add(self, entry: ProblemPoolEntry) -> None:
        if any(e.id == entry.id for e in self._entries):
            raise ValueError(f"Duplicate pool entry id: {entry.id}")
        self._entries.append(entry)

    async def count(self, skill_id: str, level: int) -> int:
        return sum(1 for e in self._entries if e.skill_id == skill_id and e.level == level)

    async def increment_used(self, entry_id: str) -> None:
        for entry in self._entries:
            if entry.id == entry_id:
                entry.used_count += 1
                return

    async def stats(self) -> list[PoolStats]:
        counts: dict[tuple[str, int], int] = {}
        for entry in self._entries:
            key = (entry.skill_id, entry.level)
            counts[key] = counts.get(key, 0) + 1
        return [PoolStats(skill_id, level, n) for (skill_id, level), n in sorted(counts.items())]

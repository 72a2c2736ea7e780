"""
Skill Catalog.

Immutable prerequisite graph of curriculum skills, loaded once at startup
and passed by reference into every service. The graph must be acyclic:
the unlock cascade and learning-path generation recurse over it.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from loguru import logger

from src.core.mastery import SkillImportance

DEFAULT_CATALOG_PATH = Path(__file__).parent / "data" / "skills.json"

# Subject tiers in study order; also the keys of the recommendation weights
CATEGORIES = ("基礎", "数学I", "数学A", "数学II", "数学B", "数学C")


class CatalogIntegrityError(ValueError):
    """The prerequisite graph has a cycle or names an unknown skill."""


@dataclass(frozen=True)
class SkillDefinition:
    id: str
    name: str
    category: str
    subcategory: str
    description: str = ""
    prerequisites: tuple[str, ...] = ()
    importance: SkillImportance = SkillImportance.STANDARD
    keywords: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict) -> SkillDefinition:
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            category=data["category"],
            subcategory=data.get("subcategory", ""),
            description=data.get("description", ""),
            prerequisites=tuple(data.get("prerequisites", ())),
            importance=SkillImportance(data.get("importance", "standard")),
            keywords=tuple(data.get("keywords", ())),
        )


class SkillCatalog:
    """
    Read-only lookup over skill definitions in catalog order.

    Catalog order matters: the unlock cascade and recommendation tie-breaks
    both iterate it.
    """

    def __init__(self, skills: Iterable[SkillDefinition]):
        self._skills: tuple[SkillDefinition, ...] = tuple(skills)
        self._by_id: dict[str, SkillDefinition] = {}
        for skill in self._skills:
            if skill.id in self._by_id:
                raise CatalogIntegrityError(f"Duplicate skill id: {skill.id}")
            self._by_id[skill.id] = skill

    @classmethod
    def from_json(cls, path: Path) -> SkillCatalog:
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
        return cls(SkillDefinition.from_dict(item) for item in raw)

    def __iter__(self) -> Iterator[SkillDefinition]:
        return iter(self._skills)

    def __len__(self) -> int:
        return len(self._skills)

    def __contains__(self, skill_id: object) -> bool:
        return skill_id in self._by_id

    def get(self, skill_id: str) -> SkillDefinition | None:
        return self._by_id.get(skill_id)

    def is_valid(self, skill_id: str) -> bool:
        return skill_id in self._by_id

    def by_category(self, category: str) -> list[SkillDefinition]:
        return [s for s in self._skills if s.category == category]

    def roots(self) -> list[SkillDefinition]:
        """Skills with no prerequisites."""
        return [s for s in self._skills if not s.prerequisites]

    def successors(self, skill_id: str) -> list[SkillDefinition]:
        """Skills that list `skill_id` as a direct prerequisite."""
        return [s for s in self._skills if skill_id in s.prerequisites]

    def units(self) -> dict[tuple[str, str], list[SkillDefinition]]:
        """Skills grouped by (category, subcategory), in first-seen order."""
        grouped: dict[tuple[str, str], list[SkillDefinition]] = {}
        for skill in self._skills:
            grouped.setdefault((skill.category, skill.subcategory), []).append(skill)
        return grouped

    def validate(self) -> list[str]:
        """
        Check the prerequisite graph.

        Returns:
            Skill ids in a valid learning (topological) order

        Raises:
            CatalogIntegrityError: on an unknown prerequisite or a cycle
        """
        for skill in self._skills:
            for prereq in skill.prerequisites:
                if prereq not in self._by_id:
                    raise CatalogIntegrityError(
                        f"Skill {skill.id} lists unknown prerequisite {prereq}"
                    )

        # Kahn's algorithm
        indegree = {s.id: len(set(s.prerequisites)) for s in self._skills}
        dependents: dict[str, list[str]] = {s.id: [] for s in self._skills}
        for skill in self._skills:
            for prereq in set(skill.prerequisites):
                dependents[prereq].append(skill.id)

        ready = [s.id for s in self._skills if indegree[s.id] == 0]
        order: list[str] = []
        while ready:
            current = ready.pop(0)
            order.append(current)
            for dependent in dependents[current]:
                indegree[dependent] -= 1
                if indegree[dependent] == 0:
                    ready.append(dependent)

        if len(order) != len(self._skills):
            stuck = sorted(skill_id for skill_id, deg in indegree.items() if deg > 0)
            raise CatalogIntegrityError(f"Prerequisite cycle involving: {', '.join(stuck[:10])}")
        return order


@lru_cache(maxsize=4)
def load_catalog(path: str | None = None) -> SkillCatalog:
    """
    Load and validate a catalog (cached per path).

    Args:
        path: JSON file; the bundled curriculum when None
    """
    source = Path(path) if path else DEFAULT_CATALOG_PATH
    catalog = SkillCatalog.from_json(source)
    catalog.validate()
    logger.info(f"Loaded skill catalog: {len(catalog)} skills from {source.name}")
    return catalog

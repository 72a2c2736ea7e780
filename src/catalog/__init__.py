"""
Catalog: static curriculum data.

- skills: SkillDefinition / SkillCatalog (prerequisite DAG, validated at load)
- backtrack: BacktrackRule / BacktrackRuleSet (error-driven review targets)
"""

from .backtrack import DEFAULT_BACKTRACK_RULES, BacktrackRule, BacktrackRuleSet
from .skills import (
    CATEGORIES,
    CatalogIntegrityError,
    SkillCatalog,
    SkillDefinition,
    load_catalog,
)

__all__ = [
    "BacktrackRule",
    "BacktrackRuleSet",
    "CATEGORIES",
    "CatalogIntegrityError",
    "DEFAULT_BACKTRACK_RULES",
    "SkillCatalog",
    "SkillDefinition",
    "load_catalog",
]

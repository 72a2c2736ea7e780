"""
Recommendation Engine.

Pure scoring over the skill catalog and a learner's mastery map:
- next-skill recommendation (continue what is in progress, then the most
  important unlocked-by-prerequisite skills)
- backtrack recommendation after an error
- learning path to a target skill (prerequisites first)
- progress summary
"""

from __future__ import annotations

from dataclasses import dataclass, field

from src.catalog.backtrack import BacktrackRule, BacktrackRuleSet
from src.catalog.skills import SkillCatalog, SkillDefinition
from src.core.mastery import ErrorType, SkillImportance, SkillMasteryStatus, SkillStatus, round_half_up

IMPORTANCE_WEIGHTS: dict[SkillImportance, int] = {
    SkillImportance.CORE: 100,
    SkillImportance.STANDARD: 50,
    SkillImportance.ADVANCED: 10,
}

CATEGORY_WEIGHTS: dict[str, int] = {
    "基礎": 50,
    "数学I": 40,
    "数学A": 35,
    "数学II": 30,
    "数学B": 25,
    "数学C": 20,
}

LEARNING_SCORE = 1000

REASON_CONTINUE = "現在学習中です。継続しましょう！"
REASON_NO_PREREQUISITES = "前提知識なしで始められます。"
REASON_PREREQUISITES_DONE = "前提スキルを習得済みです。次のステップに進みましょう！"
REASON_CORE_SUFFIX = " 共通テストで重要なスキルです。"


@dataclass
class SkillRecommendation:
    skill: SkillDefinition
    priority: int
    reason: str
    score: int


@dataclass
class BacktrackRecommendation:
    rule: BacktrackRule
    target_skills: list[SkillDefinition]


@dataclass
class CategoryCount:
    total: int = 0
    mastered: int = 0


@dataclass
class ProgressSummary:
    total: int = 0
    mastered: int = 0
    learning: int = 0
    unlocked: int = 0
    locked: int = 0
    progress_percent: int = 0
    by_category: dict[str, CategoryCount] = field(default_factory=dict)


def _status_of(mastery: dict[str, SkillMasteryStatus], skill_id: str) -> SkillStatus | None:
    entry = mastery.get(skill_id)
    return entry.status if entry else None


# ========================================
# Next skills
# ========================================


def get_next_recommended_skills(
    catalog: SkillCatalog,
    mastery: dict[str, SkillMasteryStatus],
    count: int = 3,
) -> list[SkillRecommendation]:
    """
    Rank what to study next.

    Args:
        catalog: Skill definitions (catalog order breaks ties)
        mastery: Learner's mastery map
        count: How many to return (>= 1)

    Returns:
        Top `count` recommendations with 1-based priority
    """
    candidates: list[tuple[SkillDefinition, int, str]] = []

    for skill in catalog:
        status = _status_of(mastery, skill.id)
        if status is not None and status.is_mastered:
            continue

        if status is SkillStatus.LEARNING:
            candidates.append((skill, LEARNING_SCORE, REASON_CONTINUE))
            continue

        prereqs_met = all(
            (s := _status_of(mastery, p)) is not None and s.is_mastered for p in skill.prerequisites
        )
        if not prereqs_met:
            continue

        score = IMPORTANCE_WEIGHTS.get(skill.importance, 0) + CATEGORY_WEIGHTS.get(skill.category, 0)
        reason = REASON_NO_PREREQUISITES if not skill.prerequisites else REASON_PREREQUISITES_DONE
        if skill.importance is SkillImportance.CORE:
            reason += REASON_CORE_SUFFIX
        candidates.append((skill, score, reason))

    # sorted() is stable, so equal scores keep catalog order
    ranked = sorted(candidates, key=lambda c: c[1], reverse=True)[: max(count, 0)]
    return [
        SkillRecommendation(skill=skill, priority=index + 1, reason=reason, score=score)
        for index, (skill, score, reason) in enumerate(ranked)
    ]


# ========================================
# Backtracking
# ========================================


def get_backtrack_recommendation(
    catalog: SkillCatalog,
    rules: BacktrackRuleSet,
    skill_id: str,
    error_type: ErrorType,
) -> BacktrackRecommendation | None:
    """Rule for (skill, error type) with its review targets resolved; None when no rule matches."""
    rule = rules.find(skill_id, error_type)
    if rule is None:
        return None
    targets = [s for s in (catalog.get(t) for t in rule.backtrack_to) if s is not None]
    return BacktrackRecommendation(rule=rule, target_skills=targets)


# ========================================
# Learning path
# ========================================


def generate_learning_path(
    catalog: SkillCatalog,
    target_skill_id: str,
    mastery: dict[str, SkillMasteryStatus],
) -> list[SkillDefinition]:
    """
    Skills to learn, in order, to reach the target.

    Post-order DFS over prerequisites. Mastered skills are skipped along with
    their own prerequisites, and each skill appears at most once. The
    catalog must be acyclic (SkillCatalog.validate).
    """
    path: list[SkillDefinition] = []
    visited: set[str] = set()

    def visit(skill_id: str) -> None:
        if skill_id in visited:
            return
        visited.add(skill_id)

        skill = catalog.get(skill_id)
        if skill is None:
            return
        status = _status_of(mastery, skill_id)
        if status is not None and status.is_mastered:
            return

        for prereq in skill.prerequisites:
            visit(prereq)
        path.append(skill)

    visit(target_skill_id)
    return path


# ========================================
# Progress
# ========================================


def get_learning_progress_summary(
    catalog: SkillCatalog, mastery: dict[str, SkillMasteryStatus]
) -> ProgressSummary:
    summary = ProgressSummary()
    for skill in catalog:
        summary.total += 1
        category = summary.by_category.setdefault(skill.category, CategoryCount())
        category.total += 1

        status = _status_of(mastery, skill.id)
        if status is not None and status.is_mastered:
            summary.mastered += 1
            category.mastered += 1
        elif status is SkillStatus.LEARNING:
            summary.learning += 1
        elif status is SkillStatus.UNLOCKED:
            summary.unlocked += 1
        else:
            summary.locked += 1

    if summary.total:
        summary.progress_percent = round_half_up(summary.mastered / summary.total * 100)
    return summary

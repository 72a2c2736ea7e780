"""
Mastery State Machine.

Pure functions over a learner's full mastery map. Every operation takes a
StudentModel and returns a new one; nothing here performs I/O.

States:
    locked -> unlocked -> learning -> mastered -> perfect

Two progress paths feed the machine:
- score path (update_mastery_from_score): exponentially smoothed 0-100 level
- rank path (rank_up_skill): discrete 0-3 practice counter; reaching rank 3
  forces a score-90 update so the skill becomes mastered

The unlock cascade is a single flat pass in catalog order: it unlocks the
direct successors of mastered skills and never masters anything itself.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from typing import Any

from loguru import logger

from src.catalog.skills import SkillCatalog
from src.core.mastery import (
    EMA_ALPHA,
    FORCED_MASTERY_SCORE,
    MASTERED_THRESHOLD,
    MAX_RANK,
    PERFECT_THRESHOLD,
    RANK_LEVEL_STEP,
    SkillMasteryStatus,
    SkillStatus,
    round_half_up,
    utc_now_iso,
)
from src.core.student_model import StudentModel

# ========================================
# Result types
# ========================================


@dataclass
class SkillUpdateResult:
    updated_model: StudentModel
    skill_updated: str
    newly_mastered: bool
    new_status: SkillStatus


@dataclass
class RankUpResult:
    updated_model: StudentModel
    new_rank: int
    mastered: bool


# ========================================
# Initialization
# ========================================


def initialize_skill_mastery(catalog: SkillCatalog) -> dict[str, SkillMasteryStatus]:
    """Root skills unlocked, everything else locked."""
    return {
        skill.id: SkillMasteryStatus.initial(
            skill.id, SkillStatus.LOCKED if skill.prerequisites else SkillStatus.UNLOCKED
        )
        for skill in catalog
    }


def initialize_skill_mastery_with_subjects(
    catalog: SkillCatalog, studied_subjects: Iterable[str]
) -> dict[str, SkillMasteryStatus]:
    """Like initialize_skill_mastery, but skills in already-studied subjects start unlocked."""
    subjects = set(studied_subjects)
    mastery: dict[str, SkillMasteryStatus] = {}
    for skill in catalog:
        unlocked = not skill.prerequisites or skill.category in subjects
        mastery[skill.id] = SkillMasteryStatus.initial(
            skill.id, SkillStatus.UNLOCKED if unlocked else SkillStatus.LOCKED
        )
    return mastery


# ========================================
# Score path
# ========================================


def update_mastery_from_score(current: SkillMasteryStatus, score: int) -> SkillMasteryStatus:
    """
    Apply one scored attempt.

    newLevel = round(old * 0.7 + score * 0.3), floored at `score` when the
    score itself qualifies (>= 70).

    Args:
        current: Existing record (not mutated)
        score: Attempt score 0-100

    Returns:
        Updated copy
    """
    now = utc_now_iso()
    new_level = round_half_up(current.mastery_level * (1 - EMA_ALPHA) + score * EMA_ALPHA)
    if score >= MASTERED_THRESHOLD:
        new_level = max(new_level, score)

    status = current.status
    if status in (SkillStatus.LOCKED, SkillStatus.UNLOCKED):
        status = SkillStatus.LEARNING

    if score >= PERFECT_THRESHOLD or new_level >= PERFECT_THRESHOLD:
        status = SkillStatus.PERFECT
    elif score >= MASTERED_THRESHOLD or new_level >= MASTERED_THRESHOLD:
        status = SkillStatus.MASTERED
    elif not status.is_mastered:
        status = SkillStatus.LEARNING

    mastered_at = current.mastered_at
    if status.is_mastered and not mastered_at:
        mastered_at = now

    return current.copy(
        status=status,
        mastery_level=new_level,
        attempts=current.attempts + 1,
        last_attempt=now,
        last_practiced=now,
        best_score=max(current.best_score or 0, score),
        mastered_at=mastered_at,
    )


def process_skill_update(
    model: StudentModel, catalog: SkillCatalog, skill_id: str, score: int
) -> SkillUpdateResult:
    """
    Score a skill and, if it became mastered just now, run the unlock cascade.

    Unknown skill ids are not rejected; a locked entry is synthesized.
    """
    current = model.skill_mastery.get(skill_id) or SkillMasteryStatus.initial(skill_id)
    was_mastered = current.status.is_mastered

    updated = update_mastery_from_score(current, score)
    mastery = dict(model.skill_mastery)
    mastery[skill_id] = updated
    updated_model = model.with_mastery(mastery)

    newly_mastered = updated.status.is_mastered and not was_mastered
    if newly_mastered:
        logger.debug(f"Skill {skill_id} mastered (level={updated.mastery_level}); running unlock cascade")
        updated_model = update_skill_unlock_status(updated_model, catalog)

    return SkillUpdateResult(
        updated_model=updated_model,
        skill_updated=skill_id,
        newly_mastered=newly_mastered,
        new_status=updated.status,
    )


# ========================================
# Unlock cascade
# ========================================


def _prerequisites_met(mastery: dict[str, SkillMasteryStatus], prerequisites: tuple[str, ...]) -> bool:
    for prereq in prerequisites:
        entry = mastery.get(prereq)
        if entry is None or not entry.status.is_mastered:
            return False
    return True


def update_skill_unlock_status(model: StudentModel, catalog: SkillCatalog) -> StudentModel:
    """
    One flat pass over the catalog promoting locked skills whose prerequisites hold.

    Missing entries are created (unlocked or locked). Already-active skills
    are never touched, so running the pass twice changes nothing.
    """
    mastery = dict(model.skill_mastery)
    now = utc_now_iso()
    unlocked: list[str] = []

    for skill in catalog:
        entry = mastery.get(skill.id)
        if _prerequisites_met(mastery, skill.prerequisites):
            if entry is None:
                mastery[skill.id] = SkillMasteryStatus.initial(skill.id, SkillStatus.UNLOCKED)
                unlocked.append(skill.id)
            elif entry.status is SkillStatus.LOCKED:
                mastery[skill.id] = entry.copy(status=SkillStatus.UNLOCKED, unlocked_at=now)
                unlocked.append(skill.id)
        elif entry is None:
            mastery[skill.id] = SkillMasteryStatus.initial(skill.id, SkillStatus.LOCKED)

    if unlocked:
        logger.info(f"Unlocked {len(unlocked)} skill(s): {', '.join(unlocked[:10])}")
    return model.with_mastery(mastery)


# ========================================
# Rank path
# ========================================


def rank_up_skill(model: StudentModel, catalog: SkillCatalog, skill_id: str) -> RankUpResult:
    """
    Record one qualifying correct answer.

    rank + 1 raises mastery_level to at least min(rank, 2) * 33. At rank 3 a
    forced score-90 update masters the skill, after which rank is restored
    to exactly 3.
    """
    current = model.skill_mastery.get(skill_id) or SkillMasteryStatus.initial(
        skill_id, SkillStatus.UNLOCKED
    )
    new_rank = (current.rank or 0) + 1
    status = current.status
    if status in (SkillStatus.LOCKED, SkillStatus.UNLOCKED):
        status = SkillStatus.LEARNING

    ranked = current.copy(
        rank=new_rank,
        mastery_level=max(current.mastery_level, min(new_rank, 2) * RANK_LEVEL_STEP),
        status=status,
        last_practiced=utc_now_iso(),
    )
    mastery = dict(model.skill_mastery)
    mastery[skill_id] = ranked
    updated_model = model.with_mastery(mastery)

    if new_rank < MAX_RANK:
        return RankUpResult(updated_model=updated_model, new_rank=new_rank, mastered=False)

    result = process_skill_update(updated_model, catalog, skill_id, FORCED_MASTERY_SCORE)
    final = dict(result.updated_model.skill_mastery)
    final[skill_id] = final[skill_id].copy(rank=MAX_RANK)
    return RankUpResult(
        updated_model=result.updated_model.with_mastery(final),
        new_rank=MAX_RANK,
        mastered=result.newly_mastered,
    )


def master_skills_bulk(
    model: StudentModel, catalog: SkillCatalog, skill_ids: Iterable[str]
) -> StudentModel:
    """
    Master several skills at once (skip challenge).

    Each target gets rank 3 and a forced score-90 update; the unlock
    cascade runs once more at the end.
    """
    updated = model
    for skill_id in skill_ids:
        current = updated.skill_mastery.get(skill_id) or SkillMasteryStatus.initial(
            skill_id, SkillStatus.UNLOCKED
        )
        mastery = dict(updated.skill_mastery)
        mastery[skill_id] = current.copy(rank=MAX_RANK)
        result = process_skill_update(updated.with_mastery(mastery), catalog, skill_id, FORCED_MASTERY_SCORE)

        mastery = dict(result.updated_model.skill_mastery)
        mastery[skill_id] = mastery[skill_id].copy(rank=MAX_RANK)
        updated = result.updated_model.with_mastery(mastery)
        logger.info(f"[Skip] Mastered skill: {skill_id}")

    return update_skill_unlock_status(updated, catalog)


# ========================================
# Explicit reassignment
# ========================================


def apply_status_change(model: StudentModel, skill_id: str, changes: dict[str, Any]) -> StudentModel:
    """
    Overwrite fields of one skill record, maintaining timestamps and milestones.

    This is the only path that demotes a skill: moving from mastered/perfect
    back to learning/unlocked clears mastered_at.
    """
    now = utc_now_iso()
    existing = model.skill_mastery.get(skill_id) or SkillMasteryStatus.initial(skill_id)
    changes = {k: v for k, v in changes.items() if k != "skill_id"}
    if "status" in changes:
        changes["status"] = SkillStatus(changes["status"])
    updated = existing.copy(**changes)

    milestones = replace(model.milestones)
    new_status: SkillStatus | None = changes.get("status")
    if new_status is not None:
        if new_status is SkillStatus.UNLOCKED and not existing.unlocked_at:
            updated.unlocked_at = now
        if new_status is SkillStatus.LEARNING and existing.status is not SkillStatus.LEARNING:
            if not milestones.first_skill_started_at:
                milestones.first_skill_started_at = now
                milestones.first_skill_started_id = skill_id
        if new_status.is_mastered and not existing.mastered_at:
            updated.mastered_at = now
            if not milestones.first_skill_mastered_at:
                milestones.first_skill_mastered_at = now
                milestones.first_skill_mastered_id = skill_id
        if new_status in (SkillStatus.LEARNING, SkillStatus.UNLOCKED) and existing.status.is_mastered:
            updated.mastered_at = None

    mastery = dict(model.skill_mastery)
    mastery[skill_id] = updated
    result = model.with_mastery(mastery)
    result.milestones = milestones
    return result

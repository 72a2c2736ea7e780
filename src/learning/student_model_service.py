"""
Student Model Service.

Loads, repairs and saves learner documents, and owns every mutation of
them. A mutation is a whole-document read-modify-write, so all of them run
under a per-user asyncio.Lock (see `mutate`): two requests for the same
learner never interleave, requests for different learners never wait on
each other.

Legacy documents are repaired lazily on load:
- missing `version` -> 1
- missing milestones -> backfilled from onboarding / created_at
- missing skill `rank` -> 0
- mastered/perfect with rank < 3 -> rank 3
The repaired document is written back immediately.
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from typing import Any, Protocol

from loguru import logger

from src.catalog.skills import SkillCatalog
from src.core.mastery import MAX_RANK, SkillMasteryStatus, SkillStatus, utc_now_iso
from src.core.student_model import (
    MAX_LEARNING_HISTORY,
    MAX_MISTAKE_EXAMPLES,
    PATTERN_BUCKETS,
    RECENT_MISTAKE_WINDOW,
    SCHEMA_VERSION,
    LearningSession,
    MistakeExample,
    MistakeType,
    MistakeTypeStats,
    StudentModel,
    mistake_bucket,
)
from src.learning.mastery_engine import apply_status_change, initialize_skill_mastery_with_subjects

# ========================================
# Storage
# ========================================


class StudentModelRepository(Protocol):
    """Raw document storage, one JSON document per learner."""

    async def load(self, user_id: str) -> dict[str, Any] | None: ...

    async def save(self, user_id: str, document: dict[str, Any]) -> None: ...


class InMemoryStudentModelRepository:
    def __init__(self, documents: dict[str, dict[str, Any]] | None = None):
        self.documents: dict[str, dict[str, Any]] = copy.deepcopy(documents or {})
        self.save_count = 0

    async def load(self, user_id: str) -> dict[str, Any] | None:
        document = self.documents.get(user_id)
        return copy.deepcopy(document) if document is not None else None

    async def save(self, user_id: str, document: dict[str, Any]) -> None:
        self.documents[user_id] = copy.deepcopy(document)
        self.save_count += 1


# ========================================
# Migration
# ========================================


def migrate_document(document: dict[str, Any]) -> bool:
    """
    Repair a stored document in place.

    Returns:
        True when anything was changed
    """
    changed = False

    if document.get("version") is None:
        document["version"] = SCHEMA_VERSION
        changed = True

    if not document.get("milestones"):
        onboarding = document.get("onboarding") or {}
        document["milestones"] = {
            "first_visit_at": document.get("created_at"),
            "onboarding_completed_at": onboarding.get("completed_at"),
        }
        changed = True

    for entry in (document.get("skill_mastery") or {}).values():
        if entry.get("rank") is None:
            entry["rank"] = 0
            changed = True
        if entry.get("status") in (SkillStatus.MASTERED.value, SkillStatus.PERFECT.value) and entry["rank"] < MAX_RANK:
            entry["rank"] = MAX_RANK
            changed = True

    return changed


# ========================================
# Service
# ========================================


@dataclass
class ModelMutation:
    """Handle yielded by `mutate`; replace `model` to change what gets saved."""

    model: StudentModel | None


@dataclass
class OnboardingData:
    self_assessment: str | None = None
    grade_level: str | None = None
    studied_subjects: list[str] = field(default_factory=list)
    study_goal: str | None = None


@dataclass
class LearningSummary:
    total_skills: int
    mastered_skills: int
    learning_skills: int
    unlocked_skills: int
    total_sessions: int
    total_minutes: int
    recent_mistake_types: list[str]
    independence_level: int
    last_activity: str | None


class _UserLock:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.holders = 0


class StudentModelService:
    def __init__(self, repository: StudentModelRepository, catalog: SkillCatalog):
        self.repository = repository
        self.catalog = catalog
        self._locks: dict[str, _UserLock] = {}

    @asynccontextmanager
    async def serialized(self, user_id: str) -> AsyncIterator[None]:
        """
        Hold the learner's lock.

        Locks are created on first use and dropped once nobody holds or
        waits on them, so the table only grows with concurrent learners.
        """
        entry = self._locks.get(user_id)
        if entry is None:
            entry = self._locks[user_id] = _UserLock()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                del self._locks[user_id]

    @property
    def active_locks(self) -> int:
        return len(self._locks)

    # ========================================
    # Load/save
    # ========================================

    async def _load(self, user_id: str) -> StudentModel | None:
        document = await self.repository.load(user_id)
        if document is None:
            return None
        document.setdefault("id", user_id)
        if migrate_document(document):
            logger.info(f"Migrated student model for user {user_id}")
            document["updated_at"] = utc_now_iso()
            await self.repository.save(user_id, document)
        return StudentModel.from_dict(document)

    async def _save(self, model: StudentModel) -> StudentModel:
        model.updated_at = utc_now_iso()
        await self.repository.save(model.id, model.to_dict())
        return model

    async def _load_or_create(self, user_id: str) -> StudentModel:
        model = await self._load(user_id)
        if model is None:
            model = StudentModel.create(user_id)
            await self._save(model)
            logger.info(f"Created student model for user {user_id}")
        return model

    async def get(self, user_id: str) -> StudentModel | None:
        async with self.serialized(user_id):
            return await self._load(user_id)

    async def get_or_create(self, user_id: str) -> StudentModel:
        async with self.serialized(user_id):
            return await self._load_or_create(user_id)

    async def save(self, model: StudentModel) -> StudentModel:
        async with self.serialized(model.id):
            return await self._save(model)

    @asynccontextmanager
    async def mutate(self, user_id: str, create: bool = True) -> AsyncIterator[ModelMutation]:
        """
        Serialized read-modify-write for one learner.

        The body receives the current model, may replace `handle.model`, and
        the result is saved on normal exit. An exception skips the save.

        Args:
            user_id: Learner id
            create: Create the document when it does not exist yet
        """
        async with self.serialized(user_id):
            model = await (self._load_or_create(user_id) if create else self._load(user_id))
            handle = ModelMutation(model)
            yield handle
            if handle.model is not None:
                handle.model = await self._save(handle.model)

    # ========================================
    # Onboarding
    # ========================================

    async def start_onboarding(self, user_id: str) -> StudentModel:
        async with self.mutate(user_id) as m:
            m.model.onboarding = replace(m.model.onboarding, started_at=utc_now_iso())
        return m.model

    async def set_self_assessment(self, user_id: str, self_assessment: str) -> StudentModel:
        async with self.mutate(user_id) as m:
            m.model.onboarding = replace(m.model.onboarding, self_assessment=self_assessment)
        return m.model

    async def complete_onboarding(self, user_id: str, data: OnboardingData | None = None) -> StudentModel:
        """Finish onboarding; studied subjects unlock all of their skills at once."""
        data = data or OnboardingData()
        now = utc_now_iso()
        async with self.mutate(user_id) as m:
            model = m.model
            if data.studied_subjects:
                model = model.with_mastery(
                    initialize_skill_mastery_with_subjects(self.catalog, data.studied_subjects)
                )
            model.milestones = replace(
                model.milestones,
                onboarding_completed_at=model.milestones.onboarding_completed_at or now,
            )
            model.onboarding = replace(
                model.onboarding,
                completed=True,
                completed_at=now,
                self_assessment=data.self_assessment or model.onboarding.self_assessment,
                grade_level=data.grade_level or model.onboarding.grade_level,
                studied_subjects=list(data.studied_subjects),
                study_goal=data.study_goal or model.onboarding.study_goal,
            )
            m.model = model
        logger.info(f"Onboarding completed for user {user_id} (subjects: {data.studied_subjects})")
        return m.model

    # ========================================
    # Mastery
    # ========================================

    async def get_skill_mastery(self, user_id: str, skill_id: str) -> SkillMasteryStatus:
        model = await self.get_or_create(user_id)
        return model.mastery_for(skill_id) or SkillMasteryStatus.initial(skill_id)

    async def update_skill_mastery(self, user_id: str, skill_id: str, changes: dict[str, Any]) -> StudentModel:
        async with self.mutate(user_id) as m:
            m.model = apply_status_change(m.model, skill_id, changes)
        return m.model

    async def record_practice(self, user_id: str, skill_id: str) -> StudentModel:
        return await self.update_skill_mastery(user_id, skill_id, {"last_practiced": utc_now_iso()})

    # ========================================
    # Mistakes
    # ========================================

    async def record_mistake(
        self,
        user_id: str,
        mistake_type: MistakeType | str,
        question_id: str,
        skill_id: str,
        description: str,
        user_work: str = "",
        correction: str = "",
    ) -> StudentModel:
        """
        Count one mistake in its pattern bucket.

        Keeps the 5 newest examples. The recent count is capped at 10; the
        trend turns "worsening" when it jumps by more than 2 and "improving"
        when it drops.
        """
        bucket = mistake_bucket(MistakeType(mistake_type))
        now = utc_now_iso()
        async with self.mutate(user_id) as m:
            current = m.model.mistake_patterns.get(bucket, MistakeTypeStats())
            example = MistakeExample(now, question_id, skill_id, description, user_work, correction)
            new_recent = min(current.recent_count + 1, RECENT_MISTAKE_WINDOW)

            trend = current.trend
            if new_recent > current.recent_count + 2:
                trend = "worsening"
            elif new_recent < current.recent_count:
                trend = "improving"

            patterns = dict(m.model.mistake_patterns)
            patterns[bucket] = MistakeTypeStats(
                total_count=current.total_count + 1,
                recent_count=new_recent,
                last_occurred=now,
                examples=[example, *current.examples][:MAX_MISTAKE_EXAMPLES],
                trend=trend,
            )
            m.model.mistake_patterns = patterns
        return m.model

    async def reset_recent_mistake_counts(self, user_id: str) -> StudentModel:
        async with self.mutate(user_id) as m:
            m.model.mistake_patterns = {
                bucket: replace(stats, recent_count=0) for bucket, stats in m.model.mistake_patterns.items()
            }
        return m.model

    # ========================================
    # Independence
    # ========================================

    async def _bump_independence(self, user_id: str, counter: str, rescore: bool) -> StudentModel:
        async with self.mutate(user_id) as m:
            metrics = replace(m.model.independence_metrics)
            setattr(metrics, counter, getattr(metrics, counter) + 1)
            if rescore:
                metrics.recalculate()
            else:
                metrics.last_updated = utc_now_iso()
            m.model.independence_metrics = metrics
        return m.model

    async def record_self_detected_error(self, user_id: str) -> StudentModel:
        return await self._bump_independence(user_id, "self_detected_errors", rescore=True)

    async def record_ai_assisted_error(self, user_id: str) -> StudentModel:
        return await self._bump_independence(user_id, "ai_assisted_errors", rescore=True)

    async def record_self_questioning_usage(self, user_id: str) -> StudentModel:
        return await self._bump_independence(user_id, "self_questioning_usage", rescore=False)

    async def record_self_explanation_success(self, user_id: str) -> StudentModel:
        return await self._bump_independence(user_id, "self_explanation_success", rescore=False)

    # ========================================
    # History
    # ========================================

    async def add_learning_session(self, user_id: str, session: LearningSession) -> StudentModel:
        """Append a session; only the newest MAX_LEARNING_HISTORY are kept."""
        async with self.mutate(user_id) as m:
            m.model.learning_history = [*m.model.learning_history, session][-MAX_LEARNING_HISTORY:]
        return m.model

    async def get_learning_summary(self, user_id: str) -> LearningSummary:
        model = await self.get_or_create(user_id)
        skills: Iterable[SkillMasteryStatus] = model.skill_mastery.values()
        statuses = [s.status for s in skills]

        last_activity = None
        if model.learning_history:
            last = model.learning_history[-1]
            last_activity = last.ended_at or last.started_at

        return LearningSummary(
            total_skills=len(statuses),
            mastered_skills=sum(1 for s in statuses if s.is_mastered),
            learning_skills=sum(1 for s in statuses if s is SkillStatus.LEARNING),
            unlocked_skills=sum(1 for s in statuses if s is SkillStatus.UNLOCKED),
            total_sessions=len(model.learning_history),
            total_minutes=sum(s.duration_minutes for s in model.learning_history),
            recent_mistake_types=[
                bucket
                for bucket in PATTERN_BUCKETS
                if bucket in model.mistake_patterns and model.mistake_patterns[bucket].recent_count > 0
            ],
            independence_level=model.independence_metrics.independence_level,
            last_activity=last_activity,
        )

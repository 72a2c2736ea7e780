"""
Problem attempt history.

One record per answered problem, per learner. The history drives two
things: which pool problems a learner has already seen (and got wrong),
and mastery-by-attempts for practice outside the app (reference books).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Protocol

from loguru import logger

from src.core.mastery import MAX_RANK, round_half_up
from src.learning.mastery_engine import process_skill_update

if TYPE_CHECKING:
    from src.catalog.skills import SkillCatalog
    from src.learning.student_model_service import StudentModelService

STREAK_FOR_MASTERY = 3
MIN_ATTEMPTS_FOR_ACCURACY = 5
ACCURACY_FOR_MASTERY = 80
RECENT_ATTEMPT_LIMIT = 10
ATTEMPT_MASTERY_SCORE = 90


class ProblemSource(str, Enum):
    REFERENCE_BOOK = "reference_book"
    AI_GENERATED = "ai_generated"
    OTHER = "other"


@dataclass
class ProblemAttempt:
    user_id: str
    skill_id: str
    is_correct: bool
    problem_source: ProblemSource = ProblemSource.REFERENCE_BOOK
    problem_identifier: str | None = None  # pool entry id for pooled problems
    conversation_id: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class AttemptStats:
    total: int = 0
    correct: int = 0
    accuracy: int = 0  # rounded percent


@dataclass
class MasteryCheck:
    should_master: bool
    reason: str
    stats: AttemptStats


@dataclass
class AttemptRecordResult:
    attempt_id: str
    is_correct: bool
    stats: AttemptStats
    should_master: bool
    reason: str
    mastered: bool


class AttemptHistoryStore(Protocol):
    async def record(self, attempt: ProblemAttempt) -> None: ...

    async def list_for_skill(self, user_id: str, skill_id: str) -> list[ProblemAttempt]:
        """All attempts of one learner on one skill, newest first."""
        ...


class InMemoryAttemptHistoryStore:
    def __init__(self) -> None:
        self._attempts: list[ProblemAttempt] = []

    async def record(self, attempt: ProblemAttempt) -> None:
        self._attempts.append(attempt)

    async def list_for_skill(self, user_id: str, skill_id: str) -> list[ProblemAttempt]:
        matches = [a for a in self._attempts if a.user_id == user_id and a.skill_id == skill_id]
        # stable on equal timestamps: later insertions count as newer
        indexed = list(enumerate(matches))
        indexed.sort(key=lambda pair: (pair[1].created_at, pair[0]), reverse=True)
        return [a for _, a in indexed]


# ========================================
# Queries
# ========================================


class AttemptService:
    """Queries and mastery checks over an AttemptHistoryStore."""

    def __init__(self, store: AttemptHistoryStore):
        self.store = store

    async def attempted_problem_ids(
        self,
        user_id: str,
        skill_id: str,
        level: int | None = None,
        correct_only: bool = False,
        wrong_only: bool = False,
    ) -> set[str]:
        """
        Pool ids this learner has answered for a skill.

        `level` is accepted for symmetry with the pool lookup but does not
        filter: attempts do not record the problem level.
        """
        ids: set[str] = set()
        for attempt in await self.store.list_for_skill(user_id, skill_id):
            if correct_only and not attempt.is_correct:
                continue
            if wrong_only and not correct_only and attempt.is_correct:
                continue
            if attempt.problem_identifier:
                ids.add(attempt.problem_identifier)
        return ids

    async def stats(self, user_id: str, skill_id: str) -> AttemptStats:
        attempts = await self.store.list_for_skill(user_id, skill_id)
        total = len(attempts)
        correct = sum(1 for a in attempts if a.is_correct)
        accuracy = round_half_up(correct / total * 100) if total else 0
        return AttemptStats(total=total, correct=correct, accuracy=accuracy)

    async def recent(self, user_id: str, skill_id: str, limit: int = RECENT_ATTEMPT_LIMIT) -> list[ProblemAttempt]:
        return (await self.store.list_for_skill(user_id, skill_id))[:limit]

    async def check_skill_mastery_by_attempts(self, user_id: str, skill_id: str) -> MasteryCheck:
        """
        Decide whether answered problems alone prove mastery.

        Passes on the last 3 answers all correct, or on at least 5 answers
        with 80% accuracy or better.
        """
        stats = await self.stats(user_id, skill_id)
        recent = await self.recent(user_id, skill_id)

        if len(recent) >= STREAK_FOR_MASTERY and all(a.is_correct for a in recent[:STREAK_FOR_MASTERY]):
            return MasteryCheck(True, "連続3問正解", stats)

        if stats.total >= MIN_ATTEMPTS_FOR_ACCURACY and stats.accuracy >= ACCURACY_FOR_MASTERY:
            return MasteryCheck(True, f"正答率{stats.accuracy}%（{stats.correct}/{stats.total}問）", stats)

        if stats.total < MIN_ATTEMPTS_FOR_ACCURACY:
            reason = f"あと{MIN_ATTEMPTS_FOR_ACCURACY - stats.total}問で判定可能"
        else:
            reason = f"正答率{stats.accuracy}%（80%以上で習得）"
        return MasteryCheck(False, reason, stats)

    async def record_problem_attempt(
        self,
        attempt: ProblemAttempt,
        students: StudentModelService,
        catalog: SkillCatalog,
    ) -> AttemptRecordResult:
        """
        Store an answer and master the skill when the attempt history proves it.

        The mastery update is best-effort: a failure is logged and reported
        as not mastered, the attempt itself stays recorded.
        """
        await self.store.record(attempt)
        logger.info(
            f"Problem attempt recorded: {attempt.id}, skill: {attempt.skill_id}, correct: {attempt.is_correct}"
        )

        check = await self.check_skill_mastery_by_attempts(attempt.user_id, attempt.skill_id)
        mastered = False
        if check.should_master:
            reached = False
            try:
                async with students.mutate(attempt.user_id, create=False) as session:
                    if session.model is not None:
                        result = process_skill_update(
                            session.model, catalog, attempt.skill_id, ATTEMPT_MASTERY_SCORE
                        )
                        updated = result.updated_model
                        reached = result.new_status.is_mastered
                        if reached:
                            mastery = dict(updated.skill_mastery)
                            entry = mastery[attempt.skill_id]
                            mastery[attempt.skill_id] = entry.copy(rank=max(entry.rank or 0, MAX_RANK))
                            updated = updated.with_mastery(mastery)
                        session.model = updated
                mastered = reached
            except Exception as e:  # best-effort: the attempt is already stored
                logger.error(f"Failed to update skill mastery for {attempt.skill_id}: {e}")
            if mastered:
                logger.info(f"Skill mastered via problem attempts: {attempt.skill_id}, reason: {check.reason}")

        return AttemptRecordResult(
            attempt_id=attempt.id,
            is_correct=attempt.is_correct,
            stats=check.stats,
            should_master=check.should_master,
            reason=check.reason,
            mastered=mastered,
        )

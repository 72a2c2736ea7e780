"""
Problem Pool Arbitrator.

Chooses where one practice problem comes from, in priority order:
1. a pool problem this learner has not seen yet      -> source "pool"
2. a pool problem this learner previously got wrong  -> source "retry"
3. a freshly generated problem                       -> source "ai_generated"

Generated problems are written back to the pool so later learners can be
served without a model call. That write is best-effort: when it fails the
learner still gets the problem, only without a pool id.
Serving a pool entry (unseen or retry) bumps its used_count, also best-effort.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from loguru import logger

from src.core.practice import GeneratedProblem
from src.quiz.attempts import AttemptService
from src.quiz.problem_pool import ProblemPoolEntry, ProblemPoolStore

MIN_POOL_SIZE = 3


class PoolSource(str, Enum):
    POOL = "pool"
    RETRY = "retry"
    AI_GENERATED = "ai_generated"


@dataclass(frozen=True)
class SideEffectOutcome:
    """Result of a best-effort write. Reported, never used for control flow."""

    ok: bool
    error: str | None = None

    @classmethod
    def success(cls) -> SideEffectOutcome:
        return cls(ok=True)

    @classmethod
    def failed(cls, error: BaseException | str) -> SideEffectOutcome:
        return cls(ok=False, error=str(error))

    @property
    def status(self) -> str:
        return "ok" if self.ok else "failed"


NOT_ATTEMPTED = SideEffectOutcome(ok=True, error=None)


@dataclass
class PoolProblemResult:
    problem: GeneratedProblem
    source: PoolSource
    pool_remaining: int
    problem_pool_id: str | None
    pool_insert: SideEffectOutcome = NOT_ATTEMPTED

    def to_dict(self) -> dict:
        return {
            "problem": self.problem.to_dict(),
            "source": self.source.value,
            "pool_remaining": self.pool_remaining,
            "problem_pool_id": self.problem_pool_id,
        }


class ProblemSourceGenerator(Protocol):
    async def generate(self, skill_id: str, level: int, model: str | None = None) -> GeneratedProblem: ...


class ProblemPoolArbitrator:
    """
    Pool-first problem sourcing for one learner.

    Example:
        arbitrator = ProblemPoolArbitrator(pool_store, attempts, generator)
        result = await arbitrator.get_problem("F-NEG-01", 1, user_id="u1")
    """

    def __init__(
        self,
        pool: ProblemPoolStore,
        attempts: AttemptService,
        generator: ProblemSourceGenerator,
        min_pool_size: int = MIN_POOL_SIZE,
    ):
        self.pool = pool
        self.attempts = attempts
        self.generator = generator
        self.min_pool_size = min_pool_size

    async def get_problem(
        self, skill_id: str, level: int, user_id: str, model: str | None = None
    ) -> PoolProblemResult:
        """
        Serve one problem for (skill, level) to a learner.

        Args:
            skill_id: Catalog skill id
            level: Problem level 1-4
            user_id: Learner whose attempt history decides "seen"
            model: Model hint passed through to generation

        Returns:
            Problem with its source and pool bookkeeping

        Raises:
            GenerationFailedError / ProblemParseError: only when the pool had
                nothing to serve and generation failed
        """
        entries = await self.pool.list_problems(skill_id, level)

        if entries:
            seen = await self.attempts.attempted_problem_ids(user_id, skill_id, level)
            unseen = [e for e in entries if e.id not in seen]
            if unseen:
                logger.info(
                    f"[Pool] Unseen hit: skill={skill_id}, level={level}, user={user_id}, unseen={len(unseen)}"
                )
                await self._mark_used(unseen[0].id)
                return PoolProblemResult(
                    problem=unseen[0].problem,
                    source=PoolSource.POOL,
                    pool_remaining=len(unseen) - 1,
                    problem_pool_id=unseen[0].id,
                )

            wrong = await self.attempts.attempted_problem_ids(user_id, skill_id, level, wrong_only=True)
            retry = next((e for e in entries if e.id in wrong), None)
            if retry is not None:
                logger.info(f"[Pool] Retry: skill={skill_id}, level={level}, user={user_id}, problemId={retry.id}")
                await self._mark_used(retry.id)
                return PoolProblemResult(
                    problem=retry.problem,
                    source=PoolSource.RETRY,
                    pool_remaining=0,
                    problem_pool_id=retry.id,
                )

            logger.info(f"[Pool] All correct: skill={skill_id}, level={level}, user={user_id}, generating new problem")
        else:
            logger.info(f"[Pool] Empty: skill={skill_id}, level={level}, falling back to AI generation")

        problem = await self.generator.generate(skill_id, level, model=model)

        pool_id: str | None = str(uuid.uuid4())
        try:
            await self.pool.add(ProblemPoolEntry(id=pool_id, skill_id=skill_id, level=level, problem=problem))
            insert = SideEffectOutcome.success()
            logger.info(f"[Pool] Saved AI-generated problem to pool: skill={skill_id}, level={level}")
        except Exception as e:  # best-effort: the learner still gets the problem
            logger.warning(f"[Pool] Failed to save generated problem to pool: {e}")
            pool_id = None
            insert = SideEffectOutcome.failed(e)

        return PoolProblemResult(
            problem=problem,
            source=PoolSource.AI_GENERATED,
            pool_remaining=await self.pool.count(skill_id, level),
            problem_pool_id=pool_id,
            pool_insert=insert,
        )

    async def _mark_used(self, entry_id: str) -> None:
        try:
            await self.pool.increment_used(entry_id)
        except Exception as e:  # usage counts are bookkeeping only
            logger.warning(f"[Pool] Failed to update used count for {entry_id}: {e}")

    async def is_pool_low(self, skill_id: str, level: int) -> bool:
        return await self.pool.count(skill_id, level) < self.min_pool_size

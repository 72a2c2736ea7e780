"""
Practice flow.

generate: pick the problem level from the learner's rank (unless the
request names one) and source a problem through the pool arbitrator.

evaluate: grade the answer, record the attempt (best-effort), and rank the
skill up when the answer is correct at exactly the level the current rank
requires. Basic difficulty never ranks up; a low-confidence verdict never
changes anything.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from loguru import logger

from src.catalog.skills import SkillCatalog
from src.core.practice import (
    EvaluationResult,
    GeneratedProblem,
    basic_level,
    can_rank_up,
    required_level_for_rank,
)
from src.generation.problem_generator import ProblemGenerator, UserAnswer
from src.learning.mastery_engine import rank_up_skill
from src.learning.student_model_service import StudentModelService
from src.quiz.attempts import AttemptService, ProblemAttempt, ProblemSource
from src.quiz.pool_arbitrator import PoolProblemResult, ProblemPoolArbitrator, SideEffectOutcome

FAST_MODEL_HINT = "flash"


class DifficultyMode(str, Enum):
    BASIC = "basic"
    CHALLENGE = "challenge"


@dataclass
class PracticeProblem:
    result: PoolProblemResult
    level: int
    difficulty: DifficultyMode


@dataclass
class RankUpdate:
    new_rank: int
    is_new_acquisition: bool


@dataclass
class PracticeEvaluation:
    evaluation: EvaluationResult
    rank_update: RankUpdate | None = None
    mastered_skill_id: str | None = None
    mastered_skill_name: str | None = None
    attempt_recorded: SideEffectOutcome = SideEffectOutcome(ok=True)


class PracticeService:
    def __init__(
        self,
        catalog: SkillCatalog,
        students: StudentModelService,
        arbitrator: ProblemPoolArbitrator,
        generator: ProblemGenerator,
        attempts: AttemptService,
    ):
        self.catalog = catalog
        self.students = students
        self.arbitrator = arbitrator
        self.generator = generator
        self.attempts = attempts

    async def _current_rank(self, user_id: str, skill_id: str) -> int:
        model = await self.students.get(user_id)
        entry = model.mastery_for(skill_id) if model else None
        return (entry.rank or 0) if entry else 0

    async def generate(
        self,
        user_id: str,
        skill_id: str,
        level: int | None = None,
        difficulty: DifficultyMode = DifficultyMode.CHALLENGE,
    ) -> PracticeProblem:
        """
        Choose a level and serve one problem.

        Args:
            user_id: Learner id
            skill_id: Catalog skill id (validated by the caller)
            level: Explicit level; derived from rank when None
            difficulty: basic picks an easier level and the fast model chain
        """
        model_hint: str | None = None
        if level is None:
            rank = await self._current_rank(user_id, skill_id)
            if difficulty is DifficultyMode.BASIC:
                level = basic_level(rank)
                model_hint = FAST_MODEL_HINT
            else:
                level = required_level_for_rank(rank)

        logger.info(
            f"Generating problem: skill={skill_id}, level={level}, difficulty={difficulty.value}, "
            f"model={model_hint or 'pro'}, user={user_id}"
        )
        result = await self.arbitrator.get_problem(skill_id, level, user_id, model=model_hint)
        return PracticeProblem(result=result, level=level, difficulty=difficulty)

    async def evaluate(
        self,
        user_id: str,
        skill_id: str,
        level: int,
        problem: GeneratedProblem,
        answer: UserAnswer,
        difficulty: DifficultyMode = DifficultyMode.CHALLENGE,
        problem_pool_id: str | None = None,
    ) -> PracticeEvaluation:
        logger.info(
            f"Evaluating answer: skill={skill_id}, level={level}, difficulty={difficulty.value}, user={user_id}"
        )
        evaluation = await self.generator.evaluate_answer(problem, answer)

        try:
            await self.attempts.store.record(
                ProblemAttempt(
                    user_id=user_id,
                    skill_id=skill_id,
                    is_correct=evaluation.is_correct,
                    problem_source=ProblemSource.AI_GENERATED,
                    problem_identifier=problem_pool_id,
                )
            )
            recorded = SideEffectOutcome.success()
        except Exception as e:  # best-effort: grading still reaches the learner
            logger.warning(f"Failed to record problem attempt: {e}")
            recorded = SideEffectOutcome.failed(e)

        outcome = PracticeEvaluation(evaluation=evaluation, attempt_recorded=recorded)
        if evaluation.confidence == "low" or not evaluation.is_correct:
            return outcome
        if difficulty is DifficultyMode.BASIC:
            return outcome

        async with self.students.mutate(user_id, create=False) as m:
            if m.model is None:
                return outcome
            entry = m.model.mastery_for(skill_id)
            rank = (entry.rank or 0) if entry else 0
            if not can_rank_up(rank, level):
                return outcome
            result = rank_up_skill(m.model, self.catalog, skill_id)
            m.model = result.updated_model

        logger.info(f"Skill {skill_id} rank up -> rank {result.new_rank}")
        outcome.rank_update = RankUpdate(new_rank=result.new_rank, is_new_acquisition=result.new_rank == 1)
        if result.mastered:
            skill = self.catalog.get(skill_id)
            outcome.mastered_skill_id = skill_id
            outcome.mastered_skill_name = skill.name if skill else skill_id
            logger.info(f"Skill mastered via practice: {skill_id}")
        return outcome

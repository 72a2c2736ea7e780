"""
Skip Challenge.

A learner who already knows a unit (category + subcategory) can skip it by
solving one composite level-3 problem. Passing masters every skippable
skill of the unit in one go (rank 3, forced mastery, unlock cascade).
"""

from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger

from src.catalog.skills import SkillCatalog
from src.core.mastery import SkillImportance
from src.core.practice import EvaluationResult, GeneratedProblem, parse_problem_response
from src.generation.problem_generator import ProblemGenerator, UserAnswer
from src.generation.prompts import SKIP_CHALLENGE_REQUEST, build_skip_challenge_prompt
from src.integrations.genai_client import ChatMessage, ChatRequest, GenAIClient
from src.learning.mastery_engine import master_skills_bulk
from src.learning.student_model_service import StudentModelService

SKIP_CHALLENGE_LEVEL = 3
SKIP_CHALLENGE_MAX_TOKENS = 8192
MAX_PROMPT_KEYWORDS = 10
LOW_CONFIDENCE_FEEDBACK = "回答の判定ができませんでした。もう一度お試しください。"


class SkipChallengeUnavailableError(ValueError):
    """The unit has no skill left to skip."""


@dataclass
class SkipTargetSkill:
    skill_id: str
    skill_name: str


@dataclass
class SkipChallenge:
    problem: GeneratedProblem
    target_skills: list[SkipTargetSkill]


@dataclass
class SkipEvaluateResult:
    passed: bool
    is_correct: bool
    confidence: str
    feedback: str
    skipped_skills: list[SkipTargetSkill] = field(default_factory=list)


class SkipChallengeService:
    def __init__(
        self,
        client: GenAIClient,
        catalog: SkillCatalog,
        students: StudentModelService,
        generator: ProblemGenerator,
    ):
        self.client = client
        self.catalog = catalog
        self.students = students
        self.generator = generator

    async def get_target_skills(self, user_id: str, category: str, subcategory: str) -> list[SkipTargetSkill]:
        """Skills of the unit that are neither advanced nor already mastered."""
        model = await self.students.get_or_create(user_id)
        targets = []
        for skill in self.catalog:
            if skill.category != category or skill.subcategory != subcategory:
                continue
            if skill.importance is SkillImportance.ADVANCED:
                continue
            entry = model.mastery_for(skill.id)
            if entry is not None and entry.status.is_mastered:
                continue
            targets.append(SkipTargetSkill(skill.id, skill.name))
        return targets

    async def generate(self, user_id: str, category: str, subcategory: str) -> SkipChallenge:
        """
        Generate the composite problem for a unit.

        Raises:
            SkipChallengeUnavailableError: nothing left to skip in the unit
            GenerationFailedError / ProblemParseError: generation failed
        """
        targets = await self.get_target_skills(user_id, category, subcategory)
        if not targets:
            raise SkipChallengeUnavailableError("この単元にスキップ対象のスキルがありません（全て習得済み）")

        skills = [s for s in (self.catalog.get(t.skill_id) for t in targets) if s is not None]
        keywords = [k for s in skills for k in s.keywords][:MAX_PROMPT_KEYWORDS]

        response = await self.client.send_message(
            ChatRequest(
                messages=[ChatMessage("user", SKIP_CHALLENGE_REQUEST)],
                system=build_skip_challenge_prompt(category, subcategory, [s.name for s in skills], keywords),
                max_tokens=SKIP_CHALLENGE_MAX_TOKENS,
            )
        )
        # the first target stands in for the whole unit
        problem = parse_problem_response(response.content, targets[0].skill_id, SKIP_CHALLENGE_LEVEL)
        logger.info(f"[Skip] Generated challenge for {category} > {subcategory} ({len(targets)} skills)")
        return SkipChallenge(problem=problem, target_skills=targets)

    async def evaluate(
        self,
        user_id: str,
        target_skills: list[SkipTargetSkill],
        problem: GeneratedProblem,
        answer: UserAnswer,
    ) -> SkipEvaluateResult:
        evaluation: EvaluationResult = await self.generator.evaluate_answer(problem, answer)

        if evaluation.confidence == "low":
            return SkipEvaluateResult(
                passed=False,
                is_correct=False,
                confidence=evaluation.confidence,
                feedback=evaluation.indeterminate_reason or LOW_CONFIDENCE_FEEDBACK,
            )

        if not evaluation.is_correct:
            return SkipEvaluateResult(
                passed=False,
                is_correct=False,
                confidence=evaluation.confidence,
                feedback=evaluation.feedback,
            )

        async with self.students.mutate(user_id) as m:
            m.model = master_skills_bulk(m.model, self.catalog, [t.skill_id for t in target_skills])
        logger.info(f"[Skip] Bulk mastered {len(target_skills)} skills for user {user_id}")

        return SkipEvaluateResult(
            passed=True,
            is_correct=True,
            confidence=evaluation.confidence,
            feedback=evaluation.feedback,
            skipped_skills=list(target_skills),
        )

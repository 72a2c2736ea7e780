"""
Practice problem generation and answer evaluation.

Both go through the fallback client: problems default to the reasoning
chain (a "flash" model hint switches to the fast one), evaluations always
use the default chain.
"""
from __future__ import annotations

from typing import Any

from loguru import logger

from src.catalog.skills import SkillCatalog
from src.core.practice import (
    EvaluationResult,
    GeneratedProblem,
    parse_evaluation_response,
    parse_problem_response,
)
from src.generation.prompts import (
    GENERATE_PROBLEM_REQUEST,
    build_answer_evaluation_prompt,
    build_problem_generation_prompt,
)
from src.integrations.genai_client import DEFAULT_MAX_TOKENS, ChatMessage, ChatRequest, GenAIClient

# Answers are either plain text or an image block {"source": {"media_type", "data"}}
UserAnswer = str | dict[str, Any]


def answer_message(answer: UserAnswer) -> ChatMessage:
    if isinstance(answer, str):
        return ChatMessage(role="user", content=f"生徒の回答:\n{answer}")
    return ChatMessage(
        role="user",
        content=[
            {"type": "text", "text": "生徒の回答（画像）:"},
            {"type": "image", "source": answer.get("source", answer)},
        ],
    )


class UnknownSkillError(KeyError):
    """Skill id is not in the catalog."""


class ProblemGenerator:
    def __init__(self, client: GenAIClient, catalog: SkillCatalog):
        self.client = client
        self.catalog = catalog

    async def generate(self, skill_id: str, level: int, model: str | None = None) -> GeneratedProblem:
        """
        Generate one practice problem.

        Args:
            skill_id: Catalog skill id
            level: Problem level 1-4
            model: Optional model hint ("flash" selects the fast chain)

        Returns:
            Parsed problem

        Raises:
            UnknownSkillError: skill_id not in the catalog
            GenerationFailedError: every candidate failed
            ProblemParseError: model output was not a valid problem
        """
        skill = self.catalog.get(skill_id)
        if skill is None:
            raise UnknownSkillError(skill_id)

        logger.info(f"Generating problem for skill {skill_id} at level {level} (model: {model or 'default'})")
        response = await self.client.send_message(
            ChatRequest(
                messages=[ChatMessage("user", GENERATE_PROBLEM_REQUEST.format(name=skill.name, level=level))],
                system=build_problem_generation_prompt(skill, level),
                max_tokens=DEFAULT_MAX_TOKENS,
                model=model,
            )
        )
        logger.debug(f"Problem generation response length: {len(response.content)}")

        problem = parse_problem_response(response.content, skill_id, level)
        logger.info(f"Generated problem: {problem.question_text[:80]}...")
        return problem

    async def evaluate_answer(self, problem: GeneratedProblem, answer: UserAnswer) -> EvaluationResult:
        logger.info(f"Evaluating answer for skill {problem.skill_id} level {problem.level}")
        response = await self.client.send_message(
            ChatRequest(
                messages=[answer_message(answer)],
                system=build_answer_evaluation_prompt(problem),
                max_tokens=DEFAULT_MAX_TOKENS,
            )
        )
        evaluation = parse_evaluation_response(response.content)
        verdict = "correct" if evaluation.is_correct else "incorrect"
        logger.info(f"Evaluation result: {verdict} (confidence: {evaluation.confidence})")
        return evaluation

"""
Practice router.

Endpoints for:
- Problem generation (JSON and server-sent events)
- Answer evaluation with rank-up
- Skip challenge for a whole unit
- Problem pool statistics
"""
from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any, Literal

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse
from loguru import logger
from pydantic import BaseModel, Field

from src.api.dependencies import Services, UserId
from src.core.practice import GeneratedProblem, ProblemParseError
from src.integrations.genai_client import GenerationFailedError
from src.learning.practice_service import DifficultyMode, PracticeProblem
from src.learning.skip_challenge import SkipChallengeUnavailableError, SkipTargetSkill

router = APIRouter()

GENERATION_FAILED_DETAIL = "問題の生成に失敗しました"
EVALUATION_FAILED_DETAIL = "回答の評価に失敗しました"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


# ========================================
# Request/Response Models
# ========================================


class ImageAnswer(BaseModel):
    """Photo of handwritten work."""

    type: Literal["image"] = "image"
    media_type: str = Field(..., description="MIME type, e.g. image/jpeg")
    data: str = Field(..., description="Base64-encoded image bytes")
    text: str | None = Field(None, description="Optional typed note sent with the image")


class GenerateRequest(BaseModel):
    skill_id: str = Field(..., description="Catalog skill id")
    level: int | None = Field(None, ge=1, le=4, description="Problem level; derived from rank when omitted")
    difficulty: DifficultyMode = DifficultyMode.CHALLENGE


class EvaluateRequest(BaseModel):
    skill_id: str
    level: int = Field(..., ge=1, le=4)
    problem: dict[str, Any] = Field(..., description="Problem exactly as served by /generate")
    user_answer: str | ImageAnswer
    difficulty: DifficultyMode = DifficultyMode.CHALLENGE
    problem_pool_id: str | None = None


class SkipChallengeRequest(BaseModel):
    unit_category: str
    unit_subcategory: str


class SkipTargetModel(BaseModel):
    skill_id: str
    skill_name: str


class SkipEvaluateRequest(BaseModel):
    target_skills: list[SkipTargetModel] = Field(..., min_length=1)
    problem: dict[str, Any]
    user_answer: str | ImageAnswer


# ========================================
# Helpers
# ========================================


def _require_skill(services: Services, skill_id: str) -> None:
    if not services.catalog.is_valid(skill_id):
        raise HTTPException(status_code=404, detail=f"スキルが見つかりません: {skill_id}")


def _problem_from_body(data: dict[str, Any]) -> GeneratedProblem:
    try:
        return GeneratedProblem.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid problem: {e}") from e


def _answer_payload(answer: str | ImageAnswer) -> str | dict[str, Any]:
    return answer if isinstance(answer, str) else answer.model_dump()


def _problem_payload(served: PracticeProblem) -> dict[str, Any]:
    return {
        "problem": served.result.problem.to_dict(),
        "recommended_level": served.level,
        "difficulty": served.difficulty.value,
        "source": served.result.source.value,
        "problem_pool_id": served.result.problem_pool_id,
        "pool_remaining": served.result.pool_remaining,
    }


def _sse(event: str, data: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


# ========================================
# Generation
# ========================================


@router.post("/generate")
async def generate_problem(body: GenerateRequest, services: Services, user_id: UserId) -> dict[str, Any]:
    """Serve one problem: unseen pool entry, then a wrong-answer retry, then a fresh generation."""
    _require_skill(services, body.skill_id)
    try:
        served = await services.practice.generate(user_id, body.skill_id, body.level, body.difficulty)
    except (GenerationFailedError, ProblemParseError) as e:
        logger.exception(f"Error generating problem: {e}")
        raise HTTPException(status_code=500, detail=GENERATION_FAILED_DETAIL) from e
    return _problem_payload(served)


@router.post("/generate-stream")
async def generate_problem_stream(
    body: GenerateRequest, request: Request, services: Services, user_id: UserId
) -> StreamingResponse:
    """
    Same as /generate, delivered as server-sent events.

    Emits one `problem` event, or one `error` event when generation fails.
    Nothing is sent once the client has disconnected.
    """
    _require_skill(services, body.skill_id)

    async def events() -> AsyncIterator[str]:
        try:
            served = await services.practice.generate(user_id, body.skill_id, body.level, body.difficulty)
            if await request.is_disconnected():
                logger.info(f"[SSE] Client disconnected before problem was sent (user={user_id})")
                return
            yield _sse("problem", _problem_payload(served))
        except Exception as e:  # reported to the client as an error event
            logger.exception(f"[SSE] Error in generate-stream: {e}")
            if not await request.is_disconnected():
                yield _sse("error", {"message": GENERATION_FAILED_DETAIL})

    return StreamingResponse(events(), media_type="text/event-stream", headers=SSE_HEADERS)


# ========================================
# Evaluation
# ========================================


@router.post("/evaluate")
async def evaluate_answer(body: EvaluateRequest, services: Services, user_id: UserId) -> dict[str, Any]:
    """Grade an answer; a correct answer at the rank's required level ranks the skill up."""
    _require_skill(services, body.skill_id)
    problem = _problem_from_body(body.problem)
    try:
        outcome = await services.practice.evaluate(
            user_id,
            body.skill_id,
            body.level,
            problem,
            _answer_payload(body.user_answer),
            body.difficulty,
            body.problem_pool_id,
        )
    except (GenerationFailedError, ProblemParseError) as e:
        logger.exception(f"Error evaluating answer: {e}")
        raise HTTPException(status_code=500, detail=EVALUATION_FAILED_DETAIL) from e

    if outcome.mastered_skill_id:
        services.advisor.invalidate(user_id)

    return {
        "evaluation": outcome.evaluation.to_dict(),
        "rank_update": (
            {
                "new_rank": outcome.rank_update.new_rank,
                "is_new_acquisition": outcome.rank_update.is_new_acquisition,
                "is_rank_up": True,
            }
            if outcome.rank_update
            else None
        ),
        "skill_mastered": (
            {"skill_id": outcome.mastered_skill_id, "skill_name": outcome.mastered_skill_name}
            if outcome.mastered_skill_id
            else None
        ),
        "attempt_recorded": outcome.attempt_recorded.status,
    }


# ========================================
# Skip challenge
# ========================================


@router.post("/skip-challenge")
async def create_skip_challenge(body: SkipChallengeRequest, services: Services, user_id: UserId) -> dict[str, Any]:
    try:
        challenge = await services.skip_challenge.generate(user_id, body.unit_category, body.unit_subcategory)
    except SkipChallengeUnavailableError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except (GenerationFailedError, ProblemParseError) as e:
        logger.exception(f"Error generating skip challenge: {e}")
        raise HTTPException(status_code=500, detail=GENERATION_FAILED_DETAIL) from e

    return {
        "problem": challenge.problem.to_dict(),
        "target_skills": [{"skill_id": t.skill_id, "skill_name": t.skill_name} for t in challenge.target_skills],
    }


@router.post("/skip-challenge/evaluate")
async def evaluate_skip_challenge(body: SkipEvaluateRequest, services: Services, user_id: UserId) -> dict[str, Any]:
    problem = _problem_from_body(body.problem)
    targets = [SkipTargetSkill(t.skill_id, t.skill_name) for t in body.target_skills]
    unknown = [t.skill_id for t in targets if not services.catalog.is_valid(t.skill_id)]
    if unknown:
        raise HTTPException(status_code=404, detail=f"スキルが見つかりません: {', '.join(unknown)}")

    try:
        result = await services.skip_challenge.evaluate(user_id, targets, problem, _answer_payload(body.user_answer))
    except (GenerationFailedError, ProblemParseError) as e:
        logger.exception(f"Error evaluating skip challenge: {e}")
        raise HTTPException(status_code=500, detail=EVALUATION_FAILED_DETAIL) from e

    if result.passed:
        services.advisor.invalidate(user_id)

    return {
        "passed": result.passed,
        "is_correct": result.is_correct,
        "confidence": result.confidence,
        "feedback": result.feedback,
        "skipped_skills": [{"skill_id": s.skill_id, "skill_name": s.skill_name} for s in result.skipped_skills],
    }


# ========================================
# Pool
# ========================================


@router.get("/pool-stats")
async def get_pool_stats(services: Services) -> dict[str, Any]:
    stats = await services.pool.stats()
    return {
        "total": sum(s.count for s in stats),
        "entries": [{"skill_id": s.skill_id, "level": s.level, "count": s.count} for s in stats],
    }

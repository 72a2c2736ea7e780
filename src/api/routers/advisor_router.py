"""
Advisor router.

Daily advice is cached per learner; stumble analysis runs on every call.
"""
from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, HTTPException
from loguru import logger
from pydantic import BaseModel, Field

from src.api.dependencies import Services, UserId
from src.integrations.genai_client import GenerationFailedError

router = APIRouter()


class StumbleRequest(BaseModel):
    skill_id: str
    evaluation_feedback: str = Field("", description="Feedback returned by /api/practice/evaluate")
    missed_check_points: list[str] = Field(default_factory=list)


@router.get("/daily")
async def get_daily_advice(services: Services, user_id: UserId) -> dict[str, Any]:
    try:
        advice = await services.advisor.get_daily_advice(user_id)
    except GenerationFailedError as e:
        logger.exception(f"[Advisor] Daily advice failed: {e}")
        raise HTTPException(status_code=500, detail="アドバイスの生成に失敗しました") from e
    return asdict(advice)


@router.post("/stumble")
async def analyze_stumble(body: StumbleRequest, services: Services, user_id: UserId) -> dict[str, Any]:
    if not services.catalog.is_valid(body.skill_id):
        raise HTTPException(status_code=404, detail=f"スキルが見つかりません: {body.skill_id}")
    try:
        analysis = await services.advisor.analyze_stumble(
            user_id, body.skill_id, body.evaluation_feedback, body.missed_check_points
        )
    except GenerationFailedError as e:
        logger.exception(f"[Advisor] Stumble analysis failed: {e}")
        raise HTTPException(status_code=500, detail="つまずき分析に失敗しました") from e
    return asdict(analysis)

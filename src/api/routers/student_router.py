"""
Student router.

The learner's own document: onboarding, per-skill mastery records, mistake
patterns, independence counters and answered reference problems.
"""
from __future__ import annotations

from dataclasses import asdict
from typing import Any, Literal

from fastapi import APIRouter, HTTPException
from loguru import logger
from pydantic import BaseModel, Field

from src.api.dependencies import Services, UserId
from src.core.mastery import SkillStatus, utc_now_iso
from src.core.student_model import LearningSession, MistakeType
from src.learning.student_model_service import OnboardingData
from src.quiz.attempts import ProblemAttempt, ProblemSource

router = APIRouter()

SelfAssessment = Literal["struggling", "basic-ok", "want-more"]
GradeLevel = Literal["中1", "中2", "中3", "高1", "高2", "高3", "既卒"]
Subject = Literal["基礎", "数学I", "数学A", "数学II", "数学B", "数学C"]
StudyGoal = Literal["regular-exam", "common-test", "university-exam", "relearning"]


class SelfAssessmentRequest(BaseModel):
    self_assessment: SelfAssessment | None = None


class OnboardingCompleteRequest(BaseModel):
    self_assessment: SelfAssessment | None = None
    grade_level: GradeLevel | None = None
    studied_subjects: list[Subject] = Field(default_factory=list)
    study_goal: StudyGoal | None = None


class SkillUpdateRequest(BaseModel):
    status: SkillStatus | None = None
    mastery_level: int | None = Field(None, ge=0, le=100)
    attempts: int | None = Field(None, ge=0)


class MistakeRequest(BaseModel):
    mistake_type: MistakeType
    question_id: str
    skill_id: str
    description: str
    user_work: str = ""
    correction: str = ""


class ProblemResultRequest(BaseModel):
    skill_id: str
    is_correct: bool
    problem_source: ProblemSource = ProblemSource.REFERENCE_BOOK
    problem_identifier: str | None = Field(None, description="Pool entry id or reference-book page")
    conversation_id: str | None = None


def _require_skill(services: Services, skill_id: str) -> None:
    if not services.catalog.is_valid(skill_id):
        raise HTTPException(status_code=404, detail=f"スキルが見つかりません: {skill_id}")


@router.get("")
async def get_student_model(services: Services, user_id: UserId) -> dict[str, Any]:
    model = await services.students.get_or_create(user_id)
    return model.to_dict()


@router.get("/summary")
async def get_learning_summary(services: Services, user_id: UserId) -> dict[str, Any]:
    return asdict(await services.students.get_learning_summary(user_id))


# ========================================
# Onboarding
# ========================================


@router.post("/onboarding/start")
async def start_onboarding(services: Services, user_id: UserId) -> dict[str, Any]:
    model = await services.students.start_onboarding(user_id)
    return asdict(model.onboarding)


@router.post("/onboarding/self-assessment")
async def set_self_assessment(
    body: SelfAssessmentRequest, services: Services, user_id: UserId
) -> dict[str, Any]:
    model = await services.students.set_self_assessment(user_id, body.self_assessment)
    return asdict(model.onboarding)


@router.post("/onboarding/complete")
async def complete_onboarding(
    body: OnboardingCompleteRequest, services: Services, user_id: UserId
) -> dict[str, Any]:
    data = OnboardingData(
        self_assessment=body.self_assessment,
        grade_level=body.grade_level,
        studied_subjects=list(body.studied_subjects),
        study_goal=body.study_goal,
    )
    model = await services.students.complete_onboarding(user_id, data)
    services.advisor.invalidate(user_id)
    return model.to_dict()


# ========================================
# Skill mastery
# ========================================


@router.get("/skill/{skill_id}")
async def get_skill_mastery(skill_id: str, services: Services, user_id: UserId) -> dict[str, Any]:
    model = await services.students.get_or_create(user_id)
    status = model.mastery_for(skill_id)
    if status is None:
        raise HTTPException(status_code=404, detail=f"スキルが見つかりません: {skill_id}")
    return status.to_dict()


@router.patch("/skill/{skill_id}")
async def update_skill_mastery(
    skill_id: str, body: SkillUpdateRequest, services: Services, user_id: UserId
) -> dict[str, Any]:
    _require_skill(services, skill_id)
    changes = body.model_dump(exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="更新する項目がありません")
    model = await services.students.update_skill_mastery(user_id, skill_id, changes)
    return model.skill_mastery[skill_id].to_dict()


@router.post("/skill/{skill_id}/practice")
async def record_practice(skill_id: str, services: Services, user_id: UserId) -> dict[str, Any]:
    _require_skill(services, skill_id)
    model = await services.students.record_practice(user_id, skill_id)
    return model.skill_mastery[skill_id].to_dict()


# ========================================
# Mistakes and independence
# ========================================


@router.post("/mistake")
async def record_mistake(body: MistakeRequest, services: Services, user_id: UserId) -> dict[str, Any]:
    model = await services.students.record_mistake(
        user_id,
        body.mistake_type,
        body.question_id,
        body.skill_id,
        body.description,
        body.user_work,
        body.correction,
    )
    return {k: asdict(v) for k, v in model.mistake_patterns.items()}


@router.post("/independence/self-detected")
async def record_self_detected_error(services: Services, user_id: UserId) -> dict[str, Any]:
    model = await services.students.record_self_detected_error(user_id)
    return asdict(model.independence_metrics)


@router.post("/independence/ai-assisted")
async def record_ai_assisted_error(services: Services, user_id: UserId) -> dict[str, Any]:
    model = await services.students.record_ai_assisted_error(user_id)
    return asdict(model.independence_metrics)


# ========================================
# Problem results
# ========================================


@router.post("/problem-result")
async def record_problem_result(
    body: ProblemResultRequest, services: Services, user_id: UserId
) -> dict[str, Any]:
    """
    Record one answered problem (usually from a reference book).

    The answer is stored, logged as a one-question session, and may master
    the skill through the attempt history.
    """
    _require_skill(services, body.skill_id)
    await services.students.get_or_create(user_id)

    attempt = ProblemAttempt(
        user_id=user_id,
        skill_id=body.skill_id,
        is_correct=body.is_correct,
        problem_source=body.problem_source,
        problem_identifier=body.problem_identifier,
        conversation_id=body.conversation_id,
    )
    result = await services.attempts.record_problem_attempt(attempt, services.students, services.catalog)

    now = utc_now_iso()
    await services.students.add_learning_session(
        user_id,
        LearningSession(
            id=attempt.id,
            skill_id=body.skill_id,
            started_at=now,
            ended_at=now,
            questions_attempted=1,
            questions_correct=1 if body.is_correct else 0,
        ),
    )
    if result.mastered:
        logger.info(f"[Student] {user_id} mastered {body.skill_id} via problem results")
        services.advisor.invalidate(user_id)
    return asdict(result)

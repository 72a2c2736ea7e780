"""
Skills router.

Read-only views over the skill catalog and the learner's mastery map.
"""
from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, HTTPException, Query

from src.api.dependencies import Services, UserId
from src.catalog.skills import SkillDefinition
from src.core.mastery import ErrorType
from src.learning.recommendation import (
    generate_learning_path,
    get_backtrack_recommendation,
    get_learning_progress_summary,
    get_next_recommended_skills,
)
from src.learning.skill_map_summary import build_skill_map_summary

router = APIRouter()


def _skill_payload(skill: SkillDefinition) -> dict[str, Any]:
    return {
        "id": skill.id,
        "name": skill.name,
        "category": skill.category,
        "subcategory": skill.subcategory,
        "description": skill.description,
        "prerequisites": list(skill.prerequisites),
        "importance": skill.importance.value,
        "keywords": list(skill.keywords),
    }


@router.get("")
def list_skills(services: Services, category: str | None = None) -> dict[str, Any]:
    skills = services.catalog.by_category(category) if category else list(services.catalog)
    return {"count": len(skills), "skills": [_skill_payload(s) for s in skills]}


@router.get("/roots")
def list_root_skills(services: Services) -> list[dict[str, Any]]:
    """Skills with no prerequisites (unlocked for every new learner)."""
    return [_skill_payload(s) for s in services.catalog.roots()]


@router.get("/recommendations")
async def get_recommendations(
    services: Services,
    user_id: UserId,
    count: int = Query(3, ge=1, le=20),
) -> list[dict[str, Any]]:
    model = await services.students.get_or_create(user_id)
    return [
        {
            "skill": _skill_payload(r.skill),
            "priority": r.priority,
            "reason": r.reason,
            "score": r.score,
        }
        for r in get_next_recommended_skills(services.catalog, model.skill_mastery, count)
    ]


@router.get("/backtrack")
def get_backtrack(services: Services, skill_id: str, error_type: str) -> dict[str, Any] | None:
    """Earlier skills worth reviewing after an error of the given severity; null when no rule applies."""
    try:
        severity = ErrorType(error_type)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid error_type: {error_type} (expected L1, L2 or L3)") from e
    if not services.catalog.is_valid(skill_id):
        raise HTTPException(status_code=404, detail=f"スキルが見つかりません: {skill_id}")

    recommendation = get_backtrack_recommendation(services.catalog, services.rules, skill_id, severity)
    if recommendation is None:
        return None
    return {
        "rule_id": recommendation.rule.id,
        "message": recommendation.rule.message,
        "detection_hint": recommendation.rule.detection_hint,
        "target_skills": [_skill_payload(s) for s in recommendation.target_skills],
    }


@router.get("/progress")
async def get_progress(services: Services, user_id: UserId) -> dict[str, Any]:
    model = await services.students.get_or_create(user_id)
    return asdict(get_learning_progress_summary(services.catalog, model.skill_mastery))


@router.get("/path/{skill_id}")
async def get_learning_path(skill_id: str, services: Services, user_id: UserId) -> dict[str, Any]:
    if not services.catalog.is_valid(skill_id):
        raise HTTPException(status_code=404, detail=f"スキルが見つかりません: {skill_id}")
    model = await services.students.get_or_create(user_id)
    path = generate_learning_path(services.catalog, skill_id, model.skill_mastery)
    return {"target": skill_id, "steps": [_skill_payload(s) for s in path]}


@router.get("/summary")
async def get_skill_map_summary(services: Services, user_id: UserId) -> dict[str, Any]:
    model = await services.students.get_or_create(user_id)
    summary = build_skill_map_summary(
        services.catalog, model, services.rules, window=services.advisor.struggle_window
    )
    return asdict(summary)


@router.get("/rules/all")
def list_backtrack_rules(services: Services) -> dict[str, Any]:
    rules = [
        {
            "id": rule.id,
            "skill_id": rule.skill_id,
            "error_type": rule.error_type.value,
            "backtrack_to": list(rule.backtrack_to),
            "detection_hint": rule.detection_hint,
            "message": rule.message,
        }
        for rule in services.rules
    ]
    return {"total": len(rules), "rules": rules}


# Registered last so the fixed paths above win
@router.get("/{skill_id}")
def get_skill(skill_id: str, services: Services) -> dict[str, Any]:
    """One skill with its direct prerequisites and successors."""
    skill = services.catalog.get(skill_id)
    if skill is None:
        raise HTTPException(status_code=404, detail=f"スキルが見つかりません: {skill_id}")
    prerequisites = [p for p in (services.catalog.get(i) for i in skill.prerequisites) if p is not None]
    return {
        "skill": _skill_payload(skill),
        "prerequisites": [_skill_payload(s) for s in prerequisites],
        "successors": [_skill_payload(s) for s in services.catalog.successors(skill_id)],
    }

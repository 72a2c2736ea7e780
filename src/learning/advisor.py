"""
Learning Advisor.

Two model-backed features on top of the skill-map summary:
- daily advice: greeting, 1-2 sentences of advice and up to three
  recommended skills; cached per learner for a TTL
- stumble analysis: what probably went wrong after an incorrect answer
  and which skills to review; never cached

Both use the fast chain with thinking off. Model output is parsed
leniently: malformed list items are dropped, unparseable output becomes a
canned fallback.
"""

from __future__ import annotations

import json
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from src.catalog.backtrack import BacktrackRuleSet
from src.catalog.skills import SkillCatalog
from src.generation.prompts import (
    DAILY_ADVICE_REQUEST,
    STUMBLE_REQUEST,
    build_daily_advisor_prompt,
    build_stumble_analysis_prompt,
)
from src.integrations.genai_client import ChatMessage, ChatRequest, GenAIClient
from src.learning.skill_map_summary import (
    RECENT_SESSION_WINDOW,
    build_skill_map_summary,
    format_summary_for_llm,
)
from src.learning.student_model_service import StudentModelService

ADVICE_CACHE_TTL_SECONDS = 3600
ADVISOR_MAX_TOKENS = 2048
ADVISOR_MODEL_HINT = "flash"
RECOMMENDATION_TYPES = ("new", "review", "continue")

FALLBACK_ADVICE = "学習を始めましょう。まずは気になるスキルを選んで練習してみてください。"
FALLBACK_ANALYSIS = "もう一度じっくり考えてみましょう。分からないところがあれば、一緒に確認していきましょう。"

_FENCED = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_BRACED = re.compile(r"\{[\s\S]*\}")


@dataclass
class RecommendedSkill:
    skill_id: str
    skill_name: str
    reason: str
    type: str  # new | review | continue


@dataclass
class ReviewSuggestion:
    skill_id: str
    skill_name: str
    reason: str


@dataclass
class DailyAdvice:
    greeting: str
    advice: str
    recommended_skills: list[RecommendedSkill] = field(default_factory=list)
    review_suggestions: list[ReviewSuggestion] = field(default_factory=list)


@dataclass
class StumbleAnalysis:
    analysis: str
    review_suggestions: list[ReviewSuggestion] = field(default_factory=list)


# ========================================
# Parsing
# ========================================


def extract_json(content: str) -> str:
    """JSON text from model output: fenced block first, then outermost braces."""
    fenced = _FENCED.search(content)
    if fenced:
        return fenced.group(1).strip()
    braced = _BRACED.search(content)
    if braced:
        return braced.group(0)
    return content.strip()


def _review_suggestions(items: Any) -> list[ReviewSuggestion]:
    if not isinstance(items, list):
        return []
    return [
        ReviewSuggestion(item["skillId"], item["skillName"], item["reason"])
        for item in items
        if isinstance(item, dict)
        and all(isinstance(item.get(k), str) for k in ("skillId", "skillName", "reason"))
    ]


def _recommended_skills(items: Any) -> list[RecommendedSkill]:
    if not isinstance(items, list):
        return []
    return [
        RecommendedSkill(item["skillId"], item["skillName"], item["reason"], item["type"])
        for item in items
        if isinstance(item, dict)
        and all(isinstance(item.get(k), str) for k in ("skillId", "skillName", "reason"))
        and item.get("type") in RECOMMENDATION_TYPES
    ]


def parse_daily_advice_response(content: str) -> DailyAdvice:
    try:
        parsed = json.loads(extract_json(content))
    except json.JSONDecodeError as e:
        logger.error(f"[Advisor] Failed to parse daily advice response: {e}")
        logger.debug(f"[Advisor] Raw response: {content[:500]}")
        return DailyAdvice(greeting="", advice=FALLBACK_ADVICE)
    if not isinstance(parsed, dict):
        return DailyAdvice(greeting="", advice=FALLBACK_ADVICE)

    return DailyAdvice(
        greeting=parsed["greeting"] if isinstance(parsed.get("greeting"), str) else "",
        advice=parsed["advice"] if isinstance(parsed.get("advice"), str) else FALLBACK_ADVICE,
        recommended_skills=_recommended_skills(parsed.get("recommendedSkills")),
        review_suggestions=_review_suggestions(parsed.get("reviewSuggestions")),
    )


def parse_stumble_analysis_response(content: str) -> StumbleAnalysis:
    try:
        parsed = json.loads(extract_json(content))
    except json.JSONDecodeError as e:
        logger.error(f"[Advisor] Failed to parse stumble analysis response: {e}")
        logger.debug(f"[Advisor] Raw response: {content[:500]}")
        return StumbleAnalysis(analysis=FALLBACK_ANALYSIS)
    if not isinstance(parsed, dict):
        return StumbleAnalysis(analysis=FALLBACK_ANALYSIS)

    return StumbleAnalysis(
        analysis=parsed["analysis"] if isinstance(parsed.get("analysis"), str) else FALLBACK_ANALYSIS,
        review_suggestions=_review_suggestions(parsed.get("reviewSuggestions")),
    )


# ========================================
# Service
# ========================================


class AdvisorService:
    """
    Daily advice and stumble analysis.

    Example:
        advisor = AdvisorService(client, catalog, rules, students)
        advice = await advisor.get_daily_advice("user-1")
    """

    def __init__(
        self,
        client: GenAIClient,
        catalog: SkillCatalog,
        rules: BacktrackRuleSet,
        students: StudentModelService,
        ttl_seconds: float = ADVICE_CACHE_TTL_SECONDS,
        struggle_window: int = RECENT_SESSION_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.catalog = catalog
        self.rules = rules
        self.students = students
        self.ttl_seconds = ttl_seconds
        self.struggle_window = struggle_window
        self._clock = clock
        self._cache: dict[str, tuple[float, DailyAdvice]] = {}

    # ========================================
    # Cache
    # ========================================

    def _cached(self, user_id: str) -> DailyAdvice | None:
        entry = self._cache.get(user_id)
        if entry is None:
            return None
        expires_at, advice = entry
        if self._clock() > expires_at:
            del self._cache[user_id]
            return None
        return advice

    def invalidate(self, user_id: str) -> None:
        """Drop cached advice after a large change in the learner's state."""
        self._cache.pop(user_id, None)

    # ========================================
    # Features
    # ========================================

    async def _summary_text(self, user_id: str) -> str:
        model = await self.students.get_or_create(user_id)
        summary = build_skill_map_summary(self.catalog, model, self.rules, window=self.struggle_window)
        return format_summary_for_llm(summary)

    async def _ask(self, system: str, prompt: str) -> str:
        response = await self.client.send_message(
            ChatRequest(
                messages=[ChatMessage("user", prompt)],
                system=system,
                model=ADVISOR_MODEL_HINT,
                max_tokens=ADVISOR_MAX_TOKENS,
                thinking=False,
            )
        )
        return response.content

    async def get_daily_advice(self, user_id: str) -> DailyAdvice:
        cached = self._cached(user_id)
        if cached is not None:
            logger.debug(f"[Advisor] Cache hit for user {user_id}")
            return cached

        logger.info(f"[Advisor] Generating daily advice for user {user_id}")
        system = build_daily_advisor_prompt(await self._summary_text(user_id))
        advice = parse_daily_advice_response(await self._ask(system, DAILY_ADVICE_REQUEST))

        self._cache[user_id] = (self._clock() + self.ttl_seconds, advice)
        return advice

    async def analyze_stumble(
        self,
        user_id: str,
        skill_id: str,
        evaluation_feedback: str,
        missed_check_points: list[str],
    ) -> StumbleAnalysis:
        logger.info(f"[Advisor] Analyzing stumble for user {user_id}, skill {skill_id}")
        skill = self.catalog.get(skill_id)
        system = build_stumble_analysis_prompt(
            await self._summary_text(user_id),
            skill.name if skill else skill_id,
            evaluation_feedback,
            missed_check_points,
        )
        return parse_stumble_analysis_response(await self._ask(system, STUMBLE_REQUEST))

"""
Unit tests for the learning advisor: lenient parsing and the advice cache.
"""

import json

import pytest

from src.integrations.gemini_fallback import FLASH_CHAIN
from src.integrations.genai_client import GenerationFailedError
from src.learning.advisor import (
    ADVISOR_MAX_TOKENS,
    FALLBACK_ADVICE,
    FALLBACK_ANALYSIS,
    AdvisorService,
    extract_json,
    parse_daily_advice_response,
    parse_stumble_analysis_response,
)

ADVICE = {
    "greeting": "おはようございます",
    "advice": "因数分解を仕上げましょう。",
    "recommendedSkills": [
        {"skillId": "B-02", "skillName": "因数分解", "reason": "前提が揃いました", "type": "new"},
        {"skillId": "B-01", "skillName": "文字式の計算", "reason": "x", "type": "someday"},
        {"skillId": "A-01", "reason": "missing name", "type": "new"},
    ],
    "reviewSuggestions": "not a list",
}


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def advisor(services, catalog, rules, clock):
    return AdvisorService(services.client, catalog, rules, services.students, ttl_seconds=60, clock=clock)


class TestParsing:
    def test_extract_json_prefers_fence(self):
        assert extract_json('前置き ```json\n{"a": 1}\n``` {"b": 2}') == '{"a": 1}'
        assert extract_json('結果: {"b": 2} です') == '{"b": 2}'
        assert extract_json("  plain  ") == "plain"

    def test_malformed_items_are_dropped(self):
        advice = parse_daily_advice_response(json.dumps(ADVICE, ensure_ascii=False))
        assert advice.greeting == "おはようございます"
        assert [s.skill_id for s in advice.recommended_skills] == ["B-02"]
        assert advice.review_suggestions == []

    def test_unparseable_advice_falls_back(self):
        advice = parse_daily_advice_response("今日は休みましょう")
        assert advice.greeting == ""
        assert advice.advice == FALLBACK_ADVICE

    def test_missing_advice_text_falls_back(self):
        assert parse_daily_advice_response('{"greeting": "やあ"}').advice == FALLBACK_ADVICE

    def test_stumble_parsing(self):
        analysis = parse_stumble_analysis_response(
            '```json\n{"analysis": "符号に注意", "reviewSuggestions": '
            '[{"skillId": "B-01", "skillName": "文字式の計算", "reason": "符号"}, {"skillId": 3}]}\n```'
        )
        assert analysis.analysis == "符号に注意"
        assert [s.skill_id for s in analysis.review_suggestions] == ["B-01"]
        assert parse_stumble_analysis_response("[1, 2]").analysis == FALLBACK_ANALYSIS


class TestDailyAdvice:
    @pytest.mark.asyncio
    async def test_uses_fast_chain_without_thinking(self, advisor, generator):
        generator.queue(json.dumps(ADVICE, ensure_ascii=False))
        advice = await advisor.get_daily_advice("u1")
        assert advice.advice == "因数分解を仕上げましょう。"

        request, candidate = generator.calls[0]
        assert candidate == FLASH_CHAIN[0]
        assert request.thinking is False
        assert request.max_tokens == ADVISOR_MAX_TOKENS
        assert "## カテゴリ別進捗" in request.system

    @pytest.mark.asyncio
    async def test_cached_until_ttl(self, advisor, generator, clock):
        generator.queue(json.dumps(ADVICE, ensure_ascii=False), '{"advice": "二回目"}')
        first = await advisor.get_daily_advice("u1")
        clock.now += 59
        assert await advisor.get_daily_advice("u1") is first
        assert len(generator.calls) == 1

        clock.now += 2
        refreshed = await advisor.get_daily_advice("u1")
        assert refreshed.advice == "二回目"
        assert len(generator.calls) == 2

    @pytest.mark.asyncio
    async def test_cache_is_per_learner_and_invalidatable(self, advisor, generator):
        generator.queue('{"advice": "a"}', '{"advice": "b"}', '{"advice": "c"}')
        assert (await advisor.get_daily_advice("u1")).advice == "a"
        assert (await advisor.get_daily_advice("u2")).advice == "b"
        advisor.invalidate("u1")
        assert (await advisor.get_daily_advice("u1")).advice == "c"

    @pytest.mark.asyncio
    async def test_generation_failure_is_not_cached(self, advisor, generator):
        generator.queue(*[RuntimeError("down")] * len(FLASH_CHAIN), '{"advice": "ok"}')
        with pytest.raises(GenerationFailedError):
            await advisor.get_daily_advice("u1")
        assert (await advisor.get_daily_advice("u1")).advice == "ok"


class TestStumbleAnalysis:
    @pytest.mark.asyncio
    async def test_prompt_carries_feedback_and_is_not_cached(self, advisor, generator):
        generator.queue('{"analysis": "一回目"}', '{"analysis": "二回目"}')
        first = await advisor.analyze_stumble("u1", "I-01", "解の公式の符号", ["判別式を計算"])
        second = await advisor.analyze_stumble("u1", "I-01", "解の公式の符号", ["判別式を計算"])
        assert (first.analysis, second.analysis) == ("一回目", "二回目")

        system = generator.calls[0][0].system
        assert "- スキル: 二次方程式" in system
        assert "- フィードバック: 解の公式の符号" in system
        assert "- 見落としたチェックポイント: 判別式を計算" in system

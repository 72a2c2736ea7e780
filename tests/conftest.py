"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests:
a small synthetic skill catalog, a scripted content generator standing in
for Vertex AI, and a fully wired in-memory service container.
"""
import json
import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config import Settings  # noqa: E402
from src.api.services import build_services  # noqa: E402
from src.catalog.backtrack import BacktrackRule, BacktrackRuleSet  # noqa: E402
from src.catalog.skills import SkillCatalog, SkillDefinition  # noqa: E402
from src.core.mastery import ErrorType, SkillImportance  # noqa: E402
from src.core.practice import CardInfo, GeneratedProblem  # noqa: E402
from src.integrations.genai_client import GenerationResult, StreamPiece, TokenUsage  # noqa: E402
from src.learning.student_model_service import InMemoryStudentModelRepository  # noqa: E402
from src.quiz.attempts import InMemoryAttemptHistoryStore  # noqa: E402
from src.quiz.problem_pool import InMemoryProblemPoolStore  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (sqlite / in-process API)")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


# ========================================
# Scripted model backend
# ========================================


class ScriptedGenerator:
    """
    ContentGenerator double.

    `replies` feeds generate(): each item is returned as text, or raised
    when it is an exception. `streams` feeds generate_stream(): each item is
    a list of text chunks and/or exceptions for one candidate.
    """

    def __init__(self, replies=None, streams=None):
        self.replies = list(replies or [])
        self.streams = list(streams or [])
        self.calls = []
        self.stream_calls = []
        self.closed_streams = 0

    def queue(self, *replies):
        self.replies.extend(replies)

    async def generate(self, request, candidate):
        self.calls.append((request, candidate))
        if not self.replies:
            raise RuntimeError("no scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return GenerationResult(text=reply, usage=TokenUsage(input_tokens=12, output_tokens=34))

    async def generate_stream(self, request, candidate):
        self.stream_calls.append((request, candidate))
        script = self.streams.pop(0) if self.streams else [RuntimeError("no scripted stream left")]
        try:
            for item in script:
                if isinstance(item, BaseException):
                    raise item
                yield StreamPiece(text=item)
            yield StreamPiece(usage=TokenUsage(input_tokens=5, output_tokens=len(script)))
        finally:
            self.closed_streams += 1


def problem_json(question="x^2 - 5x + 6 = 0 を解け", pattern="因数分解で解く", card="たすき掛け"):
    payload = {
        "questionText": question,
        "correctAnswer": "x = 2, 3",
        "solutionSteps": ["(x-2)(x-3)=0", "x = 2, 3"],
        "checkPoints": ["因数分解できている", "解を2つ挙げている"],
        "targetPattern": pattern,
        "cardInfo": {"cardName": card, "trigger": "二次式", "method": "積と和を探す"},
    }
    return f"```json\n{json.dumps(payload, ensure_ascii=False)}\n```"


def evaluation_json(is_correct=True, confidence="high", feedback="よくできました", **extra):
    payload = {"isCorrect": is_correct, "confidence": confidence, "feedback": feedback, **extra}
    return json.dumps(payload, ensure_ascii=False)


def make_problem(skill_id="I-01", level=1, question="x^2 - 5x + 6 = 0 を解け"):
    return GeneratedProblem(
        skill_id=skill_id,
        level=level,
        question_text=question,
        correct_answer="x = 2, 3",
        solution_steps=["(x-2)(x-3)=0"],
        check_points=["因数分解できている"],
        target_pattern="因数分解で解く",
        card_info=CardInfo(card_name="たすき掛け"),
    )


# ========================================
# Fixtures
# ========================================


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def catalog():
    """
    Six-skill catalog.

    B-01 -> B-02 -> B-03 (advanced)
              \\-> I-01 -> I-02 (also needs B-01)
    A-01 (separate root)
    """
    return SkillCatalog(
        [
            SkillDefinition("B-01", "文字式の計算", "基礎", "数と式", importance=SkillImportance.CORE,
                            keywords=("展開", "同類項")),
            SkillDefinition("B-02", "因数分解", "基礎", "数と式", prerequisites=("B-01",), keywords=("因数分解",)),
            SkillDefinition("B-03", "三次式の因数分解", "基礎", "数と式", prerequisites=("B-02",),
                            importance=SkillImportance.ADVANCED),
            SkillDefinition("I-01", "二次方程式", "数学I", "二次関数", prerequisites=("B-02",),
                            importance=SkillImportance.CORE),
            SkillDefinition("I-02", "二次関数の最大最小", "数学I", "二次関数", prerequisites=("I-01", "B-01")),
            SkillDefinition("A-01", "場合の数", "数学A", "場合の数と確率"),
        ]
    )


@pytest.fixture
def rules():
    return BacktrackRuleSet(
        [
            BacktrackRule("BT-I-01-L1", "I-01", ErrorType.L1, ("B-01", "B-02"), "符号ミス", "因数分解を復習しましょう。"),
            BacktrackRule("BT-I-02-L2", "I-02", ErrorType.L2, ("I-01", "Z-99"), "頂点の位置", "二次方程式に戻りましょう。"),
            BacktrackRule("BT-I-02-L1", "I-02", ErrorType.L1, ("B-01",), "計算ミス", "計算を確認しましょう。"),
        ]
    )


@pytest.fixture
def generator():
    return ScriptedGenerator()


@pytest.fixture
def settings():
    return Settings(_env_file=None, problem_pool_min_size=3, advice_cache_ttl_seconds=3600)


@pytest.fixture
def services(settings, catalog, rules, generator):
    """Service container on in-memory stores and the scripted generator."""
    return build_services(
        settings,
        catalog,
        generator,
        InMemoryStudentModelRepository(),
        InMemoryProblemPoolStore(),
        InMemoryAttemptHistoryStore(),
        rules=rules,
    )

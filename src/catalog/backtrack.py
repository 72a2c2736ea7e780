"""
Backtrack rules.

When a learner stumbles on a skill, the error severity decides which earlier
skills to review. Rules are static data looked up by (skill, error type).
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass

from src.catalog.skills import SkillCatalog
from src.core.mastery import ErrorType


@dataclass(frozen=True)
class BacktrackRule:
    id: str
    skill_id: str
    error_type: ErrorType
    backtrack_to: tuple[str, ...]
    detection_hint: str
    message: str


# Sample set; targets missing from the catalog are dropped at lookup time.
DEFAULT_BACKTRACK_RULES: tuple[BacktrackRule, ...] = (
    BacktrackRule(
        id="BT-I-QF-01-L1",
        skill_id="I-QF-01",
        error_type=ErrorType.L1,
        backtrack_to=("F-POLY-01", "I-EXP-01"),
        detection_hint="平方完成の計算ミス、展開時の符号ミス",
        message="式変形でつまずいていますね。展開・因数分解の基礎を確認しましょう。",
    ),
    BacktrackRule(
        id="BT-I-QF-01-L2",
        skill_id="I-QF-01",
        error_type=ErrorType.L2,
        backtrack_to=("F-FUNC-01",),
        detection_hint="グラフの形や頂点の位置が想像できていない",
        message="まずは一次関数のグラフをしっかり理解してから、放物線に進みましょう。",
    ),
    BacktrackRule(
        id="BT-A-PR-02-L3",
        skill_id="A-PR-02",
        error_type=ErrorType.L3,
        backtrack_to=("A-PR-01", "I-SET-01"),
        detection_hint="条件付き確率と通常の確率の混同、時間軸の誤認",
        message="条件付き確率は「分母が縮小する」と考えましょう。集合の考え方が重要です。",
    ),
)


class BacktrackRuleSet:
    """Lookup helpers over a fixed rule list."""

    def __init__(self, rules: Iterable[BacktrackRule] = DEFAULT_BACKTRACK_RULES):
        self._rules: tuple[BacktrackRule, ...] = tuple(rules)

    def __iter__(self):
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def find(self, skill_id: str, error_type: ErrorType) -> BacktrackRule | None:
        for rule in self._rules:
            if rule.skill_id == skill_id and rule.error_type == error_type:
                return rule
        return None

    def for_skill(self, skill_id: str) -> list[BacktrackRule]:
        return [r for r in self._rules if r.skill_id == skill_id]

    def by_error_type(self, error_type: ErrorType) -> list[BacktrackRule]:
        return [r for r in self._rules if r.error_type == error_type]

    def common_weakness_roots(self) -> list[tuple[str, int]]:
        """Backtrack targets by how many rules point at them, most frequent first."""
        counts = Counter(target for rule in self._rules for target in rule.backtrack_to)
        return sorted(counts.items(), key=lambda item: item[1], reverse=True)

    def unknown_targets(self, catalog: SkillCatalog) -> dict[str, list[str]]:
        """Rule id -> backtrack targets (and rule skills) that the catalog does not define."""
        missing: dict[str, list[str]] = {}
        for rule in self._rules:
            unknown = [t for t in (rule.skill_id, *rule.backtrack_to) if t not in catalog]
            if unknown:
                missing[rule.id] = unknown
        return missing

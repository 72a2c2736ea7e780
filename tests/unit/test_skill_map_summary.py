"""
Unit tests for the advisor's skill-map summary.
"""

from datetime import UTC, datetime

from src.core.mastery import SkillMasteryStatus, SkillStatus
from src.core.student_model import LearningSession, StudentModel
from src.learning.mastery_engine import initialize_skill_mastery
from src.learning.skill_map_summary import (
    build_momentum,
    build_recent_struggles,
    build_skill_map_summary,
    format_summary_for_llm,
)

NOW = datetime(2025, 4, 10, 12, 0, tzinfo=UTC)


def _session(skill_id, started_at, attempted=0, correct=0, mistakes=()):
    return LearningSession(
        id=f"{skill_id}-{started_at}",
        skill_id=skill_id,
        started_at=started_at,
        questions_attempted=attempted,
        questions_correct=correct,
        mistake_types=list(mistakes),
    )


def _model(catalog, sessions=()):
    model = StudentModel.create("u1").with_mastery(initialize_skill_mastery(catalog))
    model.learning_history = list(sessions)
    return model


class TestProgress:
    def test_category_and_unit_counts(self, catalog, rules):
        model = _model(catalog)
        mastery = dict(model.skill_mastery)
        mastery["B-01"] = SkillMasteryStatus("B-01", SkillStatus.MASTERED, rank=3)
        mastery["B-02"] = SkillMasteryStatus("B-02", SkillStatus.LEARNING, rank=1)
        summary = build_skill_map_summary(catalog, model.with_mastery(mastery), rules, now=NOW)

        basics = summary.category_progress[0]
        assert (basics.category, basics.total, basics.mastered, basics.learning) == ("基礎", 3, 1, 1)
        assert basics.progress_percent == 33
        unit = summary.unit_progress[0]
        assert (unit.unit, unit.mastered_count, unit.total_count) == ("数と式", 1, 3)
        assert unit.skills[1].rank == 1


class TestRecentStruggles:
    def test_aggregates_wrong_answers_with_review_targets(self, catalog, rules):
        model = _model(
            catalog,
            [
                _session("I-02", "2025-04-08T10:00:00+00:00", 5, 2, ["sign-error"]),
                _session("I-02", "2025-04-09T10:00:00+00:00", 2, 1, ["sign-error", "strategy"]),
                _session("B-01", "2025-04-09T11:00:00+00:00", 3, 3),
                _session("GHOST", "2025-04-09T12:00:00+00:00", 1, 0),
                _session("A-01", "2025-04-09T13:00:00+00:00", 2, 1),
            ],
        )
        struggles = build_recent_struggles(catalog, model, rules)
        assert [s.skill_id for s in struggles] == ["I-02", "A-01"]
        top = struggles[0]
        assert top.frequency == 4
        assert top.error_types == ["sign-error", "strategy"]
        # Z-99 is not in the catalog and is dropped
        assert [p.skill_id for p in top.related_prerequisites] == ["I-01", "B-01"]

    def test_window_limits_sessions(self, catalog, rules):
        sessions = [_session("I-02", "2025-04-01T10:00:00+00:00", 3, 0)]
        sessions += [_session("B-01", f"2025-04-0{d}T10:00:00+00:00", 1, 1) for d in range(2, 5)]
        assert build_recent_struggles(catalog, _model(catalog, sessions), rules, window=3) == []


class TestMomentum:
    def test_never_studied(self):
        momentum = build_momentum(StudentModel.create("u1"), now=NOW)
        assert momentum.last_studied_at is None
        assert momentum.days_since_last_study == -1
        assert momentum.streak == 0

    def test_streak_including_today(self, catalog):
        model = _model(
            catalog,
            [
                _session("B-01", "2025-04-08T10:00:00+00:00"),
                _session("B-01", "2025-04-09T10:00:00+00:00"),
                _session("B-01", "2025-04-10T09:00:00Z"),
            ],
        )
        momentum = build_momentum(model, now=NOW)
        assert momentum.streak == 3
        assert momentum.days_since_last_study == 0
        assert momentum.recent_session_count == 3

    def test_streak_counts_back_from_yesterday(self, catalog):
        model = _model(
            catalog,
            [
                _session("B-01", "2025-03-01T10:00:00+00:00"),
                _session("B-01", "2025-04-08T10:00:00+00:00"),
                _session("B-01", "2025-04-09T10:00:00+00:00"),
            ],
        )
        momentum = build_momentum(model, now=NOW)
        assert momentum.streak == 2
        assert momentum.days_since_last_study == 1
        assert momentum.recent_session_count == 2


class TestFormatting:
    def test_llm_context_sections(self, catalog, rules):
        model = _model(catalog, [_session("I-02", "2025-04-09T10:00:00+00:00", 2, 0, ["strategy"])])
        text = format_summary_for_llm(build_skill_map_summary(catalog, model, rules, now=NOW))
        assert "## カテゴリ別進捗" in text
        assert "- 基礎: 0/3 習得 (0%)" in text
        assert "### 基礎 > 数と式 (0/3)" in text
        assert "  学習可能: 文字式の計算" in text
        assert "- 二次関数の最大最小: ミス2回 (strategy)" in text
        assert "→ 復習候補: 二次方程式" in text
        assert "- 最終学習: 1日前" in text

    def test_no_history(self, catalog, rules):
        text = format_summary_for_llm(build_skill_map_summary(catalog, _model(catalog), rules, now=NOW))
        assert "- まだ学習履歴がありません" in text
        assert "## 最近のつまずき" not in text

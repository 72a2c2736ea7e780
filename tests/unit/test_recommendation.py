"""
Unit tests for the recommendation engine.
"""

from src.core.mastery import ErrorType, SkillMasteryStatus, SkillStatus
from src.learning.mastery_engine import initialize_skill_mastery
from src.learning.recommendation import (
    LEARNING_SCORE,
    REASON_CONTINUE,
    REASON_CORE_SUFFIX,
    REASON_NO_PREREQUISITES,
    REASON_PREREQUISITES_DONE,
    generate_learning_path,
    get_backtrack_recommendation,
    get_learning_progress_summary,
    get_next_recommended_skills,
)


def _mastered(skill_id):
    return SkillMasteryStatus(skill_id, SkillStatus.MASTERED, mastery_level=90, rank=3)


class TestNextSkills:
    def test_new_learner_gets_roots_by_weight(self, catalog):
        """Core 基礎 root outranks a standard 数学A root."""
        recs = get_next_recommended_skills(catalog, initialize_skill_mastery(catalog), count=3)
        assert [r.skill.id for r in recs] == ["B-01", "A-01"]
        assert recs[0].score == 150
        assert recs[0].reason == REASON_NO_PREREQUISITES + REASON_CORE_SUFFIX
        assert recs[1].score == 85
        assert [r.priority for r in recs] == [1, 2]

    def test_learning_skill_comes_first(self, catalog):
        mastery = initialize_skill_mastery(catalog)
        mastery["A-01"] = SkillMasteryStatus("A-01", SkillStatus.LEARNING, rank=1)
        recs = get_next_recommended_skills(catalog, mastery, count=1)
        assert recs[0].skill.id == "A-01"
        assert recs[0].score == LEARNING_SCORE
        assert recs[0].reason == REASON_CONTINUE

    def test_mastered_prerequisites_open_next_skills(self, catalog):
        mastery = initialize_skill_mastery(catalog)
        mastery["B-01"] = _mastered("B-01")
        recs = get_next_recommended_skills(catalog, mastery, count=5)
        ids = [r.skill.id for r in recs]
        assert "B-01" not in ids
        assert ids[0] == "B-02"
        assert recs[0].reason == REASON_PREREQUISITES_DONE

    def test_count_limits_results(self, catalog):
        assert len(get_next_recommended_skills(catalog, initialize_skill_mastery(catalog), count=1)) == 1


class TestBacktrack:
    def test_targets_resolved_and_unknown_dropped(self, catalog, rules):
        rec = get_backtrack_recommendation(catalog, rules, "I-02", ErrorType.L2)
        assert rec.rule.id == "BT-I-02-L2"
        assert [s.id for s in rec.target_skills] == ["I-01"]

    def test_no_rule(self, catalog, rules):
        assert get_backtrack_recommendation(catalog, rules, "A-01", ErrorType.L1) is None


class TestLearningPath:
    def test_prerequisites_first_without_duplicates(self, catalog):
        path = generate_learning_path(catalog, "I-02", initialize_skill_mastery(catalog))
        assert [s.id for s in path] == ["B-01", "B-02", "I-01", "I-02"]

    def test_mastered_skills_are_skipped(self, catalog):
        mastery = initialize_skill_mastery(catalog)
        mastery["B-02"] = _mastered("B-02")
        path = generate_learning_path(catalog, "I-02", mastery)
        assert [s.id for s in path] == ["I-01", "B-01", "I-02"]

    def test_mastered_target_gives_empty_path(self, catalog):
        mastery = initialize_skill_mastery(catalog)
        mastery["A-01"] = _mastered("A-01")
        assert generate_learning_path(catalog, "A-01", mastery) == []


class TestProgressSummary:
    def test_counts_and_percent(self, catalog):
        mastery = initialize_skill_mastery(catalog)
        mastery["B-01"] = _mastered("B-01")
        mastery["A-01"] = SkillMasteryStatus("A-01", SkillStatus.LEARNING)
        summary = get_learning_progress_summary(catalog, mastery)
        assert summary.total == 6
        assert summary.mastered == 1
        assert summary.learning == 1
        assert summary.unlocked == 0
        assert summary.locked == 4
        assert summary.progress_percent == 17
        assert summary.by_category["基礎"].total == 3
        assert summary.by_category["基礎"].mastered == 1

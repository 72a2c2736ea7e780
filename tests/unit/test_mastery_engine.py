"""
Unit tests for the mastery state machine.

All functions are pure, so no store is involved.
"""

import pytest

from src.core.mastery import MAX_RANK, SkillMasteryStatus, SkillStatus, round_half_up
from src.core.student_model import StudentModel
from src.learning.mastery_engine import (
    apply_status_change,
    initialize_skill_mastery,
    initialize_skill_mastery_with_subjects,
    master_skills_bulk,
    process_skill_update,
    rank_up_skill,
    update_mastery_from_score,
    update_skill_unlock_status,
)


def _model(catalog, **overrides):
    model = StudentModel.create("u1")
    mastery = initialize_skill_mastery(catalog)
    for skill_id, entry in overrides.items():
        mastery[skill_id.replace("_", "-")] = entry
    return model.with_mastery(mastery)


class TestInitialization:
    def test_roots_unlocked_rest_locked(self, catalog):
        mastery = initialize_skill_mastery(catalog)
        assert mastery["B-01"].status is SkillStatus.UNLOCKED
        assert mastery["A-01"].status is SkillStatus.UNLOCKED
        assert mastery["B-02"].status is SkillStatus.LOCKED
        assert mastery["B-01"].unlocked_at is not None

    def test_studied_subjects_unlock_whole_category(self, catalog):
        mastery = initialize_skill_mastery_with_subjects(catalog, ["数学I"])
        assert mastery["I-01"].status is SkillStatus.UNLOCKED
        assert mastery["I-02"].status is SkillStatus.UNLOCKED
        assert mastery["B-02"].status is SkillStatus.LOCKED


class TestScorePath:
    def test_round_half_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(0.5) == 1
        assert round_half_up(2.49) == 2

    def test_weak_score_moves_to_learning(self):
        updated = update_mastery_from_score(SkillMasteryStatus.initial("X", SkillStatus.UNLOCKED), 50)
        assert updated.status is SkillStatus.LEARNING
        assert updated.mastery_level == 15
        assert updated.attempts == 1
        assert updated.best_score == 50
        assert updated.mastered_at is None

    def test_qualifying_score_floors_level(self):
        """A score >= 70 lifts the level to at least the score itself."""
        updated = update_mastery_from_score(SkillMasteryStatus.initial("X", SkillStatus.LEARNING), 80)
        assert updated.mastery_level == 80
        assert updated.status is SkillStatus.MASTERED
        assert updated.mastered_at is not None

    @pytest.mark.parametrize("prior_level", [0, 50, 100])
    @pytest.mark.parametrize("score", [70, 85, 100])
    def test_qualifying_score_masters_from_any_level(self, prior_level, score):
        current = SkillMasteryStatus("X", SkillStatus.LEARNING, mastery_level=prior_level)
        updated = update_mastery_from_score(current, score)
        assert updated.mastery_level >= score
        assert updated.mastery_level == max(score, round_half_up(prior_level * 0.7 + score * 0.3))
        assert updated.status.is_mastered

    def test_perfect_score(self):
        updated = update_mastery_from_score(SkillMasteryStatus.initial("X", SkillStatus.LEARNING), 95)
        assert updated.status is SkillStatus.PERFECT

    def test_mastered_skill_stays_mastered_on_weak_score(self):
        current = SkillMasteryStatus("X", SkillStatus.MASTERED, mastery_level=80, rank=3, mastered_at="t0")
        updated = update_mastery_from_score(current, 10)
        assert updated.status is SkillStatus.MASTERED
        assert updated.mastered_at == "t0"

    def test_newly_mastered_runs_unlock_cascade(self, catalog):
        model = _model(catalog)
        result = process_skill_update(model, catalog, "B-01", 90)
        assert result.newly_mastered is True
        assert result.updated_model.skill_mastery["B-02"].status is SkillStatus.UNLOCKED
        # I-02 still waits for I-01
        assert result.updated_model.skill_mastery["I-02"].status is SkillStatus.LOCKED
        # input model is untouched
        assert model.skill_mastery["B-02"].status is SkillStatus.LOCKED

    def test_unknown_skill_is_synthesized(self, catalog):
        result = process_skill_update(_model(catalog), catalog, "GHOST", 40)
        assert result.updated_model.skill_mastery["GHOST"].status is SkillStatus.LEARNING
        assert result.newly_mastered is False


class TestUnlockCascade:
    def test_single_pass_does_not_chain(self, catalog):
        """Unlocking never masters anything, so one pass unlocks direct successors only."""
        model = _model(catalog, B_01=SkillMasteryStatus("B-01", SkillStatus.MASTERED, rank=3))
        updated = update_skill_unlock_status(model, catalog)
        assert updated.skill_mastery["B-02"].status is SkillStatus.UNLOCKED
        assert updated.skill_mastery["I-01"].status is SkillStatus.LOCKED

    def test_idempotent(self, catalog):
        model = _model(catalog, B_01=SkillMasteryStatus("B-01", SkillStatus.MASTERED, rank=3))
        once = update_skill_unlock_status(model, catalog)
        twice = update_skill_unlock_status(once, catalog)
        assert {k: v.status for k, v in once.skill_mastery.items()} == {
            k: v.status for k, v in twice.skill_mastery.items()
        }

    def test_active_skills_are_never_downgraded(self, catalog):
        model = _model(catalog, I_01=SkillMasteryStatus("I-01", SkillStatus.LEARNING, rank=1))
        updated = update_skill_unlock_status(model, catalog)
        assert updated.skill_mastery["I-01"].status is SkillStatus.LEARNING


class TestRankPath:
    def test_rank_up_from_unlocked(self, catalog):
        result = rank_up_skill(_model(catalog), catalog, "B-01")
        entry = result.updated_model.skill_mastery["B-01"]
        assert result.new_rank == 1
        assert result.mastered is False
        assert entry.status is SkillStatus.LEARNING
        assert entry.mastery_level == 33

    def test_third_rank_masters_and_cascades(self, catalog):
        model = _model(catalog, B_01=SkillMasteryStatus("B-01", SkillStatus.LEARNING, mastery_level=66, rank=2))
        result = rank_up_skill(model, catalog, "B-01")
        entry = result.updated_model.skill_mastery["B-01"]
        assert result.new_rank == MAX_RANK
        assert result.mastered is True
        assert entry.rank == MAX_RANK
        assert entry.status.is_mastered
        assert result.updated_model.skill_mastery["B-02"].status is SkillStatus.UNLOCKED

    def test_already_mastered_skill_is_not_reported_again(self, catalog):
        model = _model(catalog, A_01=SkillMasteryStatus("A-01", SkillStatus.MASTERED, mastery_level=90, rank=3))
        result = rank_up_skill(model, catalog, "A-01")
        assert result.mastered is False
        assert result.new_rank == MAX_RANK
        assert result.updated_model.skill_mastery["A-01"].status.is_mastered

    def test_missing_entry_defaults_to_unlocked(self, catalog):
        model = StudentModel.create("u1")
        result = rank_up_skill(model, catalog, "A-01")
        assert result.updated_model.skill_mastery["A-01"].status is SkillStatus.LEARNING


class TestBulkMastery:
    def test_masters_targets_and_unlocks_successors(self, catalog):
        updated = master_skills_bulk(_model(catalog), catalog, ["B-01", "B-02"])
        for skill_id in ("B-01", "B-02"):
            entry = updated.skill_mastery[skill_id]
            assert entry.status.is_mastered
            assert entry.rank == MAX_RANK
        assert updated.skill_mastery["I-01"].status is SkillStatus.UNLOCKED
        assert updated.skill_mastery["B-03"].status is SkillStatus.UNLOCKED


class TestApplyStatusChange:
    def test_first_started_and_mastered_milestones_set_once(self, catalog):
        model = apply_status_change(_model(catalog), "B-01", {"status": "learning"})
        assert model.milestones.first_skill_started_id == "B-01"
        model = apply_status_change(model, "A-01", {"status": "learning"})
        assert model.milestones.first_skill_started_id == "B-01"

        model = apply_status_change(model, "A-01", {"status": "mastered"})
        assert model.milestones.first_skill_mastered_id == "A-01"
        assert model.skill_mastery["A-01"].mastered_at is not None

    def test_demotion_clears_mastered_at(self, catalog):
        model = apply_status_change(_model(catalog), "B-01", {"status": "mastered"})
        model = apply_status_change(model, "B-01", {"status": "learning"})
        assert model.skill_mastery["B-01"].status is SkillStatus.LEARNING
        assert model.skill_mastery["B-01"].mastered_at is None

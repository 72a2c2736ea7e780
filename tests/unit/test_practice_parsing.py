"""
Unit tests for problem/evaluation parsing and the rank <-> level rules.
"""

import pytest
from conftest import evaluation_json, problem_json

from src.core.practice import (
    GeneratedProblem,
    ProblemParseError,
    basic_level,
    can_rank_up,
    fix_latex_in_json,
    parse_evaluation_response,
    parse_problem_response,
    required_level_for_rank,
)


class TestRankLevelRules:
    @pytest.mark.parametrize("rank,level", [(-1, 1), (0, 1), (1, 2), (2, 3), (3, 4), (7, 4)])
    def test_required_level(self, rank, level):
        assert required_level_for_rank(rank) == level

    def test_can_rank_up_only_at_required_level(self):
        assert can_rank_up(1, 2) is True
        assert can_rank_up(1, 3) is False
        assert can_rank_up(1, 1) is False

    def test_basic_level_caps_at_two(self):
        assert basic_level(0) == 1
        assert basic_level(2) == 2
        assert basic_level(3) == 2


class TestProblemParsing:
    def test_fenced_json_block(self):
        problem = parse_problem_response(problem_json(), "I-01", 2)
        assert problem.skill_id == "I-01"
        assert problem.level == 2
        assert problem.card_info.card_name == "たすき掛け"
        assert problem.solution_steps == ["(x-2)(x-3)=0", "x = 2, 3"]

    def test_bare_object_with_surrounding_text(self):
        raw = problem_json().replace("```json", "").replace("```", "")
        problem = parse_problem_response(f"はい、問題です。\n{raw}\n以上です。", "B-01", 1)
        assert problem.question_text.startswith("x^2")

    def test_latex_backslashes_are_escaped(self):
        raw = (
            '{"questionText": "\\frac{1}{2} + \\sqrt{2} を計算せよ", "correctAnswer": "a",'
            ' "solutionSteps": [], "checkPoints": [], "targetPattern": "p", "cardInfo": {"cardName": "c"}}'
        )
        problem = parse_problem_response(raw, "B-01", 1)
        assert problem.question_text == "\\frac{1}{2} + \\sqrt{2} を計算せよ"

    def test_fix_latex_keeps_json_escapes(self):
        assert fix_latex_in_json('"\\n"') == '"\\n"'
        assert fix_latex_in_json('"\\alpha"') == '"\\\\alpha"'

    def test_missing_fields_raise(self):
        with pytest.raises(ProblemParseError):
            parse_problem_response('{"questionText": "only"}', "B-01", 1)

    def test_unparseable_raises(self):
        with pytest.raises(ProblemParseError):
            parse_problem_response("sorry, I cannot help with that", "B-01", 1)

    def test_round_trip_through_dict(self):
        problem = parse_problem_response(problem_json(), "I-01", 3)
        assert GeneratedProblem.from_dict(problem.to_dict()) == problem


class TestEvaluationParsing:
    def test_correct_high_confidence(self):
        result = parse_evaluation_response(evaluation_json(True, "high", matchedCheckPoints=["a"]))
        assert result.is_correct is True
        assert result.matched_check_points == ["a"]

    def test_low_confidence_forces_incorrect(self):
        result = parse_evaluation_response(
            evaluation_json(True, "low", indeterminateReason="画像が読み取れません")
        )
        assert result.is_correct is False
        assert result.indeterminate_reason == "画像が読み取れません"

    def test_unknown_confidence_defaults_to_medium(self):
        assert parse_evaluation_response(evaluation_json(True, "certain")).confidence == "medium"

    def test_missing_fields_raise(self):
        with pytest.raises(ProblemParseError):
            parse_evaluation_response('{"isCorrect": "yes"}')

"""
Practice domain types.

Generated problems, answer evaluations, the rank <-> level rules that gate
rank-ups, and tolerant parsing of model output into those types.
"""

from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass, field
from typing import Any

from loguru import logger

# Level 1: basics, 2: standard, 3: applied, 4: exam-level
PROBLEM_LEVELS = (1, 2, 3, 4)


class ProblemParseError(ValueError):
    """Model output could not be turned into a problem or evaluation."""


# ========================================
# Types
# ========================================


@dataclass
class CardInfo:
    card_name: str
    trigger: str = ""
    method: str = ""


@dataclass
class GeneratedProblem:
    skill_id: str
    level: int
    question_text: str
    correct_answer: str
    solution_steps: list[str]
    check_points: list[str]
    target_pattern: str
    card_info: CardInfo
    figure: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GeneratedProblem:
        card = data.get("card_info") or {}
        return cls(
            skill_id=data["skill_id"],
            level=int(data["level"]),
            question_text=data["question_text"],
            correct_answer=data["correct_answer"],
            solution_steps=list(data.get("solution_steps", [])),
            check_points=list(data.get("check_points", [])),
            target_pattern=data.get("target_pattern", ""),
            card_info=CardInfo(
                card_name=card.get("card_name", ""),
                trigger=card.get("trigger", ""),
                method=card.get("method", ""),
            ),
            figure=data.get("figure"),
        )


@dataclass
class EvaluationResult:
    is_correct: bool
    confidence: str  # high | medium | low
    feedback: str
    matched_check_points: list[str] = field(default_factory=list)
    missed_check_points: list[str] = field(default_factory=list)
    indeterminate_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ========================================
# Rank <-> level rules
# ========================================


def required_level_for_rank(rank: int) -> int:
    """Problem level a learner must solve to advance from `rank`."""
    if rank <= 0:
        return 1
    if rank == 1:
        return 2
    if rank == 2:
        return 3
    return 4


def can_rank_up(current_rank: int, solved_level: int) -> bool:
    return solved_level == required_level_for_rank(current_rank)


def basic_level(rank: int) -> int:
    """Easier level used in basic difficulty mode."""
    return min(2, required_level_for_rank(rank))


# ========================================
# Parsing
# ========================================

_JSON_BLOCK = re.compile(r"```json\s*([\s\S]*?)\s*```")
_CODE_BLOCK = re.compile(r"```\s*([\s\S]*?)\s*```")
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def fix_latex_in_json(raw: str) -> str:
    """Escape lone LaTeX backslashes (\\frac, \\{) so json.loads accepts them."""
    fixed = re.sub(r"(?<!\\)\\(?=[a-zA-Z]{2,})", r"\\\\", raw)
    return re.sub(r"(?<!\\)\\(?=[{}])", r"\\\\", fixed)


def extract_json_object(response: str, label: str) -> dict[str, Any] | None:
    """
    Pull the first JSON object out of model output.

    Tries a ```json fence, then any fence, then the outermost braces.

    Args:
        response: Raw model text
        label: What is being parsed, for log messages

    Returns:
        Parsed dict, or None when every attempt failed
    """
    for pattern, group, where in (
        (_JSON_BLOCK, 1, "JSON block"),
        (_CODE_BLOCK, 1, "code block"),
        (_JSON_OBJECT, 0, "JSON object"),
    ):
        match = pattern.search(response)
        if not match:
            continue
        try:
            parsed = json.loads(fix_latex_in_json(match.group(group)))
        except json.JSONDecodeError:
            logger.warning(f"Failed to parse {where} from {label} response")
            continue
        if isinstance(parsed, dict):
            return parsed
    logger.error(f"All parse attempts failed for {label} response")
    return None


def parse_problem_response(response: str, skill_id: str, level: int) -> GeneratedProblem:
    parsed = extract_json_object(response, "problem")
    if parsed is None:
        raise ProblemParseError("Could not parse problem generation response")

    card = parsed.get("cardInfo")
    if not (
        isinstance(parsed.get("questionText"), str)
        and isinstance(parsed.get("correctAnswer"), str)
        and isinstance(parsed.get("solutionSteps"), list)
        and isinstance(parsed.get("checkPoints"), list)
        and isinstance(parsed.get("targetPattern"), str)
        and isinstance(card, dict)
        and isinstance(card.get("cardName"), str)
    ):
        logger.error(f"Problem response validation failed: keys={sorted(parsed)}")
        raise ProblemParseError("Problem generation response is missing required fields")

    return GeneratedProblem(
        skill_id=skill_id,
        level=level,
        question_text=parsed["questionText"],
        correct_answer=parsed["correctAnswer"],
        solution_steps=[str(s) for s in parsed["solutionSteps"]],
        check_points=[str(c) for c in parsed["checkPoints"]],
        target_pattern=parsed["targetPattern"],
        card_info=CardInfo(
            card_name=card["cardName"],
            trigger=card.get("trigger") or "",
            method=card.get("method") or "",
        ),
    )


def parse_evaluation_response(response: str) -> EvaluationResult:
    parsed = extract_json_object(response, "evaluation")
    if parsed is None:
        raise ProblemParseError("Could not parse answer evaluation response")

    if not (
        isinstance(parsed.get("isCorrect"), bool)
        and isinstance(parsed.get("confidence"), str)
        and isinstance(parsed.get("feedback"), str)
    ):
        logger.error(f"Evaluation response validation failed: keys={sorted(parsed)}")
        raise ProblemParseError("Answer evaluation response is missing required fields")

    confidence = parsed["confidence"]
    if confidence not in ("high", "medium", "low"):
        logger.warning(f"Unknown confidence level: {confidence}, defaulting to medium")
        confidence = "medium"

    return EvaluationResult(
        # a low-confidence verdict never counts as correct
        is_correct=False if confidence == "low" else parsed["isCorrect"],
        confidence=confidence,
        feedback=parsed["feedback"],
        matched_check_points=list(parsed.get("matchedCheckPoints") or []),
        missed_check_points=list(parsed.get("missedCheckPoints") or []),
        indeterminate_reason=parsed.get("indeterminateReason"),
    )

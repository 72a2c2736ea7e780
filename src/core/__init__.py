"""
Core Module - Shared domain models.

Components:
- mastery: Skill status vocabulary and per-skill mastery record
- student_model: Per-learner document (history, mistakes, independence, mastery map)
- practice: Generated problems, evaluations, rank/level rules and parsing

Design Principle:
Services (src/learning/, src/quiz/) import shared types from src/core/
rather than redefining them.
"""

from src.core.mastery import (
    ErrorType,
    SkillImportance,
    SkillMasteryStatus,
    SkillStatus,
    round_half_up,
    utc_now_iso,
)
from src.core.practice import (
    CardInfo,
    EvaluationResult,
    GeneratedProblem,
    ProblemParseError,
    basic_level,
    can_rank_up,
    required_level_for_rank,
)
from src.core.student_model import LearningSession, MistakeType, StudentModel

__all__ = [
    # Mastery
    "ErrorType",
    "SkillImportance",
    "SkillMasteryStatus",
    "SkillStatus",
    "round_half_up",
    "utc_now_iso",
    # Practice
    "CardInfo",
    "EvaluationResult",
    "GeneratedProblem",
    "ProblemParseError",
    "basic_level",
    "can_rank_up",
    "required_level_for_rank",
    # Student model
    "LearningSession",
    "MistakeType",
    "StudentModel",
]

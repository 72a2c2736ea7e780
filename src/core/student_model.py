"""
Student Model.

Per-learner aggregate stored as one document: milestones, onboarding state,
learning history, mistake patterns, independence metrics and the skill
mastery map. Mutations are whole-document read-modify-write, so the store
serializes them per user.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from src.core.mastery import SkillMasteryStatus, round_half_up, utc_now_iso

SCHEMA_VERSION = 1
MAX_MISTAKE_EXAMPLES = 5
RECENT_MISTAKE_WINDOW = 10
MAX_LEARNING_HISTORY = 200


# ========================================
# Mistake taxonomy
# ========================================


class MistakeType(str, Enum):
    """Fine-grained mistake types reported by evaluation."""

    TRANSCRIPTION = "transcription"
    ALIGNMENT = "alignment"
    STRATEGY = "strategy"
    FORMULA_SELECTION = "formula-selection"
    CONDITION_CHECK = "condition-check"
    CALCULATION = "calculation"
    SIGN_ERROR = "sign-error"
    DISTRIBUTIVE_LAW = "distributive-law"
    FRACTION_OPERATION = "fraction-operation"
    ORDER_OF_OPERATIONS = "order-of-operations"


MISTAKE_TYPE_CATEGORIES: dict[MistakeType, str] = {
    MistakeType.TRANSCRIPTION: "L1",
    MistakeType.ALIGNMENT: "L1",
    MistakeType.STRATEGY: "L2",
    MistakeType.FORMULA_SELECTION: "L2",
    MistakeType.CONDITION_CHECK: "L2",
    MistakeType.CALCULATION: "L3",
    MistakeType.SIGN_ERROR: "L3",
    MistakeType.DISTRIBUTIVE_LAW: "L3",
    MistakeType.FRACTION_OPERATION: "L3",
    MistakeType.ORDER_OF_OPERATIONS: "L3",
}

PATTERN_BUCKETS = ("transcription", "alignment", "strategy", "calculation")


def mistake_bucket(mistake_type: MistakeType) -> str:
    """Map a fine-grained mistake type to its pattern bucket."""
    category = MISTAKE_TYPE_CATEGORIES.get(mistake_type)
    if category == "L1":
        return "transcription" if mistake_type is MistakeType.TRANSCRIPTION else "alignment"
    if category == "L2":
        return "strategy"
    return "calculation"


@dataclass
class MistakeExample:
    timestamp: str
    question_id: str
    skill_id: str
    description: str
    user_work: str
    correction: str


@dataclass
class MistakeTypeStats:
    total_count: int = 0
    recent_count: int = 0
    last_occurred: str | None = None
    examples: list[MistakeExample] = field(default_factory=list)
    trend: str = "stable"  # improving | stable | worsening

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MistakeTypeStats:
        return cls(
            total_count=data.get("total_count", 0),
            recent_count=data.get("recent_count", 0),
            last_occurred=data.get("last_occurred"),
            examples=[MistakeExample(**e) for e in data.get("examples", [])],
            trend=data.get("trend", "stable"),
        )


# ========================================
# Independence
# ========================================


def calculate_independence_score(self_detected: int, ai_assisted: int) -> int:
    """Share of errors the learner caught unaided, as a 0-100 percentage."""
    total = self_detected + ai_assisted
    if total == 0:
        return 0
    return round_half_up(self_detected / total * 100)


def calculate_independence_level(score: int) -> int:
    if score <= 20:
        return 1
    if score <= 40:
        return 2
    if score <= 60:
        return 3
    if score <= 80:
        return 4
    return 5


@dataclass
class IndependenceMetrics:
    self_detected_errors: int = 0
    ai_assisted_errors: int = 0
    self_questioning_usage: int = 0
    self_explanation_success: int = 0
    independence_score: int = 0
    independence_level: int = 1
    last_updated: str = field(default_factory=utc_now_iso)

    def recalculate(self) -> None:
        self.independence_score = calculate_independence_score(
            self.self_detected_errors, self.ai_assisted_errors
        )
        self.independence_level = calculate_independence_level(self.independence_score)
        self.last_updated = utc_now_iso()


# ========================================
# History, milestones, onboarding
# ========================================


@dataclass
class LearningSession:
    id: str
    skill_id: str
    started_at: str
    ended_at: str | None = None
    duration_minutes: int = 0
    questions_attempted: int = 0
    questions_correct: int = 0
    mistake_types: list[str] = field(default_factory=list)
    notes: str = ""


@dataclass
class UserMilestones:
    first_visit_at: str | None = None
    onboarding_completed_at: str | None = None
    first_skill_started_at: str | None = None
    first_skill_started_id: str | None = None
    first_skill_mastered_at: str | None = None
    first_skill_mastered_id: str | None = None
    first_textbook_registered_at: str | None = None


@dataclass
class OnboardingStatus:
    completed: bool = False
    self_assessment: str | None = None  # struggling | basic-ok | want-more
    grade_level: str | None = None
    studied_subjects: list[str] = field(default_factory=list)
    study_goal: str | None = None
    started_at: str | None = None
    completed_at: str | None = None


# ========================================
# Aggregate
# ========================================

_KNOWN_KEYS = {
    "id",
    "version",
    "created_at",
    "updated_at",
    "milestones",
    "onboarding",
    "learning_history",
    "mistake_patterns",
    "independence_metrics",
    "skill_mastery",
}


@dataclass
class StudentModel:
    """Whole learner document. Unknown keys are carried in `extra` and written back verbatim."""

    id: str
    version: int = SCHEMA_VERSION
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)
    milestones: UserMilestones = field(default_factory=UserMilestones)
    onboarding: OnboardingStatus = field(default_factory=OnboardingStatus)
    learning_history: list[LearningSession] = field(default_factory=list)
    mistake_patterns: dict[str, MistakeTypeStats] = field(
        default_factory=lambda: {bucket: MistakeTypeStats() for bucket in PATTERN_BUCKETS}
    )
    independence_metrics: IndependenceMetrics = field(default_factory=IndependenceMetrics)
    skill_mastery: dict[str, SkillMasteryStatus] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, user_id: str) -> StudentModel:
        now = utc_now_iso()
        return cls(
            id=user_id,
            created_at=now,
            updated_at=now,
            milestones=UserMilestones(first_visit_at=now),
        )

    def mastery_for(self, skill_id: str) -> SkillMasteryStatus | None:
        return self.skill_mastery.get(skill_id)

    def with_mastery(self, skill_mastery: dict[str, SkillMasteryStatus]) -> StudentModel:
        """Shallow copy with a replaced mastery map."""
        clone = StudentModel(**{k: getattr(self, k) for k in self.__dataclass_fields__})
        clone.skill_mastery = skill_mastery
        return clone

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = dict(self.extra)
        data.update(
            {
                "id": self.id,
                "version": self.version,
                "created_at": self.created_at,
                "updated_at": self.updated_at,
                "milestones": asdict(self.milestones),
                "onboarding": asdict(self.onboarding),
                "learning_history": [asdict(s) for s in self.learning_history],
                "mistake_patterns": {k: asdict(v) for k, v in self.mistake_patterns.items()},
                "independence_metrics": asdict(self.independence_metrics),
                "skill_mastery": {k: v.to_dict() for k, v in self.skill_mastery.items()},
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StudentModel:
        """
        Parse a stored document.

        Does not repair legacy records; see StudentModelService for the
        load-time migration.
        """
        patterns = {bucket: MistakeTypeStats() for bucket in PATTERN_BUCKETS}
        for bucket, stats in (data.get("mistake_patterns") or {}).items():
            patterns[bucket] = MistakeTypeStats.from_dict(stats)

        milestones = data.get("milestones")
        return cls(
            id=data["id"],
            version=data.get("version", SCHEMA_VERSION),
            created_at=data.get("created_at") or utc_now_iso(),
            updated_at=data.get("updated_at") or utc_now_iso(),
            milestones=UserMilestones(**milestones) if milestones else UserMilestones(),
            onboarding=OnboardingStatus(**(data.get("onboarding") or {})),
            learning_history=[LearningSession(**s) for s in data.get("learning_history", [])],
            mistake_patterns=patterns,
            independence_metrics=IndependenceMetrics(**(data.get("independence_metrics") or {})),
            skill_mastery={
                skill_id: SkillMasteryStatus.from_dict({"skill_id": skill_id, **entry})
                for skill_id, entry in (data.get("skill_mastery") or {}).items()
            },
            extra={k: v for k, v in data.items() if k not in _KNOWN_KEYS},
        )

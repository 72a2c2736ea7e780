"""
Core Mastery Module.

Shared vocabulary for per-skill mastery tracking. Both the mastery engine
and the recommendation engine import from here.

Design:
- SkillStatus: progress states (locked -> unlocked -> learning -> mastered/perfect)
- SkillImportance: exam importance of a skill definition
- ErrorType: severity tier of a learner error (L1 procedural, L2 conceptual, L3 logical)
- SkillMasteryStatus: mutable per-user, per-skill record
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, fields
from datetime import UTC, datetime
from enum import Enum
from typing import Any

# ========================================
# Thresholds
# ========================================

EMA_ALPHA = 0.3
MASTERED_THRESHOLD = 70
PERFECT_THRESHOLD = 95
MAX_RANK = 3
RANK_LEVEL_STEP = 33
FORCED_MASTERY_SCORE = 90


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative values (JS Math.round semantics)."""
    return int(math.floor(value + 0.5))


def utc_now_iso() -> str:
    """Current UTC time as an ISO8601 string."""
    return datetime.now(UTC).isoformat()


class SkillStatus(str, Enum):
    """
    Mastery status of one skill for one learner.

    Ordered by progress. Demotion is possible only through explicit
    reassignment (see mastery_engine.apply_status_change).
    """

    LOCKED = "locked"  # prerequisites not yet mastered
    UNLOCKED = "unlocked"  # available to start
    LEARNING = "learning"
    MASTERED = "mastered"
    PERFECT = "perfect"

    @property
    def is_mastered(self) -> bool:
        return self in (SkillStatus.MASTERED, SkillStatus.PERFECT)

    @property
    def is_active(self) -> bool:
        """Anything past locked."""
        return self is not SkillStatus.LOCKED

    @property
    def emoji(self) -> str:
        """Status marker for CLI display."""
        return {
            SkillStatus.LOCKED: "🔒",
            SkillStatus.UNLOCKED: "☆☆☆",
            SkillStatus.LEARNING: "★☆☆",
            SkillStatus.MASTERED: "★★★",
            SkillStatus.PERFECT: "🏆",
        }[self]


class SkillImportance(str, Enum):
    """Importance of a skill for the common entrance exam."""

    CORE = "core"
    STANDARD = "standard"
    ADVANCED = "advanced"


class ErrorType(str, Enum):
    """Severity tier of a learner error."""

    L1 = "L1"  # procedural: arithmetic slip, sign error
    L2 = "L2"  # conceptual: misread definition, graph/expression mismatch
    L3 = "L3"  # logical: wrong proposition, cause/effect confusion


@dataclass
class SkillMasteryStatus:
    """
    Mastery record for one skill.

    rank is the discrete practice counter (0-3); mastery_level is the
    smoothed 0-100 score. Whenever status becomes mastered/perfect the
    caller keeps rank >= 3.
    """

    skill_id: str
    status: SkillStatus = SkillStatus.LOCKED
    mastery_level: int = 0
    rank: int = 0
    attempts: int = 0
    last_attempt: str | None = None
    last_practiced: str | None = None
    best_score: int | None = None
    unlocked_at: str | None = None
    mastered_at: str | None = None

    @classmethod
    def initial(cls, skill_id: str, status: SkillStatus = SkillStatus.LOCKED) -> SkillMasteryStatus:
        """Fresh record; unlocked records are stamped with unlocked_at."""
        return cls(
            skill_id=skill_id,
            status=status,
            unlocked_at=utc_now_iso() if status is SkillStatus.UNLOCKED else None,
        )

    def copy(self, **changes: Any) -> SkillMasteryStatus:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data.update(changes)
        return SkillMasteryStatus(**data)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SkillMasteryStatus:
        """
        Build from a stored document.

        A missing rank is left as None so the store can detect legacy
        records and migrate them.
        """
        return cls(
            skill_id=data["skill_id"],
            status=SkillStatus(data.get("status", SkillStatus.LOCKED.value)),
            mastery_level=int(data.get("mastery_level", 0)),
            rank=data.get("rank"),  # type: ignore[arg-type]
            attempts=int(data.get("attempts", 0)),
            last_attempt=data.get("last_attempt"),
            last_practiced=data.get("last_practiced"),
            best_score=data.get("best_score"),
            unlocked_at=data.get("unlocked_at"),
            mastered_at=data.get("mastered_at"),
        )

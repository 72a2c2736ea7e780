"""
Skill Map Summary.

Condenses a learner's state into the context the advisor model reads:
category and unit progress, recent struggles (with backtrack review
targets) and study momentum.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from src.catalog.backtrack import BacktrackRuleSet
from src.catalog.skills import SkillCatalog
from src.core.mastery import SkillStatus, round_half_up
from src.core.student_model import StudentModel

RECENT_SESSION_WINDOW = 20
MAX_STRUGGLES = 5
MAX_ACTIVE_UNITS = 15
STREAK_LOOKBACK_DAYS = 365


@dataclass
class CategoryProgress:
    category: str
    total: int
    mastered: int
    learning: int
    progress_percent: int


@dataclass
class UnitSkillInfo:
    id: str
    name: str
    status: SkillStatus
    rank: int
    last_practiced: str | None


@dataclass
class UnitProgress:
    category: str
    unit: str
    skills: list[UnitSkillInfo]
    mastered_count: int
    total_count: int


@dataclass
class RelatedPrerequisite:
    skill_id: str
    skill_name: str
    message: str


@dataclass
class RecentStruggle:
    skill_id: str
    skill_name: str
    error_types: list[str]
    frequency: int
    related_prerequisites: list[RelatedPrerequisite] = field(default_factory=list)


@dataclass
class LearningMomentum:
    last_studied_at: str | None
    days_since_last_study: int  # -1 when never studied
    recent_session_count: int
    streak: int


@dataclass
class SkillMapSummary:
    category_progress: list[CategoryProgress]
    unit_progress: list[UnitProgress]
    recent_struggles: list[RecentStruggle]
    momentum: LearningMomentum


def _parse_ts(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


# ========================================
# Builders
# ========================================


def build_category_progress(catalog: SkillCatalog, model: StudentModel) -> list[CategoryProgress]:
    counts: dict[str, list[int]] = {}
    for skill in catalog:
        row = counts.setdefault(skill.category, [0, 0, 0])
        row[0] += 1
        entry = model.skill_mastery.get(skill.id)
        if entry and entry.status.is_mastered:
            row[1] += 1
        elif entry and entry.status is SkillStatus.LEARNING:
            row[2] += 1

    return [
        CategoryProgress(
            category=category,
            total=total,
            mastered=mastered,
            learning=learning,
            progress_percent=round_half_up(mastered / total * 100) if total else 0,
        )
        for category, (total, mastered, learning) in counts.items()
    ]


def build_unit_progress(catalog: SkillCatalog, model: StudentModel) -> list[UnitProgress]:
    results: list[UnitProgress] = []
    for (category, unit), skills in catalog.units().items():
        infos = []
        for skill in skills:
            entry = model.skill_mastery.get(skill.id)
            infos.append(
                UnitSkillInfo(
                    id=skill.id,
                    name=skill.name,
                    status=entry.status if entry else SkillStatus.LOCKED,
                    rank=(entry.rank or 0) if entry else 0,
                    last_practiced=entry.last_practiced if entry else None,
                )
            )
        results.append(
            UnitProgress(
                category=category,
                unit=unit,
                skills=infos,
                mastered_count=sum(1 for i in infos if i.status.is_mastered),
                total_count=len(infos),
            )
        )
    return results


def build_recent_struggles(
    catalog: SkillCatalog,
    model: StudentModel,
    rules: BacktrackRuleSet,
    window: int = RECENT_SESSION_WINDOW,
) -> list[RecentStruggle]:
    """Skills with wrong answers in the last `window` sessions, most frequent first (top 5)."""
    by_skill: dict[str, tuple[list[str], int]] = {}
    for session in model.learning_history[-window:]:
        wrong = session.questions_attempted - session.questions_correct
        if session.questions_attempted <= 0 or wrong <= 0:
            continue
        error_types, frequency = by_skill.get(session.skill_id, ([], 0))
        for mistake in session.mistake_types:
            if mistake not in error_types:
                error_types.append(mistake)
        by_skill[session.skill_id] = (error_types, frequency + wrong)

    struggles: list[RecentStruggle] = []
    for skill_id, (error_types, frequency) in by_skill.items():
        skill = catalog.get(skill_id)
        if skill is None:
            continue

        related: dict[str, RelatedPrerequisite] = {}
        for rule in rules.for_skill(skill_id):
            for target_id in rule.backtrack_to:
                target = catalog.get(target_id)
                if target is not None:
                    related[target_id] = RelatedPrerequisite(target_id, target.name, rule.message)

        struggles.append(
            RecentStruggle(
                skill_id=skill_id,
                skill_name=skill.name,
                error_types=error_types,
                frequency=frequency,
                related_prerequisites=list(related.values()),
            )
        )

    struggles.sort(key=lambda s: s.frequency, reverse=True)
    return struggles[:MAX_STRUGGLES]


def build_momentum(model: StudentModel, now: datetime | None = None) -> LearningMomentum:
    now = now or datetime.now(UTC)
    sessions = model.learning_history

    last_studied_at = sessions[-1].started_at if sessions else None
    days_since = (now - _parse_ts(last_studied_at)).days if last_studied_at else -1

    week_ago = now - timedelta(days=7)
    recent = sum(1 for s in sessions if _parse_ts(s.started_at) >= week_ago)

    study_dates = {_parse_ts(s.started_at).astimezone(UTC).date() for s in sessions}
    streak = 0
    for offset in range(STREAK_LOOKBACK_DAYS):
        day = (now - timedelta(days=offset)).astimezone(UTC).date()
        if day in study_dates:
            streak += 1
        elif offset > 0:
            # today may still be unstudied; the streak counts back from yesterday
            break

    return LearningMomentum(
        last_studied_at=last_studied_at,
        days_since_last_study=days_since,
        recent_session_count=recent,
        streak=streak,
    )


def build_skill_map_summary(
    catalog: SkillCatalog,
    model: StudentModel,
    rules: BacktrackRuleSet,
    now: datetime | None = None,
    window: int = RECENT_SESSION_WINDOW,
) -> SkillMapSummary:
    return SkillMapSummary(
        category_progress=build_category_progress(catalog, model),
        unit_progress=build_unit_progress(catalog, model),
        recent_struggles=build_recent_struggles(catalog, model, rules, window),
        momentum=build_momentum(model, now),
    )


# ========================================
# LLM context
# ========================================


def format_summary_for_llm(summary: SkillMapSummary) -> str:
    lines: list[str] = ["## カテゴリ別進捗"]
    for cat in summary.category_progress:
        line = f"- {cat.category}: {cat.mastered}/{cat.total} 習得 ({cat.progress_percent}%)"
        if cat.learning > 0:
            line += f" / 学習中 {cat.learning}件"
        lines.append(line)
    lines.append("")

    lines.append("## 注目すべき単元")
    active_units = [u for u in summary.unit_progress if u.mastered_count < u.total_count]
    for unit in active_units[:MAX_ACTIVE_UNITS]:
        in_progress = [s for s in unit.skills if s.status is SkillStatus.LEARNING]
        unlocked = [s for s in unit.skills if s.status is SkillStatus.UNLOCKED]
        locked = [s for s in unit.skills if s.status is SkillStatus.LOCKED]
        lines.append(f"### {unit.category} > {unit.unit} ({unit.mastered_count}/{unit.total_count})")
        if in_progress:
            lines.append("  学習中: " + ", ".join(f"{s.name}(rank{s.rank})" for s in in_progress))
        if unlocked:
            lines.append("  学習可能: " + ", ".join(s.name for s in unlocked))
        if locked:
            lines.append(f"  ロック中: {len(locked)}件")
    lines.append("")

    if summary.recent_struggles:
        lines.append("## 最近のつまずき")
        for struggle in summary.recent_struggles:
            lines.append(
                f"- {struggle.skill_name}: ミス{struggle.frequency}回 ({', '.join(struggle.error_types)})"
            )
            for prereq in struggle.related_prerequisites:
                lines.append(f"  → 復習候補: {prereq.skill_name} ({prereq.message})")
        lines.append("")

    lines.append("## 学習の勢い")
    m = summary.momentum
    if m.last_studied_at:
        last = "今日" if m.days_since_last_study == 0 else f"{m.days_since_last_study}日前"
        lines.append(f"- 最終学習: {last}")
        lines.append(f"- 直近7日のセッション数: {m.recent_session_count}")
        lines.append(f"- 連続学習日数: {m.streak}日")
    else:
        lines.append("- まだ学習履歴がありません")

    return "\n".join(lines)

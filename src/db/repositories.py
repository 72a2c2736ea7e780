"""
SQL-backed stores.

Each store takes an async_sessionmaker and opens one transactional scope
per call, so a store never holds a session across awaits of the caller.
They satisfy the same protocols as the in-memory stores:
- SqlStudentModelRepository   -> StudentModelRepository
- SqlProblemPoolStore         -> ProblemPoolStore
- SqlAttemptHistoryStore      -> AttemptHistoryStore
"""
from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.practice import GeneratedProblem
from src.db.database import async_session_scope
from src.db.models.tutoring import ProblemAttemptRecord, ProblemPoolRecord, StudentModelRecord
from src.quiz.attempts import ProblemAttempt, ProblemSource
from src.quiz.problem_pool import PoolStats, ProblemPoolEntry


def _aware(value: datetime) -> datetime:
    # sqlite drops the offset; everything is written as UTC
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class SqlStudentModelRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def load(self, user_id: str) -> dict[str, Any] | None:
        async with async_session_scope(self.session_factory) as session:
            record = await session.get(StudentModelRecord, user_id)
            return dict(record.document) if record is not None else None

    async def save(self, user_id: str, document: dict[str, Any]) -> None:
        async with async_session_scope(self.session_factory) as session:
            record = await session.get(StudentModelRecord, user_id)
            if record is None:
                session.add(
                    StudentModelRecord(user_id=user_id, version=document.get("version", 1), document=document)
                )
            else:
                record.version = document.get("version", record.version)
                record.document = document


class SqlProblemPoolStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @staticmethod
    def _to_entry(record: ProblemPoolRecord) -> ProblemPoolEntry:
        return ProblemPoolEntry(
            id=record.id,
            skill_id=record.skill_id,
            level=record.level,
            problem=GeneratedProblem.from_dict(record.problem),
            used_count=record.used_count or 0,
            created_at=_aware(record.created_at),
        )

    async def list_problems(self, skill_id: str, level: int) -> list[ProblemPoolEntry]:
        async with async_session_scope(self.session_factory) as session:
            result = await session.execute(
                select(ProblemPoolRecord)
                .where(ProblemPoolRecord.skill_id == skill_id, ProblemPoolRecord.level == level)
                .order_by(ProblemPoolRecord.created_at, ProblemPoolRecord.id)
            )
            return [self._to_entry(r) for r in result.scalars()]

    async def add(self, entry: ProblemPoolEntry) -> None:
        async with async_session_scope(self.session_factory) as session:
            session.add(
                ProblemPoolRecord(
                    id=entry.id,
                    skill_id=entry.skill_id,
                    level=entry.level,
                    problem=entry.problem.to_dict(),
                    used_count=entry.used_count,
                    created_at=entry.created_at,
                )
            )

    async def count(self, skill_id: str, level: int) -> int:
        async with async_session_scope(self.session_factory) as session:
            result = await session.execute(
                select(func.count())
                .select_from(ProblemPoolRecord)
                .where(ProblemPoolRecord.skill_id == skill_id, ProblemPoolRecord.level == level)
            )
            return int(result.scalar_one())

    async def increment_used(self, entry_id: str) -> None:
        async with async_session_scope(self.session_factory) as session:
            await session.execute(
                update(ProblemPoolRecord)
                .where(ProblemPoolRecord.id == entry_id)
                .values(used_count=ProblemPoolRecord.used_count + 1)
            )

    async def stats(self) -> list[PoolStats]:
        async with async_session_scope(self.session_factory) as session:
            result = await session.execute(
                select(ProblemPoolRecord.skill_id, ProblemPoolRecord.level, func.count())
                .group_by(ProblemPoolRecord.skill_id, ProblemPoolRecord.level)
                .order_by(ProblemPoolRecord.skill_id, ProblemPoolRecord.level)
            )
            return [PoolStats(skill_id, level, int(n)) for skill_id, level, n in result.all()]


class SqlAttemptHistoryStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def record(self, attempt: ProblemAttempt) -> None:
        async with async_session_scope(self.session_factory) as session:
            session.add(
                ProblemAttemptRecord(
                    id=attempt.id,
                    user_id=attempt.user_id,
                    skill_id=attempt.skill_id,
                    is_correct=attempt.is_correct,
                    problem_source=attempt.problem_source.value,
                    problem_identifier=attempt.problem_identifier,
                    conversation_id=attempt.conversation_id,
                    created_at=attempt.created_at,
                )
            )

    async def list_for_skill(self, user_id: str, skill_id: str) -> list[ProblemAttempt]:
        async with async_session_scope(self.session_factory) as session:
            result = await session.execute(
                select(ProblemAttemptRecord)
                .where(ProblemAttemptRecord.user_id == user_id, ProblemAttemptRecord.skill_id == skill_id)
                .order_by(ProblemAttemptRecord.created_at.desc())
            )
            return [
                ProblemAttempt(
                    id=r.id,
                    user_id=r.user_id,
                    skill_id=r.skill_id,
                    is_correct=r.is_correct,
                    problem_source=ProblemSource(r.problem_source),
                    problem_identifier=r.problem_identifier,
                    conversation_id=r.conversation_id,
                    created_at=_aware(r.created_at),
                )
                for r in result.scalars()
            ]

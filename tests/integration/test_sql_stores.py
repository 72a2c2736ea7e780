"""
Integration tests for the SQL stores on an in-memory SQLite database.

The same stores run on PostgreSQL in production; JSON columns fall back to
plain JSON on SQLite.
"""

from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from conftest import make_problem
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from src.db.database import create_session_factory, init_async_db
from src.db.repositories import SqlAttemptHistoryStore, SqlProblemPoolStore, SqlStudentModelRepository
from src.learning.student_model_service import StudentModelService
from src.quiz.attempts import AttemptService, ProblemAttempt, ProblemSource
from src.quiz.problem_pool import ProblemPoolEntry

T0 = datetime(2025, 4, 1, tzinfo=UTC)


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    await init_async_db(engine)
    yield create_session_factory(engine)
    await engine.dispose()


class TestStudentModelRepository:
    @pytest.mark.asyncio
    async def test_insert_then_update(self, session_factory):
        repository = SqlStudentModelRepository(session_factory)
        assert await repository.load("u1") is None

        await repository.save("u1", {"id": "u1", "version": 1, "skill_mastery": {}})
        await repository.save("u1", {"id": "u1", "version": 1, "skill_mastery": {"B-01": {"status": "learning"}}})

        document = await repository.load("u1")
        assert document["skill_mastery"] == {"B-01": {"status": "learning"}}

    @pytest.mark.asyncio
    async def test_service_round_trip(self, session_factory, catalog):
        students = StudentModelService(SqlStudentModelRepository(session_factory), catalog)
        await students.update_skill_mastery("u1", "B-01", {"status": "mastered"})
        model = await students.get("u1")
        assert model.skill_mastery["B-01"].status.is_mastered
        assert model.milestones.first_skill_mastered_id == "B-01"


class TestProblemPoolStore:
    @pytest.mark.asyncio
    async def test_listing_is_oldest_first(self, session_factory):
        pool = SqlProblemPoolStore(session_factory)
        for entry_id, minutes in (("late", 5), ("early", 1), ("other-level", 0)):
            await pool.add(
                ProblemPoolEntry(
                    id=entry_id,
                    skill_id="I-01",
                    level=2 if entry_id == "other-level" else 1,
                    problem=make_problem(level=1, question=f"問題 {entry_id}"),
                    created_at=T0 + timedelta(minutes=minutes),
                )
            )

        entries = await pool.list_problems("I-01", 1)
        assert [e.id for e in entries] == ["early", "late"]
        assert entries[0].problem.question_text == "問題 early"
        assert entries[0].problem.card_info.card_name == "たすき掛け"
        assert entries[0].created_at.tzinfo is not None
        assert await pool.count("I-01", 1) == 2

    @pytest.mark.asyncio
    async def test_increment_used_and_stats(self, session_factory):
        pool = SqlProblemPoolStore(session_factory)
        await pool.add(ProblemPoolEntry(id="p1", skill_id="I-01", level=1, problem=make_problem()))
        await pool.add(ProblemPoolEntry(id="p2", skill_id="B-01", level=2, problem=make_problem("B-01", 2)))
        await pool.increment_used("p1")
        await pool.increment_used("p1")

        assert (await pool.list_problems("I-01", 1))[0].used_count == 2
        stats = await pool.stats()
        assert [(s.skill_id, s.level, s.count) for s in stats] == [("B-01", 2, 1), ("I-01", 1, 1)]


class TestAttemptHistoryStore:
    @pytest.mark.asyncio
    async def test_newest_first_and_fields_survive(self, session_factory):
        store = SqlAttemptHistoryStore(session_factory)
        await store.record(
            ProblemAttempt("u1", "B-01", True, ProblemSource.AI_GENERATED, "p1", created_at=T0)
        )
        await store.record(ProblemAttempt("u1", "B-01", False, created_at=T0 + timedelta(hours=1)))
        await store.record(ProblemAttempt("u2", "B-01", True, created_at=T0))

        attempts = await store.list_for_skill("u1", "B-01")
        assert [a.is_correct for a in attempts] == [False, True]
        assert attempts[1].problem_source is ProblemSource.AI_GENERATED
        assert attempts[1].problem_identifier == "p1"
        assert attempts[0].problem_source is ProblemSource.REFERENCE_BOOK

    @pytest.mark.asyncio
    async def test_attempt_service_on_sql(self, session_factory):
        service = AttemptService(SqlAttemptHistoryStore(session_factory))
        for minute in range(3):
            await service.store.record(ProblemAttempt("u1", "B-01", True, created_at=T0 + timedelta(minutes=minute)))
        check = await service.check_skill_mastery_by_attempts("u1", "B-01")
        assert check.should_master

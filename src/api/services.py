"""
Service container.

Every service is built once per process and shared by reference; routers
reach it through `request.app.state.services`. Stores are injected, so the
same wiring runs on PostgreSQL in production and in-memory stores in tests.
"""
from __future__ import annotations

from dataclasses import dataclass

from config import Settings
from src.catalog.backtrack import BacktrackRuleSet
from src.catalog.skills import SkillCatalog
from src.generation.problem_generator import ProblemGenerator
from src.integrations.genai_client import ContentGenerator, GenAIClient
from src.learning.advisor import AdvisorService
from src.learning.practice_service import PracticeService
from src.learning.skip_challenge import SkipChallengeService
from src.learning.student_model_service import StudentModelRepository, StudentModelService
from src.quiz.attempts import AttemptHistoryStore, AttemptService
from src.quiz.pool_arbitrator import ProblemPoolArbitrator
from src.quiz.problem_pool import ProblemPoolStore


@dataclass
class TutorServices:
    catalog: SkillCatalog
    rules: BacktrackRuleSet
    client: GenAIClient
    students: StudentModelService
    pool: ProblemPoolStore
    attempts: AttemptService
    arbitrator: ProblemPoolArbitrator
    generator: ProblemGenerator
    practice: PracticeService
    skip_challenge: SkipChallengeService
    advisor: AdvisorService


def build_services(
    settings: Settings,
    catalog: SkillCatalog,
    content_generator: ContentGenerator,
    student_repository: StudentModelRepository,
    pool_store: ProblemPoolStore,
    attempt_store: AttemptHistoryStore,
    rules: BacktrackRuleSet | None = None,
) -> TutorServices:
    rules = rules or BacktrackRuleSet()
    client = GenAIClient(content_generator)
    students = StudentModelService(student_repository, catalog)
    attempts = AttemptService(attempt_store)
    generator = ProblemGenerator(client, catalog)
    arbitrator = ProblemPoolArbitrator(
        pool_store, attempts, generator, min_pool_size=settings.problem_pool_min_size
    )

    return TutorServices(
        catalog=catalog,
        rules=rules,
        client=client,
        students=students,
        pool=pool_store,
        attempts=attempts,
        arbitrator=arbitrator,
        generator=generator,
        practice=PracticeService(catalog, students, arbitrator, generator, attempts),
        skip_challenge=SkipChallengeService(client, catalog, students, generator),
        advisor=AdvisorService(
            client,
            catalog,
            rules,
            students,
            ttl_seconds=settings.advice_cache_ttl_seconds,
            struggle_window=settings.recent_struggle_window,
        ),
    )

"""
FastAPI application for skill-tutor.

Provides REST API for:
- Practice problems (pool-first generation, evaluation, skip challenges)
- Skill map browsing (catalog, recommendations, backtracking, progress)
- Learning advisor (daily advice, stumble analysis)
- Streaming chat through the model fallback chain
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from config import get_settings
from src.api.services import TutorServices, build_services
from src.catalog.backtrack import BacktrackRuleSet
from src.catalog.skills import load_catalog
from src.core.log_config import configure_logging

settings = get_settings()

SERVICE_NAME = "skill-tutor"
VERSION = "0.1.0"


async def _check_database_health(app: FastAPI) -> tuple[str, str | None]:
    """
    Check database connectivity.

    Returns:
        Tuple of (status, error_message). Status is "ok", "error" or "not_configured".
    """
    factory = getattr(app.state, "session_factory", None)
    if factory is None:
        return "not_configured", None
    try:
        async with factory() as session:
            await session.execute(text("SELECT 1"))
        return "ok", None
    except SQLAlchemyError as e:
        return "error", str(e)


def _build_production_services(app: FastAPI) -> TutorServices:
    # Imported here so tests that inject services never touch the DB drivers
    from src.db.database import get_async_session_factory
    from src.db.repositories import SqlAttemptHistoryStore, SqlProblemPoolStore, SqlStudentModelRepository
    from src.integrations.vertex_generator import VertexContentGenerator

    catalog = load_catalog(settings.skill_catalog_path)
    rules = BacktrackRuleSet()
    unknown = rules.unknown_targets(catalog)
    if unknown:
        logger.warning(f"Backtrack rules reference skills missing from the catalog: {unknown}")

    if not settings.has_genai_configured():
        logger.warning("GCP_PROJECT_ID is not set; model calls will fail until it is configured")

    factory = get_async_session_factory()
    app.state.session_factory = factory
    return build_services(
        settings,
        catalog,
        VertexContentGenerator(settings.gcp_project_id or "", settings.google_application_credentials),
        SqlStudentModelRepository(factory),
        SqlProblemPoolStore(factory),
        SqlAttemptHistoryStore(factory),
        rules=rules,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # Startup
    configure_logging(settings.log_level, settings.log_file)
    logger.info(f"Starting {SERVICE_NAME} service...")
    if getattr(app.state, "services", None) is None:
        from src.db.database import get_async_engine, init_async_db

        app.state.services = _build_production_services(app)
        await init_async_db(get_async_engine())
    logger.info(f"Service started on {settings.api_host}:{settings.api_port}")

    yield

    # Shutdown
    logger.info(f"Shutting down {SERVICE_NAME} service...")
    if getattr(app.state, "session_factory", None) is not None:
        from src.db.database import dispose_engines

        await dispose_engines()


def create_app(services: TutorServices | None = None) -> FastAPI:
    """
    Build the application.

    Args:
        services: Pre-built container (tests); production wiring is built
            in the lifespan when None
    """
    app = FastAPI(
        title="Skill Tutor",
        description="""
        AI tutoring backend for high-school mathematics.

        ## Features

        - **Practice**: pool-first problem serving, answer evaluation, rank-up and unlock cascade
        - **Skip challenge**: master a whole unit with one composite problem
        - **Skill map**: catalog, recommendations, learning paths, backtracking after errors
        - **Advisor**: daily advice and stumble analysis from the learner's skill map
        """,
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ========================================
    # Health & Status Endpoints
    # ========================================

    @app.get("/", tags=["Health"])
    def root() -> dict[str, str]:
        """Root endpoint returning service info."""
        return {
            "service": SERVICE_NAME,
            "version": VERSION,
            "model": settings.genai_default_model,
            "status": "ok",
        }

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request) -> dict[str, Any]:
        """Health check with an actual database round trip when one is wired."""
        db_status, db_error = await _check_database_health(request.app)
        current: TutorServices | None = request.app.state.services

        result: dict[str, Any] = {
            "status": "unhealthy" if db_status == "error" or current is None else "healthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "components": {
                "database": db_status,
                "ai": "configured" if settings.has_genai_configured() else "not_configured",
                "catalog": len(current.catalog) if current else 0,
            },
        }
        if db_error:
            result["errors"] = {"database": db_error}
        return result

    # ========================================
    # Mount routers
    # ========================================

    from src.api.routers import advisor_router, chat_router, practice_router, skills_router, student_router

    app.include_router(practice_router.router, prefix="/api/practice", tags=["Practice"])
    app.include_router(skills_router.router, prefix="/api/skills", tags=["Skills"])
    app.include_router(student_router.router, prefix="/api/student", tags=["Student"])
    app.include_router(advisor_router.router, prefix="/api/advisor", tags=["Advisor"])
    app.include_router(chat_router.router, prefix="/api/chat", tags=["Chat"])

    return app


app = create_app()

"""
Skill Tutor CLI - catalog tooling and server launcher.

Usage:
    skill-tutor validate-catalog          # Check the prerequisite graph
    skill-tutor skills --category 数学I    # List skills
    skill-tutor path I-QF-01              # Prerequisites first, target last
    skill-tutor backtrack I-QF-01 L1      # Review targets after an error
    skill-tutor weak-roots                # Most common backtrack targets
    skill-tutor init-db                   # Create the tutoring tables
    skill-tutor pool-stats                # Pooled problems per skill and level
    skill-tutor serve                     # Run the API server
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

# Local imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))
from config import get_settings
from src.catalog.backtrack import BacktrackRuleSet
from src.catalog.skills import CatalogIntegrityError, SkillCatalog, load_catalog
from src.core.log_config import configure_logging
from src.core.mastery import ErrorType
from src.learning.mastery_engine import initialize_skill_mastery
from src.learning.recommendation import generate_learning_path, get_backtrack_recommendation

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="skill-tutor",
    help="📐 Skill Tutor - skill catalog tooling and API server",
    add_completion=True,
    rich_markup_mode="rich",
)

console = Console()

CatalogOption = Annotated[
    Path | None, typer.Option("--catalog", "-c", help="Catalog JSON (bundled curriculum by default)")
]


def _load(catalog_path: Path | None) -> SkillCatalog:
    path = catalog_path or get_settings().skill_catalog_path
    try:
        return load_catalog(str(path) if path else None)
    except CatalogIntegrityError as e:
        console.print(f"[red]✗ Catalog integrity error:[/] {e}")
        raise typer.Exit(1) from e


# =============================================================================
# Catalog Commands
# =============================================================================


@app.command("validate-catalog")
def validate_catalog(catalog_path: CatalogOption = None) -> None:
    """
    Validate the skill catalog.

    Checks:
    - every prerequisite names a catalog skill
    - the prerequisite graph is acyclic
    - backtrack rule targets exist (reported as warnings)

    Exit codes:
        0 - Catalog valid
        1 - Integrity error
    """
    path = catalog_path or get_settings().skill_catalog_path
    try:
        catalog = SkillCatalog.from_json(Path(path)) if path else load_catalog()
        order = catalog.validate()
    except CatalogIntegrityError as e:
        console.print(f"[red]✗ Catalog integrity error:[/] {e}")
        raise typer.Exit(1) from e

    unknown = BacktrackRuleSet().unknown_targets(catalog)
    if unknown:
        console.print("\n[yellow bold]WARNINGS:[/]")
        for rule_id, targets in unknown.items():
            console.print(f"  [yellow]⚠[/] {rule_id}: unknown skills {', '.join(targets)}")

    categories = Table(title="Skills by category")
    categories.add_column("Category", style="cyan")
    categories.add_column("Skills", justify="right", style="green")
    categories.add_column("Units", justify="right")
    units = catalog.units()
    for category in dict.fromkeys(s.category for s in catalog):
        categories.add_row(
            category,
            str(len(catalog.by_category(category))),
            str(sum(1 for c, _ in units if c == category)),
        )
    console.print(categories)

    roots = len(catalog.roots())
    console.print(f"\n[green]✓ Catalog valid:[/] {len(order)} skills, {roots} roots")
    console.print(f"[dim]Warnings: {len(unknown)}[/]")


@app.command("skills")
def list_skills(
    category: Annotated[str | None, typer.Option("--category", help="Only this category")] = None,
    catalog_path: CatalogOption = None,
) -> None:
    """List skills with their prerequisites."""
    catalog = _load(catalog_path)
    skills = catalog.by_category(category) if category else list(catalog)

    table = Table(title=f"Skills ({len(skills)})")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Unit", style="dim")
    table.add_column("Importance")
    table.add_column("Prerequisites", style="dim")
    for skill in skills:
        table.add_row(
            skill.id,
            skill.name,
            f"{skill.category} > {skill.subcategory}",
            skill.importance.value,
            ", ".join(skill.prerequisites) or "-",
        )
    console.print(table)


@app.command("path")
def learning_path(
    skill_id: Annotated[str, typer.Argument(help="Target skill id")],
    catalog_path: CatalogOption = None,
) -> None:
    """Learning path to a skill for a brand-new learner."""
    catalog = _load(catalog_path)
    if not catalog.is_valid(skill_id):
        console.print(f"[red]Unknown skill:[/] {skill_id}")
        raise typer.Exit(1)

    path = generate_learning_path(catalog, skill_id, initialize_skill_mastery(catalog))
    console.print(f"[cyan]Path to {skill_id}[/] ({len(path)} steps)")
    for index, skill in enumerate(path, start=1):
        console.print(f"  {index:>3}. [bold]{skill.id}[/] {skill.name}")


@app.command("backtrack")
def backtrack(
    skill_id: Annotated[str, typer.Argument(help="Skill the learner stumbled on")],
    error_type: Annotated[ErrorType, typer.Argument(help="Error severity: L1, L2 or L3")],
    catalog_path: CatalogOption = None,
) -> None:
    """Skills to review after an error."""
    catalog = _load(catalog_path)
    recommendation = get_backtrack_recommendation(catalog, BacktrackRuleSet(), skill_id, error_type)
    if recommendation is None:
        console.print(f"[yellow]No backtrack rule for {skill_id} / {error_type.value}[/]")
        return

    console.print(f"[cyan]{recommendation.rule.message}[/]")
    console.print(f"[dim]{recommendation.rule.detection_hint}[/]")
    for skill in recommendation.target_skills:
        console.print(f"  → [bold]{skill.id}[/] {skill.name}")


@app.command("weak-roots")
def weak_roots(catalog_path: CatalogOption = None) -> None:
    """Skills most often named as backtrack targets."""
    catalog = _load(catalog_path)
    table = Table(title="Common weakness roots")
    table.add_column("Skill", style="cyan")
    table.add_column("Name")
    table.add_column("Rules", justify="right", style="green")
    for skill_id, count in BacktrackRuleSet().common_weakness_roots():
        skill = catalog.get(skill_id)
        table.add_row(skill_id, skill.name if skill else "[red](not in catalog)[/]", str(count))
    console.print(table)


# =============================================================================
# Database
# =============================================================================


@app.command("init-db")
def init_database() -> None:
    """Create the tutoring tables (no-op for tables that already exist)."""
    from src.db.database import init_db

    init_db()
    console.print("[green]✓ Database tables ready[/]")


@app.command("pool-stats")
def pool_stats() -> None:
    """Pooled problems per skill and level, with how often they were served."""
    from sqlalchemy import func, select

    from src.db.database import session_scope
    from src.db.models import ProblemPoolRecord

    with session_scope() as session:
        rows = session.execute(
            select(
                ProblemPoolRecord.skill_id,
                ProblemPoolRecord.level,
                func.count(),
                func.coalesce(func.sum(ProblemPoolRecord.used_count), 0),
            )
            .group_by(ProblemPoolRecord.skill_id, ProblemPoolRecord.level)
            .order_by(ProblemPoolRecord.skill_id, ProblemPoolRecord.level)
        ).all()

    table = Table(title="Problem pool")
    table.add_column("Skill", style="cyan")
    table.add_column("Level", justify="right")
    table.add_column("Problems", justify="right", style="green")
    table.add_column("Served", justify="right")
    for skill_id, level, count, served in rows:
        table.add_row(skill_id, str(level), str(count), str(served))
    console.print(table)
    console.print(f"[dim]Total: {sum(row[2] for row in rows)} problems[/]")


# =============================================================================
# Server
# =============================================================================


@app.command()
def serve(
    host: Annotated[str | None, typer.Option("--host", help="Bind address")] = None,
    port: Annotated[int | None, typer.Option("--port", "-p", help="Port")] = None,
    reload: Annotated[bool, typer.Option("--reload", help="Auto-reload on code changes")] = False,
) -> None:
    """Run the API server with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "src.api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


# =============================================================================
# Entry Point
# =============================================================================


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose output")] = False,
) -> None:
    """
    📐 Skill Tutor - skill catalog tooling and API server
    """
    settings = get_settings()
    configure_logging("DEBUG" if verbose else settings.log_level, settings.log_file)


def run() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    run()

"""
Typer CLI for the skillpath learner model.

Commands:
    skillpath zpd GRAPH          - Skills in the Zone of Proximal Development
    skillpath path GRAPH --goal  - Ordered learning path to a goal skill
    skillpath overview GRAPH     - Skills grouped by Bloom level
    skillpath fit ATTEMPTS       - Fit BKT parameters from attempt sequences

Graph files are JSON: {"skills": [...], "prerequisites": [...]} with records
shaped like Skill and PrerequisiteEdge. Attempt files are JSON lists of
per-learner correctness lists, e.g. [[false, true, true], [true, true]].

Usage:
    skillpath --help
    skillpath zpd graph.json --mastered A,B
    skillpath path graph.json --goal C --daily-minutes 60
    skillpath fit attempts.json --min-samples 50
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Annotated, Any

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from config import get_settings
from skillpath.adaptive.path_planner import PathPlanner, PathPreferences
from skillpath.adaptive.readiness import MasterySnapshot
from skillpath.core.errors import InsufficientDataError, SkillPathError
from skillpath.core.models import BKTParams
from skillpath.graph.skill_graph import SkillGraph
from skillpath.learning.bkt_fitting import fit_parameters

app = typer.Typer(
    help="skillpath: mastery tracking, review scheduling and learning path planning",
    no_args_is_help=True,
)

console = Console()


def _configure_logging(verbose: bool) -> None:
    settings = get_settings()
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else settings.log_level)
    if settings.log_file:
        logger.add(settings.log_file, level=settings.log_level, rotation="10 MB", retention=5)


def _read_json(path: Path) -> Any:
    if not path.exists():
        console.print(f"[red]File not found: {path}[/]")
        raise typer.Exit(code=1)
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid JSON in {path}: {e}[/]")
        raise typer.Exit(code=1)


def _load_graph(path: Path) -> SkillGraph:
    data = _read_json(path)
    if not isinstance(data, dict):
        console.print(f"[red]{path} must contain an object with 'skills' and 'prerequisites'[/]")
        raise typer.Exit(code=1)
    try:
        return SkillGraph.from_records(data.get("skills", []), data.get("prerequisites", []))
    except SkillPathError as e:
        console.print(f"[red]Invalid skill graph:[/] {e}")
        raise typer.Exit(code=1)


def _split_ids(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


# =============================================================================
# Planning Commands
# =============================================================================


@app.command("zpd")
def zpd(
    graph_file: Annotated[Path, typer.Argument(help="Skill graph JSON file")],
    mastered: Annotated[
        str | None, typer.Option("--mastered", "-m", help="Mastered skill ids (comma-separated)")
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Number of skills to show")] = 10,
) -> None:
    """
    Show the skills a learner should work on next.

    Examples:
        skillpath zpd graph.json
        skillpath zpd graph.json --mastered A,B
    """
    graph = _load_graph(graph_file)
    planner = PathPlanner.from_settings(graph, get_settings())
    entries = planner.compute_zpd(MasterySnapshot.from_ids(graph, _split_ids(mastered)))

    if not entries:
        rprint("[yellow]Nothing in the Zone of Proximal Development.[/yellow]")
        return

    table = Table(title="Zone of Proximal Development", show_header=True)
    table.add_column("Skill", style="cyan")
    table.add_column("Name", style="white")
    table.add_column("Bloom", justify="right")
    table.add_column("Minutes", justify="right", style="dim")
    table.add_column("Score", justify="right", style="green")

    for entry in entries[:limit]:
        table.add_row(
            entry.skill.id,
            entry.skill.name,
            f"{entry.skill.bloom_level} {entry.skill.bloom_label}",
            str(entry.skill.estimated_minutes),
            f"{entry.composite_score:.3f}",
        )

    console.print(table)


@app.command("path")
def path(
    graph_file: Annotated[Path, typer.Argument(help="Skill graph JSON file")],
    goal: Annotated[str, typer.Option("--goal", "-g", help="Goal skill id")],
    mastered: Annotated[
        str | None, typer.Option("--mastered", "-m", help="Mastered skill ids (comma-separated)")
    ] = None,
    daily_minutes: Annotated[
        int | None, typer.Option("--daily-minutes", "-d", help="Split the path into days of this many minutes")
    ] = None,
) -> None:
    """
    Show the ordered learning path to a goal skill.

    Examples:
        skillpath path graph.json --goal C
        skillpath path graph.json --goal C --mastered A --daily-minutes 60
    """
    graph = _load_graph(graph_file)
    planner = PathPlanner.from_settings(graph, get_settings())
    try:
        result = planner.generate_learning_path(
            goal,
            MasterySnapshot.from_ids(graph, _split_ids(mastered)),
            PathPreferences(max_daily_minutes=daily_minutes),
        )
    except SkillPathError as e:
        console.print(f"[red]Cannot plan path:[/] {e}")
        raise typer.Exit(code=1)

    if result.is_empty:
        rprint(f"[yellow]{result.message or 'Nothing to learn'}[/yellow]")
        return

    threshold_ids = {s.id for s in result.threshold_concepts}
    day_of = {s.id: chunk.day for chunk in result.daily_chunks for s in chunk.skills}

    table = Table(title=f"Learning Path to {goal}", show_header=True)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Skill", style="cyan")
    table.add_column("Name", style="white")
    table.add_column("Bloom", justify="right")
    table.add_column("Minutes", justify="right")
    if day_of:
        table.add_column("Day", justify="right", style="magenta")
    table.add_column("Threshold", justify="center", style="yellow")

    for i, skill in enumerate(result.path, start=1):
        row = [str(i), skill.id, skill.name, str(skill.bloom_level), str(skill.estimated_minutes)]
        if day_of:
            row.append(str(day_of[skill.id]))
        row.append("*" if skill.id in threshold_ids else "")
        table.add_row(*row)

    console.print(table)
    rprint(f"\n  Total: [bold]{result.total_estimated_minutes}[/bold] minutes over {len(result.path)} skills")
    if result.daily_chunks:
        rprint(f"  Days: [bold]{len(result.daily_chunks)}[/bold]")


@app.command("overview")
def overview(
    graph_file: Annotated[Path, typer.Argument(help="Skill graph JSON file")],
    mastered: Annotated[
        str | None, typer.Option("--mastered", "-m", help="Mastered skill ids (comma-separated)")
    ] = None,
) -> None:
    """Show skills grouped by Bloom level, with entry points."""
    graph = _load_graph(graph_file)
    planner = PathPlanner.from_settings(graph, get_settings())
    rows = planner.curriculum_overview(MasterySnapshot.from_ids(graph, _split_ids(mastered)))

    table = Table(title="Curriculum Overview", show_header=True)
    table.add_column("Level", justify="right")
    table.add_column("Label", style="cyan")
    table.add_column("Skills", justify="right")
    table.add_column("Mastered", justify="right", style="green")
    table.add_column("Minutes", justify="right", style="dim")
    table.add_column("Threshold", justify="right", style="yellow")

    for row in rows:
        table.add_row(
            str(row.level),
            row.label,
            str(len(row.skills)),
            str(row.mastered_count),
            str(row.total_minutes),
            str(row.threshold_count),
        )

    console.print(table)
    roots = planner.root_skills()
    if roots:
        rprint(f"\n  Entry points: {', '.join(s.id for s in roots)}")


# =============================================================================
# Fitting Commands
# =============================================================================


@app.command("fit")
def fit(
    attempts_file: Annotated[Path, typer.Argument(help="JSON list of per-learner correctness lists")],
    min_samples: Annotated[
        int | None, typer.Option("--min-samples", help="Override the minimum observation count")
    ] = None,
) -> None:
    """
    Fit BKT parameters for one skill with Expectation-Maximization.

    Examples:
        skillpath fit attempts.json
        skillpath fit attempts.json --min-samples 100
    """
    settings = get_settings()
    sequences = _read_json(attempts_file)
    if not isinstance(sequences, list) or not all(isinstance(s, list) for s in sequences):
        console.print("[red]Attempts file must be a list of lists of booleans[/]")
        raise typer.Exit(code=1)

    fit_config = settings.get_fit_config()
    try:
        result = fit_parameters(
            sequences,
            initial=BKTParams.from_settings(settings),
            min_samples=min_samples if min_samples is not None else int(fit_config["min_samples"]),
            max_iterations=int(fit_config["max_iterations"]),
            tolerance=float(fit_config["tolerance"]),
        )
    except InsufficientDataError as e:
        console.print(f"[yellow]Not enough data:[/] {e.reason}")
        console.print("[dim]Default parameters stay in force.[/]")
        raise typer.Exit(code=1)
    except SkillPathError as e:
        console.print(f"[red]Cannot fit parameters:[/] {e}")
        raise typer.Exit(code=1)

    table = Table(title="Fitted BKT Parameters", show_header=True)
    table.add_column("Parameter", style="cyan")
    table.add_column("Value", justify="right", style="green")
    for name, value in result.params.model_dump().items():
        table.add_row(name, f"{value:.4f}")
    console.print(table)

    metrics = Table(title="Calibration", show_header=True)
    metrics.add_column("Metric", style="cyan")
    metrics.add_column("Value", justify="right")
    for name, value in result.metrics.to_dict().items():
        metrics.add_row(name, str(value))
    console.print(metrics)

    quality_style = "green" if result.accepted else "red"
    rprint(
        f"\n  Quality: [{quality_style}]{result.fit_quality}[/{quality_style}] "
        f"({result.iterations} iterations, converged={result.converged})"
    )
    for warning in result.warnings:
        rprint(f"  [yellow]![/yellow] {warning}")


# =============================================================================
# Entry Point
# =============================================================================


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose output")] = False,
) -> None:
    """
    skillpath - learner modeling and path planning.

    Works on JSON exports of a notebook's skill graph; nothing is written.
    """
    _configure_logging(verbose)


def run() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    run()

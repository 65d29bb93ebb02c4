"""CLI application using Typer for the screening engine."""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from ..config.settings import settings
from ..core.errors import ScreeningError
from ..core.models import (
    Actor,
    BatchKind,
    BatchOperation,
    Phase,
    QueueFilters,
    Role,
    SortKey,
    SortOrder,
    StatusFilter,
    Verdict,
)
from ..service import ScreeningService
from ..utils.logging import configure_logging, get_logger

app = typer.Typer(
    name="screenflow",
    help="Screening workflow engine for systematic literature reviews",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)

DbOption = typer.Option(None, "--db", help="SQLite database path (default from settings)")
UserOption = typer.Option(..., "--user", "-u", help="Acting user id")
RoleOption = typer.Option(Role.REVIEWER, "--role", "-r", help="Acting user's project role")
PhaseOption = typer.Option(Phase.TITLE_ABSTRACT, "--phase", "-p", help="Screening phase")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override the configured log level"),
    log_format: Optional[str] = typer.Option(None, "--log-format", help="json or text"),
) -> None:
    """Screening workflow engine for systematic literature reviews."""
    if log_level or log_format:
        configure_logging(level=log_level, fmt=log_format)


@contextmanager
def _service(db: Optional[Path]) -> Iterator[ScreeningService]:
    """Open a service and report engine errors as a non-zero exit."""
    service = ScreeningService(db_path=db or settings.database_path)
    try:
        yield service
    except ScreeningError as exc:
        console.print(f"[red]Error ({exc.code}): {exc.message}[/red]")
        for condition in getattr(exc, "conditions", []):
            console.print(f"  [yellow]- {condition}[/yellow]")
        raise typer.Exit(1)
    finally:
        service.close()


@app.command()
def init(
    project_id: str = typer.Argument(..., help="Project identifier"),
    name: str = typer.Option("", "--name", help="Human-readable project name"),
    quorum: Optional[int] = typer.Option(None, "--quorum", "-n", help="Distinct reviewers required per study"),
    blind: Optional[bool] = typer.Option(None, "--blind/--no-blind", help="Hide peer verdicts until quorum"),
    db: Optional[Path] = DbOption,
) -> None:
    """Create a screening project."""
    with _service(db) as service:
        config = service.create_project(project_id, name, quorum, blind)
    console.print(
        f"[green]Created project {config.project_id}[/green] "
        f"(quorum={config.quorum_size}, blind={config.blind_screening})"
    )


@app.command("import")
def import_studies(
    project_id: str = typer.Argument(..., help="Project identifier"),
    path: Path = typer.Argument(..., help="CSV or JSON file of studies"),
    db: Optional[Path] = DbOption,
) -> None:
    """Import candidate studies into the title/abstract phase."""
    with _service(db) as service:
        added = service.import_studies(project_id, path)
    console.print(f"[green]Imported {len(added)} studies[/green]")


@app.command()
def submit(
    study_id: str = typer.Argument(..., help="Study identifier"),
    verdict: Verdict = typer.Argument(..., help="INCLUDE, EXCLUDE or MAYBE"),
    user: str = UserOption,
    role: Role = RoleOption,
    phase: Phase = PhaseOption,
    confidence: Optional[float] = typer.Option(None, "--confidence", "-c", help="Confidence 0-100"),
    reasoning: Optional[str] = typer.Option(None, "--reasoning", help="Free-text reasoning"),
    reason: Optional[str] = typer.Option(None, "--reason", help="Exclusion reason (required for EXCLUDE)"),
    db: Optional[Path] = DbOption,
) -> None:
    """Submit (or replace) a screening decision."""
    actor = Actor(user_id=user, role=role)
    with _service(db) as service:
        decision = service.submit_decision(
            actor, study_id, phase, verdict, confidence=confidence, reasoning=reasoning, exclusion_reason=reason
        )
        status = service.get_status(actor, study_id, phase)
    console.print(f"[green]Recorded {decision.verdict.value}[/green] for {study_id}")
    console.print(
        f"Status: {status.status.value if status.status else '-'} "
        f"({status.reviewers_voted}/{status.reviewers_needed} reviewers)"
    )


@app.command()
def queue(
    project_id: str = typer.Argument(..., help="Project identifier"),
    user: str = UserOption,
    role: Role = RoleOption,
    phase: Phase = PhaseOption,
    search: Optional[str] = typer.Option(None, "--search", "-s"),
    sort_by: SortKey = typer.Option(SortKey.PRIORITY, "--sort-by"),
    sort_order: SortOrder = typer.Option(SortOrder.DESC, "--order"),
    status_filter: StatusFilter = typer.Option(StatusFilter.ALL, "--status"),
    page: int = typer.Option(1, "--page"),
    page_size: Optional[int] = typer.Option(None, "--page-size"),
    db: Optional[Path] = DbOption,
) -> None:
    """Show a reviewer's screening queue."""
    actor = Actor(user_id=user, role=role)
    filters = QueueFilters(search=search, sort_by=sort_by, sort_order=sort_order, status_filter=status_filter)
    with _service(db) as service:
        result = service.get_queue(actor, project_id, phase, filters=filters, page=page, page_size=page_size)
    table = Table(title=f"{phase.value} queue ({result.total} studies, page {result.page})")
    table.add_column("Study", style="cyan")
    table.add_column("Title")
    table.add_column("Year", justify="right")
    table.add_column("AI", justify="right")
    table.add_column("Priority", justify="right")
    table.add_column("Status")
    table.add_column("Votes", justify="right")
    table.add_column("Mine")
    for item in result.items:
        ai = f"{item.ai_suggestion.verdict.value} {item.ai_suggestion.confidence:.0f}" if item.ai_suggestion else "-"
        table.add_row(
            item.study_id,
            item.title[:60],
            str(item.year or "-"),
            ai,
            str(item.priority_score),
            ("[red]CONFLICT[/red]" if item.has_conflict else (item.reviewer_status.value if item.reviewer_status else "-")),
            f"{item.reviewers_voted}/{item.reviewers_needed}",
            item.my_decision.value if item.my_decision else "-",
        )
    console.print(table)


@app.command()
def stats(
    project_id: str = typer.Argument(..., help="Project identifier"),
    user: str = UserOption,
    role: Role = RoleOption,
    phase: Phase = PhaseOption,
    db: Optional[Path] = DbOption,
) -> None:
    """Show phase statistics and whether the phase can advance."""
    actor = Actor(user_id=user, role=role)
    with _service(db) as service:
        result = service.get_phase_stats(actor, project_id, phase)
    table = Table(title=f"{phase.value} statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    for label, value in [
        ("Total", result.total),
        ("Included", result.included),
        ("Excluded", result.excluded),
        ("Maybe", result.maybe),
        ("Pending (you)", result.total_pending),
        ("Conflicts", result.conflicts),
        ("Awaiting reviewers", result.remaining_reviewers),
        ("Progress", f"{result.progress}%"),
    ]:
        table.add_row(label, str(value))
    console.print(table)
    if result.can_advance:
        target = result.next_phase.value if result.next_phase else "-"
        console.print(f"[green]Phase can advance to {target}[/green]")
    else:
        for blocker in result.blockers:
            console.print(f"[yellow]- {blocker}[/yellow]")


@app.command()
def conflicts(
    project_id: str = typer.Argument(..., help="Project identifier"),
    user: str = UserOption,
    role: Role = RoleOption,
    phase: Phase = PhaseOption,
    db: Optional[Path] = DbOption,
) -> None:
    """List unresolved conflicts in a phase."""
    actor = Actor(user_id=user, role=role)
    with _service(db) as service:
        found = service.get_conflicts(actor, project_id, phase)
    table = Table(title=f"{len(found)} conflicts in {phase.value}")
    table.add_column("Study", style="cyan")
    table.add_column("Title")
    table.add_column("Reason")
    table.add_column("Votes")
    for conflict in found:
        votes = ", ".join(f"{d.reviewer_id}={d.verdict.value}" for d in conflict.decisions)
        table.add_row(conflict.study_id, conflict.title[:60], conflict.reason, votes)
    console.print(table)


@app.command()
def reliability(
    project_id: str = typer.Argument(..., help="Project identifier"),
    user: str = UserOption,
    role: Role = RoleOption,
    phase: Phase = PhaseOption,
    db: Optional[Path] = DbOption,
) -> None:
    """Show inter-rater reliability (Cohen's kappa) for a phase."""
    actor = Actor(user_id=user, role=role)
    with _service(db) as service:
        report = service.get_reliability(actor, project_id, phase)
    kappa = "-" if report.kappa is None else f"{report.kappa:.3f}"
    rate = "-" if report.agreement_rate is None else f"{report.agreement_rate}%"
    console.print(f"Cohen's kappa: [bold]{kappa}[/bold] ({report.interpretation}, {report.studies_analyzed} studies)")
    console.print(f"Agreement: {rate} ({report.agreements} agree, {report.disagreements} disagree)")
    console.print(f"[dim]{report.recommendation}[/dim]")
    if report.studies_analyzed:
        table = Table(title="First reviewer (rows) vs second reviewer (columns)")
        table.add_column("", style="cyan")
        verdicts = list(report.confusion_matrix)
        for verdict in verdicts:
            table.add_column(verdict, justify="right")
        for verdict in verdicts:
            table.add_row(verdict, *(str(report.confusion_matrix[verdict][col]) for col in verdicts))
        console.print(table)


@app.command()
def workload(
    project_id: str = typer.Argument(..., help="Project identifier"),
    user: str = UserOption,
    role: Role = RoleOption,
    phase: Phase = PhaseOption,
    db: Optional[Path] = DbOption,
) -> None:
    """Show how much of a phase each reviewer has screened."""
    actor = Actor(user_id=user, role=role)
    with _service(db) as service:
        rows = service.get_workload(actor, project_id, phase)
    table = Table(title=f"{phase.value} workload")
    table.add_column("Reviewer", style="cyan")
    table.add_column("Completed", justify="right")
    table.add_column("Pending", justify="right")
    table.add_column("Assigned", justify="right")
    table.add_column("Assigned pending", justify="right")
    table.add_column("Avg time (s)", justify="right")
    for row in rows:
        table.add_row(
            row.reviewer_id,
            str(row.completed),
            str(row.pending),
            str(row.assigned),
            str(row.assigned_pending),
            "-" if row.avg_time_seconds is None else str(row.avg_time_seconds),
        )
    console.print(table)


@app.command()
def resolve(
    study_id: str = typer.Argument(..., help="Study identifier"),
    verdict: Verdict = typer.Argument(..., help="Harmonized verdict (INCLUDE or EXCLUDE)"),
    user: str = UserOption,
    role: Role = typer.Option(Role.LEAD, "--role", "-r"),
    phase: Phase = PhaseOption,
    notes: Optional[str] = typer.Option(None, "--notes"),
    db: Optional[Path] = DbOption,
) -> None:
    """Record a harmonized verdict for a conflicting study."""
    actor = Actor(user_id=user, role=role)
    with _service(db) as service:
        harmonized = service.resolve_conflict(actor, study_id, phase, verdict, notes)
    console.print(f"[green]Resolved {study_id} as {harmonized.verdict.value}[/green]")


@app.command()
def advance(
    project_id: str = typer.Argument(..., help="Project identifier"),
    user: str = UserOption,
    role: Role = typer.Option(Role.LEAD, "--role", "-r"),
    phase: Phase = PhaseOption,
    db: Optional[Path] = DbOption,
) -> None:
    """Advance every included study to the next phase."""
    actor = Actor(user_id=user, role=role)
    with _service(db) as service:
        result = service.advance_phase(actor, project_id, phase)
    console.print(
        f"[green]Advanced {result.advanced_count} studies[/green] "
        f"from {result.from_phase.value} to {result.to_phase.value}"
    )


@app.command()
def batch(
    project_id: str = typer.Argument(..., help="Project identifier"),
    operation: BatchKind = typer.Argument(..., help="assign, apply_ai, move_phase or reset"),
    study_ids: List[str] = typer.Argument(..., help="Study identifiers"),
    user: str = UserOption,
    role: Role = typer.Option(Role.LEAD, "--role", "-r"),
    assignee: Optional[str] = typer.Option(None, "--assignee"),
    threshold: Optional[float] = typer.Option(None, "--threshold", help="AI confidence threshold 0-100"),
    target: Optional[Phase] = typer.Option(None, "--target", help="Target phase for move_phase"),
    db: Optional[Path] = DbOption,
) -> None:
    """Run a batch operation over explicit study ids."""
    actor = Actor(user_id=user, role=role)
    op = BatchOperation(
        kind=operation, study_ids=study_ids, assignee_id=assignee, ai_threshold=threshold, target_phase=target
    )
    with _service(db) as service:
        result = service.run_batch(actor, project_id, op)
    console.print(f"[green]{result.processed} processed[/green], [red]{result.failed} failed[/red]")
    for failure in result.failures:
        console.print(f"  [yellow]{failure.study_id}: {failure.reason}[/yellow]")


@app.command()
def audit(
    project_id: str = typer.Argument(..., help="Project identifier"),
    user: str = UserOption,
    role: Role = typer.Option(Role.LEAD, "--role", "-r"),
    limit: int = typer.Option(50, "--limit", "-n"),
    db: Optional[Path] = DbOption,
) -> None:
    """Show recent lifecycle and override actions."""
    actor = Actor(user_id=user, role=role)
    with _service(db) as service:
        entries = service.audit_log(actor, project_id, limit)
    table = Table(title=f"Audit log for {project_id}")
    table.add_column("When")
    table.add_column("Actor", style="cyan")
    table.add_column("Action")
    table.add_column("Details")
    for entry in entries:
        table.add_row(entry.created_at.isoformat(timespec="seconds"), entry.actor_id, entry.kind, str(entry.payload))
    console.print(table)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Hostname to bind the web server to."),
    port: int = typer.Option(8000, "--port", help="Port for the web server."),
    reload: bool = typer.Option(False, "--reload/--no-reload", help="Enable auto-reload (development only)."),
) -> None:
    """Start the HTTP API."""
    from ..web.app import start_server

    console.print(f"[bold blue]Starting web server[/bold blue] at http://{host}:{port}")
    start_server(host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()

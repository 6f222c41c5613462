"""Console rendering of marks, session progress and analysis failures."""
from __future__ import annotations

from typing import Iterable, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .models import AnalysisResult, EditSession, Mark, RuleFailure
from .stats import get_progress, summarize_marks
from .workflow import get_category_label

SEVERITY_STYLES = {"high": "bold red", "medium": "yellow", "low": "dim"}

STATUS_STYLES = {
    "pending": "cyan",
    "accepted": "green",
    "rejected": "red",
    "modified": "magenta",
}


def _excerpt(text: str, limit: int = 60) -> str:
    flat = " ".join(text.split())
    if len(flat) <= limit:
        return flat
    return flat[: limit - 1] + "…"


def marks_table(marks: Iterable[Mark], *, title: str = "Marks") -> Table:
    table = Table(title=title)
    table.add_column("Span", justify="right")
    table.add_column("Status")
    table.add_column("Severity")
    table.add_column("Category")
    table.add_column("Rule")
    table.add_column("Original", overflow="fold")
    table.add_column("Suggestion / comment", overflow="fold")

    for mark in sorted(marks, key=lambda item: (item.start_offset, item.end_offset)):
        note = mark.suggested_text if mark.suggested_text is not None else (mark.comment or "")
        table.add_row(
            f"{mark.start_offset}-{mark.end_offset}",
            f"[{STATUS_STYLES.get(mark.status, 'white')}]{mark.status}[/]",
            f"[{SEVERITY_STYLES.get(mark.severity, 'white')}]{mark.severity}[/]",
            get_category_label(mark.category),
            escape(mark.rule_id or "-"),
            escape(_excerpt(mark.original_text)),
            escape(_excerpt(note)),
        )
    return table


def failures_table(failures: Iterable[RuleFailure]) -> Table:
    table = Table(title="Skipped rules")
    table.add_column("Phase")
    table.add_column("Rule")
    table.add_column("Reason")
    table.add_column("Detail", overflow="fold")
    for failure in failures:
        table.add_row(failure.phase, failure.rule_id, failure.reason, escape(failure.detail))
    return table


def render_analysis(result: AnalysisResult, console: Optional[Console] = None) -> None:
    console = console or Console()
    summary = summarize_marks(result.marks)
    console.print("\n[bold]Editorial Analysis[/bold]")
    console.print(f"Marks: {summary['total']}")
    for category, count in sorted(summary["by_category"].items()):
        console.print(f"  {get_category_label(category)}: {count}")
    if result.marks:
        console.print(marks_table(result.marks))
    if result.failures:
        console.print(failures_table(result.failures))


def render_progress(
    session: EditSession,
    console: Optional[Console] = None,
    *,
    now_iso: str | None = None,
) -> None:
    console = console or Console()
    progress = get_progress(session, now_iso=now_iso)
    console.print(f"\n[bold]Session {session.id}[/bold] ({session.status})")
    console.print(f"Phase: {progress.current_phase} ({progress.percentage}%)")
    remaining = ", ".join(progress.remaining_phases) or "none"
    console.print(f"Remaining: {remaining}")
    console.print(f"Estimated completion: {progress.estimated_completion}")
    console.print(
        f"Marks: {session.total_marks} total, {session.resolved_marks} resolved "
        f"({session.accepted_marks} accepted, {session.rejected_marks} rejected)"
    )

    table = Table(title="Phase history")
    table.add_column("Phase")
    table.add_column("Editor")
    table.add_column("Started")
    table.add_column("Completed")
    table.add_column("Created", justify="right")
    table.add_column("Resolved", justify="right")
    for record in session.phases:
        table.add_row(
            record.phase,
            record.editor_type,
            record.started_at,
            record.completed_at or "-",
            str(record.marks_created),
            str(record.marks_resolved),
        )
    console.print(table)

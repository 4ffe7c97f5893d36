"""Rich-powered console output for ctxpack."""

from __future__ import annotations

from rich.console import Console as RichConsole
from rich.panel import Panel
from rich.table import Table

from ctxpack import __version__
from ctxpack.context.models import (
    AggregateResult,
    ContextRecord,
    ContextSummary,
    TrimReport,
    WorkPackage,
)


class Console:
    """Terminal output for ctxpack using Rich."""

    def __init__(self) -> None:
        self.console = RichConsole()

    def banner(self) -> None:
        """Show the ctxpack banner."""
        self.console.print(
            Panel(
                f"[bold cyan]ctxpack[/bold cyan] [dim]v{__version__}[/dim]\n"
                "[dim]Related work and code changes, packed to fit[/dim]",
                border_style="cyan",
                padding=(1, 2),
            )
        )

    def success(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {message}")

    def error(self, message: str) -> None:
        self.console.print(f"[red]✗[/red] {message}")

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]![/yellow] {message}")

    def info(self, message: str) -> None:
        self.console.print(f"[blue]i[/blue] {message}")

    def json(self, text: str) -> None:
        self.console.print_json(text)

    def show_summary(self, summary: ContextSummary, title: str = "Context Summary") -> None:
        """Display summary counts in a table."""
        table = Table(title=title, border_style="cyan")
        table.add_column("Metric", style="bold")
        table.add_column("Count", justify="right", style="cyan")

        table.add_row("Related items", str(summary.total_related))
        table.add_row("Filtered out", str(summary.filtered_out))
        table.add_row("Active work", str(summary.active_work))
        table.add_row("Completed work", str(summary.completed_work))
        table.add_row("Changes", str(summary.total_changes))
        table.add_row("Merged changes", str(summary.merged_changes))
        table.add_row("Average relevance", str(summary.average_relevance))

        if summary.status_breakdown:
            table.add_section()
            for status, count in sorted(summary.status_breakdown.items(), key=lambda x: -x[1]):
                table.add_row(f"  {status}", str(count))

        self.console.print(table)

    def show_records(self, records: list[ContextRecord]) -> None:
        """Display related records, most relevant first."""
        if not records:
            self.info("No related items")
            return

        table = Table(border_style="dim")
        table.add_column("Item", style="bold")
        table.add_column("Relationship")
        table.add_column("Status")
        table.add_column("Changes", justify="right")
        table.add_column("Score", justify="right", style="cyan")
        table.add_column("Summary", overflow="ellipsis", max_width=48)

        for record in records:
            score = record.relevance_score
            if score is None:
                score = record.priority_score
            others = [r.type for r in record.relationships if not r.primary]
            relationship = record.relationship_type
            if others:
                relationship += f" [dim](+{', '.join(others)})[/dim]"
            table.add_row(
                record.item_id,
                relationship,
                record.item.status or "-",
                str(len(record.changes)),
                "-" if score is None else str(score),
                record.item.summary,
            )

        self.console.print(table)

    def show_result(self, result: AggregateResult) -> None:
        """Display a full aggregation result."""
        meta = result.metadata
        if meta.fallback_mode:
            self.warning("Relationship-only context: change lookups were unavailable")

        self.console.print(
            Panel(
                f"[bold]Source:[/bold] {result.source_item_id}\n"
                f"[bold]Scope:[/bold] {meta.scope or 'default'}\n"
                f"[bold]Relationships:[/bold] {meta.total_related} "
                f"(max depth {meta.max_depth_reached})\n"
                f"[bold]Types:[/bold] {', '.join(meta.relationship_types) or '-'}",
                title="[bold]Context[/bold]",
                border_style="cyan",
            )
        )
        self.show_records(result.records)
        self.show_summary(result.summary)

        insights = result.insights
        self.console.print(f"\n[bold]{insights.overview}[/bold]")
        self.console.print(f"  {insights.recent_activity}")
        self.console.print(f"  {insights.completed_work}")
        for line in insights.implementation_insights:
            self.console.print(f"  [cyan]•[/cyan] {line}")

    def show_package(self, package: WorkPackage) -> None:
        """Display a work package and how it was trimmed."""
        primary = package.primary
        self.console.print(
            Panel(
                f"[bold]{primary.item_id}[/bold] {primary.summary}\n"
                f"[bold]Status:[/bold] {primary.status or '-'}\n"
                f"[bold]Own changes:[/bold] {len(primary.changes)}\n"
                f"[bold]Images:[/bold] {len(package.images)} own, "
                f"{len(package.context_images)} from related items",
                title="[bold]Work Package[/bold]",
                border_style="green",
            )
        )
        self.show_records(package.related)
        self.show_summary(package.summary)
        if package.trim is not None:
            self.show_trim_report(package.trim)
        if package.trim_warning:
            self.warning(package.trim_warning)

    def show_trim_report(self, report: TrimReport) -> None:
        """Display what trimming removed."""
        table = Table(title="Trimming", border_style="yellow")
        table.add_column("Metric", style="bold")
        table.add_column("Value", justify="right", style="yellow")

        table.add_row("Budget", f"{report.budget:,}")
        table.add_row("Before", f"{report.initial_units:,}")
        table.add_row("After", f"{report.final_units:,}")
        table.add_row("Records removed", str(report.removed_records))
        table.add_row("Images removed", str(report.removed_images))
        table.add_row("Changes removed", str(report.removed_changes))
        table.add_row("Fields truncated", str(report.truncated_fields))
        table.add_row("Stages", ", ".join(report.stages_applied) or "-")

        self.console.print(table)

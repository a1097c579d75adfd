"""CLI entry point using Typer."""

from datetime import date

import structlog
import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="barsync",
    help="Bar data sync - ingest POS, ticketing, accounting and review data and rebuild summaries.",
)
console = Console()

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
)


def _stats_table(title: str, stats: dict, keys: tuple[str, ...]) -> Table:
    table = Table(title=title)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    for key in keys:
        if key in stats:
            table.add_row(key.replace("_", " ").capitalize(), str(stats[key]))
    return table


@app.command()
def seed(bars_path: str = typer.Option("bars.yaml", help="Path to bars YAML file")) -> None:
    """Seed bars and source configs from bars.yaml."""
    from barsync.seed import seed_bars

    console.print("[bold blue]Seeding bars...[/bold blue]")

    try:
        stats = seed_bars(bars_path)
        console.print(
            _stats_table(
                "Seed Results",
                stats,
                ("bars_created", "bars_updated", "bars_unchanged", "source_configs_created", "source_configs_updated"),
            )
        )
        console.print("[bold green]Done![/bold green]")
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def sync(
    source: str = typer.Argument(..., help="pos, ticketing, accounting, reviews or sheets"),
    bar_id: int = typer.Option(..., "--bar", "-b", help="Bar id"),
    start: str | None = typer.Option(None, help="Window start (YYYY-MM-DD); defaults to yesterday"),
    end: str | None = typer.Option(None, help="Window end (YYYY-MM-DD); defaults to start"),
) -> None:
    """Ingest one source for one bar into the raw store."""
    from barsync.db import get_db
    from barsync.errors import BarSyncError
    from barsync.ingest.runner import run_source_sync
    from barsync.jobs.daily import default_window
    from barsync.sources.base import SyncWindow

    try:
        if start:
            window = SyncWindow(start=date.fromisoformat(start), end=date.fromisoformat(end or start))
        else:
            window = default_window()
    except ValueError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    console.print(f"[bold blue]Syncing {source} for bar {bar_id} ({window.start} to {window.end})...[/bold blue]")
    try:
        with get_db() as session:
            result = run_source_sync(session, bar_id, source, window)
    except BarSyncError as e:
        console.print(f"[bold red]Error:[/bold red] {e.message}")
        raise typer.Exit(1)

    console.print(
        _stats_table(
            "Sync Results",
            result,
            ("status", "pages", "collected", "new", "updated", "unchanged", "hit_page_ceiling", "error", "skipped"),
        )
    )
    if not result.get("success"):
        raise typer.Exit(1)


@app.command()
def process(
    max_records: int | None = typer.Option(None, help="Raw records per batch"),
    timeout: float | None = typer.Option(None, help="Stop starting new batches after this many seconds"),
) -> None:
    """Normalize unprocessed raw records."""
    from barsync.db import get_db
    from barsync.process.processor import process_backlog

    console.print("[bold blue]Processing raw records...[/bold blue]")
    with get_db() as session:
        stats = process_backlog(session, max_records=max_records, timeout_seconds=timeout)
    console.print(
        _stats_table(
            "Processing Results",
            stats,
            ("batches", "processed", "normalized", "failed", "dirty_periods", "timed_out", "error"),
        )
    )
    if stats.get("error"):
        raise typer.Exit(1)


@app.command()
def recompute(
    bar_id: int | None = typer.Option(None, "--bar", "-b", help="Bar id (all active bars when omitted)"),
    period: str | None = typer.Option(None, help="Period key, e.g. 2026-W03 or 2026-03"),
    dirty: bool = typer.Option(False, "--dirty", help="Only periods tagged dirty"),
    limit_periods: int | None = typer.Option(None, help="Trailing weekly periods to rebuild"),
) -> None:
    """Recompute CMV and performance summaries."""
    from barsync.aggregate.recompute import recompute as recompute_period
    from barsync.aggregate.recompute import recompute_all, recompute_dirty
    from barsync.db import get_db
    from barsync.errors import BarSyncError

    try:
        with get_db() as session:
            if period:
                if bar_id is None:
                    console.print("[bold red]Error:[/bold red] --bar is required with --period")
                    raise typer.Exit(1)
                recompute_period(session, bar_id, period)
                result = {"recalculadas": 1, "erros": 0, "erros_detalhes": []}
            elif dirty:
                result = recompute_dirty(session, [bar_id] if bar_id is not None else None)
            else:
                result = recompute_all(session, bar_id, limit_periods)
    except BarSyncError as e:
        console.print(f"[bold red]Error:[/bold red] {e.message}")
        raise typer.Exit(1)

    console.print(f"[cyan]Periods recomputed:[/cyan] {result['recalculadas']}")
    for error in result["erros_detalhes"]:
        console.print(f"[red]bar {error['bar_id']} {error['period_key']}:[/red] {error['error']}")
    if result["erros"]:
        raise typer.Exit(1)


@app.command()
def override(
    bar_id: int = typer.Option(..., "--bar", "-b", help="Bar id"),
    period: str = typer.Option(..., help="Period key"),
    field: str = typer.Option(..., help="Manual CMV input to change"),
    value: float = typer.Option(..., help="New value"),
    actor: str = typer.Option(..., help="Who is making the change"),
    reason: str | None = typer.Option(None, help="Why"),
) -> None:
    """Change a manual CMV input (stock counts, bonuses, adjustments) and recompute."""
    from barsync.aggregate.recompute import override_summary_field
    from barsync.db import get_db
    from barsync.errors import BarSyncError

    try:
        with get_db() as session:
            result = override_summary_field(session, bar_id, period, field, value, actor=actor, reason=reason)
    except BarSyncError as e:
        console.print(f"[bold red]Error:[/bold red] {e.message}")
        raise typer.Exit(1)

    cmv = result["cmv"]
    console.print(
        _stats_table(f"CMV {result['period_key']}", cmv, ("net_revenue", "cmv_value", "cost_ratio", "gap"))
    )


@app.command()
def cron(job: str = typer.Argument(..., help="daily or weekly")) -> None:
    """Run a scheduled job in-process."""
    from barsync.jobs.daily import run_daily_sync
    from barsync.jobs.weekly import run_weekly_recompute

    if job == "daily":
        stats = run_daily_sync()
    elif job == "weekly":
        stats = run_weekly_recompute()
    else:
        console.print(f"[bold red]Error:[/bold red] unknown job {job!r}")
        raise typer.Exit(1)

    if stats.get("error"):
        console.print(f"[bold yellow]Warning:[/bold yellow] {stats['error']}")

    table = Table(title=f"{job.capitalize()} Results")
    table.add_column("Step", style="cyan")
    table.add_column("Status", style="white")
    for name, step in (stats.get("steps") or {}).items():
        table.add_row(name, str(step.get("status")))
    console.print(table)

    if stats.get("success"):
        console.print("[bold green]Job completed.[/bold green]")
    else:
        raise typer.Exit(1)


@app.command()
def runs(limit: int = typer.Option(10, help="Number of runs to show")) -> None:
    """Show recent sync runs."""
    from barsync.db import get_db
    from barsync.models import SyncRun

    with get_db() as session:
        recent = session.query(SyncRun).order_by(SyncRun.started_at.desc()).limit(limit).all()
        table = Table(title="Recent Runs")
        table.add_column("Started", style="cyan")
        table.add_column("Target", style="white")
        table.add_column("Bar", style="white")
        table.add_column("Window", style="white")
        table.add_column("Status", style="green")
        table.add_column("Collected/Inserted/Errors", style="magenta")
        for run in recent:
            counts = run.counts_json or {}
            table.add_row(
                run.started_at.strftime("%Y-%m-%d %H:%M"),
                run.target,
                str(run.bar_id or "-"),
                f"{run.window_start} to {run.window_end}",
                run.status,
                f"{counts.get('collected', 0)}/{counts.get('inserted', 0)}/{counts.get('errors', 0)}",
            )
        console.print(table)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Bind address"),
    port: int = typer.Option(8000, help="Port"),
) -> None:
    """Serve the HTTP API."""
    import uvicorn

    uvicorn.run("barsync.api.app:app", host=host, port=port)


if __name__ == "__main__":
    app()

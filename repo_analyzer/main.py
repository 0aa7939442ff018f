"""CLI entry point for Repo Analyzer."""

import json
from datetime import datetime
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .cache import AGENT_NAMES, ChangeCache
from .config import AppConfig, load_config
from .drift import DriftReport, DriftSeverity, check_drift
from .errors import AllAgentsFailedError, NoAgentsToRunError, ScanError
from .llm import ResponseCache
from .orchestrator import Orchestrator, RunContext, RunOptions, RunResult
from .utils.logging import console, setup_logging
from .utils.metrics import format_bytes, format_duration, format_tokens

app = typer.Typer(
    name="repo-analyzer",
    help="Incremental repository analysis with cached LLM agents",
    add_completion=False,
)

DRIFT_COLORS = {
    DriftSeverity.NONE: "green",
    DriftSeverity.MINOR: "yellow",
    DriftSeverity.MODERATE: "dark_orange",
    DriftSeverity.MAJOR: "red",
}
DRIFT_FILE_LIST_LIMIT = 10


def version_callback(value: bool) -> None:
    if value:
        console.print(f"repo-analyzer version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = False,
) -> None:
    """Repo Analyzer - Incremental documentation of a code repository."""
    pass


RepoPath = Annotated[
    Path,
    typer.Argument(
        help="Path to the repository",
        exists=True,
        file_okay=False,
        dir_okay=True,
        resolve_path=True,
    ),
]

ConfigFile = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Configuration file path"),
]


@app.command()
def analyze(
    path: RepoPath,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Ignore the change cache and run every agent"),
    ] = False,
    exclude: Annotated[
        Optional[list[str]],
        typer.Option("--exclude", "-x", help="Agent to skip (repeatable)"),
    ] = None,
    max_workers: Annotated[
        int,
        typer.Option("--max-workers", "-w", help="Concurrent agents (0 = CPU count)"),
    ] = 0,
    max_hash_workers: Annotated[
        int,
        typer.Option("--max-hash-workers", help="Parallel file hashing threads (0 = auto, max 8)"),
    ] = 0,
    model: Annotated[
        Optional[str],
        typer.Option("--model", "-m", help="LLM model name"),
    ] = None,
    api_base: Annotated[
        Optional[str],
        typer.Option("--api-base", help="LLM API base URL"),
    ] = None,
    no_cache: Annotated[
        bool,
        typer.Option("--no-cache", help="Bypass the LLM response cache"),
    ] = False,
    timeout: Annotated[
        Optional[float],
        typer.Option("--timeout", help="Abort pending agents after this many seconds"),
    ] = None,
    config_file: ConfigFile = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-V", help="Enable verbose logging"),
    ] = False,
) -> None:
    """Analyze a repository, re-running only the agents whose inputs changed.

    Reports are written to .ai/docs/ inside the repository.
    """
    excluded = frozenset(exclude or [])
    unknown = sorted(excluded - set(AGENT_NAMES))
    if unknown:
        console.print(
            f"[red]Unknown agent(s): {', '.join(unknown)}[/red]\n"
            f"[dim]Known agents:[/dim] {', '.join(AGENT_NAMES)}"
        )
        raise typer.Exit(1)

    config = load_config(config_file)
    config.project_root = path
    if model:
        config.llm.model_name = model
    if api_base:
        config.llm.api_base = api_base

    setup_logging("DEBUG" if verbose else config.log_level, config.log_file)

    console.print(
        Panel(
            f"[bold blue]Analyzing repository:[/bold blue] {path}\n"
            f"[dim]Model:[/dim] {config.llm.model_name}\n"
            f"[dim]Force:[/dim] {force}\n"
            f"[dim]Response cache:[/dim] {not no_cache and config.cache.response_cache_enabled}\n"
            f"[dim]Excluded:[/dim] {', '.join(sorted(excluded)) or '-'}",
            title="Repo Analyzer",
        )
    )

    context = RunContext.create(config, path, use_response_cache=not no_cache, timeout=timeout)
    options = RunOptions(
        force=force,
        excluded_agents=excluded,
        max_workers=max_workers,
        max_hash_workers=max_hash_workers,
    )

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task("Analyzing repository...", total=None)
            result = Orchestrator(context).run(options)
            progress.update(task, completed=True, description="Analysis complete")
    except AllAgentsFailedError as e:
        for failure in e.failures:
            console.print(f"[red]  {failure.name}: {failure.error}[/red]")
        console.print(f"[red]Analysis failed: {e}[/red]")
        raise typer.Exit(1)
    except NoAgentsToRunError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    finally:
        context.close()

    _print_run_summary(result, context)


@app.command()
def check(
    path: RepoPath,
    output: Annotated[
        str,
        typer.Option("--output", "-o", help="Output format (text, json)"),
    ] = "text",
    exit_code: Annotated[
        bool,
        typer.Option("--exit-code", help="Exit with 1-3 for minor, moderate or major drift"),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-V", help="List changed files"),
    ] = False,
    config_file: ConfigFile = None,
) -> None:
    """Check whether the generated documentation lags behind the code.

    No model is called and the change cache is left untouched.
    """
    if output not in ("text", "json"):
        console.print(f"[red]Unknown output format: {output} (expected text or json)[/red]")
        raise typer.Exit(1)

    config = load_config(config_file)
    # JSON goes to stdout, so only errors may be logged there
    setup_logging(config.log_level if output == "text" else "ERROR", config.log_file)

    try:
        report = check_drift(path, config)
    except ScanError as e:
        console.print(f"[red]Drift check failed: {e}[/red]")
        raise typer.Exit(1)

    if output == "json":
        print(json.dumps(report.to_dict(), indent=2))
    else:
        _print_drift_report(report, verbose)

    if exit_code and report.has_drift:
        raise typer.Exit(report.severity.exit_code)


@app.command("cache-stats")
def cache_stats(path: RepoPath, config_file: ConfigFile = None) -> None:
    """Show change cache and LLM response cache statistics."""
    config = load_config(config_file)

    change_cache = ChangeCache(path, config.cache.change_cache_file)
    change_cache.load()
    info = change_cache.stats()

    table = Table(title="Change Cache")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("File", info["path"] if info["exists"] else f"{info['path']} (missing)")
    table.add_row("Tracked Files", f"{info['total_files']:,}")
    table.add_row("Last Analysis", _format_timestamp(info["last_analysis_at"]))
    for name in AGENT_NAMES:
        if name in info["agents"]:
            status = "[green]ok[/green]" if info["agents"][name] else "[red]failed[/red]"
        else:
            status = "[dim]never run[/dim]"
        table.add_row(name, status)
    console.print(table)

    response_cache = _open_response_cache(path, config)
    response_cache.load()
    _print_response_cache_stats(response_cache)


@app.command("cache-clear")
def cache_clear(
    path: RepoPath,
    all_caches: Annotated[
        bool,
        typer.Option("--all", "-a", help="Also remove the change cache (forces a full run)"),
    ] = False,
    config_file: ConfigFile = None,
) -> None:
    """Remove the LLM response cache so every request is sent again."""
    config = load_config(config_file)

    cache_path = path / config.cache.response_cache_file
    if cache_path.exists():
        cache_path.unlink()
        console.print(f"[green]Response cache cleared:[/green] {cache_path}")
    else:
        console.print(f"[dim]Response cache not found at {cache_path}, nothing to do[/dim]")

    if all_caches:
        change_cache = ChangeCache(path, config.cache.change_cache_file)
        if change_cache.clear():
            console.print(f"[green]Change cache cleared:[/green] {change_cache.path}")
        else:
            console.print(f"[dim]Change cache not found at {change_cache.path}, nothing to do[/dim]")


@app.command()
def config(
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Output path for config file"),
    ] = None,
    show: Annotated[
        bool,
        typer.Option("--show", "-s", help="Show current configuration"),
    ] = False,
) -> None:
    """Manage configuration."""
    if show:
        current = load_config()
        console.print(Panel(str(current.model_dump(mode="json")), title="Current Configuration"))
        return

    if output:
        AppConfig().to_yaml(output)
        console.print(f"[green]Configuration saved to {output}[/green]")
    else:
        console.print("Use --show to display config or --output to save default config")


def _open_response_cache(path: Path, config: AppConfig) -> ResponseCache:
    return ResponseCache(
        path / config.cache.response_cache_file,
        ttl_seconds=config.cache.ttl_seconds,
        max_entries=config.cache.max_memory_entries,
    )


def _format_timestamp(value: float | None) -> str:
    if value is None:
        return "never"
    return datetime.fromtimestamp(value).strftime("%Y-%m-%d %H:%M:%S")


def _print_run_summary(result: RunResult, context: RunContext) -> None:
    """Print a summary of the run."""
    table = Table(title="Analysis Summary")
    table.add_column("Agent", style="cyan")
    table.add_column("Status")

    failed = {failure.name: failure for failure in result.failed}
    for name in AGENT_NAMES:
        if name in failed:
            status = f"[red]failed[/red] {failed[name].error}"
        elif name in result.skipped:
            status = "[dim]up to date[/dim]"
        elif name in result.successful:
            status = "[green]generated[/green]"
        else:
            status = "[dim]excluded[/dim]"
        table.add_row(name, status)
    console.print(table)

    if result.scan_metrics:
        scan = result.scan_metrics
        console.print(
            f"[dim]Scan:[/dim] {scan.total_files:,} files, {scan.cached_files:,} cached "
            f"({scan.cache_hit_rate:.1f}%), {scan.hashed_files:,} hashed"
        )

    tokens = context.metrics.tokens
    if tokens.total_tokens:
        console.print(
            f"[dim]Tokens:[/dim] {format_tokens(tokens.input_tokens)} in, "
            f"{format_tokens(tokens.output_tokens)} out"
        )
    if context.response_cache is not None:
        _print_response_cache_stats(context.response_cache)

    console.print(f"[dim]Duration:[/dim] {format_duration(result.duration)}")
    if result.short_circuited:
        console.print("[green]No changes detected - existing reports are up to date[/green]")
    elif result.verdict == "partial":
        console.print(
            f"[yellow]Partial success: {len(result.failed)} agent(s) failed, "
            f"reports written to {context.docs_dir}[/yellow]"
        )
    else:
        console.print(f"\n[bold green]Reports written to: {context.docs_dir}[/bold green]")


def _print_drift_report(report: DriftReport, verbose: bool = False) -> None:
    """Print a drift report."""
    if report.is_first_run:
        console.print(
            Panel(
                "[yellow]No previous analysis found[/yellow]\n"
                f"[dim]{report.recommendation}[/dim]",
                title="Documentation Drift",
            )
        )
        return

    color = DRIFT_COLORS[report.severity]
    console.print(
        Panel(
            f"[bold {color}]Status:[/bold {color}] {report.severity.value.title()}\n"
            f"[dim]Last analysis:[/dim] {_format_timestamp(report.last_analysis_at)}",
            title="Documentation Drift",
        )
    )

    for label, files in (
        ("New", report.new_files),
        ("Modified", report.modified_files),
        ("Deleted", report.deleted_files),
    ):
        if not files:
            continue
        console.print(f"[cyan]{label}:[/cyan] {len(files)} file(s)")
        if verbose:
            for name in files[:DRIFT_FILE_LIST_LIMIT]:
                console.print(f"  {name}", markup=False)
            if len(files) > DRIFT_FILE_LIST_LIMIT:
                console.print(f"  [dim]... and {len(files) - DRIFT_FILE_LIST_LIMIT} more[/dim]")

    table = Table(title="Agent Status")
    table.add_column("Agent", style="cyan")
    table.add_column("Status")
    for status in report.agent_status:
        if status.needs_rerun:
            state = f"[yellow]needs re-run[/yellow] ({status.rerun_reason})"
        elif not status.output_exists:
            state = "[red]output missing[/red]"
        else:
            state = "[green]up to date[/green]"
        table.add_row(status.display_name, state)
    console.print(table)

    console.print(f"[dim]Summary:[/dim] {report.summary}")
    console.print(f"[dim]Recommendation:[/dim] {report.recommendation}")


def _print_response_cache_stats(cache: ResponseCache) -> None:
    stats = cache.stats()
    table = Table(title="LLM Response Cache")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Entries", f"{stats.total_entries:,}")
    table.add_row("Expired", f"{stats.expired_entries:,}")
    table.add_row("Hits", f"{stats.hits:,}")
    table.add_row("Misses", f"{stats.misses:,}")
    table.add_row("Hit Rate", f"{stats.hit_rate * 100:.1f}%")
    table.add_row("Size", format_bytes(stats.total_size_bytes))
    table.add_row("Evictions", f"{stats.evictions:,}")
    console.print(table)


if __name__ == "__main__":
    app()

"""CLI interface for siteexport."""

import logging
import sys
import time
from datetime import datetime
from pathlib import Path

import click

from siteexport.archive.reader import iter_blocks, summarize_archive
from siteexport.config import ExportConfig, ResourceBudget
from siteexport.errors import ExportError, NoExportError
from siteexport.exporter import ExportOrchestrator, MonitorAction, NullTrigger, SubprocessTrigger
from siteexport.exporter.models import RunResult
from siteexport.scanner.progress import format_bytes, format_duration


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log debug output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    ctx.ensure_object(dict)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


export_dir_option = click.option(
    "--export-dir",
    type=click.Path(file_okay=False, path_type=Path),
    required=True,
    help="Directory holding the export artifacts and working files",
)


@cli.command()
@click.argument("source_path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--database", type=click.Path(exists=True, dir_okay=False, path_type=Path), required=True)
@export_dir_option
@click.option("--name", "base_path_name", default="", help="Top-level directory name inside the archive")
@click.option("--exclude", "excludes", multiple=True, type=click.Path(path_type=Path), help="Extra path to exclude")
@click.option("--time-budget", type=float, default=25.0, show_default=True, help="Seconds per invocation")
@click.option("--max-files", type=int, default=None, help="Pause after N files per invocation")
@click.option("--no-compress", is_flag=True, help="Write the SQL dump uncompressed")
@click.option("--until-done", is_flag=True, help="Keep invoking steps in this process until finished")
@click.option("--spawn", is_flag=True, help="Continue in a detached process after each pause")
def start(
    source_path: Path,
    database: Path,
    export_dir: Path,
    base_path_name: str,
    excludes: tuple[Path, ...],
    time_budget: float,
    max_files: int | None,
    no_compress: bool,
    until_done: bool,
    spawn: bool,
) -> None:
    """Start a new export of SOURCE_PATH and its database."""
    config = ExportConfig(
        source_dir=source_path,
        database_path=database,
        export_dir=export_dir,
        base_path_name=base_path_name,
        extra_exclusions=[str(path.resolve()) for path in excludes],
        compress_sql=not no_compress,
        budget=ResourceBudget(time_budget_seconds=time_budget, max_files_per_run=max_files),
    )
    orchestrator = _orchestrator(export_dir, spawn)

    click.echo(f"Exporting {source_path} to {export_dir}")
    try:
        result = orchestrator.start(config)
        if until_done:
            result = _run_until_done(orchestrator, result)
    except ExportError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(130)

    _finish(result)


@cli.command()
@export_dir_option
@click.option("--until-done", is_flag=True, help="Keep invoking steps in this process until finished")
@click.option("--spawn", is_flag=True, help="Continue in a detached process after each pause")
@click.option("--force", is_flag=True, help="Run even if another invocation looks active")
@click.option("--delay", type=float, default=0.0, help="Seconds to wait before running")
def resume(export_dir: Path, until_done: bool, spawn: bool, force: bool, delay: float) -> None:
    """Continue the export in EXPORT_DIR from its current step."""
    if delay > 0:
        time.sleep(delay)

    orchestrator = _orchestrator(export_dir, spawn)
    try:
        result = orchestrator.run(force=force)
        if until_done:
            result = _run_until_done(orchestrator, result)
    except NoExportError:
        click.echo("Error: No export found. Run 'siteexport start' first.", err=True)
        sys.exit(1)
    except ExportError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(130)

    _finish(result)


def _orchestrator(export_dir: Path, spawn: bool) -> ExportOrchestrator:
    trigger = SubprocessTrigger(export_dir) if spawn else NullTrigger()
    return ExportOrchestrator(export_dir, trigger=trigger)


def _run_until_done(orchestrator: ExportOrchestrator, result: RunResult) -> RunResult:
    while result.needs_continuation:
        click.echo(f"  ... {result.status} at step '{result.step.value}'")
        if result.retry_after > 0:
            time.sleep(result.retry_after)
        result = orchestrator.run()
    return result


def _finish(result: RunResult) -> None:
    if result.error:
        click.echo(f"Error: {result.error}", err=True)
        sys.exit(1)
    if result.busy:
        click.echo(f"Another invocation is running step '{result.step.value}'")
    elif result.finished:
        click.echo("Export complete.")
    else:
        reason = result.pause_reason.value if result.pause_reason else "unknown"
        click.echo(f"Export paused at step '{result.step.value}' ({reason}). Run 'siteexport resume' to continue.")


@cli.command()
@export_dir_option
def status(export_dir: Path) -> None:
    """Show the state of the export in EXPORT_DIR."""
    orchestrator = ExportOrchestrator(export_dir)
    report = orchestrator.report()

    if report.step is None:
        click.echo("No export found. Run 'siteexport start' first.")
        return

    click.echo("\nExport Status:")
    click.echo("-" * 60)
    click.echo(f"  Status: {report.status or 'unknown'}")
    click.echo(f"  Step: {report.step.value}")
    if report.idle_seconds is not None:
        click.echo(f"  Last activity: {format_duration(report.idle_seconds)} ago")
    if report.restarts:
        click.echo(f"  Restarts: {report.restarts}")

    if report.enumeration:
        click.echo(
            f"  Files found: {report.enumeration.get('files_found', 0):,} "
            f"({format_bytes(report.enumeration.get('total_size', 0))}), "
            f"excluded: {report.enumeration.get('files_excluded', 0):,}"
        )
    if report.files_processed:
        click.echo(
            f"  Archived so far: {report.files_processed:,} files "
            f"({format_bytes(report.bytes_processed)})"
        )

    if report.artifacts:
        click.echo("\nArtifacts:")
        for kind, info in report.artifacts.items():
            modified = datetime.fromtimestamp(info["modified"]).strftime("%Y-%m-%d %H:%M:%S")
            click.echo(f"  {kind:<10} {format_bytes(info['size']):>12}  {modified}  {info['path']}")

    if report.recent_log:
        click.echo("\nRecent log:")
        for line in report.recent_log:
            click.echo(f"  {line}")


@cli.command()
@export_dir_option
def monitor(export_dir: Path) -> None:
    """Restart the export in EXPORT_DIR if it has stopped making progress."""
    orchestrator = ExportOrchestrator(export_dir, trigger=SubprocessTrigger(export_dir))
    try:
        action = orchestrator.monitor()
    except NoExportError:
        click.echo("No export found.")
        return

    messages = {
        MonitorAction.IDLE: "Export is not running.",
        MonitorAction.HEALTHY: "Export is making progress.",
        MonitorAction.RESTARTED: "Export was stuck and has been restarted.",
        MonitorAction.FAILED: "Export was stuck too many times and has been stopped.",
    }
    click.echo(messages[action])
    if action is MonitorAction.FAILED:
        sys.exit(1)


@cli.command("list")
@click.argument("archive", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--summary", "summary_only", is_flag=True, help="Only print totals")
def list_archive(archive: Path, summary_only: bool) -> None:
    """List the files stored in ARCHIVE."""
    if not summary_only:
        for block in iter_blocks(archive):
            header = block.header
            modified = datetime.fromtimestamp(header.mtime).strftime("%Y-%m-%d %H:%M")
            click.echo(f"{header.size:>12,}  {modified}  {header.relative_path}")

    summary = summarize_archive(archive)
    click.echo(f"\n{summary.blocks:,} files, {format_bytes(summary.content_bytes)}")
    if not summary.complete:
        click.echo(f"Warning: {summary.trailing_bytes} trailing bytes do not form a complete block", err=True)


def main() -> None:
    """Entry point for the CLI."""
    cli(standalone_mode=True)  # pylint: disable=no-value-for-parameter

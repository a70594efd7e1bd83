"""
Import command.

Loads validated recipes and transformed users and pushes them to the
destination's migration API, resuming from the checkpoint of an interrupted
run with the same migration id.
"""

import asyncio
import signal
from pathlib import Path

import click

from recipe_migration.cli.context import MigrationContext
from recipe_migration.cli.decorators import handle_errors, pass_context, requires_config
from recipe_migration.cli.utils import echo_info, echo_success, echo_warning, print_table
from recipe_migration.migration.coordinator import ImportOrchestrator, ImportRunSummary
from recipe_migration.utils.logging import get_logger

logger = get_logger(__name__)


def _request_cancel(cancel_event: asyncio.Event, sig: signal.Signals) -> None:
    if not cancel_event.is_set():
        logger.warning("cancel_requested", signal=sig.name)
        click.echo(
            f"\nReceived {sig.name}, finishing the current record and saving progress...",
            err=True,
        )
    cancel_event.set()


async def _run_import(
    orchestrator: ImportOrchestrator,
    cancel_event: asyncio.Event,
    validated_dir: Path | None,
    transformed_dir: Path | None,
) -> ImportRunSummary:
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_cancel, cancel_event, sig)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            logger.debug("signal_handler_unavailable", signal=sig.name)

    try:
        return await orchestrator.run(validated_dir, transformed_dir)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


@click.command(name="import")
@click.option("--dry-run", is_flag=True, help="Validate and report without calling the API")
@click.option(
    "--stop-on-error", is_flag=True, help="Stop after the first batch that contains a failure"
)
@click.option("--batch-size", type=click.IntRange(min=1), help="Recipes per batch")
@click.option(
    "--migration-id",
    type=str,
    help="Checkpoint identifier (defaults to today's date); reuse it to resume",
)
@click.option(
    "--validated-dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Directory holding recipes-pass.json / recipes-warn.json (default: latest run)",
)
@click.option(
    "--transformed-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory holding users-normalized.json",
)
@pass_context
@requires_config
@handle_errors
def import_cmd(
    ctx: MigrationContext,
    dry_run: bool,
    stop_on_error: bool,
    batch_size: int | None,
    migration_id: str | None,
    validated_dir: Path | None,
    transformed_dir: Path | None,
) -> None:
    """Import validated users and recipes into the destination.

    Users are imported first so recipes can be linked to their new authors.
    Already-migrated records are skipped, so the command is safe to re-run.

    Examples:

        # Preview without writing anything
        recipe-bridge import --dry-run

        # Import the latest validated run
        recipe-bridge --config config.yaml import

        # Resume an interrupted run
        recipe-bridge import --migration-id 2024-05-01
    """
    config = ctx.config
    if dry_run:
        config.importer.dry_run = True
    if stop_on_error:
        config.importer.stop_on_error = True
    if batch_size:
        config.importer.batch_size = batch_size
    if migration_id:
        config.progress.migration_id = migration_id

    if config.importer.dry_run:
        echo_info("Dry run: records are validated only, nothing is sent to the destination")

    cancel_event = asyncio.Event()
    orchestrator = ImportOrchestrator(config, cancel_event=cancel_event)
    summary = asyncio.run(_run_import(orchestrator, cancel_event, validated_dir, transformed_dir))

    if summary.resumed:
        echo_info(f"Resumed migration {summary.migration_id}")

    if summary.report_paths:
        print_table(
            "Reports",
            ["Report", "Path"],
            [[name, str(path)] for name, path in summary.report_paths.items()],
        )
    if summary.dry_run_report:
        echo_info(f"Dry-run report: {summary.dry_run_report}")

    if summary.dry_run:
        if summary.recipes_failed:
            echo_warning(f"{summary.recipes_failed} recipe(s) would fail to import")
        echo_success("Dry run completed")
    elif summary.stopped_on_error:
        echo_warning("Import stopped after a failed batch (--stop-on-error); checkpoint kept")
        raise click.exceptions.Exit(1)
    elif summary.ok:
        echo_success("Import completed")
    else:
        echo_warning(
            f"Completed with {summary.recipes_failed} failed recipe(s) and "
            f"{summary.users_failed} failed user(s); re-run to retry them"
        )

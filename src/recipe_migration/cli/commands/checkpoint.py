"""
Checkpoint management commands.

This module provides commands for inspecting and removing the progress
checkpoint of an import run.
"""

import click

from recipe_migration.cli.context import MigrationContext
from recipe_migration.cli.decorators import (
    confirm_action,
    handle_errors,
    pass_context,
    requires_config,
)
from recipe_migration.cli.utils import echo_info, echo_success, echo_warning, print_table
from recipe_migration.migration.coordinator import default_migration_id
from recipe_migration.migration.progress import (
    MigrationPhase,
    ProgressTracker,
    checkpoint_path,
)
from recipe_migration.utils.logging import get_logger

logger = get_logger(__name__)

PHASES = [phase.value for phase in MigrationPhase]


def _resolve_migration_id(ctx: MigrationContext, migration_id: str | None) -> str:
    return migration_id or ctx.config.progress.migration_id or default_migration_id()


@click.group(name="checkpoint")
def checkpoint() -> None:
    """Checkpoint management commands.

    Inspect or remove the checkpoint an interrupted run resumes from.
    """
    pass


@checkpoint.command(name="show")
@click.option("--migration-id", type=str, help="Migration id (defaults to today's date)")
@click.option(
    "--phase", type=click.Choice(PHASES), default=MigrationPhase.IMPORT.value, show_default=True
)
@pass_context
@requires_config
@handle_errors
def show_checkpoint(ctx: MigrationContext, migration_id: str | None, phase: str) -> None:
    """Show progress stored in a checkpoint.

    Examples:

        recipe-bridge checkpoint show --migration-id 2024-05-01
    """
    migration_id = _resolve_migration_id(ctx, migration_id)
    tracker = ProgressTracker.load_checkpoint(migration_id, phase, ctx.config.paths.progress_dir)
    if tracker is None:
        echo_warning(f"No checkpoint found for {migration_id} ({phase})")
        return

    progress = tracker.progress
    print_table(
        f"Checkpoint {migration_id} ({phase})",
        ["Metric", "Value"],
        [
            ["Total records", progress.total_records],
            ["Processed", progress.processed_records],
            ["Succeeded", progress.succeeded_records],
            ["Failed", progress.failed_records],
            ["Skipped", progress.skipped_records],
            ["Batch", f"{progress.current_batch}/{progress.total_batches}"],
            ["Complete", f"{tracker.percentage()}%"],
            ["Started", progress.start_time],
            ["Last checkpoint", progress.last_checkpoint or "N/A"],
        ],
    )
    echo_info(f"Checkpoint file: {tracker.checkpoint_path}")


@checkpoint.command(name="delete")
@click.option("--migration-id", type=str, help="Migration id (defaults to today's date)")
@click.option(
    "--phase", type=click.Choice(PHASES), default=MigrationPhase.IMPORT.value, show_default=True
)
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@pass_context
@requires_config
@handle_errors
@confirm_action("Delete the checkpoint? The next run will start from scratch.")
def delete_checkpoint(
    ctx: MigrationContext, migration_id: str | None, phase: str, yes: bool
) -> None:
    """Delete a checkpoint, complete or not.

    Id mappings are kept, so already-migrated records are still skipped.

    Examples:

        recipe-bridge checkpoint delete --migration-id 2024-05-01 --yes
    """
    migration_id = _resolve_migration_id(ctx, migration_id)
    path = checkpoint_path(migration_id, phase, ctx.config.paths.progress_dir)
    if not path.exists():
        echo_warning(f"No checkpoint found at {path}")
        return

    path.unlink()
    logger.info("checkpoint_deleted", path=str(path), forced=True)
    echo_success(f"Deleted checkpoint {path}")

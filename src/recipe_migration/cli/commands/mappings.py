"""
Id mapping commands.

Inspect, export or reset the ``legacy_id -> new_id`` mappings that make
repeated imports skip already-migrated records.
"""

from pathlib import Path

import click

from recipe_migration.cli.context import MigrationContext
from recipe_migration.cli.decorators import (
    confirm_action,
    handle_errors,
    pass_context,
    requires_config,
)
from recipe_migration.cli.utils import echo_success, format_count, print_table
from recipe_migration.utils.files import atomic_write_json
from recipe_migration.utils.logging import get_logger

logger = get_logger(__name__)


@click.group(name="mappings")
def mappings() -> None:
    """Id mapping commands."""
    pass


@mappings.command(name="stats")
@pass_context
@requires_config
@handle_errors
def mapping_stats(ctx: MigrationContext) -> None:
    """Show how many records of each type are mapped."""
    stats = ctx.store.get_stats()
    print_table(
        f"Id mappings ({ctx.store.mapping_dir})",
        ["Entity", "Total", "Imported", "Pending"],
        [
            [
                entity,
                format_count(counts["total"]),
                format_count(counts["imported"]),
                format_count(counts["pending"]),
            ]
            for entity, counts in stats.items()
        ],
    )


@mappings.command(name="export")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    required=True,
    help="Destination JSON file",
)
@pass_context
@requires_config
@handle_errors
def export_mappings(ctx: MigrationContext, output: Path) -> None:
    """Export every mapping to a single JSON file.

    Examples:

        recipe-bridge mappings export -o mappings-backup.json
    """
    data = ctx.store.export_mappings()
    atomic_write_json(output, data)
    total = sum(len(items) for items in data.values())
    echo_success(f"Exported {format_count(total)} mapping(s) to {output}")


@mappings.command(name="clear")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@pass_context
@requires_config
@handle_errors
@confirm_action("Forget every id mapping? Records will be re-submitted on the next import.")
def clear_mappings(ctx: MigrationContext, yes: bool) -> None:
    """Forget every id mapping."""
    store = ctx.store
    store.clear_mappings()
    store.save_mappings()
    echo_success(f"Cleared mappings in {store.mapping_dir}")

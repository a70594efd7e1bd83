"""
Main CLI entry point for Recipe Bridge.

This module provides the command-line interface for importing legacy users
and recipes into the new recipe application and verifying the result.
"""

import sys
from pathlib import Path

import click
from dotenv import load_dotenv

from recipe_migration import __version__
from recipe_migration.cli.commands import checkpoint as checkpoint_commands
from recipe_migration.cli.commands import import_data as import_commands
from recipe_migration.cli.commands import mappings as mapping_commands
from recipe_migration.cli.commands import verify as verify_commands
from recipe_migration.cli.context import MigrationContext
from recipe_migration.utils.logging import configure_logging, get_logger

# Load environment variables from .env file
load_dotenv()

logger = get_logger(__name__)


@click.group()
@click.version_option(version=__version__, prog_name="recipe-bridge")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file (settings come from the environment when omitted)",
    envvar="RECIPE_BRIDGE_CONFIG",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    help="Set console logging level (file logging stays at DEBUG)",
    envvar="RECIPE_BRIDGE_LOG_LEVEL",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write JSON logs to this file (default: logs/migration.log)",
    envvar="RECIPE_BRIDGE_LOG_FILE",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Path | None,
    log_level: str,
    log_file: Path | None,
) -> None:
    """Recipe Bridge - Migrate legacy users and recipes to the new recipe app.

    Examples:

        # Preview an import
        recipe-bridge --config config.yaml import --dry-run

        # Run the import (re-run the same command to resume)
        recipe-bridge --config config.yaml import

        # Verify migrated data
        recipe-bridge --config config.yaml verify
    """
    effective_log_file = Path(log_file) if log_file else Path("logs/migration.log")
    effective_log_file.parent.mkdir(parents=True, exist_ok=True)

    configure_logging(level=log_level, log_file=str(effective_log_file))

    ctx.obj = MigrationContext(
        config_path=config,
        log_level=log_level,
        log_file=log_file,
    )

    logger.debug(
        "cli_initialized",
        config=str(config) if config else None,
        log_level=log_level,
    )


# Register command groups
cli.add_command(checkpoint_commands.checkpoint)
cli.add_command(mapping_commands.mappings)

# Register standalone commands
cli.add_command(import_commands.import_cmd, name="import")
cli.add_command(verify_commands.verify)


def main() -> int:
    """Main entry point for CLI."""
    try:
        # without standalone mode click returns the code of a raised Exit
        result = cli(standalone_mode=False)
        return result if isinstance(result, int) else 0
    except click.exceptions.Abort:
        click.echo("Aborted!", err=True)
        return 130
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except Exception as e:
        logger.error("unexpected_error", error=str(e), exc_info=True)
        click.echo(f"Error: {e}", err=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())

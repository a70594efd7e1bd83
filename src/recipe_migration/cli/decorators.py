"""
Decorators for CLI commands.

This module provides decorators for error handling, context passing,
and other common CLI patterns.
"""

import functools
from collections.abc import Callable

import click

from recipe_migration.cli.context import MigrationContext
from recipe_migration.client.exceptions import (
    APIError,
    AuthenticationError,
    ConfigurationError,
    DataLoadError,
    MigrationCancelledError,
    StateError,
    VerificationError,
)
from recipe_migration.utils.logging import get_logger

logger = get_logger(__name__)

EXIT_ERROR = 1
EXIT_CONFIG = 2
EXIT_AUTH = 3
EXIT_API = 4
EXIT_STATE = 5
EXIT_VERIFICATION = 6
EXIT_CANCELLED = 130


def pass_context(f: Callable) -> Callable:
    """
    Decorator to pass MigrationContext to command function.

    Usage:
        @click.command()
        @pass_context
        def my_command(ctx: MigrationContext):
            print(ctx.config)
    """

    @click.pass_context
    @functools.wraps(f)
    def wrapper(click_ctx: click.Context, *args, **kwargs):
        migration_ctx: MigrationContext = click_ctx.obj
        return f(migration_ctx, *args, **kwargs)

    return wrapper


def handle_errors(f: Callable) -> Callable:
    """
    Decorator to handle common errors in CLI commands.

    Exit codes:
        0: Success
        1: General error (including unreadable input data)
        2: Configuration error
        3: Authentication error
        4: API error
        5: State error (mappings or checkpoints)
        6: Verification error
        130: Cancelled by the operator
    """

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)

        except (click.exceptions.Exit, click.ClickException):
            raise

        except ConfigurationError as e:
            logger.error("configuration_error", error=str(e))
            click.echo(f"Configuration Error: {e}", err=True)
            click.echo(
                "\nPlease check your configuration file and ensure all required fields are set.",
                err=True,
            )
            raise click.exceptions.Exit(EXIT_CONFIG) from e

        except AuthenticationError as e:
            logger.error("authentication_error", error=str(e))
            click.echo(f"Authentication Error: {e}", err=True)
            click.echo("\nPlease verify the migration API token.", err=True)
            raise click.exceptions.Exit(EXIT_AUTH) from e

        except APIError as e:
            logger.error("api_error", error=str(e), status_code=e.status_code)
            click.echo(f"API Error: {e}", err=True)
            if e.status_code:
                click.echo(f"\nResponse status: {e.status_code}", err=True)
            raise click.exceptions.Exit(EXIT_API) from e

        except StateError as e:
            logger.error("state_error", error=str(e))
            click.echo(f"State Error: {e}", err=True)
            click.echo(
                "\nThere was an error reading or writing migration state. "
                "The mapping or checkpoint files may be corrupted or inaccessible.",
                err=True,
            )
            raise click.exceptions.Exit(EXIT_STATE) from e

        except VerificationError as e:
            logger.error("verification_error", error=str(e))
            click.echo(f"Verification Error: {e}", err=True)
            raise click.exceptions.Exit(EXIT_VERIFICATION) from e

        except MigrationCancelledError as e:
            click.echo(f"Cancelled: {e}", err=True)
            raise click.exceptions.Exit(EXIT_CANCELLED) from e

        except DataLoadError as e:
            logger.error("data_load_error", error=str(e))
            click.echo(f"Data Error: {e}", err=True)
            raise click.exceptions.Exit(EXIT_ERROR) from e

        except Exception as e:
            logger.error("unexpected_error", error=str(e), exc_info=True)
            click.echo(f"Unexpected Error: {e}", err=True)
            click.echo(
                "\nAn unexpected error occurred. Please check the logs for details.",
                err=True,
            )
            raise click.exceptions.Exit(EXIT_ERROR) from e

    return wrapper


def requires_config(f: Callable) -> Callable:
    """
    Decorator to ensure configuration loads before the command runs.
    """

    @functools.wraps(f)
    def wrapper(ctx: MigrationContext, *args, **kwargs):
        try:
            _ = ctx.config
        except ConfigurationError as e:
            click.echo(f"Error loading configuration: {e}", err=True)
            raise click.exceptions.Exit(EXIT_CONFIG) from e

        return f(ctx, *args, **kwargs)

    return wrapper


def confirm_action(
    message: str = "Do you want to continue?",
    abort_message: str = "Operation cancelled.",
) -> Callable:
    """
    Decorator to prompt for confirmation before executing a command.

    A ``--yes`` option on the command skips the prompt.

    Usage:
        @click.command()
        @click.option("--yes", is_flag=True)
        @confirm_action("This will forget every id mapping. Continue?")
        def dangerous_command(yes):
            ...
    """

    def decorator(f: Callable) -> Callable:
        @functools.wraps(f)
        def wrapper(*args, **kwargs):
            ctx = click.get_current_context()
            if ctx.params.get("yes", False):
                return f(*args, **kwargs)

            if not click.confirm(message):
                click.echo(abort_message)
                raise click.exceptions.Exit(0)

            return f(*args, **kwargs)

        return wrapper

    return decorator

"""
Post-migration verification command.
"""

from pathlib import Path

import click

from recipe_migration.cli.context import MigrationContext
from recipe_migration.cli.decorators import (
    EXIT_VERIFICATION,
    handle_errors,
    pass_context,
    requires_config,
)
from recipe_migration.cli.utils import echo_error, echo_info, echo_success, echo_warning
from recipe_migration.client.exceptions import ConfigurationError
from recipe_migration.utils.logging import get_logger
from recipe_migration.verification import (
    CheckStatus,
    DestinationDatabase,
    LegacyDatabase,
    PostMigrationVerifier,
    VerificationReportGenerator,
    create_readonly_engine,
)

logger = get_logger(__name__)


@click.command(name="verify")
@click.option(
    "--spot-checks",
    type=click.IntRange(min=0),
    help="Number of migrated recipes to compare field by field",
)
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory for verification reports (default: paths.verification_dir)",
)
@pass_context
@requires_config
@handle_errors
def verify(ctx: MigrationContext, spot_checks: int | None, output_dir: Path | None) -> None:
    """Verify migrated data against the legacy database.

    Compares record counts, spot-checks migrated recipes, measures field
    population, scans for HTML/encoding artifacts and samples ordering, tag
    and ownership preservation. Both databases are opened read-only.

    Exits with status 6 when the overall verdict is FAIL.

    Examples:

        recipe-bridge --config config.yaml verify

        recipe-bridge --config config.yaml verify --spot-checks 50
    """
    config = ctx.config
    settings = config.verification
    if settings.legacy is None or settings.destination is None:
        raise ConfigurationError(
            "verification.legacy and verification.destination database settings are required"
        )
    if spot_checks is not None:
        settings.spot_check_count = spot_checks

    mappings = ctx.store.get_stats()
    if mappings["recipe"]["imported"] == 0:
        echo_warning("No migrated recipes found in the id mappings; run the import first")

    echo_info("Running post-migration verification...")
    legacy = LegacyDatabase(create_readonly_engine(settings.legacy))
    try:
        destination = DestinationDatabase(create_readonly_engine(settings.destination))
        try:
            result = PostMigrationVerifier(legacy, destination, ctx.store, settings).verify()
        finally:
            destination.close()
    finally:
        legacy.close()

    generator = VerificationReportGenerator(output_dir or config.paths.verification_dir)
    paths = generator.generate(result)
    generator.print_summary(result)
    echo_info(f"Reports written to {paths['report'].parent}")

    status = result.summary.overall_status
    if status == CheckStatus.FAIL:
        echo_error("Verification FAILED")
        raise click.exceptions.Exit(EXIT_VERIFICATION)
    if status == CheckStatus.WARNING:
        echo_warning("Verification passed with warnings")
    else:
        echo_success("Verification passed")

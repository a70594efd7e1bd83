"""Verification report generation (JSON, plain text and Markdown)."""

from pathlib import Path
from typing import Any

from rich.console import Console
from rich.table import Table

from recipe_migration.migration.progress import format_duration
from recipe_migration.utils.files import (
    atomic_write_json,
    atomic_write_text,
    file_timestamp,
    unique_path,
)
from recipe_migration.utils.logging import get_logger
from recipe_migration.verification.models import (
    CheckStatus,
    CountStatus,
    Severity,
    VerificationResult,
)

logger = get_logger(__name__)

RULE = "=" * 70
SUBRULE = "-" * 70

STATUS_ICONS = {
    CountStatus.MATCH: "✓",
    CountStatus.WARNING: "⚠",
    CountStatus.MISMATCH: "✗",
    CheckStatus.PASS: "✓",
    CheckStatus.WARNING: "⚠",
    CheckStatus.FAIL: "✗",
}

STATUS_STYLES = {
    CheckStatus.PASS: "green",
    CheckStatus.WARNING: "yellow",
    CheckStatus.FAIL: "red",
}


class VerificationReportGenerator:
    """Writes verification results to timestamp-named, never-overwritten files.

    Usage:
        generator = VerificationReportGenerator("migration-data/verification")
        paths = generator.generate(result)
    """

    def __init__(
        self,
        output_dir: str | Path = "migration-data/verification",
        timestamp: str | None = None,
        console: Console | None = None,
    ):
        self.output_dir = Path(output_dir)
        self.timestamp = timestamp or file_timestamp()
        self.console = console or Console()

    def _path(self, name: str, suffix: str) -> Path:
        return unique_path(self.output_dir / f"{name}-{self.timestamp}{suffix}")

    def build_report(self, result: VerificationResult) -> dict[str, Any]:
        body = result.to_dict()
        return {
            "metadata": {
                "timestamp": result.timestamp,
                "duration": result.duration,
                **result.metadata,
            },
            "results": body,
            "recommendations": list(result.summary.recommendations),
        }

    @staticmethod
    def build_text_summary(result: VerificationResult) -> str:
        summary = result.summary
        lines = [
            RULE,
            "VERIFICATION SUMMARY",
            RULE,
            "",
            f"Timestamp: {result.timestamp}",
            f"Duration: {format_duration(result.duration)}",
            f"Overall Status: {summary.overall_status.value.upper()}",
            "",
            "CHECK RESULTS",
            SUBRULE,
            f"Total Checks: {summary.total_checks}",
            f"Passed: {summary.passed_checks}",
            f"Failed: {summary.failed_checks}",
            f"Warnings: {summary.warning_checks}",
            "",
            "RECORD COUNT COMPARISON",
            SUBRULE,
        ]
        for comparison in result.record_counts:
            lines.append(
                f"{STATUS_ICONS[comparison.status]} {comparison.table}: "
                f"Legacy={comparison.legacy_count}, New={comparison.new_count} "
                f"({comparison.percentage_match}%)"
            )
        lines.append("")

        passed_spot = sum(1 for c in result.spot_checks if c.status == CheckStatus.PASS)
        lines.extend(["SPOT CHECKS", SUBRULE, f"Passed: {passed_spot}/{len(result.spot_checks)}"])
        failed_spot = [c for c in result.spot_checks if c.status == CheckStatus.FAIL]
        if failed_spot:
            lines.extend(["", "Failed Spot Checks:"])
            for check in failed_spot[:5]:
                lines.append(f"  - Recipe {check.legacy_id}: {check.title}")
                lines.extend(f"    • {issue}" for issue in check.issues)
        lines.append("")

        lines.extend(["FIELD POPULATION", SUBRULE])
        for check in result.field_population:
            kind = "required" if check.required else "optional"
            lines.append(
                f"{STATUS_ICONS[check.status]} {check.field}: "
                f"{check.population_rate}% populated ({kind})"
            )
        lines.append("")

        if result.html_artifacts:
            counts = {severity: 0 for severity in Severity}
            for artifact in result.html_artifacts:
                counts[artifact.severity] += 1
            lines.extend(
                [
                    "HTML/ENCODING ARTIFACTS",
                    SUBRULE,
                    f"Found {len(result.html_artifacts)} recipes with artifacts",
                    f"  High: {counts[Severity.HIGH]}, Medium: {counts[Severity.MEDIUM]}, "
                    f"Low: {counts[Severity.LOW]}",
                    "",
                ]
            )

        if summary.critical_issues:
            lines.extend(["CRITICAL ISSUES", SUBRULE])
            lines.extend(f"{i}. {issue}" for i, issue in enumerate(summary.critical_issues, 1))
            lines.append("")

        lines.extend(["RECOMMENDATIONS", SUBRULE])
        lines.extend(f"{i}. {rec}" for i, rec in enumerate(summary.recommendations, 1))
        lines.extend(["", RULE])
        return "\n".join(lines)

    @staticmethod
    def build_markdown(result: VerificationResult) -> str:
        summary = result.summary
        lines = [
            "# Verification Report",
            "",
            f"**Timestamp:** {result.timestamp}  ",
            f"**Duration:** {format_duration(result.duration)}  ",
            f"**Overall Status:** {summary.overall_status.value.upper()}  ",
            "",
            "## Summary",
            "",
            "| Metric | Value |",
            "|--------|------:|",
            f"| Total Checks | {summary.total_checks} |",
            f"| Passed | {summary.passed_checks} |",
            f"| Failed | {summary.failed_checks} |",
            f"| Warnings | {summary.warning_checks} |",
            "",
            "## Record Count Comparison",
            "",
            "| Table | Legacy | New | Match % | Status |",
            "|-------|-------:|----:|--------:|:------:|",
        ]
        for c in result.record_counts:
            lines.append(
                f"| {c.table} | {c.legacy_count:,} | {c.new_count:,} | "
                f"{c.percentage_match}% | {STATUS_ICONS[c.status]} |"
            )
        lines.append("")

        passed_spot = sum(1 for c in result.spot_checks if c.status == CheckStatus.PASS)
        lines.extend(
            ["## Spot Checks", "", f"**Passed:** {passed_spot}/{len(result.spot_checks)}", ""]
        )
        failed_spot = [c for c in result.spot_checks if c.status == CheckStatus.FAIL]
        if failed_spot:
            lines.extend(["### Failed Spot Checks", ""])
            for check in failed_spot:
                lines.append(f"#### Recipe {check.legacy_id}: {check.title}")
                lines.append("")
                lines.extend(f"- {issue}" for issue in check.issues)
                lines.append("")

        lines.extend(
            [
                "## Field Population",
                "",
                "| Field | Population % | Required | Status |",
                "|-------|-------------:|:--------:|:------:|",
            ]
        )
        for check in result.field_population:
            lines.append(
                f"| {check.field} | {check.population_rate}% | "
                f"{'yes' if check.required else 'no'} | {STATUS_ICONS[check.status]} |"
            )
        lines.append("")

        ordering_failed = [c for c in result.ordering_checks if not c.order_preserved]
        tags_failed = [c for c in result.tag_associations if not c.all_tags_preserved]
        ownership_failed = [c for c in result.user_ownership if not c.ownership_mapped]
        lines.extend(
            [
                "## Data Quality",
                "",
                f"- **Recipes with HTML/encoding artifacts:** {len(result.html_artifacts)}",
                f"- **Ordering issues:** {len(ordering_failed)}/{len(result.ordering_checks)}",
                f"- **Tag issues:** {len(tags_failed)}/{len(result.tag_associations)}",
                f"- **Ownership issues:** {len(ownership_failed)}/{len(result.user_ownership)}",
                "",
            ]
        )

        if summary.critical_issues:
            lines.extend(["## Critical Issues", ""])
            lines.extend(f"{i}. {issue}" for i, issue in enumerate(summary.critical_issues, 1))
            lines.append("")

        lines.extend(["## Recommendations", ""])
        lines.extend(f"{i}. {rec}" for i, rec in enumerate(summary.recommendations, 1))
        lines.append("")
        return "\n".join(lines)

    def write_details(self, result: VerificationResult) -> dict[str, Path]:
        """Detail files, written only for checks that have something to show."""
        details = {
            "spot-check-details": [c.to_dict() for c in result.spot_checks],
            "html-artifacts": [c.to_dict() for c in result.html_artifacts],
            "ordering-issues": [
                c.to_dict() for c in result.ordering_checks if not c.order_preserved
            ],
            "tag-issues": [
                c.to_dict() for c in result.tag_associations if not c.all_tags_preserved
            ],
            "ownership-issues": [
                c.to_dict() for c in result.user_ownership if not c.ownership_mapped
            ],
        }
        return {
            name: atomic_write_json(self._path(name, ".json"), items)
            for name, items in details.items()
            if items
        }

    def generate(self, result: VerificationResult) -> dict[str, Path]:
        """Write every verification report file.

        Returns:
            Mapping of report kind to written path
        """
        paths = {
            "report": atomic_write_json(
                self._path("verification-report", ".json"), self.build_report(result)
            ),
            "summary": atomic_write_text(
                self._path("verification-summary", ".txt"), self.build_text_summary(result)
            ),
            "markdown": atomic_write_text(
                self._path("verification-report", ".md"), self.build_markdown(result)
            ),
        }
        paths.update(self.write_details(result))

        logger.info(
            "verification_reports_generated",
            output_dir=str(self.output_dir),
            files=len(paths),
            status=result.summary.overall_status.value,
        )
        return paths

    def print_summary(self, result: VerificationResult) -> None:
        summary = result.summary
        style = STATUS_STYLES[summary.overall_status]

        table = Table(title="Verification Results")
        table.add_column("Metric")
        table.add_column("Value", justify="right")
        table.add_row("Overall Status", f"[{style}]{summary.overall_status.value.upper()}[/{style}]")
        table.add_row("Total Checks", str(summary.total_checks))
        table.add_row("Passed", f"[green]{summary.passed_checks}[/green]")
        table.add_row("Failed", f"[red]{summary.failed_checks}[/red]")
        table.add_row("Warnings", f"[yellow]{summary.warning_checks}[/yellow]")
        self.console.print(table)

        if summary.critical_issues:
            self.console.print("[red]Critical issues:[/red]")
            for issue in summary.critical_issues:
                self.console.print(f"  - {issue}")

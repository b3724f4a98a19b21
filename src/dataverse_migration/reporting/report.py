"""Import report generation.

This module writes the summary of a migration run as JSON and Markdown.
"""

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from dataverse_migration.utils.logging import get_logger

logger = get_logger(__name__)

# Rows listed per section in the Markdown report
MAX_LISTED = 20


class ImportReport:
    """Generates migration reports.

    Covers per-entity tallies, records left unresolved by the sweep bound,
    failed records, deferred reference updates and deactivations.
    """

    def __init__(self, migration_id: str, summary: dict[str, Any]):
        """Initialize import report.

        Args:
            migration_id: Unique migration identifier
            summary: Migration summary from the coordinator
        """
        self.migration_id = migration_id
        self.summary = summary
        self.generated_at = datetime.now(UTC)

    @property
    def import_result(self) -> dict[str, Any]:
        return self.summary.get("import") or {}

    def generate_json(self, output_path: str | None = None) -> str:
        """Generate JSON report.

        Args:
            output_path: Optional path to save report

        Returns:
            JSON report as string
        """
        report = {
            "report_version": "1.0",
            "generated_at": self.generated_at.isoformat(),
            "migration_id": self.migration_id,
            "summary": self.summary,
            "statistics": self._generate_statistics(),
            "recommendations": self._generate_recommendations(),
        }

        json_str = json.dumps(report, indent=2, default=str)

        if output_path:
            Path(output_path).write_text(json_str)
            logger.info("json_report_saved", path=output_path)

        return json_str

    def generate_markdown(self, output_path: str | None = None) -> str:
        """Generate Markdown report.

        Args:
            output_path: Optional path to save report

        Returns:
            Markdown report as string
        """
        stats = self._generate_statistics()
        lines = [
            "# Dataverse Migration Report",
            "",
            f"**Migration ID:** `{self.migration_id}`  ",
            f"**Generated:** {self.generated_at.strftime('%Y-%m-%d %H:%M:%S UTC')}  ",
            f"**Status:** {self.summary.get('status', 'unknown')}  ",
            "",
            "## Summary",
            "",
            f"- **Source:** {self.summary.get('source_url', 'N/A')}",
            f"- **Target:** {self.summary.get('target_url', 'N/A')}",
            f"- **Duration:** {self._format_duration(self.summary.get('duration_seconds'))}",
            f"- **Dry Run:** {'Yes' if self.summary.get('dry_run') else 'No'}",
            f"- **Sweeps:** {self.import_result.get('sweeps', 0)}",
            "",
            "| Metric | Count |",
            "|--------|------:|",
            f"| Records Retrieved | {stats['records_retrieved']:,} |",
            f"| Records Imported | {stats['records_imported']:,} |",
            f"| Records Failed | {stats['records_failed']:,} |",
            f"| Records Unresolved | {stats['records_unresolved']:,} |",
            f"| Deferred Updates Applied | {stats['deferred_updated']:,} |",
            f"| Deferred Updates Failed | {stats['deferred_failed']:,} |",
            f"| Records Deactivated | {stats['deactivated']:,} |",
            f"| Success Rate | {stats['success_rate']:.1f}% |",
            "",
        ]

        entities = self.summary.get("entities", [])
        if entities:
            lines.extend(
                [
                    "## Entities",
                    "",
                    "| Entity | Retrieved | Imported | Failed |",
                    "|--------|----------:|---------:|-------:|",
                ]
            )
            retrieved = self.summary.get("retrieved", {})
            for entity in entities:
                lines.append(
                    f"| {entity['display_name']} (`{entity['entity']}`) "
                    f"| {retrieved.get(entity['entity'], 0):,} "
                    f"| {entity['success']:,} | {entity['error']:,} |"
                )
            lines.append("")

        failed = self.import_result.get("failed", [])
        if failed:
            lines.extend(["## Failed Records", ""])
            for item in failed[:MAX_LISTED]:
                name = f" {item['name']}" if item.get("name") else ""
                lines.append(
                    f"- `{item['entity']}/{item['id']}`{name}: "
                    f"{item['error_type']}: {item['error']}"
                )
            if len(failed) > MAX_LISTED:
                lines.append(f"\n*... and {len(failed) - MAX_LISTED} more failed records*")
            lines.append("")

        unresolved = self.import_result.get("unresolved", [])
        if unresolved:
            lines.extend(
                [
                    "## Unresolved Records",
                    "",
                    "These records still referenced other unwritten records when the "
                    "sweep limit was reached and were not imported.",
                    "",
                ]
            )
            for item in unresolved[:MAX_LISTED]:
                lines.append(f"- `{item['entity']}/{item['id']}`")
            if len(unresolved) > MAX_LISTED:
                lines.append(f"\n*... and {len(unresolved) - MAX_LISTED} more unresolved records*")
            lines.append("")

        lines.extend(["## Recommendations", ""])
        for recommendation in self._generate_recommendations():
            lines.append(f"- {recommendation}")
        lines.append("")

        md_str = "\n".join(lines)

        if output_path:
            Path(output_path).write_text(md_str)
            logger.info("markdown_report_saved", path=output_path)

        return md_str

    def _generate_statistics(self) -> dict[str, Any]:
        """Generate detailed statistics.

        Returns:
            Dictionary with calculated statistics
        """
        retrieved = self.summary.get("total_records_retrieved", 0)
        imported = self.summary.get("total_records_imported", 0)
        deactivation = self.summary.get("deactivation") or {}

        success_rate = (imported / retrieved * 100) if retrieved > 0 else 0

        return {
            "records_retrieved": retrieved,
            "records_imported": imported,
            "records_failed": len(self.import_result.get("failed", [])),
            "records_unresolved": len(self.import_result.get("unresolved", [])),
            "deferred_updated": self.import_result.get("deferred_updated", 0),
            "deferred_failed": self.import_result.get("deferred_failed", 0),
            "deactivated": deactivation.get("deactivated", 0),
            "deactivation_failed": deactivation.get("failed", 0),
            "success_rate": success_rate,
        }

    def _generate_recommendations(self) -> list[str]:
        """Generate recommendations based on the results.

        Returns:
            List of recommendation strings
        """
        recommendations = []
        stats = self._generate_statistics()

        if self.summary.get("dry_run"):
            recommendations.append(
                "This was a dry run. Records were retrieved but nothing was written to "
                "the target. Run without --dry-run to import them."
            )
            return recommendations

        if stats["records_failed"]:
            recommendations.append(
                f"{stats['records_failed']} records failed to import. Review the failed "
                "records and the log file, then run the import again; upserts and "
                "associations are safe to repeat."
            )

        if stats["records_unresolved"]:
            recommendations.append(
                f"{stats['records_unresolved']} records were left unresolved by the sweep "
                "limit. Raise import_options.max_sweeps or import their dependencies first."
            )

        if stats["deferred_failed"]:
            recommendations.append(
                f"{stats['deferred_failed']} deferred reference updates failed; the "
                "affected records exist but some lookups are empty."
            )

        if stats["deactivation_failed"]:
            recommendations.append(
                f"{stats['deactivation_failed']} records could not be deactivated and are "
                "still active in the target."
            )

        if not recommendations:
            recommendations.append("Import completed successfully.")

        return recommendations

    def _format_duration(self, seconds: float | None) -> str:
        """Format duration in human-readable format."""
        if seconds is None:
            return "N/A"

        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        secs = int(seconds % 60)

        if hours > 0:
            return f"{hours}h {minutes}m {secs}s"
        elif minutes > 0:
            return f"{minutes}m {secs}s"
        else:
            return f"{secs}s"


def generate_import_report(
    migration_id: str,
    summary: dict[str, Any],
    output_dir: str = "./reports",
    formats: list[str] | None = None,
) -> dict[str, str]:
    """Generate import reports in multiple formats.

    Args:
        migration_id: Migration identifier
        summary: Migration summary from the coordinator
        output_dir: Directory to save reports
        formats: List of formats to generate (json, markdown). Default: both

    Returns:
        Dictionary mapping format to file path
    """
    if formats is None:
        formats = ["json", "markdown"]

    report = ImportReport(migration_id, summary)
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    generated_files = {}

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    base_filename = f"import_report_{migration_id}_{timestamp}"

    if "json" in formats:
        json_path = output_path / f"{base_filename}.json"
        report.generate_json(str(json_path))
        generated_files["json"] = str(json_path)

    if "markdown" in formats:
        md_path = output_path / f"{base_filename}.md"
        report.generate_markdown(str(md_path))
        generated_files["markdown"] = str(md_path)

    logger.info(
        "import_reports_generated",
        migration_id=migration_id,
        formats=formats,
        files=generated_files,
    )

    return generated_files

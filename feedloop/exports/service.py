# feedloop/exports/service.py

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from feedloop.exports.csv_export import generate_csv, export_filename, normalize_template
from feedloop.reports.models import Report
from feedloop.reports.queries import ReportFilters, filtered_reports, reports_for_export, reports_by_ids
from feedloop.invitations.lifecycle import as_utc

logger = logging.getLogger(__name__)


@dataclass
class ExportOptions:
    template: str = "default"
    include_attachments: bool = False
    include_diagnostic: bool = False


@dataclass
class ExportResult:
    filename: str
    content: str
    record_count: int
    content_type: str = "text/csv"

    @property
    def size(self) -> int:
        return len(self.content.encode("utf-8"))


def _render(reports: list[Report], label: str, options: ExportOptions) -> ExportResult:
    template = normalize_template(options.template)
    content = generate_csv(
        reports,
        template=template,
        include_attachments=options.include_attachments,
        include_diagnostic=options.include_diagnostic,
    )
    return ExportResult(
        filename=export_filename(label, template),
        content=content,
        record_count=len(reports),
    )


def export_project_reports(
    db: Session,
    project_id: str,
    filters: ReportFilters | None = None,
    options: ExportOptions | None = None,
) -> ExportResult:
    options = options or ExportOptions()
    reports = reports_for_export(db, project_id, filters)
    result = _render(reports, project_id, options)
    logger.info("Exported %d report(s) for project %s (%s)", result.record_count, project_id, options.template)
    return result


def export_reports_by_ids(
    db: Session,
    project_id: str,
    report_ids: list[str],
    options: ExportOptions | None = None,
) -> ExportResult:
    """Export a hand-picked selection; ids outside the project are skipped."""
    options = options or ExportOptions()
    reports = reports_by_ids(db, project_id, list(dict.fromkeys(report_ids)))
    result = _render(reports, "custom", options)
    logger.info("Exported %d selected report(s) for project %s", result.record_count, project_id)
    return result


def export_stats(db: Session, project_id: str, filters: ReportFilters | None = None) -> dict:
    rows = (
        filtered_reports(db, project_id, filters)
        .with_entities(Report.type, Report.status, Report.priority, Report.created_at)
        .all()
    )

    by_type: dict[str, int] = {}
    by_status: dict[str, int] = {}
    by_priority: dict[str, int] = {}
    earliest = latest = None

    for rtype, status, priority, created_at in rows:
        by_type[rtype] = by_type.get(rtype, 0) + 1
        by_status[status] = by_status.get(status, 0) + 1
        if priority:
            by_priority[priority] = by_priority.get(priority, 0) + 1

        created_at = as_utc(created_at)
        if created_at is None:
            continue
        if earliest is None or created_at < earliest:
            earliest = created_at
        if latest is None or created_at > latest:
            latest = created_at

    return {
        "total_reports": len(rows),
        "reports_by_type": by_type,
        "reports_by_status": by_status,
        "reports_by_priority": by_priority,
        "date_range": {
            "earliest": earliest.isoformat() if earliest else None,
            "latest": latest.isoformat() if latest else None,
        },
    }

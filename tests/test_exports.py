import csv
import io
from datetime import datetime, timezone

from feedloop.exports.service import ExportOptions, export_project_reports, export_reports_by_ids, export_stats
from feedloop.reports.queries import ReportFilters, parse_date
from feedloop.projects.models import Project
from feedloop.reports.models import Attachment


def _rows(text):
    return list(csv.reader(io.StringIO(text)))


def _seed(project, make_report):
    old = make_report(project, title="Old bug", created_at=datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc))
    mid = make_report(
        project, title="Idea", type="initiative", priority="low",
        created_at=datetime(2026, 2, 10, 9, 0, tzinfo=timezone.utc),
    )
    new = make_report(
        project, title="Archived", status="archived", priority="critical",
        created_at=datetime(2026, 3, 20, 23, 30, tzinfo=timezone.utc),
    )
    return old, mid, new


class TestExportService:
    def test_newest_first_and_counts(self, db, project, make_report):
        _seed(project, make_report)
        result = export_project_reports(db, project.id)

        titles = [r[2] for r in _rows(result.content)[1:]]
        assert titles == ["Archived", "Idea", "Old bug"]
        assert result.record_count == 3
        assert result.content_type == "text/csv"
        assert result.size == len(result.content.encode("utf-8"))
        assert result.filename.startswith(f"feedloop-export-{project.id}-")

    def test_filters(self, db, project, make_report):
        _seed(project, make_report)

        only_bugs = export_project_reports(db, project.id, ReportFilters(type="bug"))
        assert only_bugs.record_count == 2

        archived = export_project_reports(db, project.id, ReportFilters(status="archived"))
        assert [r[2] for r in _rows(archived.content)[1:]] == ["Archived"]

    def test_date_range_is_inclusive_of_whole_end_day(self, db, project, make_report):
        _seed(project, make_report)
        filters = ReportFilters(
            date_from=parse_date("2026-02-10"),
            date_to=parse_date("2026-03-20", end_of_day=True),
        )
        result = export_project_reports(db, project.id, filters)
        assert result.record_count == 2

    def test_template_and_attachments(self, db, project, make_report):
        report = make_report(project, title="With files")
        for name in ("a.png", "b.png"):
            db.add(Attachment(
                project_id=project.id, report_id=report.id, filename=name, original_filename=name,
                content_type="image/png", size=10, storage_path=f"x/{name}",
            ))
        db.commit()

        result = export_project_reports(
            db, project.id, options=ExportOptions(template="jira", include_attachments=True),
        )
        rows = _rows(result.content)
        assert rows[0][0] == "Issue Type"
        assert rows[1][-1] == "a.png; b.png"
        assert "-jira-" in result.filename

    def test_selection_ignores_foreign_ids(self, db, project, owner, make_report):
        other = Project(name="Other", owner_id=owner.id)
        db.add(other)
        db.commit()

        mine = make_report(project, title="Mine")
        theirs = make_report(other, title="Theirs")

        result = export_reports_by_ids(db, project.id, [mine.id, theirs.id, mine.id])
        assert result.record_count == 1
        assert result.filename.startswith("feedloop-export-custom-")

    def test_stats(self, db, project, make_report):
        _seed(project, make_report)
        stats = export_stats(db, project.id)

        assert stats["total_reports"] == 3
        assert stats["reports_by_type"] == {"bug": 2, "initiative": 1}
        assert stats["reports_by_status"] == {"active": 2, "archived": 1}
        assert stats["reports_by_priority"]["critical"] == 1
        assert stats["date_range"]["earliest"].startswith("2026-01-05T09:00:00")
        assert stats["date_range"]["latest"].startswith("2026-03-20T23:30:00")

    def test_stats_empty(self, db, project):
        stats = export_stats(db, project.id)
        assert stats["total_reports"] == 0
        assert stats["date_range"] == {"earliest": None, "latest": None}


class TestExportRoutes:
    def test_requires_auth(self, client, project):
        r = client.get(f"/projects/{project.id}/export")
        assert r.status_code == 401
        assert r.json() == {"error": "Authentication required"}

    def test_csv_response(self, client, project, owner_headers, make_report):
        make_report(project, title="Hello, world")
        r = client.get(f"/projects/{project.id}/export?template=azure", headers=owner_headers)

        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/csv")
        assert r.headers["content-disposition"].startswith('attachment; filename="feedloop-export-')
        assert "-azure-" in r.headers["content-disposition"]
        assert "no-cache" in r.headers["cache-control"]

        rows = _rows(r.text)
        assert rows[0][0] == "Work Item Type"
        assert rows[1][1] == "Hello, world"

    def test_invalid_enum_is_400_with_details(self, client, project, owner_headers):
        r = client.get(f"/projects/{project.id}/export?type=story&template=excel", headers=owner_headers)
        assert r.status_code == 400
        body = r.json()
        assert body["error"] == "Validation failed"
        fields = {d["field"] for d in body["details"]}
        assert {"type", "template"} <= fields

    def test_invalid_date_is_400(self, client, project, owner_headers):
        r = client.get(f"/projects/{project.id}/export?from=not-a-date", headers=owner_headers)
        assert r.status_code == 400
        assert r.json()["details"][0]["field"] == "from"

    def test_invalid_project_id(self, client, owner_headers):
        r = client.get("/projects/not-a-uuid/export", headers=owner_headers)
        assert r.status_code == 400
        assert r.json()["error"] == "Invalid project ID format"

    def test_outsider_gets_404(self, client, project, make_user, headers_for):
        stranger = make_user("stranger@example.com")
        r = client.get(f"/projects/{project.id}/export", headers=headers_for(stranger))
        assert r.status_code == 404
        assert r.json()["error"] == "Project not found or access denied"

    def test_member_can_export(self, client, project, make_user, add_member, headers_for, make_report):
        member = make_user("member@example.com")
        add_member(project, member)
        make_report(project)
        r = client.get(f"/projects/{project.id}/export?include_diagnostic=true", headers=headers_for(member))
        assert r.status_code == 200
        assert _rows(r.text)[0][-1] == "Console Errors"

    def test_stats_route(self, client, project, owner_headers, make_report):
        make_report(project, type="feedback")
        r = client.get(f"/projects/{project.id}/export/stats?type=feedback", headers=owner_headers)
        assert r.status_code == 200
        assert r.json()["total_reports"] == 1

    def test_selection_route(self, client, project, owner_headers, make_report):
        a = make_report(project, title="A")
        make_report(project, title="B")
        r = client.post(
            f"/projects/{project.id}/export",
            json={"report_ids": [a.id], "template": "jira"},
            headers=owner_headers,
        )
        assert r.status_code == 200
        rows = _rows(r.text)
        assert len(rows) == 2
        assert rows[1][1] == "A"
        assert "feedloop-export-custom-jira-" in r.headers["content-disposition"]

    def test_from_bound_includes_report_created_in_that_second(self, client, project, owner_headers):
        created = client.post(
            f"/projects/{project.id}/reports",
            json={"title": "Fresh", "description": "Just filed", "type": "bug"},
            headers=owner_headers,
        )
        assert created.status_code == 201
        second = created.json()["created_at"][:19] + "Z"

        r = client.get(f"/projects/{project.id}/export?from={second}", headers=owner_headers)
        assert r.status_code == 200
        assert r.headers["X-Record-Count"] == "1"

    def test_date_only_from_includes_midnight(self, client, project, owner_headers, make_report):
        make_report(project, title="Midnight", created_at=datetime(2026, 4, 1, 0, 0, tzinfo=timezone.utc))
        make_report(project, title="Before", created_at=datetime(2026, 3, 31, 23, 59, 59, tzinfo=timezone.utc))

        r = client.get(f"/projects/{project.id}/export?from=2026-04-01", headers=owner_headers)
        assert r.headers["X-Record-Count"] == "1"
        assert _rows(r.text)[1][2] == "Midnight"

    def test_invalid_date_message_has_no_prefix(self, client, project, owner_headers):
        r = client.get(f"/projects/{project.id}/export?from=nope", headers=owner_headers)
        assert r.status_code == 400
        assert r.json()["details"] == [{"field": "from", "message": 'Invalid date format for "from" parameter'}]

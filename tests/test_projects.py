from datetime import datetime, timedelta, timezone
from pathlib import Path

from feedloop.core import config
from feedloop.invitations.lifecycle import create_pending_invitation
from feedloop.projects.models import Project
from feedloop.projects.permissions import can_invite_to_project, has_project_access
from feedloop.reports.models import Attachment, Report


class TestPermissions:
    def test_owner_member_stranger(self, db, project, owner, make_user, add_member):
        member = make_user("m@example.com")
        stranger = make_user("s@example.com")
        add_member(project, member)

        assert has_project_access(db, project.id, owner)
        assert has_project_access(db, project.id, member)
        assert not has_project_access(db, project.id, stranger)
        assert not has_project_access(db, "00000000-0000-4000-8000-000000000000", owner)

    def test_invite_rights(self, db, project, owner, make_user, add_member):
        plain = make_user("plain@example.com")
        inviter = make_user("inviter@example.com")
        add_member(project, plain)
        add_member(project, inviter, role="admin", can_invite=True)

        assert can_invite_to_project(db, project.id, owner)
        assert can_invite_to_project(db, project.id, inviter)
        assert not can_invite_to_project(db, project.id, plain)


class TestProjectRoutes:
    def test_create_and_list(self, client, owner_headers):
        r = client.post("/projects", json={"name": "  Website  "}, headers=owner_headers)
        assert r.status_code == 201
        body = r.json()
        assert body["name"] == "Website"
        assert len(body["integration_key"]) == 32
        assert body["role"] == "owner"

        listed = client.get("/projects", headers=owner_headers).json()
        assert [p["id"] for p in listed["projects"]] == [body["id"]]

    def test_create_rejects_blank_name(self, client, owner_headers):
        r = client.post("/projects", json={"name": "   "}, headers=owner_headers)
        assert r.status_code == 400
        assert r.json()["details"] == [{"field": "name", "message": "Project name is required"}]

    def test_list_includes_memberships(self, client, project, make_user, add_member, headers_for):
        member = make_user("m@example.com")
        add_member(project, member)
        listed = client.get("/projects", headers=headers_for(member)).json()
        assert listed["projects"][0]["id"] == project.id
        assert listed["projects"][0]["role"] == "member"

    def test_detail_lists_members(self, db, client, project, owner, owner_headers, make_user, add_member):
        member = make_user("m@example.com", "Max", "Member")
        add_member(project, member, role="admin")
        create_pending_invitation(
            db, project_id=project.id, email="later@example.com", role="member", can_invite=False, invited_by=owner.id,
        )
        expired = create_pending_invitation(
            db, project_id=project.id, email="gone@example.com", role="member", can_invite=False, invited_by=owner.id,
        )
        expired.expires_at = datetime.now(timezone.utc) - timedelta(days=1)
        db.commit()

        body = client.get(f"/projects/{project.id}", headers=owner_headers).json()
        members = body["members"]
        assert [m["status"] for m in members] == ["active", "active", "pending"]
        assert members[0]["role"] == "owner"
        assert members[1]["name"] == "Max Member"
        assert members[2]["email"] == "later@example.com"

    def test_update_owner_only(self, client, project, owner_headers, make_user, add_member, headers_for):
        member = make_user("m@example.com")
        add_member(project, member, role="admin", can_invite=True)

        r = client.put(f"/projects/{project.id}", json={"name": "Renamed"}, headers=headers_for(member))
        assert r.status_code == 403
        assert r.json()["error"] == "Only project owners can update projects"

        r = client.put(f"/projects/{project.id}", json={}, headers=owner_headers)
        assert r.status_code == 400

        r = client.put(f"/projects/{project.id}", json={"name": "Renamed"}, headers=owner_headers)
        assert r.status_code == 200
        assert r.json()["name"] == "Renamed"

    def test_delete_removes_everything(self, db, client, project, owner_headers, make_report):
        report = make_report(project)
        stored = Path(config.STORAGE_DIR) / "projects" / project.id / "uploads" / "1_abc_a.png"
        stored.parent.mkdir(parents=True, exist_ok=True)
        stored.write_bytes(b"png")
        db.add(Attachment(
            project_id=project.id, report_id=report.id, filename="a.png", original_filename="a.png",
            content_type="image/png", size=3, storage_path=f"projects/{project.id}/uploads/1_abc_a.png",
        ))
        db.commit()
        project_id = project.id

        r = client.delete(f"/projects/{project_id}", headers=owner_headers)
        assert r.status_code == 204

        db.expire_all()
        assert db.query(Project).filter(Project.id == project_id).first() is None
        assert db.query(Report).filter(Report.project_id == project_id).count() == 0
        assert db.query(Attachment).filter(Attachment.project_id == project_id).count() == 0
        assert not stored.exists()

    def test_delete_requires_owner(self, client, project, make_user, add_member, headers_for):
        member = make_user("m@example.com")
        add_member(project, member)
        r = client.delete(f"/projects/{project.id}", headers=headers_for(member))
        assert r.status_code == 403

    def test_rotate_integration_key(self, client, project, owner_headers):
        old_key = project.integration_key
        r = client.post(f"/projects/{project.id}/integration-key", headers=owner_headers)
        assert r.status_code == 200
        assert r.json()["integration_key"] != old_key
        assert len(r.json()["integration_key"]) == 32


class TestAuth:
    def test_register_login(self, client):
        r = client.post("/auth/register", json={"email": "New@Example.com", "password": "password123"})
        assert r.status_code == 201
        assert r.json()["access_token"]

        r = client.post("/auth/login", json={"email": "new@example.com", "password": "password123"})
        assert r.status_code == 200

        r = client.post("/auth/login", json={"email": "new@example.com", "password": "wrong-password"})
        assert r.status_code == 401

    def test_duplicate_email(self, client, owner):
        r = client.post("/auth/register", json={"email": owner.email, "password": "password123"})
        assert r.status_code == 409

    def test_bad_token(self, client):
        r = client.get("/projects", headers={"Authorization": "Bearer nope"})
        assert r.status_code == 401
        assert r.json() == {"error": "Invalid token"}

    def test_login_is_rate_limited(self, client):
        from feedloop.core.ratelimit import limiter

        limiter.reset()
        limiter.enabled = True
        codes = [
            client.post("/auth/login", json={"email": "x@example.com", "password": "nope-nope"}).status_code
            for _ in range(11)
        ]
        assert codes[:10] == [401] * 10
        assert codes[10] == 429
        limiter.reset()

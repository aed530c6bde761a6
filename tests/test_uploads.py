import base64
from pathlib import Path

from feedloop.core import config
from feedloop.reports.models import Attachment
from feedloop.uploads.files import (
    UploadRejected,
    attachment_path,
    check_file,
    decode_base64,
    request_body_cap,
    sanitize_filename,
)

import pytest


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode()


class TestFileChecks:
    def test_sanitize(self):
        assert sanitize_filename("../etc/passwd.txt") == "_etc_passwd.txt"
        assert sanitize_filename('a<b>:"c".png') == "a_b___c_.png"

    def test_paths(self):
        p = attachment_path("p1", "r1", "my shot.png")
        assert p.startswith("projects/p1/reports/r1/")
        assert p.endswith("_my_shot.png")
        assert attachment_path("p1", None, "a.png").startswith("projects/p1/uploads/")

    @pytest.mark.parametrize("filename,content_type,size,message", [
        ("", "image/png", 10, "Filename is required"),
        ("noext", "image/png", 10, "Invalid filename format"),
        ("a.exe", "application/x-msdownload", 10, "Unsupported file type"),
        ("a.png", "image/png", 0, "File is empty"),
        ("a.png", "image/png", 6 * 1024 * 1024, "File size must be less than 5MB"),
    ])
    def test_rejections(self, filename, content_type, size, message):
        with pytest.raises(UploadRejected, match=message):
            check_file(filename, content_type, size)

    def test_decode_base64(self):
        assert decode_base64(_b64(b"hello")) == b"hello"
        with pytest.raises(UploadRejected):
            decode_base64("not base64!!")
        with pytest.raises(UploadRejected):
            decode_base64("")

    def test_body_cap_allows_base64_of_full_batch(self):
        assert request_body_cap() > config.MAX_UPLOAD_FILES * config.MAX_UPLOAD_BYTES * 4 // 3


class TestUploadRoute:
    def test_multipart_with_bearer(self, db, client, project, owner_headers):
        r = client.post(
            "/uploads",
            data={"project_id": project.id, "description": "login screen"},
            files=[
                ("files", ("shot.png", b"\x89PNG....", "image/png")),
                ("files", ("tool.exe", b"MZ", "application/x-msdownload")),
            ],
            headers=owner_headers,
        )
        assert r.status_code == 201
        body = r.json()
        assert body["message"] == "Successfully uploaded 1 of 2 files"
        assert body["errors"] == [{"file": "tool.exe", "error": "Unsupported file type: application/x-msdownload"}]

        uploaded = body["uploaded"][0]
        assert uploaded["report_id"] is None
        assert uploaded["url"].endswith(".png")

        att = db.query(Attachment).filter(Attachment.id == uploaded["id"]).one()
        assert att.description == "login screen"
        assert (Path(config.STORAGE_DIR) / att.storage_path).read_bytes() == b"\x89PNG...."

    def test_json_with_project_key_and_report(self, client, project, make_report):
        report = make_report(project)
        r = client.post("/uploads", json={
            "project_id": project.id,
            "project_key": project.integration_key,
            "report_id": report.id,
            "attachments": [
                {"filename": "note.txt", "content_type": "text/plain", "size": 5, "base64_data": _b64(b"hello")},
                {"filename": "bad.txt", "content_type": "text/plain", "size": 5, "base64_data": "%%%"},
                {"content_type": "text/plain"},
            ],
        })
        assert r.status_code == 201
        body = r.json()
        assert body["uploaded"][0]["report_id"] == report.id
        assert [e["file"] for e in body["errors"]] == ["bad.txt", "file_2"]

    def test_requires_credentials(self, client, project):
        r = client.post("/uploads", json={"project_id": project.id, "attachments": []})
        assert r.status_code == 401

        r = client.post("/uploads", json={"project_id": project.id, "project_key": "wrong", "attachments": []})
        assert r.status_code == 401

    def test_outsider_token(self, client, project, make_user, headers_for):
        stranger = make_user("s@example.com")
        r = client.post(
            "/uploads",
            data={"project_id": project.id},
            files=[("files", ("a.png", b"png", "image/png"))],
            headers=headers_for(stranger),
        )
        assert r.status_code == 404

    def test_project_and_report_checks(self, client, project, owner_headers):
        r = client.post("/uploads", json={"attachments": []}, headers=owner_headers)
        assert r.status_code == 400

        r = client.post("/uploads", json={"project_id": "", "attachments": []}, headers=owner_headers)
        assert r.json()["error"] == "project_id is required"

        r = client.post(
            "/uploads",
            json={"project_id": "11111111-1111-4111-8111-111111111111", "attachments": []},
            headers=owner_headers,
        )
        assert r.json()["error"] == "Invalid project ID"

        r = client.post(
            "/uploads",
            json={"project_id": project.id, "report_id": "11111111-1111-4111-8111-111111111111", "attachments": []},
            headers=owner_headers,
        )
        assert r.json()["error"] == "Invalid report ID"

    def test_file_count_limits(self, client, project, owner_headers):
        r = client.post("/uploads", json={"project_id": project.id, "attachments": []}, headers=owner_headers)
        assert r.status_code == 400
        assert r.json()["error"] == "No files provided"

        files = [("files", (f"f{i}.png", b"png", "image/png")) for i in range(6)]
        r = client.post("/uploads", data={"project_id": project.id}, files=files, headers=owner_headers)
        assert r.status_code == 400
        assert r.json()["error"] == "Maximum 5 files allowed per upload"

    def test_oversized_body_is_413(self, client, project, owner_headers, monkeypatch):
        monkeypatch.setattr(config, "MAX_UPLOAD_BYTES", 10)
        blob = _b64(b"x" * 60000)
        r = client.post(
            "/uploads",
            json={"project_id": project.id, "attachments": [
                {"filename": "big.txt", "content_type": "text/plain", "size": 60000, "base64_data": blob},
            ]},
            headers=owner_headers,
        )
        assert r.status_code == 413

    def test_unsupported_content_type(self, client, project, owner_headers):
        r = client.post("/uploads", content=b"raw", headers={**owner_headers, "Content-Type": "text/plain"})
        assert r.status_code == 400

"""Shared fixtures: in-memory SQLite, temp storage, users, tokens and projects."""

import os
import tempfile

# must be set before anything imports feedloop.core.config
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STORAGE_BACKEND"] = "local"
os.environ["STORAGE_DIR"] = tempfile.mkdtemp(prefix="feedloop-test-")
os.environ["JWT_SECRET"] = "test-secret"
os.environ["RESEND_API_KEY"] = ""
os.environ["FRONTEND_ORIGIN"] = "*"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from feedloop.main import app  # noqa: E402
from feedloop.core.ratelimit import limiter  # noqa: E402
from feedloop.core.security import hash_password, create_access_token  # noqa: E402
from feedloop.db.init_db import init_db, drop_db  # noqa: E402
from feedloop.db.session import SessionLocal  # noqa: E402
from feedloop.users.models import User  # noqa: E402
from feedloop.projects.models import Project  # noqa: E402
from feedloop.invitations.models import ProjectInvitation  # noqa: E402
from feedloop.reports.models import Report  # noqa: E402

PASSWORD = "password123"
# pbkdf2 is slow on purpose; hash once for every fixture user
PASSWORD_HASH = hash_password(PASSWORD)


@pytest.fixture(autouse=True)
def fresh_database():
    drop_db()
    init_db()
    limiter.enabled = False
    yield
    limiter.enabled = True


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def make_user(db):
    def _make(email: str, first_name: str = "", last_name: str = "") -> User:
        user = User(email=email, password_hash=PASSWORD_HASH, first_name=first_name, last_name=last_name)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def owner(make_user):
    return make_user("owner@example.com", "Olive", "Owner")


@pytest.fixture
def owner_headers(owner):
    return auth_headers(owner)


@pytest.fixture
def project(db, owner):
    p = Project(name="Demo Project", owner_id=owner.id)
    db.add(p)
    db.commit()
    db.refresh(p)
    return p


@pytest.fixture
def add_member(db):
    def _add(project: Project, user: User, role: str = "member", can_invite: bool = False) -> ProjectInvitation:
        m = ProjectInvitation(project_id=project.id, user_id=user.id, role=role, can_invite=can_invite)
        db.add(m)
        db.commit()
        return m

    return _add


@pytest.fixture
def make_report(db):
    def _make(project: Project, **kw) -> Report:
        created_at = kw.pop("created_at", None)
        fields = {
            "type": "bug",
            "status": "active",
            "priority": "medium",
            "title": "Something broke",
            "description": "Steps to reproduce",
        }
        fields.update(kw)
        report = Report(project_id=project.id, **fields)
        if created_at is not None:
            report.created_at = created_at
        db.add(report)
        db.commit()
        db.refresh(report)
        return report

    return _make


@pytest.fixture
def headers_for():
    return auth_headers

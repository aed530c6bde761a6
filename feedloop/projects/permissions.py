# feedloop/projects/permissions.py

from __future__ import annotations

import uuid

from fastapi import HTTPException
from sqlalchemy.orm import Session

from feedloop.users.models import User
from feedloop.projects.models import Project
from feedloop.invitations.models import ProjectInvitation


def check_uuid(value: str, label: str = "project ID") -> str:
    try:
        return str(uuid.UUID(str(value)))
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {label} format")


def _membership(db: Session, project_id: str, user_id: int) -> ProjectInvitation | None:
    return (
        db.query(ProjectInvitation)
        .filter(ProjectInvitation.project_id == project_id, ProjectInvitation.user_id == user_id)
        .first()
    )


def project_role(db: Session, project: Project, user: User) -> str | None:
    """owner | admin | member, or None when the user has no access."""
    if project.owner_id == user.id:
        return "owner"
    m = _membership(db, project.id, user.id)
    return m.role if m else None


def has_project_access(db: Session, project_id: str, user: User) -> bool:
    project = db.query(Project).filter(Project.id == project_id).first()
    if not project:
        return False
    return project_role(db, project, user) is not None


def can_invite_to_project(db: Session, project_id: str, user: User) -> bool:
    project = db.query(Project).filter(Project.id == project_id).first()
    if not project:
        return False
    if project.owner_id == user.id:
        return True
    m = _membership(db, project.id, user.id)
    return bool(m and m.can_invite)


def require_project_access(db: Session, project_id: str, user: User) -> Project:
    project_id = check_uuid(project_id)
    project = db.query(Project).filter(Project.id == project_id).first()
    # same answer for "missing" and "not yours" so ids can't be guessed
    if not project or project_role(db, project, user) is None:
        raise HTTPException(status_code=404, detail="Project not found or access denied")
    return project


def require_project_owner(db: Session, project_id: str, user: User, action: str = "manage") -> Project:
    project_id = check_uuid(project_id)
    project = db.query(Project).filter(Project.id == project_id).first()
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    if project.owner_id != user.id:
        raise HTTPException(status_code=403, detail=f"Only project owners can {action} projects")
    return project


def require_invite_permission(db: Session, project_id: str, user: User, action: str = "invite users to") -> Project:
    project_id = check_uuid(project_id)
    project = db.query(Project).filter(Project.id == project_id).first()
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    if not can_invite_to_project(db, project.id, user):
        raise HTTPException(status_code=403, detail=f"Insufficient permissions to {action} this project")
    return project

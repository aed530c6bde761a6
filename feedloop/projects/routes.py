import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import or_
from sqlalchemy.orm import Session

from feedloop.db.session import get_db
from feedloop.auth.deps import get_current_user
from feedloop.users.models import User
from feedloop.projects.models import Project, new_integration_key
from feedloop.projects.permissions import project_role, require_project_access, require_project_owner
from feedloop.invitations.models import ProjectInvitation
from feedloop.invitations.lifecycle import open_pending_invitations
from feedloop.reports.models import Attachment
from feedloop.storage.backends import get_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects", tags=["projects"])


class ProjectBody(BaseModel):
    name: str = Field(min_length=1, max_length=100)

    @field_validator("name")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Project name is required")
        return v


class ProjectUpdateBody(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)

    @field_validator("name")
    @classmethod
    def _strip(cls, v):
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("Project name is required")
        return v


def project_out(project: Project, role: str | None = None) -> dict:
    out = {
        "id": project.id,
        "name": project.name,
        "owner_id": project.owner_id,
        "integration_key": project.integration_key,
        "created_at": project.created_at,
        "updated_at": project.updated_at,
    }
    if role is not None:
        out["role"] = role
    return out


def members_of(db: Session, project: Project) -> list[dict]:
    """Owner first, then active members, then unexpired pending invitations."""
    members = []

    owner = project.owner
    if owner:
        members.append({
            "user_id": owner.id,
            "email": owner.email,
            "name": owner.display_name,
            "role": "owner",
            "can_invite": True,
            "status": "active",
        })

    rows = (
        db.query(ProjectInvitation)
        .filter(ProjectInvitation.project_id == project.id)
        .order_by(ProjectInvitation.created_at.asc())
        .all()
    )
    for m in rows:
        if m.user_id == project.owner_id or not m.user:
            continue
        members.append({
            "user_id": m.user_id,
            "email": m.user.email,
            "name": m.user.display_name,
            "role": m.role,
            "can_invite": m.can_invite,
            "status": "active",
        })

    for inv in open_pending_invitations(db, project_id=project.id):
        members.append({
            "invitation_id": inv.id,
            "user_id": None,
            "email": inv.email,
            "name": None,
            "role": inv.role,
            "can_invite": inv.can_invite,
            "status": "pending",
            "expires_at": inv.expires_at,
            "created_at": inv.created_at,
        })

    return members


@router.get("")
def list_projects(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    member_of = db.query(ProjectInvitation.project_id).filter(ProjectInvitation.user_id == user.id)
    projects = (
        db.query(Project)
        .filter(or_(Project.owner_id == user.id, Project.id.in_(member_of)))
        .order_by(Project.created_at.desc(), Project.id)
        .all()
    )

    items = [project_out(p, project_role(db, p, user)) for p in projects]
    return {"projects": items, "count": len(items)}


@router.post("", status_code=201)
def create_project(body: ProjectBody, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = Project(name=body.name, owner_id=user.id)
    db.add(project)
    db.commit()
    db.refresh(project)

    logger.info("Project %s created by user %s", project.id, user.id)
    return project_out(project, "owner")


@router.get("/{project_id}")
def get_project(project_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = require_project_access(db, project_id, user)

    out = project_out(project, project_role(db, project, user))
    out["members"] = members_of(db, project)
    return out


@router.put("/{project_id}")
def update_project(
    project_id: str,
    body: ProjectUpdateBody,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project = require_project_owner(db, project_id, user, action="update")

    if body.name is None:
        raise HTTPException(status_code=400, detail="No fields to update")

    project.name = body.name
    db.commit()
    db.refresh(project)
    return project_out(project, "owner")


@router.delete("/{project_id}", status_code=204)
def delete_project(project_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = require_project_owner(db, project_id, user, action="delete")

    paths = [p for (p,) in db.query(Attachment.storage_path).filter(Attachment.project_id == project.id).all()]

    db.delete(project)
    db.commit()

    if paths:
        removed = get_storage().delete(paths)
        if removed < len(paths):
            logger.warning("Project %s: removed %d of %d stored file(s)", project_id, removed, len(paths))

    logger.info("Project %s deleted by user %s", project_id, user.id)
    return Response(status_code=204)


@router.post("/{project_id}/integration-key")
def rotate_integration_key(project_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = require_project_owner(db, project_id, user, action="manage")

    project.integration_key = new_integration_key()
    db.commit()
    db.refresh(project)

    logger.info("Integration key rotated for project %s", project.id)
    return {"id": project.id, "integration_key": project.integration_key}

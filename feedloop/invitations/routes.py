# feedloop/invitations/routes.py

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

from feedloop.core import config
from feedloop.db.session import get_db
from feedloop.auth.deps import get_current_user
from feedloop.users.models import User
from feedloop.projects.models import Project
from feedloop.projects.permissions import check_uuid, require_invite_permission
from feedloop.invitations.models import ProjectInvitation, PendingInvitation
from feedloop.invitations.lifecycle import open_pending_invitations, create_pending_invitation
from feedloop.email.resend_client import EmailSendError, email_enabled, invitation_email, send_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects/{project_id}/invitations", tags=["invitations"])


class InviteBody(BaseModel):
    email: EmailStr
    role: Literal["member", "admin"]
    can_invite: bool = False


class RemoveBody(BaseModel):
    user_id: Optional[int] = None
    invitation_id: Optional[str] = None
    is_pending: bool = False


# ---------------- helpers ----------------

def _public_base_url() -> str | None:
    """Dashboard origin used in emailed links; never taken from the request."""
    if config.PUBLIC_BASE_URL:
        return config.PUBLIC_BASE_URL
    for origin in config.FRONTEND_ORIGIN.split(","):
        origin = origin.strip().rstrip("/")
        if origin and origin != "*":
            return origin
    return None


def _notify(to_email: str, project: Project, inviter: User, path: str, *, pending: bool) -> bool:
    """Best effort; a failed email never fails the invitation."""
    if not email_enabled():
        return False

    base = _public_base_url()
    if not base:
        logger.warning("Invitation email to %s skipped: PUBLIC_BASE_URL is not set", to_email)
        return False

    subject, body = invitation_email(
        project.name, inviter.display_name or inviter.email, f"{base}{path}", pending=pending,
    )

    try:
        send_email(to_email=to_email, subject=subject, html=body)
        return True
    except EmailSendError as e:
        logger.warning("Invitation email to %s failed: %s", to_email, e)
        return False


# ---------------- routes ----------------

@router.post("", status_code=201)
def invite_user(
    project_id: str,
    body: InviteBody,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project = require_invite_permission(db, project_id, user)
    email = body.email.lower().strip()

    target = db.query(User).filter(User.email == email).first()

    if target:
        if project.owner_id == target.id:
            raise HTTPException(status_code=400, detail="Project owner cannot be invited as a team member")

        exists = (
            db.query(ProjectInvitation)
            .filter(ProjectInvitation.project_id == project.id, ProjectInvitation.user_id == target.id)
            .first()
        )
        if exists:
            raise HTTPException(status_code=409, detail="User is already a member of this project")

        membership = ProjectInvitation(
            project_id=project.id,
            user_id=target.id,
            role=body.role,
            can_invite=body.can_invite,
        )
        db.add(membership)
        db.commit()
        db.refresh(membership)

        logger.info("User %s added to project %s by %s", target.id, project.id, user.id)
        sent = _notify(email, project, user, f"/projects/{project.id}", pending=False)

        return {
            "id": membership.id,
            "user_id": target.id,
            "email": target.email,
            "role": membership.role,
            "can_invite": membership.can_invite,
            "status": "active",
            "email_sent": sent,
        }

    if open_pending_invitations(db, project_id=project.id, email=email):
        raise HTTPException(status_code=409, detail="A pending invitation already exists for this email address")

    inv = create_pending_invitation(
        db,
        project_id=project.id,
        email=email,
        role=body.role,
        can_invite=body.can_invite,
        invited_by=user.id,
    )

    logger.info("Pending invitation %s for project %s created by %s", inv.id, project.id, user.id)
    sent = _notify(email, project, user, f"/auth/register?invitation={inv.token}", pending=True)

    return {
        "id": inv.id,
        "email": inv.email,
        "role": inv.role,
        "can_invite": inv.can_invite,
        "status": "pending",
        "expires_at": inv.expires_at,
        "email_sent": sent,
    }


@router.delete("", status_code=204)
def remove_member(
    project_id: str,
    body: RemoveBody,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project = require_invite_permission(db, project_id, user, action="remove users from")

    if body.is_pending and body.invitation_id:
        invitation_id = check_uuid(body.invitation_id, "invitation ID")
        inv = (
            db.query(PendingInvitation)
            .filter(
                PendingInvitation.id == invitation_id,
                PendingInvitation.project_id == project.id,
                PendingInvitation.accepted_at.is_(None),
            )
            .first()
        )
        if not inv:
            raise HTTPException(status_code=404, detail="Pending invitation not found")

        db.delete(inv)
        db.commit()
        logger.info("Pending invitation %s cancelled by %s", invitation_id, user.id)
        return Response(status_code=204)

    if body.user_id is not None:
        if body.user_id == project.owner_id:
            raise HTTPException(status_code=400, detail="Project owner cannot be removed")
        if body.user_id == user.id:
            raise HTTPException(status_code=400, detail="Cannot remove yourself from the project")

        membership = (
            db.query(ProjectInvitation)
            .filter(ProjectInvitation.project_id == project.id, ProjectInvitation.user_id == body.user_id)
            .first()
        )
        if not membership:
            raise HTTPException(status_code=404, detail="User is not a member of this project")

        db.delete(membership)
        db.commit()
        logger.info("User %s removed from project %s by %s", body.user_id, project.id, user.id)
        return Response(status_code=204)

    raise HTTPException(status_code=400, detail="Invalid request: missing user_id or invitation_id")

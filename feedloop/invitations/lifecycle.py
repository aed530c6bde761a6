from __future__ import annotations

import logging
from datetime import datetime, timezone, timedelta

from sqlalchemy.orm import Session

from feedloop.core.config import INVITATION_TTL_DAYS
from feedloop.core.security import new_invitation_token
from feedloop.invitations.models import PendingInvitation, ProjectInvitation
from feedloop.users.models import User

logger = logging.getLogger(__name__)


def as_utc(dt):
    if dt is None:
        return None
    # SQLite returns naive datetimes -> treat as UTC
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def is_expired(inv: PendingInvitation, now: datetime | None = None) -> bool:
    now = now or datetime.now(timezone.utc)
    exp = as_utc(inv.expires_at)
    return exp is None or exp <= now


def open_pending_invitations(db: Session, *, project_id: str | None = None, email: str | None = None):
    """Pending invitations not yet accepted and not expired."""
    q = db.query(PendingInvitation).filter(PendingInvitation.accepted_at.is_(None))
    if project_id is not None:
        q = q.filter(PendingInvitation.project_id == project_id)
    if email is not None:
        q = q.filter(PendingInvitation.email == email.lower().strip())

    # SQLite may hand back naive datetimes; compare in python
    now = datetime.now(timezone.utc)
    return [inv for inv in q.order_by(PendingInvitation.created_at.asc()).all() if not is_expired(inv, now)]


def create_pending_invitation(
    db: Session,
    *,
    project_id: str,
    email: str,
    role: str,
    can_invite: bool,
    invited_by: int | None,
    ttl_days: int = INVITATION_TTL_DAYS,
) -> PendingInvitation:
    inv = PendingInvitation(
        project_id=project_id,
        email=email.lower().strip(),
        role=role,
        can_invite=can_invite,
        token=new_invitation_token(),
        invited_by=invited_by,
        expires_at=datetime.now(timezone.utc) + timedelta(days=ttl_days),
    )
    db.add(inv)
    db.commit()
    db.refresh(inv)
    return inv


def accept_pending_invitations(db: Session, user: User) -> int:
    """
    Turn every open invitation for the user's email into a membership.
    Returns the number of memberships created.
    """
    now = datetime.now(timezone.utc)
    created = 0

    for inv in open_pending_invitations(db, email=user.email):
        exists = (
            db.query(ProjectInvitation)
            .filter(ProjectInvitation.project_id == inv.project_id, ProjectInvitation.user_id == user.id)
            .first()
        )
        if not exists and inv.project.owner_id != user.id:
            db.add(ProjectInvitation(
                project_id=inv.project_id,
                user_id=user.id,
                role=inv.role,
                can_invite=inv.can_invite,
            ))
            created += 1
        inv.accepted_at = now

    db.commit()
    if created:
        logger.info("Accepted %d pending invitation(s) for user %s", created, user.id)
    return created


def purge_expired_invitations(db: Session, grace_days: int = 30) -> dict:
    """
    Delete pending invitations that expired more than `grace_days` ago
    and were never accepted.
    """
    now = datetime.now(timezone.utc)
    cutoff = now - timedelta(days=grace_days)

    stale = db.query(PendingInvitation).filter(PendingInvitation.accepted_at.is_(None)).all()

    removed = 0
    for inv in stale:
        exp = as_utc(inv.expires_at)
        if exp and exp <= cutoff:
            db.delete(inv)
            removed += 1

    if removed:
        db.commit()

    return {"removed": removed, "grace_days": grace_days}

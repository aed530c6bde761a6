# feedloop/invitations/models.py

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from feedloop.db.base import Base, utcnow
from feedloop.projects.models import new_uuid


class ProjectInvitation(Base):
    """Active membership of a registered user in a project."""

    __tablename__ = "project_invitations"
    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_project_member"),)

    id = Column(String(36), primary_key=True, default=new_uuid)
    project_id = Column(String(36), ForeignKey("projects.id"), index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)

    # member | admin
    role = Column(String, nullable=False, default="member")
    can_invite = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    project = relationship("Project", back_populates="invitations")
    user = relationship("User")


class PendingInvitation(Base):
    """Invitation addressed to an email with no account yet."""

    __tablename__ = "pending_invitations"

    id = Column(String(36), primary_key=True, default=new_uuid)
    project_id = Column(String(36), ForeignKey("projects.id"), index=True, nullable=False)
    email = Column(String, index=True, nullable=False)

    role = Column(String, nullable=False, default="member")
    can_invite = Column(Boolean, nullable=False, default=False)

    token = Column(String, unique=True, index=True, nullable=False)
    invited_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    # stored in UTC
    expires_at = Column(DateTime(timezone=True), nullable=False)
    accepted_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    project = relationship("Project", back_populates="pending_invitations")

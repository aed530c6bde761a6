import secrets
import uuid

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime
from sqlalchemy.orm import relationship
from feedloop.db.base import Base, utcnow


def new_uuid() -> str:
    return str(uuid.uuid4())


def new_integration_key() -> str:
    # 32 hex chars
    return secrets.token_hex(16)


class Project(Base):
    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    owner_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)

    integration_key = Column(String(32), unique=True, index=True, nullable=False, default=new_integration_key)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    owner = relationship("User")
    reports = relationship("Report", back_populates="project", cascade="all, delete-orphan")
    attachments = relationship("Attachment", back_populates="project", cascade="all, delete-orphan")
    invitations = relationship("ProjectInvitation", back_populates="project", cascade="all, delete-orphan")
    pending_invitations = relationship("PendingInvitation", back_populates="project", cascade="all, delete-orphan")
    export_templates = relationship("ExportTemplate", back_populates="project", cascade="all, delete-orphan")

# feedloop/exports/models.py

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship

from feedloop.db.base import Base, utcnow
from feedloop.projects.models import new_uuid


class ExportTemplate(Base):
    """Saved CSV export settings; at most one per project is the default."""

    __tablename__ = "export_templates"

    id = Column(String(36), primary_key=True, default=new_uuid)
    project_id = Column(String(36), ForeignKey("projects.id"), index=True, nullable=False)

    name = Column(String(100), nullable=False)
    description = Column(String(500), nullable=True)

    template_type = Column(String, nullable=False, default="default")  # default | jira | azure
    include_attachments = Column(Boolean, nullable=False, default=False)
    include_diagnostic = Column(Boolean, nullable=False, default=False)
    # {type, status, priority, from, to}; same meaning as the export query
    filters = Column(JSON, nullable=True)
    is_default = Column(Boolean, nullable=False, default=False)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    project = relationship("Project", back_populates="export_templates")

# feedloop/reports/models.py

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship

from feedloop.db.base import Base, utcnow
from feedloop.projects.models import new_uuid


REPORT_TYPES = ("bug", "initiative", "feedback")
REPORT_STATUSES = ("active", "archived")
REPORT_PRIORITIES = ("low", "medium", "high", "critical")


class Report(Base):
    __tablename__ = "reports"

    id = Column(String(36), primary_key=True, default=new_uuid)
    project_id = Column(String(36), ForeignKey("projects.id"), index=True, nullable=False)

    type = Column(String, index=True, nullable=False)  # bug | initiative | feedback
    status = Column(String, index=True, nullable=False, default="active")  # active | archived
    priority = Column(String, index=True, nullable=True, default="medium")

    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)

    reporter_email = Column(String, nullable=True)
    reporter_name = Column(String, nullable=True)

    # diagnostics captured by the widget
    url = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    console_logs = Column(JSON, nullable=True)
    network_requests = Column(JSON, nullable=True)
    performance_metrics = Column(JSON, nullable=True)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    project = relationship("Project", back_populates="reports")
    creator = relationship("User")
    attachments = relationship("Attachment", back_populates="report", order_by="Attachment.created_at")


class Attachment(Base):
    __tablename__ = "attachments"

    id = Column(String(36), primary_key=True, default=new_uuid)
    project_id = Column(String(36), ForeignKey("projects.id"), index=True, nullable=False)
    # null until linked; never relinked afterwards
    report_id = Column(String(36), ForeignKey("reports.id"), index=True, nullable=True)

    filename = Column(String, nullable=False)
    original_filename = Column(String, nullable=False)
    content_type = Column(String, nullable=False)
    size = Column(Integer, nullable=False)

    storage_path = Column(String, nullable=False)
    url = Column(String, nullable=True)
    description = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    project = relationship("Project", back_populates="attachments")
    report = relationship("Report", back_populates="attachments")

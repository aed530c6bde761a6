from feedloop.db.session import engine
from feedloop.db.base import Base

# Import models so SQLAlchemy registers them
from feedloop.users.models import User  # noqa
from feedloop.projects.models import Project  # noqa
from feedloop.invitations.models import ProjectInvitation, PendingInvitation  # noqa
from feedloop.reports.models import Report, Attachment  # noqa
from feedloop.exports.models import ExportTemplate  # noqa


def init_db():
    Base.metadata.create_all(bind=engine)


def drop_db():
    Base.metadata.drop_all(bind=engine)

from datetime import datetime, timezone

from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    # keeps microseconds, CURRENT_TIMESTAMP on sqlite does not
    return datetime.now(timezone.utc)

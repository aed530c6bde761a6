from sqlalchemy import Column, Integer, String, DateTime
from feedloop.db.base import Base, utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    email = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String)
    first_name = Column(String, default="")
    last_name = Column(String, default="")

    created_at = Column(DateTime(timezone=True), default=utcnow)

    @property
    def display_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

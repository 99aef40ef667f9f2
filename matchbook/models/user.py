"""User model definitions."""

from sqlalchemy import Column, Integer, String

from matchbook.database import Base


class User(Base):
    """Anchor row for an externally managed player identity."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    display_name = Column(String, nullable=True)
    timezone = Column(String, nullable=True)

    @property
    def label(self) -> str:
        return (self.display_name or "").strip() or self.email

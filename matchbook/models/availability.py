"""Availability model definitions."""

import enum
from datetime import datetime, timezone

from sqlalchemy import Boolean, CheckConstraint, Column, Date, DateTime, Enum, ForeignKey, Integer, String, Text, Time

from matchbook.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def enum_column(enum_cls, name: str):
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=20,
        values_callable=lambda members: [member.value for member in members],
    )


class Visibility(str, enum.Enum):
    PRIVATE = "private"
    PUBLIC = "public"


class AvailabilityWindow(Base):
    """A player's declared interval on one date, in the zone the player declared."""
    __tablename__ = "availability_windows"

    id = Column(Integer, primary_key=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)
    is_blocked = Column(Boolean, nullable=False, default=False)
    timezone = Column(String, nullable=False)
    visibility = Column(enum_column(Visibility, "availability_visibility"), nullable=False, default=Visibility.PRIVATE)
    notes = Column(Text, nullable=True)
    recurrence_rule = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="check_availability_window_range"),
    )

    @property
    def is_open(self) -> bool:
        return bool(self.is_available) and not self.is_blocked

    def __repr__(self) -> str:
        return (
            f"<AvailabilityWindow(id={self.id}, owner={self.owner_id}, date={self.date}, "
            f"{self.start_time}-{self.end_time}, open={self.is_open})>"
        )

"""Booking model definitions."""

import enum

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Integer, String, Text, Time

from matchbook.database import Base
from matchbook.models.availability import enum_column, utcnow


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DECLINED = "declined"
    CANCELLED = "cancelled"


ACTIVE_BOOKING_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)
TERMINAL_BOOKING_STATUSES = (BookingStatus.DECLINED, BookingStatus.CANCELLED)


class Booking(Base):
    """A firm request from a requester to play an opponent at a specific time."""
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True)
    requester_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    opponent_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    availability_id = Column(Integer, ForeignKey("availability_windows.id", ondelete="SET NULL"), nullable=True)
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    timezone = Column(String, nullable=False)
    status = Column(enum_column(BookingStatus, "booking_status"), nullable=False, default=BookingStatus.PENDING)

    # Set only while a counter-offer is outstanding.
    proposed_date = Column(Date, nullable=True)
    proposed_start_time = Column(Time, nullable=True)
    proposed_end_time = Column(Time, nullable=True)
    proposed_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    proposal_count = Column(Integer, nullable=False, default=0)

    court_location = Column(String, nullable=True)
    message = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    responded_at = Column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="check_booking_range"),
        CheckConstraint("requester_id != opponent_id", name="check_booking_distinct_players"),
        CheckConstraint("proposal_count >= 0", name="check_booking_proposal_count"),
    )

    @property
    def has_proposal(self) -> bool:
        return self.proposed_date is not None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_BOOKING_STATUSES

    @property
    def participant_ids(self) -> tuple[int, int]:
        return self.requester_id, self.opponent_id

    def clear_proposal(self) -> None:
        self.proposed_date = None
        self.proposed_start_time = None
        self.proposed_end_time = None
        self.proposed_by_id = None

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, requester={self.requester_id}, opponent={self.opponent_id}, "
            f"{self.date} {self.start_time}-{self.end_time}, status={self.status})>"
        )

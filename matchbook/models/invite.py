"""Match invite model definitions."""

import enum

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Integer, String, Text, Time

from matchbook.database import Base
from matchbook.models.availability import enum_column, utcnow


class InviteStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


OPEN_INVITE_STATUSES = (InviteStatus.PENDING, InviteStatus.RESCHEDULED)


class Invite(Base):
    """Lightweight proposal to play that is not yet bound to an availability slot."""
    __tablename__ = "invites"

    id = Column(Integer, primary_key=True)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    receiver_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    availability_id = Column(Integer, ForeignKey("availability_windows.id", ondelete="SET NULL"), nullable=True)
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    timezone = Column(String, nullable=False)
    status = Column(enum_column(InviteStatus, "invite_status"), nullable=False, default=InviteStatus.PENDING)
    reschedule_count = Column(Integer, nullable=False, default=0)

    proposed_date = Column(Date, nullable=True)
    proposed_start_time = Column(Time, nullable=True)
    proposed_end_time = Column(Time, nullable=True)
    proposed_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    proposed_at = Column(DateTime, nullable=True)

    court_location = Column(String, nullable=True)
    message = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancelled_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    expires_at = Column(DateTime, nullable=True)
    responded_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="check_invite_range"),
        CheckConstraint("reschedule_count >= 0", name="check_invite_reschedule_count"),
        CheckConstraint("sender_id != receiver_id", name="check_invite_distinct_players"),
    )

    @property
    def has_proposal(self) -> bool:
        return self.proposed_date is not None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_INVITE_STATUSES

    @property
    def participant_ids(self) -> tuple[int, int]:
        return self.sender_id, self.receiver_id

    def counterpart_of(self, user_id: int) -> int:
        return self.receiver_id if user_id == self.sender_id else self.sender_id

    def clear_proposal(self) -> None:
        self.proposed_date = None
        self.proposed_start_time = None
        self.proposed_end_time = None
        self.proposed_by_id = None
        self.proposed_at = None

    def __repr__(self) -> str:
        return (
            f"<Invite(id={self.id}, sender={self.sender_id}, receiver={self.receiver_id}, "
            f"{self.date} {self.start_time}-{self.end_time}, status={self.status}, "
            f"reschedules={self.reschedule_count})>"
        )

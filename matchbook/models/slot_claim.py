"""Slot claim model definitions."""

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, UniqueConstraint

from matchbook.database import Base


class SlotClaim(Base):
    """One grid increment held by an active booking or an accepted invite.

    ``starts_at`` is a naive UTC instant, so records declared in different
    zones land on the same key when they describe the same real time. The
    unique constraint is the arbiter between concurrent bookers: two
    overlapping ranges for the same player always share an increment.
    """
    __tablename__ = "slot_claims"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    starts_at = Column(DateTime, nullable=False)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=True, index=True)
    invite_id = Column(Integer, ForeignKey("invites.id", ondelete="CASCADE"), nullable=True, index=True)

    __table_args__ = (
        UniqueConstraint("user_id", "starts_at", name="uq_slot_claim_user_increment"),
        CheckConstraint(
            "(booking_id IS NOT NULL) OR (invite_id IS NOT NULL)",
            name="check_slot_claim_owner",
        ),
    )

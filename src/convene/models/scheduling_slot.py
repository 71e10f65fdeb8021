"""
SchedulingSlot model - a candidate or bookable time interval of a thread.

In open_slots mode the slot is a single-writer resource: ``slot_status`` moves
``open -> booked`` only through a compare-and-set on ``row_version`` (see
``SlotRepository.compare_and_book``), so a slot carries at most one booking.
"""
from sqlalchemy import Column, String, Integer, CheckConstraint, Index
from sqlalchemy.orm import relationship

from convene.db.database import Base
from convene.models.base_model import uuid_pk, uuid_fk, aware_datetime, timestamp_created

SLOT_STATUSES = ("open", "reserved", "booked", "cancelled")


class SchedulingSlot(Base):
    __tablename__ = "scheduling_slots"

    id = uuid_pk()
    thread_id = uuid_fk("scheduling_threads", nullable=False)

    start_at = aware_datetime(nullable=False)
    end_at = aware_datetime(nullable=False)
    timezone = Column(String(64), nullable=False, default="Asia/Tokyo")
    label = Column(String(255), nullable=True)

    proposal_version = Column(Integer, nullable=False, default=1)

    slot_status = Column(String(32), nullable=False, default="open")
    booked_by_invite_id = uuid_fk("thread_invites", nullable=True, ondelete="SET NULL")
    booked_at = aware_datetime(nullable=True)
    row_version = Column(Integer, nullable=False, default=1)

    created_at = timestamp_created()

    thread = relationship("SchedulingThread", back_populates="slots")
    booked_by = relationship("ThreadInvite", foreign_keys=[booked_by_invite_id])

    __table_args__ = (
        CheckConstraint("start_at < end_at", name="ck_scheduling_slots_interval"),
        CheckConstraint(f"slot_status IN {SLOT_STATUSES}", name="ck_scheduling_slots_status"),
        Index("ix_scheduling_slots_thread_start", "thread_id", "start_at"),
    )

    def __repr__(self):
        return f"<SchedulingSlot(id={self.id}, status={self.slot_status}, v={self.proposal_version})>"

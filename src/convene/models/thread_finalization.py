"""
ThreadFinalization model - the immutable record of a thread's confirmed outcome.

Written exactly once per thread; its existence is equivalent to status = confirmed.
"""
from sqlalchemy import Column, String, Text, JSON, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import relationship

from convene.db.database import Base
from convene.models.base_model import uuid_pk, uuid_fk, aware_datetime, timestamp_created

FINALIZE_TRIGGERS = ("manual", "auto")


class ThreadFinalization(Base):
    __tablename__ = "thread_finalizations"

    id = uuid_pk()
    thread_id = uuid_fk("scheduling_threads", nullable=False)
    selected_slot_id = uuid_fk("scheduling_slots", nullable=True, ondelete="SET NULL")

    trigger = Column(String(16), nullable=False)
    finalized_by = Column(String(255), nullable=False)
    finalize_policy = Column(String(32), nullable=False)
    reason = Column(Text, nullable=True)
    # open_slots mode: slot id -> invite id for every booking at confirmation time
    bookings = Column(JSON, nullable=True)

    finalized_at = aware_datetime(nullable=False)
    created_at = timestamp_created()

    thread = relationship("SchedulingThread", back_populates="finalization")
    selected_slot = relationship("SchedulingSlot")

    __table_args__ = (
        UniqueConstraint("thread_id", name="uq_thread_finalizations_thread"),
        CheckConstraint(f"trigger IN {FINALIZE_TRIGGERS}", name="ck_thread_finalizations_trigger"),
    )

    def __repr__(self):
        return f"<ThreadFinalization(thread_id={self.thread_id}, slot={self.selected_slot_id}, trigger={self.trigger})>"

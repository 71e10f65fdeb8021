"""
SchedulingThread model - one coordination session between an organizer and invitees.

Status only moves forward:
    draft -> sent -> confirmed | cancelled

``current_version`` is the proposal generation. Slots and responses record the
generation they belong to, so reproposals never rewrite history.
"""
from sqlalchemy import Column, String, Text, Integer, CheckConstraint, Index
from sqlalchemy.orm import relationship

from convene.db.database import Base
from convene.models.base_model import uuid_pk, aware_datetime
from convene.models.mixins import TimestampMixin

THREAD_STATUSES = ("draft", "sent", "confirmed", "cancelled")
OPEN_STATUSES = ("draft", "sent")
THREAD_MODES = ("fixed", "candidates", "open_slots", "range_auto")
THREAD_TOPOLOGIES = ("one_on_one", "one_to_many")

# Modes in which an "ok" answer has to name the slot it is for.
SLOT_SELECTION_MODES = ("candidates", "open_slots", "range_auto")


class SchedulingThread(Base, TimestampMixin):
    __tablename__ = "scheduling_threads"

    id = uuid_pk()
    organizer_user_id = Column(String(255), nullable=False, index=True)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    status = Column(String(32), nullable=False, default="draft")
    mode = Column(String(32), nullable=False)
    topology = Column(String(32), nullable=False, default="one_to_many")

    current_version = Column(Integer, nullable=False, default=1)

    sent_at = aware_datetime(nullable=True)
    cancelled_at = aware_datetime(nullable=True)

    policy = relationship(
        "GroupPolicy",
        back_populates="thread",
        uselist=False,
        cascade="all, delete",
    )
    slots = relationship(
        "SchedulingSlot",
        back_populates="thread",
        cascade="all, delete",
        order_by="SchedulingSlot.start_at",
    )
    invites = relationship(
        "ThreadInvite",
        back_populates="thread",
        cascade="all, delete",
        order_by="ThreadInvite.created_at",
    )
    responses = relationship(
        "ThreadResponse",
        back_populates="thread",
        cascade="all, delete",
    )
    finalization = relationship(
        "ThreadFinalization",
        back_populates="thread",
        uselist=False,
        cascade="all, delete",
    )

    __table_args__ = (
        CheckConstraint(f"status IN {THREAD_STATUSES}", name="ck_scheduling_threads_status"),
        CheckConstraint(f"mode IN {THREAD_MODES}", name="ck_scheduling_threads_mode"),
        CheckConstraint(f"topology IN {THREAD_TOPOLOGIES}", name="ck_scheduling_threads_topology"),
        CheckConstraint("current_version >= 1", name="ck_scheduling_threads_version"),
        Index("ix_scheduling_threads_organizer_status", "organizer_user_id", "status"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status not in OPEN_STATUSES

    @property
    def requires_slot_selection(self) -> bool:
        return self.mode in SLOT_SELECTION_MODES

    def __repr__(self):
        return f"<SchedulingThread(id={self.id}, mode={self.mode}, status={self.status}, version={self.current_version})>"

"""
ThreadResponse model - an invitee's answer for one proposal generation.

One row per (invite, generation). Answering again within the same generation
updates that row; a reproposal starts a new row and leaves the old one as history.
"""
from sqlalchemy import Column, String, Text, Integer, CheckConstraint, UniqueConstraint, Index
from sqlalchemy.orm import relationship

from convene.db.database import Base
from convene.models.base_model import uuid_pk, uuid_fk, aware_datetime
from convene.models.mixins import TimestampMixin

ANSWERS = ("ok", "no", "maybe")


class ThreadResponse(Base, TimestampMixin):
    __tablename__ = "thread_responses"

    id = uuid_pk()
    thread_id = uuid_fk("scheduling_threads", nullable=False)
    invite_id = uuid_fk("thread_invites", nullable=False)

    answer = Column(String(16), nullable=False)
    selected_slot_id = uuid_fk("scheduling_slots", nullable=True, ondelete="SET NULL")
    comment = Column(Text, nullable=True)

    responded_at = aware_datetime(nullable=False)
    response_version = Column(Integer, nullable=False, default=1)

    thread = relationship("SchedulingThread", back_populates="responses")
    invite = relationship("ThreadInvite", back_populates="responses")
    selected_slot = relationship("SchedulingSlot")

    __table_args__ = (
        CheckConstraint(f"answer IN {ANSWERS}", name="ck_thread_responses_answer"),
        UniqueConstraint("invite_id", "response_version", name="uq_thread_responses_invite_version"),
        Index("ix_thread_responses_thread_answer", "thread_id", "answer"),
    )

    def __repr__(self):
        return f"<ThreadResponse(invite_id={self.invite_id}, answer={self.answer}, v={self.response_version})>"

"""
ThreadInvite model - an invitee's access grant to a thread.

The token alone authorizes reading and responding on the invite's thread.
"""
from sqlalchemy import Column, String, Boolean, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import relationship

from convene.db.database import Base
from convene.models.base_model import uuid_pk, uuid_fk, aware_datetime, timestamp_created
from convene.utils.datetime_utils import utcnow, ensure_aware

INVITE_STATUSES = ("pending", "accepted", "declined")


class ThreadInvite(Base):
    __tablename__ = "thread_invites"

    id = uuid_pk()
    thread_id = uuid_fk("scheduling_threads", nullable=False)

    invitee_key = Column(String(64), nullable=False)
    email = Column(String(320), nullable=False)
    name = Column(String(255), nullable=True)

    token = Column(String(255), nullable=False, unique=True, index=True)

    status = Column(String(32), nullable=False, default="pending")
    responded_at = aware_datetime(nullable=True)
    expires_at = aware_datetime(nullable=False)

    # Set by a reproposal when this invite's latest response is from an older generation.
    needs_re_response = Column(Boolean, nullable=False, default=False)

    created_at = timestamp_created()

    thread = relationship("SchedulingThread", back_populates="invites")
    responses = relationship(
        "ThreadResponse",
        back_populates="invite",
        order_by="ThreadResponse.response_version",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint(f"status IN {INVITE_STATUSES}", name="ck_thread_invites_status"),
        UniqueConstraint("thread_id", "invitee_key", name="uq_thread_invites_thread_invitee"),
    )

    @property
    def is_expired(self) -> bool:
        """Check if the invite token has expired."""
        return utcnow() > ensure_aware(self.expires_at)

    def __repr__(self):
        return f"<ThreadInvite(id={self.id}, key={self.invitee_key}, status={self.status})>"

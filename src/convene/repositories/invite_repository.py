# src/convene/repositories/invite_repository.py
import logging
import secrets
from datetime import datetime
from typing import Optional
from uuid import UUID

from opentelemetry import trace
from sqlalchemy import update
from sqlalchemy.orm import Session

from convene.models.thread_invite import ThreadInvite
from convene.models.thread_response import ThreadResponse

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class InviteRepository:

    @staticmethod
    def generate_token() -> str:
        return secrets.token_urlsafe(32)

    @staticmethod
    def create(
        db: Session,
        *,
        thread_id: UUID,
        invitee_key: str,
        email: str,
        name: str | None,
        expires_at: datetime,
    ) -> ThreadInvite:
        invite = ThreadInvite(
            thread_id=thread_id,
            invitee_key=invitee_key,
            email=email,
            name=name,
            token=InviteRepository.generate_token(),
            status="pending",
            expires_at=expires_at,
            needs_re_response=False,
        )
        db.add(invite)
        db.flush()
        logger.debug("Created invite id=%s thread=%s key=%s", invite.id, thread_id, invitee_key)
        return invite

    @staticmethod
    def get_by_token(db: Session, token: str) -> Optional[ThreadInvite]:
        with tracer.start_as_current_span("db.get_invite_by_token"):
            return db.query(ThreadInvite).filter(ThreadInvite.token == token).first()

    @staticmethod
    def list_for_thread(db: Session, thread_id: UUID) -> list[ThreadInvite]:
        return (
            db.query(ThreadInvite)
            .filter(ThreadInvite.thread_id == thread_id)
            .order_by(ThreadInvite.created_at.asc(), ThreadInvite.email.asc())
            .all()
        )

    @staticmethod
    def count_for_thread(db: Session, thread_id: UUID) -> int:
        return db.query(ThreadInvite).filter(ThreadInvite.thread_id == thread_id).count()

    @staticmethod
    def mark_responded(db: Session, invite: ThreadInvite, *, answer: str, responded_at: datetime) -> ThreadInvite:
        invite.status = "declined" if answer == "no" else "accepted"
        invite.responded_at = responded_at
        invite.needs_re_response = False
        db.flush()
        return invite

    @staticmethod
    def flag_stale_responders(db: Session, thread_id: UUID, current_version: int) -> int:
        """
        Mark every invite whose latest response predates ``current_version``.

        Invites that never answered stay pending; they are not re-responders.
        Returns the number of invites that now need to answer again.
        """
        with tracer.start_as_current_span("db.flag_stale_responders") as span:
            span.set_attribute("thread.id", str(thread_id))
            span.set_attribute("thread.current_version", current_version)

            answered_current = (
                db.query(ThreadResponse.invite_id)
                .filter(
                    ThreadResponse.thread_id == thread_id,
                    ThreadResponse.response_version >= current_version,
                )
            )
            answered_any = db.query(ThreadResponse.invite_id).filter(ThreadResponse.thread_id == thread_id)

            result = db.execute(
                update(ThreadInvite)
                .where(
                    ThreadInvite.thread_id == thread_id,
                    ThreadInvite.id.in_(answered_any.scalar_subquery()),
                    ThreadInvite.id.not_in(answered_current.scalar_subquery()),
                )
                .values(needs_re_response=True)
                .execution_options(synchronize_session=False)
            )
            db.expire_all()
            flagged = result.rowcount
            span.set_attribute("invites.flagged", flagged)

        logger.info(
            "Flagged %d invites on thread %s for re-response at version %s",
            flagged,
            thread_id,
            current_version,
        )
        return flagged

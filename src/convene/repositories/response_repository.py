# src/convene/repositories/response_repository.py
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from opentelemetry import trace
from sqlalchemy.orm import Session

from convene.models.thread_response import ThreadResponse

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class ResponseRepository:

    @staticmethod
    def get_for_version(db: Session, invite_id: UUID, response_version: int) -> Optional[ThreadResponse]:
        return (
            db.query(ThreadResponse)
            .filter(
                ThreadResponse.invite_id == invite_id,
                ThreadResponse.response_version == response_version,
            )
            .first()
        )

    @staticmethod
    def upsert(
        db: Session,
        *,
        thread_id: UUID,
        invite_id: UUID,
        response_version: int,
        answer: str,
        selected_slot_id: UUID | None,
        comment: str | None,
        responded_at: datetime,
    ) -> ThreadResponse:
        """
        Write the invite's answer for ``response_version``.

        A second answer in the same generation overwrites the first; the unique
        (invite_id, response_version) constraint backs this up when two
        submissions race.
        """
        with tracer.start_as_current_span("db.upsert_response") as span:
            span.set_attribute("invite.id", str(invite_id))
            span.set_attribute("response.version", response_version)

            response = ResponseRepository.get_for_version(db, invite_id, response_version)
            created = response is None
            if created:
                response = ThreadResponse(
                    thread_id=thread_id,
                    invite_id=invite_id,
                    response_version=response_version,
                )
                db.add(response)

            response.answer = answer
            response.selected_slot_id = selected_slot_id
            response.comment = comment
            response.responded_at = responded_at
            db.flush()
            span.set_attribute("response.created", created)

        logger.debug(
            "%s response invite=%s version=%s answer=%s",
            "Inserted" if created else "Updated",
            invite_id,
            response_version,
            answer,
        )
        return response

    @staticmethod
    def get_current_for_invite(db: Session, invite_id: UUID) -> Optional[ThreadResponse]:
        return (
            db.query(ThreadResponse)
            .filter(ThreadResponse.invite_id == invite_id)
            .order_by(ThreadResponse.response_version.desc())
            .first()
        )

    @staticmethod
    def list_for_thread(db: Session, thread_id: UUID) -> list[ThreadResponse]:
        """Every response of the thread across all generations, oldest generation first."""
        return (
            db.query(ThreadResponse)
            .filter(ThreadResponse.thread_id == thread_id)
            .order_by(ThreadResponse.response_version.asc(), ThreadResponse.responded_at.asc())
            .all()
        )

    @staticmethod
    def list_current_for_thread(db: Session, thread_id: UUID) -> list[ThreadResponse]:
        """Each invite's latest response only."""
        latest: dict[UUID, ThreadResponse] = {}
        for response in ResponseRepository.list_for_thread(db, thread_id):
            latest[response.invite_id] = response
        return list(latest.values())

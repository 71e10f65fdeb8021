"""
Response recorder: the invitee write path.

One ``record_response`` call validates the token and answer, books the slot in
open_slots mode, upserts the response for the thread's current generation, runs
the finalize evaluation and the auto-finalize trigger, and commits all of it in
one transaction. Events go out only after the commit.
"""
import logging
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from opentelemetry import trace
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from convene.config import reject_late_responses
from convene.errors import (
    Expired,
    InvalidToken,
    PersistenceError,
    SchedulingError,
    SlotRequired,
    ThreadNotActive,
    ValidationError,
)
from convene.metrics import responses_recorded_total
from convene.models.scheduling_thread import SchedulingThread
from convene.models.thread_finalization import ThreadFinalization
from convene.models.thread_invite import ThreadInvite
from convene.models.thread_response import ANSWERS, ThreadResponse
from convene.repositories.finalization_repository import FinalizationRepository
from convene.repositories.invite_repository import InviteRepository
from convene.repositories.response_repository import ResponseRepository
from convene.repositories.slot_repository import SlotRepository
from convene.repositories.thread_repository import ThreadRepository
from convene.services.finalization_policy import Evaluation
from convene.services.finalization_service import FinalizationService
from convene.services.notifier import (
    RESPONSE_RECEIVED,
    SLOT_FILLED,
    NotifierBridge,
    SchedulingEvent,
    build_notifier,
)
from convene.services.slot_booking_service import SlotBookingService
from convene.utils.datetime_utils import ensure_aware, utcnow

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class RecordResult:
    response: Optional[ThreadResponse]
    evaluation: Optional[Evaluation]
    confirmed: bool
    read_only: bool = False
    finalization: Optional[ThreadFinalization] = None


def resolve_invite(db: Session, token: str) -> ThreadInvite:
    """Look up an invite by token, rejecting unknown and expired tokens."""
    invite = InviteRepository.get_by_token(db, token)
    if invite is None:
        raise InvalidToken("Invitation link is invalid")
    if invite.is_expired:
        raise Expired("Invitation link has expired")
    return invite


class ResponseService:

    def __init__(self, db: Session, notifier: Optional[NotifierBridge] = None):
        self.db = db
        self.notifier = notifier or build_notifier(db)
        self.slots = SlotBookingService(db)
        self.finalization = FinalizationService(db, notifier=self.notifier)

    def record_response(
        self,
        token: str,
        answer: str,
        selected_slot_id: Optional[UUID] = None,
        comment: Optional[str] = None,
    ) -> RecordResult:
        with tracer.start_as_current_span("response.record") as span:
            span.set_attribute("response.answer", answer)

            try:
                return self._record(token, answer, selected_slot_id, comment)
            except IntegrityError:
                # A concurrent submission from the same invite inserted the
                # generation's row first; the retry sees it and updates it.
                self.db.rollback()
                logger.info("Response insert raced for token, retrying as update")
                try:
                    return self._record(token, answer, selected_slot_id, comment)
                except IntegrityError as exc:
                    self.db.rollback()
                    raise PersistenceError("Could not record the response, please retry") from exc

    def _record(
        self,
        token: str,
        answer: str,
        selected_slot_id: Optional[UUID],
        comment: Optional[str],
    ) -> RecordResult:
        invite = resolve_invite(self.db, token)
        thread = invite.thread

        closed = self._closed_result(thread, invite)
        if closed is not None:
            return closed

        if answer not in ANSWERS:
            raise ValidationError(f"Unknown answer: {answer}", details={"allowed": list(ANSWERS)})

        now = utcnow()
        if reject_late_responses() and now > ensure_aware(thread.policy.deadline_at):
            raise Expired("The response deadline has passed")

        slot_id = self._resolve_slot(thread, answer, selected_slot_id)
        mode = thread.mode

        newly_booked = None
        try:
            if not ThreadRepository.hold_if_status(self.db, thread, ("sent",)):
                # Finalized or cancelled since this request read the thread.
                self.db.rollback()
                closed = self._closed_result(thread, invite)
                if closed is None:
                    raise PersistenceError("Thread changed while recording the response, please retry")
                return closed
            current_version = thread.current_version

            if mode == "open_slots":
                if answer == "ok":
                    slot, created = self.slots.claim(thread, invite, slot_id)
                    if created:
                        newly_booked = slot
                self.slots.release_for_invite(thread, invite, keep_slot_id=slot_id if answer == "ok" else None)

            response = ResponseRepository.upsert(
                self.db,
                thread_id=thread.id,
                invite_id=invite.id,
                response_version=current_version,
                answer=answer,
                selected_slot_id=slot_id,
                comment=comment,
                responded_at=now,
            )
            InviteRepository.mark_responded(self.db, invite, answer=answer, responded_at=now)

            evaluation, record = self.finalization.auto_finalize_if_met(thread)
            self.db.commit()
        except (SchedulingError, IntegrityError):
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to record response for invite %s", invite.id)
            raise PersistenceError("Could not record the response, please retry") from exc

        responses_recorded_total.labels(mode=mode, answer=answer).inc()
        logger.info(
            "Recorded response thread=%s invite=%s answer=%s slot=%s version=%s met=%s",
            thread.id,
            invite.id,
            answer,
            slot_id,
            current_version,
            evaluation.met,
        )

        self._emit_response_events(thread, invite, response, newly_booked)
        if record is not None:
            self.finalization.emit_confirmed(thread, record)

        return RecordResult(
            response=response,
            evaluation=evaluation,
            confirmed=record is not None or thread.status == "confirmed",
            finalization=record,
        )

    def _closed_result(self, thread: SchedulingThread, invite: ThreadInvite) -> Optional[RecordResult]:
        """Read-only result for a confirmed thread; None while it still takes answers."""
        if thread.status == "confirmed":
            return RecordResult(
                response=ResponseRepository.get_current_for_invite(self.db, invite.id),
                evaluation=None,
                confirmed=True,
                read_only=True,
                finalization=FinalizationRepository.get_for_thread(self.db, thread.id),
            )
        if thread.status != "sent":
            raise ThreadNotActive(
                f"Thread is {thread.status} and does not accept responses",
                details={"status": thread.status},
            )
        return None

    def _resolve_slot(self, thread: SchedulingThread, answer: str, selected_slot_id: Optional[UUID]) -> Optional[UUID]:
        if thread.mode == "fixed":
            if answer != "ok":
                return None
            active = SlotRepository.list_for_thread(self.db, thread.id, include_cancelled=False)
            if not active:
                raise ValidationError("Fixed thread has no active slot")
            return active[0].id

        if selected_slot_id is None:
            if answer == "ok" and thread.requires_slot_selection:
                raise SlotRequired("Select a slot to answer ok")
            return None

        if thread.mode == "open_slots" and answer != "ok":
            return None

        slot = SlotRepository.get_for_thread(self.db, thread.id, selected_slot_id)
        if slot is None or slot.slot_status == "cancelled":
            raise ValidationError(
                "Selected slot is not an active slot of this thread",
                details={"slot_id": str(selected_slot_id)},
            )
        return slot.id

    def _emit_response_events(self, thread, invite, response, newly_booked) -> None:
        who = invite.name or invite.email
        self.notifier.notify(
            SchedulingEvent(
                type=RESPONSE_RECEIVED,
                user_id=thread.organizer_user_id,
                title=f"{who} が回答しました: {thread.title}",
                action_target_id=str(thread.id),
                payload={
                    "invite_id": str(invite.id),
                    "invitee_key": invite.invitee_key,
                    "answer": response.answer,
                    "selected_slot_id": str(response.selected_slot_id) if response.selected_slot_id else None,
                    "response_version": response.response_version,
                },
            )
        )
        if newly_booked is not None:
            self.notifier.notify(
                SchedulingEvent(
                    type=SLOT_FILLED,
                    user_id=thread.organizer_user_id,
                    title=f"{who} が枠を予約しました: {thread.title}",
                    action_target_id=str(thread.id),
                    payload={
                        "slot_id": str(newly_booked.id),
                        "invite_id": str(invite.id),
                    },
                )
            )

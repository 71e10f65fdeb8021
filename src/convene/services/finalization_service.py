"""
Finalization of scheduling threads: the auto-finalize trigger and manual finalize.

Both paths end in ``_confirm``, which moves the thread ``sent -> confirmed`` with
a conditional UPDATE and then writes the single ``ThreadFinalization`` row. A
caller that loses the status race writes nothing, so a thread is confirmed at
most once no matter how many responses or organizer clicks arrive together.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID

from opentelemetry import trace
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from convene.errors import PersistenceError, ThreadNotActive, ValidationError
from convene.metrics import threads_finalized_total
from convene.models.scheduling_thread import SchedulingThread
from convene.models.thread_finalization import ThreadFinalization
from convene.repositories.finalization_repository import FinalizationRepository
from convene.repositories.invite_repository import InviteRepository
from convene.repositories.response_repository import ResponseRepository
from convene.repositories.slot_repository import SlotRepository
from convene.repositories.thread_repository import ThreadRepository
from convene.services.finalization_policy import (
    Evaluation,
    EvaluationContext,
    evaluate,
    should_auto_finalize,
)
from convene.services.notifier import REQUEST_CONFIRMED, NotifierBridge, SchedulingEvent, build_notifier
from convene.utils.datetime_utils import isoformat, utcnow

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

SYSTEM_ACTOR = "system"


@dataclass
class FinalizeResult:
    finalization: ThreadFinalization
    already_confirmed: bool = False


class FinalizationService:

    def __init__(self, db: Session, notifier: Optional[NotifierBridge] = None):
        self.db = db
        self.notifier = notifier or build_notifier(db)

    def build_context(self, thread: SchedulingThread, now: Optional[datetime] = None) -> EvaluationContext:
        return EvaluationContext.from_thread(
            thread,
            slots=SlotRepository.list_for_thread(self.db, thread.id),
            invites=InviteRepository.list_for_thread(self.db, thread.id),
            responses=ResponseRepository.list_current_for_thread(self.db, thread.id),
            now=now,
        )

    def evaluate(self, thread: SchedulingThread, now: Optional[datetime] = None) -> Evaluation:
        return evaluate(self.build_context(thread, now))

    def auto_finalize_if_met(self, thread: SchedulingThread) -> tuple[Evaluation, Optional[ThreadFinalization]]:
        """
        Evaluate the thread and confirm it when its policy allows auto-finalize.

        Runs inside the caller's transaction; the caller commits and then calls
        ``emit_confirmed`` for a returned finalization.
        """
        with tracer.start_as_current_span("finalization.auto") as span:
            span.set_attribute("thread.id", str(thread.id))

            context = self.build_context(thread)
            evaluation = evaluate(context)
            span.set_attribute("evaluation.met", evaluation.met)
            span.set_attribute("evaluation.reason", evaluation.reason)

            if not should_auto_finalize(context, evaluation):
                return evaluation, None

            record = self._confirm(
                thread,
                slot_id=evaluation.recommended_slot_id,
                trigger="auto",
                finalized_by=SYSTEM_ACTOR,
                reason=evaluation.reason,
            )
            span.set_attribute("finalization.created", record is not None)
            return evaluation, record

    def finalize(
        self,
        thread: SchedulingThread,
        *,
        organizer_user_id: str,
        slot_id: UUID,
        reason: Optional[str] = None,
    ) -> FinalizeResult:
        """
        Organizer finalize. Repeating a finalize on the slot that already won is
        a no-op success; anything else on a terminal thread is rejected.
        """
        with tracer.start_as_current_span("finalization.manual") as span:
            span.set_attribute("thread.id", str(thread.id))
            span.set_attribute("slot.id", str(slot_id))

            if thread.status == "confirmed":
                return self._existing_result(thread, slot_id)
            if thread.status != "sent":
                raise ThreadNotActive(
                    f"Thread is {thread.status} and cannot be finalized",
                    details={"status": thread.status},
                )

            slot = SlotRepository.get_for_thread(self.db, thread.id, slot_id)
            if slot is None or slot.slot_status == "cancelled":
                raise ValidationError("Selected slot is not an active slot of this thread", details={"slot_id": str(slot_id)})

            try:
                record = self._confirm(
                    thread,
                    slot_id=slot.id,
                    trigger="manual",
                    finalized_by=organizer_user_id,
                    reason=reason,
                )
                if record is None:
                    self.db.rollback()
                    self.db.refresh(thread)
                    return self._existing_result(thread, slot_id)
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                self.db.refresh(thread)
                return self._existing_result(thread, slot_id)
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.exception("Failed to finalize thread %s", thread.id)
                raise PersistenceError("Could not finalize the thread, please retry") from exc

        self.emit_confirmed(thread, record)
        return FinalizeResult(finalization=record)

    def _existing_result(self, thread: SchedulingThread, slot_id: UUID) -> FinalizeResult:
        existing = FinalizationRepository.get_for_thread(self.db, thread.id)
        if existing is not None and existing.selected_slot_id == slot_id:
            return FinalizeResult(finalization=existing, already_confirmed=True)
        raise ThreadNotActive(
            "Thread is already finalized on a different slot",
            details={"status": thread.status},
        )

    def _confirm(
        self,
        thread: SchedulingThread,
        *,
        slot_id: Optional[UUID],
        trigger: str,
        finalized_by: str,
        reason: Optional[str],
    ) -> Optional[ThreadFinalization]:
        finalize_policy = thread.policy.finalize_policy
        mode = thread.mode
        now = utcnow()

        won = ThreadRepository.transition_status(
            self.db,
            thread,
            from_statuses=("sent",),
            to_status="confirmed",
            updated_at=now,
        )
        if not won:
            logger.info("Thread %s was already finalized, skipping %s finalize", thread.id, trigger)
            return None

        bookings = None
        if mode == "open_slots":
            bookings = {
                str(slot.id): str(slot.booked_by_invite_id)
                for slot in SlotRepository.list_for_thread(self.db, thread.id)
                if slot.slot_status == "booked"
            }

        record = FinalizationRepository.create(
            self.db,
            thread_id=thread.id,
            selected_slot_id=slot_id,
            trigger=trigger,
            finalized_by=finalized_by,
            finalize_policy=finalize_policy,
            finalized_at=now,
            reason=reason,
            bookings=bookings,
        )
        return record

    def emit_confirmed(self, thread: SchedulingThread, record: ThreadFinalization) -> None:
        """Call once the finalization is committed: counts it and notifies the organizer."""
        threads_finalized_total.labels(trigger=record.trigger).inc()
        slot = record.selected_slot
        self.notifier.notify(
            SchedulingEvent(
                type=REQUEST_CONFIRMED,
                user_id=thread.organizer_user_id,
                title=f"日程が確定しました: {thread.title}",
                message=record.reason,
                priority="high",
                action_target_id=str(thread.id),
                payload={
                    "thread_id": str(thread.id),
                    "organizer_user_id": thread.organizer_user_id,
                    "trigger": record.trigger,
                    "selected_slot_id": str(record.selected_slot_id) if record.selected_slot_id else None,
                    "start_at": isoformat(slot.start_at) if slot else None,
                    "end_at": isoformat(slot.end_at) if slot else None,
                    "bookings": record.bookings,
                },
            )
        )

"""
Proposal versioning: adds a new generation of candidate slots to a live thread.

Reproposing never deletes anything. New slots carry the next
``proposal_version``, the thread's ``current_version`` moves to it, and invitees
whose latest answer belongs to an older generation are flagged
``needs_re_response``. Their old answers stay in place as history.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from opentelemetry import trace
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from convene.config import get_invite_expiry_buffer_hours
from convene.errors import MaxReproposalsExceeded, PersistenceError, ThreadNotActive, ValidationError
from convene.metrics import reproposals_total
from convene.models.scheduling_thread import OPEN_STATUSES, SchedulingThread
from convene.repositories.invite_repository import InviteRepository
from convene.repositories.slot_repository import SlotRepository
from convene.repositories.thread_repository import ThreadRepository
from convene.services.notifier import REPROPOSED, NotifierBridge, SchedulingEvent, build_notifier
from convene.utils.datetime_utils import ensure_aware, isoformat, utcnow

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class ReproposalResult:
    thread_id: str
    reproposal_count: int
    max_reproposals: int
    new_slots_count: int
    current_version: int
    needs_re_response_count: int


def validate_slot_inputs(slots) -> None:
    """Each slot needs ``start_at`` before ``end_at``; shared with thread preparation."""
    for index, slot in enumerate(slots):
        start_at = ensure_aware(slot["start_at"])
        end_at = ensure_aware(slot["end_at"])
        if start_at >= end_at:
            raise ValidationError(
                "Slot start_at must be before end_at",
                details={"slot_index": index},
            )


class ReproposalService:

    def __init__(self, db: Session, notifier: Optional[NotifierBridge] = None):
        self.db = db
        self.notifier = notifier or build_notifier(db)

    def repropose(
        self,
        thread: SchedulingThread,
        new_slots: list[dict],
        new_deadline_hours: Optional[int] = None,
        message: Optional[str] = None,
    ) -> ReproposalResult:
        with tracer.start_as_current_span("reproposal.repropose") as span:
            span.set_attribute("thread.id", str(thread.id))
            span.set_attribute("reproposal.new_slots", len(new_slots))

            if thread.is_terminal:
                raise ThreadNotActive(
                    f"Thread is {thread.status} and cannot be reproposed",
                    details={"status": thread.status},
                )
            if thread.mode == "fixed":
                raise ValidationError("Fixed threads have a single slot and cannot be reproposed")
            if not new_slots:
                raise ValidationError("new_slots must contain at least one slot")
            if new_deadline_hours is not None and new_deadline_hours <= 0:
                raise ValidationError("new_deadline_hours must be positive")
            validate_slot_inputs(new_slots)

            policy = thread.policy
            observed_count = policy.reproposal_count
            if observed_count >= policy.max_reproposals:
                raise MaxReproposalsExceeded(
                    f"Maximum reproposals reached: {observed_count}/{policy.max_reproposals}",
                    details={"reproposal_count": observed_count, "max_reproposals": policy.max_reproposals},
                )
            observed_version = thread.current_version
            next_version = observed_version + 1

            try:
                if not ThreadRepository.hold_if_status(self.db, thread, OPEN_STATUSES):
                    self.db.rollback()
                    raise ThreadNotActive(
                        f"Thread is {thread.status} and cannot be reproposed",
                        details={"status": thread.status},
                    )

                if not ThreadRepository.increment_reproposal_count(self.db, policy, observed_count):
                    self.db.rollback()
                    self.db.refresh(policy)
                    if policy.reproposal_count >= policy.max_reproposals:
                        raise MaxReproposalsExceeded(
                            f"Maximum reproposals reached: {policy.reproposal_count}/{policy.max_reproposals}",
                            details={
                                "reproposal_count": policy.reproposal_count,
                                "max_reproposals": policy.max_reproposals,
                            },
                        )
                    raise PersistenceError("Another reproposal is in progress, please retry")

                if not ThreadRepository.advance_version(self.db, thread, observed_version):
                    self.db.rollback()
                    raise PersistenceError("Another reproposal is in progress, please retry")

                for slot in new_slots:
                    SlotRepository.create(
                        self.db,
                        thread_id=thread.id,
                        start_at=slot["start_at"],
                        end_at=slot["end_at"],
                        label=slot.get("label"),
                        timezone=slot.get("timezone") or "Asia/Tokyo",
                        proposal_version=next_version,
                    )

                if new_deadline_hours:
                    self._extend_deadline(thread, new_deadline_hours)

                flagged = InviteRepository.flag_stale_responders(self.db, thread.id, next_version)
                self.db.commit()
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.exception("Failed to repropose thread %s", thread.id)
                raise PersistenceError("Could not save the reproposal, please retry") from exc

            self.db.refresh(policy)
            reproposals_total.inc()
            result = ReproposalResult(
                thread_id=str(thread.id),
                reproposal_count=policy.reproposal_count,
                max_reproposals=policy.max_reproposals,
                new_slots_count=len(new_slots),
                current_version=next_version,
                needs_re_response_count=flagged,
            )

        logger.info(
            "Reproposed thread=%s version=%s count=%s/%s new_slots=%s flagged=%s",
            thread.id,
            next_version,
            result.reproposal_count,
            result.max_reproposals,
            result.new_slots_count,
            flagged,
        )
        self._emit(thread, result, message)
        return result

    def _extend_deadline(self, thread: SchedulingThread, hours: int) -> None:
        policy = thread.policy
        policy.deadline_at = utcnow() + timedelta(hours=hours)
        expires_at = policy.deadline_at + timedelta(hours=get_invite_expiry_buffer_hours())
        for invite in InviteRepository.list_for_thread(self.db, thread.id):
            if ensure_aware(invite.expires_at) < expires_at:
                invite.expires_at = expires_at
        self.db.flush()

    def _emit(self, thread: SchedulingThread, result: ReproposalResult, message: Optional[str]) -> None:
        invites = InviteRepository.list_for_thread(self.db, thread.id)
        self.notifier.notify(
            SchedulingEvent(
                type=REPROPOSED,
                user_id=thread.organizer_user_id,
                title=f"再提案しました: {thread.title}",
                message=message,
                action_target_id=str(thread.id),
                payload={
                    "current_version": result.current_version,
                    "reproposal_count": result.reproposal_count,
                    "max_reproposals": result.max_reproposals,
                    "deadline_at": isoformat(thread.policy.deadline_at),
                    "recipients": [
                        {"email": invite.email, "token": invite.token, "needs_re_response": invite.needs_re_response}
                        for invite in invites
                    ],
                },
            )
        )

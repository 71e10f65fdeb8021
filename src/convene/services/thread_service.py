"""
Thread lifecycle service for organizers, plus the invitee-facing read model.

Handles:
- Preparing a thread with its policy, slots and invites (draft)
- Sending (draft -> sent) and cancelling (draft|sent -> cancelled)
- Organizer ownership checks
- Detail, summary and list views
- The token-scoped view an invitee sees before answering
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional
from uuid import UUID

from opentelemetry import trace
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from convene.config import (
    get_default_deadline_hours,
    get_default_max_reproposals,
    get_invite_expiry_buffer_hours,
    get_public_base_url,
)
from convene.errors import Forbidden, NotFound, PersistenceError, ThreadNotActive, ValidationError
from convene.models.group_policy import FINALIZE_POLICIES
from convene.models.scheduling_slot import SchedulingSlot
from convene.models.scheduling_thread import OPEN_STATUSES, THREAD_MODES, SchedulingThread
from convene.models.thread_finalization import ThreadFinalization
from convene.models.thread_invite import ThreadInvite
from convene.models.thread_response import ThreadResponse
from convene.repositories.finalization_repository import FinalizationRepository
from convene.repositories.invite_repository import InviteRepository
from convene.repositories.response_repository import ResponseRepository
from convene.repositories.slot_repository import SlotRepository
from convene.repositories.thread_repository import ThreadRepository
from convene.services.finalization_policy import Evaluation
from convene.services.finalization_service import FinalizationService
from convene.services.notifier import INVITES_SENT, NotifierBridge, SchedulingEvent, build_notifier
from convene.services.reproposal_service import validate_slot_inputs
from convene.services.response_service import resolve_invite
from convene.services.slot_booking_service import SlotBookingService
from convene.utils.datetime_utils import utcnow
from convene.utils.invitee_keys import invitee_key_for_email, normalize_email

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class ThreadSummary:
    thread: SchedulingThread
    evaluation: Evaluation
    slots: List[SchedulingSlot]
    needs_re_response_count: int = 0


@dataclass
class ThreadDetail:
    thread: SchedulingThread
    slots: List[SchedulingSlot]
    invites: List[ThreadInvite]
    current_responses: List[ThreadResponse]
    evaluation: Evaluation
    finalization: Optional[ThreadFinalization] = None


@dataclass
class InviteView:
    invite: ThreadInvite
    thread: SchedulingThread
    slots: List[dict] = field(default_factory=list)
    current_response: Optional[ThreadResponse] = None
    finalization: Optional[ThreadFinalization] = None


def invite_url(token: str) -> str:
    return f"{get_public_base_url()}/g/{token}"


def _dedupe_invitees(invitees) -> list[dict]:
    seen = set()
    result = []
    for invitee in invitees:
        email = normalize_email(invitee["email"])
        if not email or email in seen:
            continue
        seen.add(email)
        result.append({"email": email, "name": invitee.get("name") or email.split("@")[0]})
    return result


class ThreadService:
    """Organizer-side operations on scheduling threads."""

    def __init__(self, db: Session, notifier: Optional[NotifierBridge] = None):
        self.db = db
        self.notifier = notifier or build_notifier(db)

    def prepare(
        self,
        organizer_user_id: str,
        *,
        title: str,
        mode: str,
        slots: list[dict],
        invitees: list[dict],
        description: Optional[str] = None,
        finalize_policy: str = "organizer_decides",
        quorum_count: Optional[int] = None,
        required_emails: Optional[list[str]] = None,
        auto_finalize: bool = False,
        deadline_hours: Optional[int] = None,
        max_reproposals: Optional[int] = None,
        participant_limit: Optional[int] = None,
    ) -> SchedulingThread:
        """
        Create a draft thread with its policy, slots and invites.

        Raises:
            ValidationError: on any inconsistent input; nothing is written
        """
        with tracer.start_as_current_span("thread.prepare") as span:
            span.set_attribute("organizer_user_id", organizer_user_id)
            span.set_attribute("thread.mode", mode)

            title = (title or "").strip()
            if not title:
                raise ValidationError("title is required")
            if mode not in THREAD_MODES:
                raise ValidationError(f"mode must be one of: {', '.join(THREAD_MODES)}")
            if finalize_policy not in FINALIZE_POLICIES:
                raise ValidationError(f"finalize_policy must be one of: {', '.join(FINALIZE_POLICIES)}")

            if not slots:
                raise ValidationError("At least one slot is required")
            if mode == "fixed" and len(slots) != 1:
                raise ValidationError("fixed mode takes exactly one slot")
            validate_slot_inputs(slots)

            people = _dedupe_invitees(invitees)
            if not people:
                raise ValidationError("At least one invitee is required")
            if participant_limit is not None and participant_limit < 1:
                raise ValidationError("participant_limit must be at least 1")
            if participant_limit is not None and len(people) > participant_limit:
                raise ValidationError(
                    f"Too many invitees: {len(people)} > participant_limit {participant_limit}",
                    details={"participant_limit": participant_limit},
                )

            if finalize_policy == "quorum" and not quorum_count:
                raise ValidationError("quorum_count is required for the quorum policy")
            if quorum_count is not None and quorum_count < 1:
                raise ValidationError("quorum_count must be at least 1")

            invited_keys = {invitee_key_for_email(person["email"]) for person in people}
            required_keys = []
            for email in required_emails or []:
                key = invitee_key_for_email(email)
                if key not in invited_keys:
                    raise ValidationError(
                        "Required people must also be invited",
                        details={"email": normalize_email(email)},
                    )
                if key not in required_keys:
                    required_keys.append(key)
            if finalize_policy == "required_people" and not required_keys:
                raise ValidationError("required_emails is required for the required_people policy")

            if max_reproposals is None:
                max_reproposals = get_default_max_reproposals()
            if max_reproposals < 0:
                raise ValidationError("max_reproposals must not be negative")

            hours = get_default_deadline_hours() if deadline_hours is None else deadline_hours
            if hours <= 0:
                raise ValidationError("deadline_hours must be positive")
            deadline_at = utcnow() + timedelta(hours=hours)
            expires_at = deadline_at + timedelta(hours=get_invite_expiry_buffer_hours())

            try:
                thread = ThreadRepository.create(
                    self.db,
                    organizer_user_id=organizer_user_id,
                    title=title,
                    description=description.strip() if description else None,
                    mode=mode,
                    topology="one_on_one" if len(people) == 1 else "one_to_many",
                )
                ThreadRepository.create_policy(
                    self.db,
                    thread_id=thread.id,
                    finalize_policy=finalize_policy,
                    deadline_at=deadline_at,
                    auto_finalize=auto_finalize,
                    quorum_count=quorum_count,
                    required_invitee_keys=required_keys,
                    max_reproposals=max_reproposals,
                    participant_limit=participant_limit,
                )
                for slot in slots:
                    SlotRepository.create(
                        self.db,
                        thread_id=thread.id,
                        start_at=slot["start_at"],
                        end_at=slot["end_at"],
                        label=slot.get("label"),
                        timezone=slot.get("timezone") or "Asia/Tokyo",
                        proposal_version=1,
                    )
                for person in people:
                    InviteRepository.create(
                        self.db,
                        thread_id=thread.id,
                        invitee_key=invitee_key_for_email(person["email"]),
                        email=person["email"],
                        name=person["name"],
                        expires_at=expires_at,
                    )
                self.db.commit()
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.exception("Failed to prepare thread for organizer=%s", organizer_user_id)
                raise PersistenceError("Could not create the thread, please retry") from exc

            self.db.refresh(thread)

        logger.info(
            "Prepared thread id=%s mode=%s policy=%s invitees=%d slots=%d",
            thread.id,
            mode,
            finalize_policy,
            len(people),
            len(slots),
        )
        return thread

    def get_owned_thread(self, thread_id: UUID, organizer_user_id: str) -> SchedulingThread:
        thread = ThreadRepository.get_by_id(self.db, thread_id)
        if thread is None:
            raise NotFound("Thread not found")
        if thread.organizer_user_id != organizer_user_id:
            logger.warning("Organizer %s denied access to thread %s", organizer_user_id, thread_id)
            raise Forbidden("Access denied")
        return thread

    def list_threads(self, organizer_user_id: str, *, status: Optional[str] = None, limit: int = 20, offset: int = 0):
        return ThreadRepository.list_for_organizer(
            self.db,
            organizer_user_id,
            status=status,
            limit=limit,
            offset=offset,
        )

    def send(self, thread: SchedulingThread) -> SchedulingThread:
        with tracer.start_as_current_span("thread.send") as span:
            span.set_attribute("thread.id", str(thread.id))

            if thread.status != "draft":
                raise ThreadNotActive(
                    f"Thread is {thread.status}; only draft threads can be sent",
                    details={"status": thread.status},
                )

            now = utcnow()
            try:
                won = ThreadRepository.transition_status(
                    self.db,
                    thread,
                    from_statuses=("draft",),
                    to_status="sent",
                    sent_at=now,
                    updated_at=now,
                )
                if not won:
                    self.db.rollback()
                    raise ThreadNotActive("Thread has already left draft")
                self.db.commit()
            except SQLAlchemyError as exc:
                self.db.rollback()
                raise PersistenceError("Could not send the thread, please retry") from exc

        invites = InviteRepository.list_for_thread(self.db, thread.id)
        self.notifier.notify(
            SchedulingEvent(
                type=INVITES_SENT,
                user_id=thread.organizer_user_id,
                title=f"招待を送信しました: {thread.title}",
                action_target_id=str(thread.id),
                payload={
                    "recipients": [
                        {"email": invite.email, "name": invite.name, "token": invite.token, "url": invite_url(invite.token)}
                        for invite in invites
                    ],
                },
            )
        )
        logger.info("Sent thread id=%s to %d invitees", thread.id, len(invites))
        return thread

    def cancel(self, thread: SchedulingThread, reason: Optional[str] = None) -> SchedulingThread:
        if thread.is_terminal:
            raise ThreadNotActive(
                f"Thread is {thread.status} and cannot be cancelled",
                details={"status": thread.status},
            )

        now = utcnow()
        try:
            won = ThreadRepository.transition_status(
                self.db,
                thread,
                from_statuses=OPEN_STATUSES,
                to_status="cancelled",
                cancelled_at=now,
                updated_at=now,
            )
            if not won:
                self.db.rollback()
                raise ThreadNotActive("Thread was finalized or cancelled concurrently")
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError("Could not cancel the thread, please retry") from exc

        logger.info("Cancelled thread id=%s reason=%s", thread.id, reason)
        return thread

    def detail(self, thread: SchedulingThread) -> ThreadDetail:
        finalization = FinalizationService(self.db, notifier=self.notifier)
        return ThreadDetail(
            thread=thread,
            slots=SlotRepository.list_for_thread(self.db, thread.id),
            invites=InviteRepository.list_for_thread(self.db, thread.id),
            current_responses=ResponseRepository.list_current_for_thread(self.db, thread.id),
            evaluation=finalization.evaluate(thread),
            finalization=FinalizationRepository.get_for_thread(self.db, thread.id),
        )

    def summary(self, thread: SchedulingThread) -> ThreadSummary:
        evaluation = FinalizationService(self.db, notifier=self.notifier).evaluate(thread)
        invites = InviteRepository.list_for_thread(self.db, thread.id)
        return ThreadSummary(
            thread=thread,
            evaluation=evaluation,
            slots=SlotRepository.list_for_thread(self.db, thread.id),
            needs_re_response_count=sum(1 for invite in invites if invite.needs_re_response),
        )

    def invite_view(self, token: str) -> InviteView:
        invite = resolve_invite(self.db, token)
        thread = invite.thread
        return InviteView(
            invite=invite,
            thread=thread,
            slots=SlotBookingService(self.db).availability(thread, viewer_invite_id=invite.id),
            current_response=ResponseRepository.get_current_for_invite(self.db, invite.id),
            finalization=FinalizationRepository.get_for_thread(self.db, thread.id),
        )

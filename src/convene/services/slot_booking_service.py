"""
Slot booking arbiter for open_slots threads.

A claim is a single conditional UPDATE (``SlotRepository.compare_and_book``).
Whoever's UPDATE lands first owns the slot; later claims match no row and get
``SlotAlreadyBooked``. There is no queue and no retry.
"""
import logging
from typing import Optional
from uuid import UUID

from opentelemetry import trace
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from convene.errors import PersistenceError, SlotAlreadyBooked, ThreadNotActive, ValidationError
from convene.metrics import slot_claim_conflicts_total
from convene.models.scheduling_slot import SchedulingSlot
from convene.models.scheduling_thread import SchedulingThread
from convene.models.thread_invite import ThreadInvite
from convene.repositories.slot_repository import SlotRepository

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class SlotBookingService:

    def __init__(self, db: Session):
        self.db = db

    def get_bookable_slot(self, thread: SchedulingThread, slot_id: UUID) -> SchedulingSlot:
        slot = SlotRepository.get_for_thread(self.db, thread.id, slot_id)
        if slot is None:
            raise ValidationError("Selected slot does not belong to this thread", details={"slot_id": str(slot_id)})
        if slot.slot_status == "cancelled":
            raise ValidationError("Selected slot has been cancelled", details={"slot_id": str(slot_id)})
        return slot

    def claim(self, thread: SchedulingThread, invite: ThreadInvite, slot_id: UUID) -> tuple[SchedulingSlot, bool]:
        """
        Book ``slot_id`` for ``invite``.

        Returns ``(slot, newly_booked)``. Claiming a slot the invite already holds
        succeeds without writing. Raises ``SlotAlreadyBooked`` when another invite
        holds it, ``ThreadNotActive`` when the thread stopped being sent, and
        ``PersistenceError`` when the UPDATE itself fails; in every case nothing
        was written.
        """
        with tracer.start_as_current_span("slot_booking.claim") as span:
            span.set_attribute("thread.id", str(thread.id))
            span.set_attribute("slot.id", str(slot_id))
            span.set_attribute("invite.id", str(invite.id))

            slot = self.get_bookable_slot(thread, slot_id)

            if slot.slot_status == "booked" and slot.booked_by_invite_id == invite.id:
                span.set_attribute("slot.already_owned", True)
                return slot, False

            if slot.slot_status != "open":
                self._reject(slot, invite)

            try:
                won = SlotRepository.compare_and_book(
                    self.db,
                    slot,
                    invite_id=invite.id,
                    expected_row_version=slot.row_version,
                )
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.exception("Slot claim failed to persist slot=%s invite=%s", slot_id, invite.id)
                raise PersistenceError("Could not record the slot booking, please retry") from exc

            if not won:
                self.db.refresh(thread)
                if thread.status != "sent":
                    raise ThreadNotActive(
                        f"Thread is {thread.status} and does not accept bookings",
                        details={"status": thread.status},
                    )
                self._reject(slot, invite)

            return slot, True

    def _reject(self, slot: SchedulingSlot, invite: ThreadInvite):
        slot_claim_conflicts_total.inc()
        logger.info("Slot %s already taken, rejecting claim by invite %s", slot.id, invite.id)
        raise SlotAlreadyBooked(slot.id)

    def release_for_invite(
        self,
        thread: SchedulingThread,
        invite: ThreadInvite,
        *,
        keep_slot_id: Optional[UUID] = None,
    ) -> list[SchedulingSlot]:
        """Free every slot ``invite`` holds on ``thread`` except ``keep_slot_id``."""
        released = []
        for slot in SlotRepository.list_booked_by_invite(self.db, thread.id, invite.id):
            if slot.id == keep_slot_id:
                continue
            try:
                if SlotRepository.release(self.db, slot, invite_id=invite.id):
                    released.append(slot)
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.exception("Slot release failed to persist slot=%s invite=%s", slot.id, invite.id)
                raise PersistenceError("Could not release the previous slot booking, please retry") from exc
        return released

    def availability(self, thread: SchedulingThread, viewer_invite_id: Optional[UUID] = None) -> list[dict]:
        """
        Per-slot state for display. Advisory only: ``claim`` re-checks on write.
        """
        slots = SlotRepository.list_for_thread(self.db, thread.id)
        result = []
        for slot in slots:
            result.append(
                {
                    "slot": slot,
                    "slot_status": slot.slot_status,
                    "is_available": slot.slot_status == "open",
                    "booked_by_me": viewer_invite_id is not None and slot.booked_by_invite_id == viewer_invite_id,
                }
            )
        return result

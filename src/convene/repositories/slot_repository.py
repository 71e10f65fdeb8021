# src/convene/repositories/slot_repository.py
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from opentelemetry import trace
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from convene.models.scheduling_slot import SchedulingSlot
from convene.models.scheduling_thread import SchedulingThread
from convene.utils.datetime_utils import ensure_aware, utcnow

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class SlotRepository:

    @staticmethod
    def create(
        db: Session,
        *,
        thread_id: UUID,
        start_at: datetime,
        end_at: datetime,
        proposal_version: int,
        label: str | None = None,
        timezone: str = "Asia/Tokyo",
    ) -> SchedulingSlot:
        slot = SchedulingSlot(
            thread_id=thread_id,
            start_at=ensure_aware(start_at),
            end_at=ensure_aware(end_at),
            label=label,
            timezone=timezone,
            proposal_version=proposal_version,
            slot_status="open",
            row_version=1,
        )
        db.add(slot)
        db.flush()
        logger.debug(
            "Created slot id=%s thread=%s version=%s",
            slot.id,
            thread_id,
            proposal_version,
        )
        return slot

    @staticmethod
    def list_for_thread(
        db: Session,
        thread_id: UUID,
        *,
        include_cancelled: bool = True,
        proposal_version: int | None = None,
    ) -> list[SchedulingSlot]:
        with tracer.start_as_current_span("db.list_slots") as span:
            span.set_attribute("thread.id", str(thread_id))

            query = db.query(SchedulingSlot).filter(SchedulingSlot.thread_id == thread_id)
            if not include_cancelled:
                query = query.filter(SchedulingSlot.slot_status != "cancelled")
            if proposal_version is not None:
                query = query.filter(SchedulingSlot.proposal_version == proposal_version)

            return query.order_by(SchedulingSlot.start_at.asc(), SchedulingSlot.created_at.asc()).all()

    @staticmethod
    def get_for_thread(db: Session, thread_id: UUID, slot_id: UUID) -> Optional[SchedulingSlot]:
        return (
            db.query(SchedulingSlot)
            .filter(
                SchedulingSlot.id == slot_id,
                SchedulingSlot.thread_id == thread_id,
            )
            .first()
        )

    @staticmethod
    def list_booked_by_invite(db: Session, thread_id: UUID, invite_id: UUID) -> list[SchedulingSlot]:
        return (
            db.query(SchedulingSlot)
            .filter(
                SchedulingSlot.thread_id == thread_id,
                SchedulingSlot.booked_by_invite_id == invite_id,
                SchedulingSlot.slot_status == "booked",
            )
            .all()
        )

    @staticmethod
    def compare_and_book(db: Session, slot: SchedulingSlot, *, invite_id: UUID, expected_row_version: int) -> bool:
        """
        Atomically move ``slot`` from open to booked for ``invite_id``.

        The UPDATE only matches while the slot is still open at the row version
        the caller observed and its thread is still sent; whichever claim commits
        that transition first wins, every other claim matches zero rows.
        """
        thread_is_sent = (
            select(SchedulingThread.id)
            .where(SchedulingThread.id == slot.thread_id, SchedulingThread.status == "sent")
            .exists()
        )
        with tracer.start_as_current_span("db.compare_and_book_slot") as span:
            span.set_attribute("slot.id", str(slot.id))
            span.set_attribute("invite.id", str(invite_id))
            span.set_attribute("slot.expected_row_version", expected_row_version)

            result = db.execute(
                update(SchedulingSlot)
                .where(
                    SchedulingSlot.id == slot.id,
                    SchedulingSlot.slot_status == "open",
                    SchedulingSlot.row_version == expected_row_version,
                    thread_is_sent,
                )
                .values(
                    slot_status="booked",
                    booked_by_invite_id=invite_id,
                    booked_at=utcnow(),
                    row_version=expected_row_version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            db.expire(slot)
            won = result.rowcount == 1
            span.set_attribute("slot.claim_won", won)

        logger.info(
            "Slot %s claim by invite %s at row_version=%s: %s",
            slot.id,
            invite_id,
            expected_row_version,
            "booked" if won else "rejected",
        )
        return won

    @staticmethod
    def release(db: Session, slot: SchedulingSlot, *, invite_id: UUID) -> bool:
        """Return a slot booked by ``invite_id`` to open. No-op for anyone else's booking."""
        with tracer.start_as_current_span("db.release_slot") as span:
            span.set_attribute("slot.id", str(slot.id))
            span.set_attribute("invite.id", str(invite_id))

            result = db.execute(
                update(SchedulingSlot)
                .where(
                    SchedulingSlot.id == slot.id,
                    SchedulingSlot.slot_status == "booked",
                    SchedulingSlot.booked_by_invite_id == invite_id,
                )
                .values(
                    slot_status="open",
                    booked_by_invite_id=None,
                    booked_at=None,
                    row_version=SchedulingSlot.row_version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            db.expire(slot)

        released = result.rowcount == 1
        if released:
            logger.info("Released slot %s held by invite %s", slot.id, invite_id)
        return released

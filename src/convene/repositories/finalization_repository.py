# src/convene/repositories/finalization_repository.py
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from convene.models.thread_finalization import ThreadFinalization

logger = logging.getLogger(__name__)


class FinalizationRepository:

    @staticmethod
    def get_for_thread(db: Session, thread_id: UUID) -> Optional[ThreadFinalization]:
        return db.query(ThreadFinalization).filter(ThreadFinalization.thread_id == thread_id).first()

    @staticmethod
    def create(
        db: Session,
        *,
        thread_id: UUID,
        selected_slot_id: UUID | None,
        trigger: str,
        finalized_by: str,
        finalize_policy: str,
        finalized_at: datetime,
        reason: str | None = None,
        bookings: dict | None = None,
    ) -> ThreadFinalization:
        record = ThreadFinalization(
            thread_id=thread_id,
            selected_slot_id=selected_slot_id,
            trigger=trigger,
            finalized_by=finalized_by,
            finalize_policy=finalize_policy,
            reason=reason,
            bookings=bookings,
            finalized_at=finalized_at,
        )
        db.add(record)
        db.flush()
        logger.info(
            "Recorded finalization thread=%s slot=%s trigger=%s by=%s",
            thread_id,
            selected_slot_id,
            trigger,
            finalized_by,
        )
        return record

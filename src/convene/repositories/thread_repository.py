# src/convene/repositories/thread_repository.py
import logging
from datetime import datetime
from typing import Iterable, Optional
from uuid import UUID

from opentelemetry import trace
from sqlalchemy import func, update
from sqlalchemy.orm import Session

from convene.models.group_policy import GroupPolicy
from convene.models.scheduling_thread import OPEN_STATUSES, SchedulingThread

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class ThreadRepository:
    """
    Thread Store for scheduling threads and their group policy.

    Writes are flushed, not committed: the calling service owns the transaction.
    State changes that can race (status transitions, version bumps, reproposal
    counters) are conditional UPDATEs whose rowcount says whether this caller won.
    """

    @staticmethod
    def create(
        db: Session,
        *,
        organizer_user_id: str,
        title: str,
        mode: str,
        topology: str,
        description: str | None = None,
    ) -> SchedulingThread:
        with tracer.start_as_current_span("db.create_thread") as span:
            span.set_attribute("organizer_user_id", organizer_user_id)
            span.set_attribute("thread.mode", mode)

            thread = SchedulingThread(
                organizer_user_id=organizer_user_id,
                title=title,
                description=description,
                mode=mode,
                topology=topology,
                status="draft",
                current_version=1,
            )
            db.add(thread)
            db.flush()

        logger.info(
            "Created thread id=%s mode=%s organizer=%s",
            thread.id,
            mode,
            organizer_user_id,
        )
        return thread

    @staticmethod
    def create_policy(
        db: Session,
        *,
        thread_id: UUID,
        finalize_policy: str,
        deadline_at: datetime,
        auto_finalize: bool = False,
        quorum_count: int | None = None,
        required_invitee_keys: list[str] | None = None,
        max_reproposals: int = 2,
        participant_limit: int | None = None,
    ) -> GroupPolicy:
        policy = GroupPolicy(
            thread_id=thread_id,
            finalize_policy=finalize_policy,
            deadline_at=deadline_at,
            auto_finalize=auto_finalize,
            quorum_count=quorum_count,
            required_invitee_keys=list(required_invitee_keys or []),
            max_reproposals=max_reproposals,
            reproposal_count=0,
            participant_limit=participant_limit,
        )
        db.add(policy)
        db.flush()
        return policy

    @staticmethod
    def get_by_id(db: Session, thread_id: UUID) -> Optional[SchedulingThread]:
        with tracer.start_as_current_span("db.get_thread") as span:
            span.set_attribute("thread.id", str(thread_id))
            return db.get(SchedulingThread, thread_id)

    @staticmethod
    def list_for_organizer(
        db: Session,
        organizer_user_id: str,
        *,
        status: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[SchedulingThread], int]:
        with tracer.start_as_current_span("db.list_threads") as span:
            span.set_attribute("organizer_user_id", organizer_user_id)

            query = db.query(SchedulingThread).filter(
                SchedulingThread.organizer_user_id == organizer_user_id
            )
            if status:
                query = query.filter(SchedulingThread.status == status)

            total = query.with_entities(func.count(SchedulingThread.id)).scalar() or 0
            threads = (
                query.order_by(SchedulingThread.created_at.desc())
                .limit(limit)
                .offset(offset)
                .all()
            )

        logger.debug(
            "Listed %d/%d threads for organizer=%s status=%s",
            len(threads),
            total,
            organizer_user_id,
            status,
        )
        return threads, total

    @staticmethod
    def transition_status(
        db: Session,
        thread: SchedulingThread,
        *,
        from_statuses: Iterable[str],
        to_status: str,
        **values,
    ) -> bool:
        """
        Compare-and-set the thread status.

        Returns True only for the caller whose UPDATE matched, so two racing
        finalizers cannot both confirm the same thread.
        """
        from_statuses = tuple(from_statuses)
        with tracer.start_as_current_span("db.transition_thread_status") as span:
            span.set_attribute("thread.id", str(thread.id))
            span.set_attribute("thread.to_status", to_status)

            result = db.execute(
                update(SchedulingThread)
                .where(
                    SchedulingThread.id == thread.id,
                    SchedulingThread.status.in_(from_statuses),
                )
                .values(status=to_status, **values)
                .execution_options(synchronize_session=False)
            )
            db.expire(thread)
            won = result.rowcount == 1
            span.set_attribute("thread.transition_won", won)

        logger.info(
            "Thread %s transition %s -> %s: %s",
            thread.id,
            "|".join(from_statuses),
            to_status,
            "applied" if won else "skipped",
        )
        return won

    @staticmethod
    def hold_if_status(db: Session, thread: SchedulingThread, statuses: Iterable[str]) -> bool:
        """
        Touch the thread row while its status is still one of ``statuses``.

        Run first in a transaction that must not land on a thread someone else
        has since confirmed or cancelled. The UPDATE checks the committed status,
        not the copy in this session, and the row stays locked until commit so a
        concurrent finalize or cancel waits for this transaction.
        """
        statuses = tuple(statuses)
        with tracer.start_as_current_span("db.hold_thread") as span:
            span.set_attribute("thread.id", str(thread.id))

            result = db.execute(
                update(SchedulingThread)
                .where(
                    SchedulingThread.id == thread.id,
                    SchedulingThread.status.in_(statuses),
                )
                .values(updated_at=func.now())
                .execution_options(synchronize_session=False)
            )
            db.expire(thread)
            held = result.rowcount == 1
            span.set_attribute("thread.held", held)

        if not held:
            logger.info("Thread %s is no longer %s", thread.id, "|".join(statuses))
        return held

    @staticmethod
    def advance_version(db: Session, thread: SchedulingThread, expected_version: int) -> bool:
        """
        Bump current_version by one if nobody else has since ``expected_version``
        and the thread is still draft or sent.
        """
        result = db.execute(
            update(SchedulingThread)
            .where(
                SchedulingThread.id == thread.id,
                SchedulingThread.current_version == expected_version,
                SchedulingThread.status.in_(OPEN_STATUSES),
            )
            .values(current_version=expected_version + 1)
            .execution_options(synchronize_session=False)
        )
        db.expire(thread)
        return result.rowcount == 1

    @staticmethod
    def increment_reproposal_count(db: Session, policy: GroupPolicy, expected_count: int) -> bool:
        """
        Increment reproposal_count while it is still ``expected_count`` and below
        max_reproposals. The limit is part of the WHERE clause, so the counter can
        never pass the maximum even under concurrent reproposals.
        """
        result = db.execute(
            update(GroupPolicy)
            .where(
                GroupPolicy.id == policy.id,
                GroupPolicy.reproposal_count == expected_count,
                GroupPolicy.reproposal_count < GroupPolicy.max_reproposals,
            )
            .values(reproposal_count=expected_count + 1)
            .execution_options(synchronize_session=False)
        )
        db.expire(policy)
        return result.rowcount == 1

    @staticmethod
    def delete(db: Session, thread: SchedulingThread) -> None:
        db.delete(thread)
        db.flush()
        logger.info("Deleted thread id=%s", thread.id)

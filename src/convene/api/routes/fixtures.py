"""
Test fixtures for end-to-end runs. Disabled when ENVIRONMENT=production.

Endpoints:
- POST /test/fixtures/one-to-many-candidates - Create a sent thread with invites
- DELETE /test/fixtures/one-to-many/{thread_id} - Delete a thread and its rows
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from convene.config import is_production
from convene.db.database import get_db
from convene.errors import Forbidden, NotFound
from convene.repositories.thread_repository import ThreadRepository
from convene.services.thread_service import ThreadService, invite_url

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/test/fixtures", tags=["fixtures"])


class CandidatesFixtureRequest(BaseModel):
    organizer_user_id: Optional[str] = None
    invitee_count: int = 3
    title: str = "E2E 1対Nテスト"
    slot_count: int = 3
    start_offset_hours: int = 48
    duration_minutes: int = 60
    deadline_hours: int = 72
    mode: str = "candidates"
    finalize_policy: str = "organizer_decides"
    quorum_count: Optional[int] = None
    auto_finalize: bool = False


class FixtureInvite(BaseModel):
    invite_id: UUID
    email: str
    name: Optional[str]
    token: str
    url: str


class FixtureSlot(BaseModel):
    slot_id: UUID
    start_at: datetime
    end_at: datetime
    label: Optional[str]


class CandidatesFixtureResponse(BaseModel):
    success: bool = True
    thread_id: UUID
    organizer_user_id: str
    invites: List[FixtureInvite]
    slots: List[FixtureSlot]
    deadline_at: datetime


def require_non_production():
    if is_production():
        logger.warning("Attempted to use test fixtures in production")
        raise Forbidden("Forbidden in production")


@router.post(
    "/one-to-many-candidates",
    response_model=CandidatesFixtureResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_non_production)],
)
def create_one_to_many_fixture(
    request: Optional[CandidatesFixtureRequest] = Body(None),
    db: Session = Depends(get_db),
):
    request = request or CandidatesFixtureRequest()
    organizer_id = request.organizer_user_id or f"e2e-organizer-{uuid.uuid4().hex[:12]}"

    base = (datetime.now(timezone.utc) + timedelta(days=1)).replace(hour=1, minute=0, second=0, microsecond=0)
    slots = []
    for i in range(request.slot_count):
        start_at = base + timedelta(hours=request.start_offset_hours + i * 24)
        slots.append(
            {
                "start_at": start_at,
                "end_at": start_at + timedelta(minutes=request.duration_minutes),
                "label": f"候補{i + 1}",
            }
        )
    invitees = [
        {"email": f"e2e-invitee-{i + 1}@e2e-test.example.com", "name": f"E2Eテスト参加者{i + 1}"}
        for i in range(request.invitee_count)
    ]

    service = ThreadService(db)
    thread = service.prepare(
        organizer_id,
        title=request.title,
        description="E2Eテスト用の1対Nスケジュールです",
        mode=request.mode,
        slots=slots,
        invitees=invitees,
        finalize_policy=request.finalize_policy,
        quorum_count=request.quorum_count,
        auto_finalize=request.auto_finalize,
        deadline_hours=request.deadline_hours,
    )
    service.send(thread)

    logger.debug(
        "E2E fixture created thread=%s slots=%d invites=%d",
        thread.id,
        len(thread.slots),
        len(thread.invites),
    )
    return CandidatesFixtureResponse(
        thread_id=thread.id,
        organizer_user_id=organizer_id,
        invites=[
            FixtureInvite(
                invite_id=invite.id,
                email=invite.email,
                name=invite.name,
                token=invite.token,
                url=invite_url(invite.token),
            )
            for invite in thread.invites
        ],
        slots=[
            FixtureSlot(slot_id=slot.id, start_at=slot.start_at, end_at=slot.end_at, label=slot.label)
            for slot in thread.slots
        ],
        deadline_at=thread.policy.deadline_at,
    )


@router.delete("/one-to-many/{thread_id}", dependencies=[Depends(require_non_production)])
def delete_one_to_many_fixture(thread_id: UUID, db: Session = Depends(get_db)):
    thread = ThreadRepository.get_by_id(db, thread_id)
    if thread is None:
        raise NotFound("Thread not found")
    ThreadRepository.delete(db, thread)
    db.commit()
    logger.debug("E2E fixture deleted thread=%s", thread_id)
    return {"success": True, "deleted_thread_id": str(thread_id)}

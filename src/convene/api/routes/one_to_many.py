"""
API routes for organizer-side scheduling threads.

Endpoints:
- POST /api/one-to-many/prepare - Create a draft thread
- GET /api/one-to-many - List the organizer's threads
- GET /api/one-to-many/{thread_id} - Thread detail
- GET /api/one-to-many/{thread_id}/summary - Response summary and evaluation
- POST /api/one-to-many/{thread_id}/send - Send invites (draft -> sent)
- POST /api/one-to-many/{thread_id}/finalize - Confirm a slot
- POST /api/one-to-many/{thread_id}/repropose - Add a new generation of slots
- POST /api/one-to-many/{thread_id}/cancel - Cancel the thread
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, status
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

from convene.auth.organizer import get_current_user_id
from convene.db.database import get_db
from convene.services.finalization_policy import Evaluation
from convene.services.finalization_service import FinalizationService
from convene.services.reproposal_service import ReproposalService
from convene.services.thread_service import ThreadService, invite_url

router = APIRouter(prefix="/api/one-to-many", tags=["one-to-many"])


# ==================== Request/Response Models ====================

class SlotInput(BaseModel):
    start_at: datetime
    end_at: datetime
    label: Optional[str] = None
    timezone: Optional[str] = None


class InviteeInput(BaseModel):
    email: EmailStr
    name: Optional[str] = None


class PrepareThreadRequest(BaseModel):
    """Request to create a draft scheduling thread."""
    title: str
    description: Optional[str] = None
    mode: str
    slots: List[SlotInput] = []
    invitees: List[InviteeInput] = []
    emails: List[EmailStr] = []
    finalize_policy: str = "organizer_decides"
    quorum_count: Optional[int] = None
    required_emails: List[EmailStr] = []
    auto_finalize: bool = False
    deadline_hours: Optional[int] = None
    max_reproposals: Optional[int] = None
    participant_limit: Optional[int] = None

    class Config:
        json_schema_extra = {
            "example": {
                "title": "Quarterly review",
                "mode": "candidates",
                "slots": [
                    {"start_at": "2026-11-02T01:00:00Z", "end_at": "2026-11-02T02:00:00Z"},
                    {"start_at": "2026-11-03T01:00:00Z", "end_at": "2026-11-03T02:00:00Z"},
                ],
                "emails": ["alice@example.com", "bob@example.com"],
                "finalize_policy": "quorum",
                "quorum_count": 2,
                "auto_finalize": True,
            }
        }


class FinalizeRequest(BaseModel):
    selected_slot_id: UUID
    reason: Optional[str] = None


class ReproposeRequest(BaseModel):
    new_slots: List[SlotInput]
    new_deadline_hours: Optional[int] = None
    message: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class SchedulingThreadResponse(BaseModel):
    id: UUID
    organizer_user_id: str
    title: str
    description: Optional[str]
    status: str
    mode: str
    topology: str
    current_version: int
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    sent_at: Optional[datetime]
    cancelled_at: Optional[datetime]

    class Config:
        from_attributes = True


class PolicyResponse(BaseModel):
    finalize_policy: str
    quorum_count: Optional[int]
    required_invitee_keys: List[str]
    auto_finalize: bool
    deadline_at: datetime
    max_reproposals: int
    reproposal_count: int
    participant_limit: Optional[int]

    class Config:
        from_attributes = True


class SlotResponse(BaseModel):
    id: UUID
    start_at: datetime
    end_at: datetime
    timezone: str
    label: Optional[str]
    proposal_version: int
    slot_status: str
    booked_by_invite_id: Optional[UUID]
    booked_at: Optional[datetime]

    class Config:
        from_attributes = True


class InviteResponse(BaseModel):
    id: UUID
    invitee_key: str
    email: str
    name: Optional[str]
    status: str
    token: str
    responded_at: Optional[datetime]
    expires_at: datetime
    needs_re_response: bool

    class Config:
        from_attributes = True


class AnswerResponse(BaseModel):
    id: UUID
    invite_id: UUID
    answer: str
    selected_slot_id: Optional[UUID]
    comment: Optional[str]
    responded_at: datetime
    response_version: int

    class Config:
        from_attributes = True


class FinalizationResponse(BaseModel):
    selected_slot_id: Optional[UUID]
    trigger: str
    finalized_by: str
    finalize_policy: str
    reason: Optional[str]
    bookings: Optional[Dict[str, str]]
    finalized_at: datetime

    class Config:
        from_attributes = True


class EvaluationResponse(BaseModel):
    met: bool
    reason: str
    recommended_slot_id: Optional[UUID]
    slots_exhausted: bool
    slots_remaining: int


class ThreadDetailResponse(BaseModel):
    thread: SchedulingThreadResponse
    policy: PolicyResponse
    slots: List[SlotResponse]
    invites: List[InviteResponse]
    responses: List[AnswerResponse]
    evaluation: EvaluationResponse
    finalization: Optional[FinalizationResponse]


class SlotSummary(BaseModel):
    slot_id: UUID
    start_at: datetime
    end_at: datetime
    label: Optional[str]
    proposal_version: int
    slot_status: str
    ok_count: int


class ThreadSummaryResponse(BaseModel):
    thread_id: UUID
    status: str
    current_version: int
    total_invited: int
    responded: int
    pending_count: int
    ok_count: int
    no_count: int
    maybe_count: int
    needs_re_response_count: int
    by_slot: List[SlotSummary]
    evaluation: EvaluationResponse


class ThreadListResponse(BaseModel):
    threads: List[SchedulingThreadResponse]
    total: int
    limit: int
    offset: int


class SentInvite(BaseModel):
    email: str
    name: Optional[str]
    url: str


class SendResponse(BaseModel):
    thread: SchedulingThreadResponse
    invites: List[SentInvite]


class FinalizeResponse(BaseModel):
    thread: SchedulingThreadResponse
    finalization: FinalizationResponse
    already_confirmed: bool


class ReproposeResponse(BaseModel):
    success: bool = True
    thread_id: UUID
    reproposal_count: int
    max_reproposals: int
    new_slots_count: int
    current_version: int
    needs_re_response_count: int


# ==================== Helpers ====================

def evaluation_payload(evaluation: Optional[Evaluation]) -> Optional[EvaluationResponse]:
    if evaluation is None:
        return None
    return EvaluationResponse(**evaluation.to_dict())


def _slot_inputs(slots: List[SlotInput]) -> List[Dict[str, Any]]:
    return [slot.model_dump() for slot in slots]


# ==================== Endpoints ====================

@router.post("/prepare", response_model=ThreadDetailResponse, status_code=status.HTTP_201_CREATED)
def prepare_thread(
    request: PrepareThreadRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Create a draft thread with its policy, slots and invites.

    Invitees come from ``invitees`` and ``emails`` combined; duplicates are dropped.
    """
    service = ThreadService(db)
    invitees = [invitee.model_dump() for invitee in request.invitees]
    invitees.extend({"email": email} for email in request.emails)

    thread = service.prepare(
        user_id,
        title=request.title,
        description=request.description,
        mode=request.mode,
        slots=_slot_inputs(request.slots),
        invitees=invitees,
        finalize_policy=request.finalize_policy,
        quorum_count=request.quorum_count,
        required_emails=list(request.required_emails),
        auto_finalize=request.auto_finalize,
        deadline_hours=request.deadline_hours,
        max_reproposals=request.max_reproposals,
        participant_limit=request.participant_limit,
    )
    return _detail_response(service, thread)


@router.get("", response_model=ThreadListResponse)
def list_threads(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    threads, total = ThreadService(db).list_threads(user_id, status=status_filter, limit=limit, offset=offset)
    return ThreadListResponse(
        threads=[SchedulingThreadResponse.model_validate(thread) for thread in threads],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{thread_id}", response_model=ThreadDetailResponse)
def get_thread(
    thread_id: UUID,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    service = ThreadService(db)
    thread = service.get_owned_thread(thread_id, user_id)
    return _detail_response(service, thread)


@router.get("/{thread_id}/summary", response_model=ThreadSummaryResponse)
def get_thread_summary(
    thread_id: UUID,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    service = ThreadService(db)
    thread = service.get_owned_thread(thread_id, user_id)
    summary = service.summary(thread)
    evaluation = summary.evaluation

    return ThreadSummaryResponse(
        thread_id=thread.id,
        status=thread.status,
        current_version=thread.current_version,
        total_invited=evaluation.invitee_count,
        responded=evaluation.responded_count,
        pending_count=evaluation.pending_count,
        ok_count=evaluation.ok_count,
        no_count=evaluation.no_count,
        maybe_count=evaluation.maybe_count,
        needs_re_response_count=summary.needs_re_response_count,
        by_slot=[
            SlotSummary(
                slot_id=slot.id,
                start_at=slot.start_at,
                end_at=slot.end_at,
                label=slot.label,
                proposal_version=slot.proposal_version,
                slot_status=slot.slot_status,
                ok_count=evaluation.slot_ok_counts.get(slot.id, 0),
            )
            for slot in summary.slots
        ],
        evaluation=evaluation_payload(evaluation),
    )


@router.post("/{thread_id}/send", response_model=SendResponse)
def send_thread(
    thread_id: UUID,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    service = ThreadService(db)
    thread = service.send(service.get_owned_thread(thread_id, user_id))
    return SendResponse(
        thread=SchedulingThreadResponse.model_validate(thread),
        invites=[
            SentInvite(email=invite.email, name=invite.name, url=invite_url(invite.token))
            for invite in thread.invites
        ],
    )


@router.post("/{thread_id}/finalize", response_model=FinalizeResponse)
def finalize_thread(
    thread_id: UUID,
    request: FinalizeRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Confirm the thread on ``selected_slot_id``, whatever the finalize policy says.

    Repeating the call with the same slot returns the existing finalization.
    """
    thread = ThreadService(db).get_owned_thread(thread_id, user_id)
    result = FinalizationService(db).finalize(
        thread,
        organizer_user_id=user_id,
        slot_id=request.selected_slot_id,
        reason=request.reason,
    )
    db.refresh(thread)
    return FinalizeResponse(
        thread=SchedulingThreadResponse.model_validate(thread),
        finalization=FinalizationResponse.model_validate(result.finalization),
        already_confirmed=result.already_confirmed,
    )


@router.post("/{thread_id}/repropose", response_model=ReproposeResponse)
def repropose_thread(
    thread_id: UUID,
    request: ReproposeRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    thread = ThreadService(db).get_owned_thread(thread_id, user_id)
    result = ReproposalService(db).repropose(
        thread,
        _slot_inputs(request.new_slots),
        new_deadline_hours=request.new_deadline_hours,
        message=request.message,
    )
    return ReproposeResponse(
        thread_id=thread.id,
        reproposal_count=result.reproposal_count,
        max_reproposals=result.max_reproposals,
        new_slots_count=result.new_slots_count,
        current_version=result.current_version,
        needs_re_response_count=result.needs_re_response_count,
    )


@router.post("/{thread_id}/cancel", response_model=SchedulingThreadResponse)
def cancel_thread(
    thread_id: UUID,
    request: Optional[CancelRequest] = Body(None),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    service = ThreadService(db)
    thread = service.cancel(
        service.get_owned_thread(thread_id, user_id),
        reason=request.reason if request else None,
    )
    return SchedulingThreadResponse.model_validate(thread)


def _detail_response(service: ThreadService, thread) -> ThreadDetailResponse:
    detail = service.detail(thread)
    return ThreadDetailResponse(
        thread=SchedulingThreadResponse.model_validate(detail.thread),
        policy=PolicyResponse.model_validate(detail.thread.policy),
        slots=[SlotResponse.model_validate(slot) for slot in detail.slots],
        invites=[InviteResponse.model_validate(invite) for invite in detail.invites],
        responses=[AnswerResponse.model_validate(response) for response in detail.current_responses],
        evaluation=evaluation_payload(detail.evaluation),
        finalization=FinalizationResponse.model_validate(detail.finalization) if detail.finalization else None,
    )

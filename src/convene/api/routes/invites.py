"""
Token-scoped routes for invitees. The invite token is the only credential.

Endpoints:
- GET /g/{token} - Thread state as seen by this invitee
- POST /g/{token}/respond - Record or update this invitee's answer
"""
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from convene.api.routes.one_to_many import (
    AnswerResponse,
    EvaluationResponse,
    FinalizationResponse,
    evaluation_payload,
)
from convene.db.database import get_db
from convene.services.response_service import ResponseService
from convene.services.thread_service import ThreadService

router = APIRouter(prefix="/g", tags=["invites"])


class RespondRequest(BaseModel):
    answer: str
    selected_slot_id: Optional[UUID] = None
    comment: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "answer": "ok",
                "selected_slot_id": "3f1c7a52-9d0e-4c55-8a8b-2f4c6e1d9b10",
                "comment": "Either time works, this one is best",
            }
        }


class InviteThreadInfo(BaseModel):
    id: UUID
    title: str
    description: Optional[str]
    status: str
    mode: str
    current_version: int
    deadline_at: datetime


class InviteeInfo(BaseModel):
    email: str
    name: Optional[str]
    status: str
    responded_at: Optional[datetime]
    expires_at: datetime
    needs_re_response: bool


class SlotAvailability(BaseModel):
    id: UUID
    start_at: datetime
    end_at: datetime
    timezone: str
    label: Optional[str]
    proposal_version: int
    slot_status: str
    is_available: bool
    booked_by_me: bool


class InviteViewResponse(BaseModel):
    thread: InviteThreadInfo
    invitee: InviteeInfo
    slots: List[SlotAvailability]
    current_response: Optional[AnswerResponse]
    finalization: Optional[FinalizationResponse]


class RespondResponse(BaseModel):
    success: bool = True
    read_only: bool
    confirmed: bool
    response: Optional[AnswerResponse]
    evaluation: Optional[EvaluationResponse]
    finalization: Optional[FinalizationResponse]


@router.get("/{token}", response_model=InviteViewResponse)
def view_invite(token: str, db: Session = Depends(get_db)):
    """
    Thread state for the invitee holding ``token``.

    Slot availability is a display hint; a claim is re-checked when the
    response is written.
    """
    view = ThreadService(db).invite_view(token)
    thread = view.thread
    invite = view.invite

    return InviteViewResponse(
        thread=InviteThreadInfo(
            id=thread.id,
            title=thread.title,
            description=thread.description,
            status=thread.status,
            mode=thread.mode,
            current_version=thread.current_version,
            deadline_at=thread.policy.deadline_at,
        ),
        invitee=InviteeInfo(
            email=invite.email,
            name=invite.name,
            status=invite.status,
            responded_at=invite.responded_at,
            expires_at=invite.expires_at,
            needs_re_response=invite.needs_re_response,
        ),
        slots=[
            SlotAvailability(
                id=entry["slot"].id,
                start_at=entry["slot"].start_at,
                end_at=entry["slot"].end_at,
                timezone=entry["slot"].timezone,
                label=entry["slot"].label,
                proposal_version=entry["slot"].proposal_version,
                slot_status=entry["slot_status"],
                is_available=entry["is_available"],
                booked_by_me=entry["booked_by_me"],
            )
            for entry in view.slots
        ],
        current_response=AnswerResponse.model_validate(view.current_response) if view.current_response else None,
        finalization=FinalizationResponse.model_validate(view.finalization) if view.finalization else None,
    )


@router.post("/{token}/respond", response_model=RespondResponse)
def respond(token: str, request: RespondRequest, db: Session = Depends(get_db)):
    """
    Record the invitee's answer for the thread's current proposal generation.

    Answering again replaces the earlier answer. On a confirmed thread the
    existing answer is returned unchanged with ``read_only`` set.
    """
    result = ResponseService(db).record_response(
        token,
        request.answer,
        selected_slot_id=request.selected_slot_id,
        comment=request.comment,
    )
    return RespondResponse(
        read_only=result.read_only,
        confirmed=result.confirmed,
        response=AnswerResponse.model_validate(result.response) if result.response else None,
        evaluation=evaluation_payload(result.evaluation),
        finalization=FinalizationResponse.model_validate(result.finalization) if result.finalization else None,
    )

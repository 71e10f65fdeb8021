"""
Organizer inbox: notifications written by the inbox notifier.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from convene.auth.organizer import get_current_user_id
from convene.db.database import get_db
from convene.repositories.inbox_repository import InboxRepository

router = APIRouter(prefix="/api/inbox", tags=["inbox"])


class InboxItemResponse(BaseModel):
    id: UUID
    type: str
    title: str
    message: Optional[str]
    action_type: Optional[str]
    action_target_id: Optional[str]
    action_url: Optional[str]
    priority: str
    payload: Optional[Dict[str, Any]]
    is_read: bool
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


@router.get("", response_model=List[InboxItemResponse])
def list_inbox(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return InboxRepository.list_for_user(db, user_id, unread_only=unread_only, limit=limit, offset=offset)

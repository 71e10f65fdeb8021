# src/convene/repositories/inbox_repository.py
import logging

from sqlalchemy.orm import Session

from convene.models.inbox_item import InboxItem

logger = logging.getLogger(__name__)


class InboxRepository:

    @staticmethod
    def create(
        db: Session,
        *,
        user_id: str,
        type: str,
        title: str,
        message: str | None = None,
        action_type: str | None = None,
        action_target_id: str | None = None,
        action_url: str | None = None,
        priority: str = "normal",
        payload: dict | None = None,
    ) -> InboxItem:
        item = InboxItem(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            action_type=action_type,
            action_target_id=action_target_id,
            action_url=action_url,
            priority=priority,
            payload=payload,
            is_read=False,
        )
        db.add(item)
        db.flush()
        logger.debug("Created inbox item type=%s user=%s", type, user_id)
        return item

    @staticmethod
    def list_for_user(
        db: Session,
        user_id: str,
        *,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[InboxItem]:
        query = db.query(InboxItem).filter(InboxItem.user_id == user_id)
        if unread_only:
            query = query.filter(InboxItem.is_read.is_(False))
        return query.order_by(InboxItem.created_at.desc()).limit(limit).offset(offset).all()

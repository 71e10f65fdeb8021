"""
InboxItem model - organizer-facing notification written by the inbox notifier.
"""
from sqlalchemy import Column, String, Text, Boolean, JSON, Index

from convene.db.database import Base
from convene.models.base_model import uuid_pk, timestamp_created


class InboxItem(Base):
    __tablename__ = "inbox_items"

    id = uuid_pk()
    user_id = Column(String(255), nullable=False)

    type = Column(String(64), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=True)

    action_type = Column(String(64), nullable=True)
    action_target_id = Column(String(255), nullable=True)
    action_url = Column(String, nullable=True)
    priority = Column(String(16), nullable=False, default="normal")

    payload = Column(JSON, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)

    created_at = timestamp_created()

    __table_args__ = (
        Index("ix_inbox_items_user_created", "user_id", "created_at"),
    )

    def __repr__(self):
        return f"<InboxItem(user_id={self.user_id}, type={self.type})>"

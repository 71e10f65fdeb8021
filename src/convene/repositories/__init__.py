# src/convene/repositories/__init__.py
from .thread_repository import ThreadRepository
from .slot_repository import SlotRepository
from .invite_repository import InviteRepository
from .response_repository import ResponseRepository
from .finalization_repository import FinalizationRepository
from .inbox_repository import InboxRepository

__all__ = [
    "ThreadRepository",
    "SlotRepository",
    "InviteRepository",
    "ResponseRepository",
    "FinalizationRepository",
    "InboxRepository",
]

from convene.db.database import Base

# Import all models so Alembic can discover them
from .scheduling_thread import SchedulingThread
from .group_policy import GroupPolicy
from .scheduling_slot import SchedulingSlot
from .thread_invite import ThreadInvite
from .thread_response import ThreadResponse
from .thread_finalization import ThreadFinalization
from .inbox_item import InboxItem

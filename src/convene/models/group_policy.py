"""
GroupPolicy model - finalize conditions attached 1:1 to a scheduling thread.
"""
from sqlalchemy import Column, String, Integer, Boolean, JSON, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import relationship

from convene.db.database import Base
from convene.models.base_model import uuid_pk, uuid_fk, aware_datetime

FINALIZE_POLICIES = ("organizer_decides", "quorum", "required_people", "all_required")


class GroupPolicy(Base):
    __tablename__ = "group_policies"

    id = uuid_pk()
    thread_id = uuid_fk("scheduling_threads", nullable=False)

    finalize_policy = Column(String(32), nullable=False, default="organizer_decides")
    quorum_count = Column(Integer, nullable=True)
    required_invitee_keys = Column(JSON, nullable=False, default=list)
    auto_finalize = Column(Boolean, nullable=False, default=False)

    deadline_at = aware_datetime(nullable=False)

    max_reproposals = Column(Integer, nullable=False, default=2)
    reproposal_count = Column(Integer, nullable=False, default=0)

    participant_limit = Column(Integer, nullable=True)

    thread = relationship("SchedulingThread", back_populates="policy")

    __table_args__ = (
        UniqueConstraint("thread_id", name="uq_group_policies_thread"),
        CheckConstraint(f"finalize_policy IN {FINALIZE_POLICIES}", name="ck_group_policies_finalize_policy"),
        CheckConstraint("reproposal_count >= 0", name="ck_group_policies_reproposal_count_min"),
        CheckConstraint("reproposal_count <= max_reproposals", name="ck_group_policies_reproposal_count_max"),
        CheckConstraint("quorum_count IS NULL OR quorum_count >= 1", name="ck_group_policies_quorum"),
        CheckConstraint("max_reproposals >= 0", name="ck_group_policies_max_reproposals"),
        CheckConstraint("participant_limit IS NULL OR participant_limit >= 1", name="ck_group_policies_participant_limit"),
    )

    def __repr__(self):
        return (
            f"<GroupPolicy(thread_id={self.thread_id}, policy={self.finalize_policy}, "
            f"auto={self.auto_finalize}, reproposals={self.reproposal_count}/{self.max_reproposals})>"
        )

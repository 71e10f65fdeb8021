"""create scheduling tables

Revision ID: 4c1e9a7d2b60
Revises:
Create Date: 2026-10-12 09:14:52.308114

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "4c1e9a7d2b60"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _uuid():
    return postgresql.UUID(as_uuid=True)


def upgrade() -> None:
    op.create_table(
        "scheduling_threads",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("organizer_user_id", sa.String(255), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="draft"),
        sa.Column("mode", sa.String(32), nullable=False),
        sa.Column("topology", sa.String(32), nullable=False, server_default="one_to_many"),
        sa.Column("current_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('draft', 'sent', 'confirmed', 'cancelled')",
            name="ck_scheduling_threads_status",
        ),
        sa.CheckConstraint(
            "mode IN ('fixed', 'candidates', 'open_slots', 'range_auto')",
            name="ck_scheduling_threads_mode",
        ),
        sa.CheckConstraint(
            "topology IN ('one_on_one', 'one_to_many')",
            name="ck_scheduling_threads_topology",
        ),
        sa.CheckConstraint("current_version >= 1", name="ck_scheduling_threads_version"),
    )
    op.create_index("ix_scheduling_threads_organizer_user_id", "scheduling_threads", ["organizer_user_id"])
    op.create_index("ix_scheduling_threads_organizer_status", "scheduling_threads", ["organizer_user_id", "status"])

    op.create_table(
        "group_policies",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column(
            "thread_id",
            _uuid(),
            sa.ForeignKey("scheduling_threads.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("finalize_policy", sa.String(32), nullable=False, server_default="organizer_decides"),
        sa.Column("quorum_count", sa.Integer(), nullable=True),
        sa.Column("required_invitee_keys", sa.JSON(), nullable=False),
        sa.Column("auto_finalize", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deadline_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("max_reproposals", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("reproposal_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("participant_limit", sa.Integer(), nullable=True),
        sa.CheckConstraint(
            "finalize_policy IN ('organizer_decides', 'quorum', 'required_people', 'all_required')",
            name="ck_group_policies_finalize_policy",
        ),
        sa.CheckConstraint("reproposal_count >= 0", name="ck_group_policies_reproposal_count_min"),
        sa.CheckConstraint("reproposal_count <= max_reproposals", name="ck_group_policies_reproposal_count_max"),
        sa.CheckConstraint("quorum_count IS NULL OR quorum_count >= 1", name="ck_group_policies_quorum"),
        sa.CheckConstraint("max_reproposals >= 0", name="ck_group_policies_max_reproposals"),
        sa.CheckConstraint(
            "participant_limit IS NULL OR participant_limit >= 1",
            name="ck_group_policies_participant_limit",
        ),
        sa.UniqueConstraint("thread_id", name="uq_group_policies_thread"),
    )
    op.create_index("ix_group_policies_thread_id", "group_policies", ["thread_id"])

    op.create_table(
        "thread_invites",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column(
            "thread_id",
            _uuid(),
            sa.ForeignKey("scheduling_threads.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("invitee_key", sa.String(64), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("token", sa.String(255), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("needs_re_response", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("status IN ('pending', 'accepted', 'declined')", name="ck_thread_invites_status"),
        sa.UniqueConstraint("thread_id", "invitee_key", name="uq_thread_invites_thread_invitee"),
    )
    op.create_index("ix_thread_invites_thread_id", "thread_invites", ["thread_id"])
    op.create_index("ix_thread_invites_token", "thread_invites", ["token"], unique=True)

    op.create_table(
        "scheduling_slots",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column(
            "thread_id",
            _uuid(),
            sa.ForeignKey("scheduling_threads.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="Asia/Tokyo"),
        sa.Column("label", sa.String(255), nullable=True),
        sa.Column("proposal_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("slot_status", sa.String(32), nullable=False, server_default="open"),
        sa.Column(
            "booked_by_invite_id",
            _uuid(),
            sa.ForeignKey("thread_invites.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("booked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("row_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("start_at < end_at", name="ck_scheduling_slots_interval"),
        sa.CheckConstraint(
            "slot_status IN ('open', 'reserved', 'booked', 'cancelled')",
            name="ck_scheduling_slots_status",
        ),
    )
    op.create_index("ix_scheduling_slots_thread_id", "scheduling_slots", ["thread_id"])
    op.create_index("ix_scheduling_slots_booked_by_invite_id", "scheduling_slots", ["booked_by_invite_id"])
    op.create_index("ix_scheduling_slots_thread_start", "scheduling_slots", ["thread_id", "start_at"])

    op.create_table(
        "thread_responses",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column(
            "thread_id",
            _uuid(),
            sa.ForeignKey("scheduling_threads.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "invite_id",
            _uuid(),
            sa.ForeignKey("thread_invites.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("answer", sa.String(16), nullable=False),
        sa.Column(
            "selected_slot_id",
            _uuid(),
            sa.ForeignKey("scheduling_slots.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("response_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("answer IN ('ok', 'no', 'maybe')", name="ck_thread_responses_answer"),
        sa.UniqueConstraint("invite_id", "response_version", name="uq_thread_responses_invite_version"),
    )
    op.create_index("ix_thread_responses_thread_id", "thread_responses", ["thread_id"])
    op.create_index("ix_thread_responses_invite_id", "thread_responses", ["invite_id"])
    op.create_index("ix_thread_responses_selected_slot_id", "thread_responses", ["selected_slot_id"])
    op.create_index("ix_thread_responses_thread_answer", "thread_responses", ["thread_id", "answer"])

    op.create_table(
        "thread_finalizations",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column(
            "thread_id",
            _uuid(),
            sa.ForeignKey("scheduling_threads.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "selected_slot_id",
            _uuid(),
            sa.ForeignKey("scheduling_slots.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("trigger", sa.String(16), nullable=False),
        sa.Column("finalized_by", sa.String(255), nullable=False),
        sa.Column("finalize_policy", sa.String(32), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("bookings", sa.JSON(), nullable=True),
        sa.Column("finalized_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("thread_id", name="uq_thread_finalizations_thread"),
        sa.CheckConstraint("trigger IN ('manual', 'auto')", name="ck_thread_finalizations_trigger"),
    )
    op.create_index("ix_thread_finalizations_thread_id", "thread_finalizations", ["thread_id"])
    op.create_index("ix_thread_finalizations_selected_slot_id", "thread_finalizations", ["selected_slot_id"])

    op.create_table(
        "inbox_items",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("type", sa.String(64), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("action_type", sa.String(64), nullable=True),
        sa.Column("action_target_id", sa.String(255), nullable=True),
        sa.Column("action_url", sa.String(), nullable=True),
        sa.Column("priority", sa.String(16), nullable=False, server_default="normal"),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_inbox_items_user_created", "inbox_items", ["user_id", "created_at"])


def downgrade() -> None:
    op.drop_table("inbox_items")
    op.drop_table("thread_finalizations")
    op.drop_table("thread_responses")
    op.drop_table("scheduling_slots")
    op.drop_table("thread_invites")
    op.drop_table("group_policies")
    op.drop_table("scheduling_threads")

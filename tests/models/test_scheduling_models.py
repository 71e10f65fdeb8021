"""
Unit tests for the scheduling models.

Tests defaults, constraints and relationships.
"""
from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from convene.models.group_policy import GroupPolicy
from convene.models.scheduling_slot import SchedulingSlot
from convene.models.scheduling_thread import SchedulingThread
from convene.models.thread_finalization import ThreadFinalization
from convene.models.thread_invite import ThreadInvite
from convene.models.thread_response import ThreadResponse
from convene.utils.datetime_utils import utcnow


@pytest.fixture
def thread(db):
    thread = SchedulingThread(organizer_user_id="user-1", title="Sync", mode="candidates")
    db.add(thread)
    db.commit()
    db.refresh(thread)
    return thread


def _invite(db, thread, key="e:0000000000000001", token="tok-1"):
    invite = ThreadInvite(
        thread_id=thread.id,
        invitee_key=key,
        email=f"{key[-4:]}@example.com",
        token=token,
        expires_at=utcnow() + timedelta(days=1),
    )
    db.add(invite)
    db.commit()
    return invite


def test_thread_defaults(thread):
    assert thread.id is not None
    assert thread.status == "draft"
    assert thread.topology == "one_to_many"
    assert thread.current_version == 1
    assert thread.created_at is not None
    assert thread.is_terminal is False
    assert thread.requires_slot_selection is True


def test_thread_terminal_and_fixed_mode():
    assert SchedulingThread(status="cancelled").is_terminal is True
    assert SchedulingThread(mode="fixed").requires_slot_selection is False


def test_thread_rejects_unknown_status(db, thread):
    thread.status = "archived"
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_slot_interval_constraint(db, thread):
    start = utcnow()
    db.add(SchedulingSlot(thread_id=thread.id, start_at=start, end_at=start - timedelta(hours=1)))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_invitee_key_unique_per_thread(db, thread):
    _invite(db, thread)
    with pytest.raises(IntegrityError):
        _invite(db, thread, token="tok-2")
    db.rollback()


def test_one_response_per_invite_and_version(db, thread):
    invite = _invite(db, thread)
    for _ in range(2):
        db.add(
            ThreadResponse(
                thread_id=thread.id,
                invite_id=invite.id,
                answer="ok",
                responded_at=utcnow(),
                response_version=1,
            )
        )
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_single_finalization_per_thread(db, thread):
    for _ in range(2):
        db.add(
            ThreadFinalization(
                thread_id=thread.id,
                trigger="manual",
                finalized_by="user-1",
                finalize_policy="organizer_decides",
                finalized_at=utcnow(),
            )
        )
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_reproposal_count_cannot_exceed_max(db, thread):
    db.add(
        GroupPolicy(
            thread_id=thread.id,
            deadline_at=utcnow() + timedelta(days=1),
            max_reproposals=1,
            reproposal_count=2,
            required_invitee_keys=[],
        )
    )
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def _policy(thread, **overrides):
    values = {
        "thread_id": thread.id,
        "deadline_at": utcnow() + timedelta(days=1),
        "required_invitee_keys": [],
    }
    values.update(overrides)
    return GroupPolicy(**values)


def test_single_policy_per_thread(db, thread):
    db.add(_policy(thread))
    db.commit()

    db.add(_policy(thread, finalize_policy="quorum", quorum_count=2))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


@pytest.mark.parametrize("overrides", [{"max_reproposals": -1}, {"participant_limit": 0}])
def test_policy_limits_constraint(db, thread, overrides):
    db.add(_policy(thread, **overrides))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_invite_expiry(db, thread):
    invite = _invite(db, thread)
    assert invite.is_expired is False

    invite.expires_at = utcnow() - timedelta(seconds=1)
    assert invite.is_expired is True


def test_thread_relationships(db, thread):
    _invite(db, thread)
    start = utcnow() + timedelta(days=1)
    db.add(SchedulingSlot(thread_id=thread.id, start_at=start, end_at=start + timedelta(hours=1)))
    db.commit()
    db.refresh(thread)

    assert len(thread.invites) == 1
    assert len(thread.slots) == 1
    assert thread.slots[0].slot_status == "open"
    assert thread.slots[0].row_version == 1
    assert thread.invites[0].status == "pending"

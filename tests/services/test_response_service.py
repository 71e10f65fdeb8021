from datetime import timedelta

import pytest

from convene.errors import (
    Expired,
    InvalidToken,
    SlotAlreadyBooked,
    SlotRequired,
    ThreadNotActive,
    ValidationError,
)
from convene.models.thread_response import ThreadResponse
from convene.repositories.response_repository import ResponseRepository
from convene.services.response_service import ResponseService
from convene.services.thread_service import ThreadService
from convene.utils.datetime_utils import utcnow


def _invites(thread):
    return sorted(thread.invites, key=lambda invite: invite.email)


def test_unknown_token_is_rejected(db, notifier):
    with pytest.raises(InvalidToken):
        ResponseService(db, notifier=notifier).record_response("no-such-token", "ok")


def test_expired_invite_is_rejected(db, notifier, make_thread):
    thread = make_thread()
    invite = _invites(thread)[0]
    invite.expires_at = utcnow() - timedelta(minutes=1)
    db.commit()

    with pytest.raises(Expired):
        ResponseService(db, notifier=notifier).record_response(invite.token, "no")


def test_draft_thread_does_not_accept_responses(db, notifier, make_thread):
    thread = make_thread(send=False)
    invite = _invites(thread)[0]

    with pytest.raises(ThreadNotActive):
        ResponseService(db, notifier=notifier).record_response(invite.token, "no")


def test_cancelled_thread_does_not_accept_responses(db, notifier, make_thread):
    thread = make_thread()
    ThreadService(db, notifier=notifier).cancel(thread)
    invite = _invites(thread)[0]

    with pytest.raises(ThreadNotActive):
        ResponseService(db, notifier=notifier).record_response(invite.token, "no")


def test_ok_without_slot_requires_selection(db, notifier, make_thread):
    thread = make_thread(mode="candidates")
    invite = _invites(thread)[0]

    with pytest.raises(SlotRequired) as exc:
        ResponseService(db, notifier=notifier).record_response(invite.token, "ok")

    assert exc.value.status_code == 422
    assert db.query(ThreadResponse).count() == 0


def test_unknown_answer_is_rejected(db, notifier, make_thread):
    thread = make_thread()
    with pytest.raises(ValidationError):
        ResponseService(db, notifier=notifier).record_response(_invites(thread)[0].token, "perhaps")


def test_slot_from_another_thread_is_rejected(db, notifier, make_thread):
    thread = make_thread()
    other = make_thread()

    with pytest.raises(ValidationError):
        ResponseService(db, notifier=notifier).record_response(
            _invites(thread)[0].token,
            "ok",
            selected_slot_id=other.slots[0].id,
        )


def test_fixed_mode_binds_ok_to_the_single_slot(db, notifier, make_thread):
    thread = make_thread(mode="fixed")
    invite = _invites(thread)[0]

    result = ResponseService(db, notifier=notifier).record_response(invite.token, "ok")

    assert result.response.selected_slot_id == thread.slots[0].id


def test_respond_is_idempotent_per_generation(db, notifier, make_thread):
    thread = make_thread()
    invite = _invites(thread)[0]
    service = ResponseService(db, notifier=notifier)

    service.record_response(invite.token, "ok", selected_slot_id=thread.slots[0].id)
    service.record_response(invite.token, "ok", selected_slot_id=thread.slots[0].id)
    result = service.record_response(invite.token, "maybe", selected_slot_id=thread.slots[1].id, comment="maybe later")

    rows = db.query(ThreadResponse).filter(ThreadResponse.invite_id == invite.id).all()
    assert len(rows) == 1
    assert rows[0].answer == "maybe"
    assert rows[0].comment == "maybe later"
    assert result.response.id == rows[0].id


def test_invite_status_mirrors_answer(db, notifier, make_thread):
    thread = make_thread()
    first, second, _ = _invites(thread)
    service = ResponseService(db, notifier=notifier)

    service.record_response(first.token, "ok", selected_slot_id=thread.slots[0].id)
    service.record_response(second.token, "no")
    db.refresh(first)
    db.refresh(second)

    assert first.status == "accepted"
    assert second.status == "declined"
    assert first.responded_at is not None


def test_late_response_accepted_by_default(db, notifier, make_thread):
    thread = make_thread()
    thread.policy.deadline_at = utcnow() - timedelta(hours=1)
    db.commit()

    result = ResponseService(db, notifier=notifier).record_response(_invites(thread)[0].token, "no")

    assert result.response.answer == "no"


def test_late_response_rejected_when_configured(db, notifier, make_thread, monkeypatch):
    monkeypatch.setenv("REJECT_LATE_RESPONSES", "true")
    thread = make_thread()
    thread.policy.deadline_at = utcnow() - timedelta(hours=1)
    db.commit()

    with pytest.raises(Expired):
        ResponseService(db, notifier=notifier).record_response(_invites(thread)[0].token, "no")


def test_response_emits_event_to_organizer(db, notifier, make_thread):
    thread = make_thread()
    notifier.events.clear()

    ResponseService(db, notifier=notifier).record_response(_invites(thread)[0].token, "no")

    assert notifier.types() == ["scheduling_response_received"]
    assert notifier.events[0].user_id == thread.organizer_user_id


def test_open_slots_ok_books_slot(db, notifier, make_thread):
    thread = make_thread(mode="open_slots")
    invite = _invites(thread)[0]
    slot = thread.slots[0]

    ResponseService(db, notifier=notifier).record_response(invite.token, "ok", selected_slot_id=slot.id)
    db.refresh(slot)

    assert slot.slot_status == "booked"
    assert slot.booked_by_invite_id == invite.id
    assert "scheduling_slot_filled" in notifier.types()


def test_open_slots_conflict_leaves_no_response(db, notifier, make_thread):
    thread = make_thread(mode="open_slots")
    first, second, _ = _invites(thread)
    slot = thread.slots[0]
    service = ResponseService(db, notifier=notifier)

    service.record_response(first.token, "ok", selected_slot_id=slot.id)
    with pytest.raises(SlotAlreadyBooked) as exc:
        service.record_response(second.token, "ok", selected_slot_id=slot.id)

    assert exc.value.status_code == 409
    assert "枠が埋まっています" in exc.value.message
    assert ResponseRepository.get_current_for_invite(db, second.id) is None
    db.refresh(slot)
    assert slot.booked_by_invite_id == first.id


def test_open_slots_switching_releases_previous_booking(db, notifier, make_thread):
    thread = make_thread(mode="open_slots")
    invite = _invites(thread)[0]
    first_slot, second_slot = thread.slots[0], thread.slots[1]
    service = ResponseService(db, notifier=notifier)

    service.record_response(invite.token, "ok", selected_slot_id=first_slot.id)
    service.record_response(invite.token, "ok", selected_slot_id=second_slot.id)
    db.refresh(first_slot)
    db.refresh(second_slot)

    assert first_slot.slot_status == "open"
    assert first_slot.booked_by_invite_id is None
    assert second_slot.booked_by_invite_id == invite.id


def test_open_slots_decline_releases_booking(db, notifier, make_thread):
    thread = make_thread(mode="open_slots")
    invite = _invites(thread)[0]
    slot = thread.slots[0]
    service = ResponseService(db, notifier=notifier)

    service.record_response(invite.token, "ok", selected_slot_id=slot.id)
    result = service.record_response(invite.token, "no", selected_slot_id=slot.id)
    db.refresh(slot)

    assert slot.slot_status == "open"
    assert result.response.selected_slot_id is None


def test_confirmed_thread_returns_existing_response_read_only(db, notifier, make_thread):
    thread = make_thread(mode="open_slots", invitee_count=2, slot_count=2, auto_finalize=True)
    first, second = _invites(thread)
    service = ResponseService(db, notifier=notifier)
    service.record_response(first.token, "ok", selected_slot_id=thread.slots[0].id)
    service.record_response(second.token, "ok", selected_slot_id=thread.slots[1].id)
    notifier.events.clear()

    result = service.record_response(first.token, "no")

    assert result.read_only is True
    assert result.confirmed is True
    assert result.response.answer == "ok"
    assert result.finalization is not None
    assert notifier.events == []

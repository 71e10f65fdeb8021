from datetime import timedelta

import pytest

from convene.errors import MaxReproposalsExceeded, ThreadNotActive, ValidationError
from convene.models.scheduling_slot import SchedulingSlot
from convene.models.thread_response import ThreadResponse
from convene.repositories.response_repository import ResponseRepository
from convene.repositories.slot_repository import SlotRepository
from convene.services.finalization_service import FinalizationService
from convene.services.reproposal_service import ReproposalService, validate_slot_inputs
from convene.services.response_service import ResponseService
from convene.services.thread_service import ThreadService
from convene.utils.datetime_utils import ensure_aware


def _invites(thread):
    return sorted(thread.invites, key=lambda invite: invite.email)


def _later_slots(slot_times, count=2, offset_days=10):
    return [
        {"start_at": slot["start_at"] + timedelta(days=offset_days), "end_at": slot["end_at"] + timedelta(days=offset_days)}
        for slot in slot_times(count)
    ]


def test_repropose_adds_slots_at_next_version(db, notifier, make_thread, slot_times):
    thread = make_thread()
    old_ids = {slot.id for slot in thread.slots}

    result = ReproposalService(db, notifier=notifier).repropose(thread, _later_slots(slot_times))

    assert result.current_version == 2
    assert result.reproposal_count == 1
    assert result.new_slots_count == 2
    db.refresh(thread)
    assert thread.current_version == 2

    new_slots = SlotRepository.list_for_thread(db, thread.id, proposal_version=2)
    assert len(new_slots) == 2
    old_slots = SlotRepository.list_for_thread(db, thread.id, proposal_version=1)
    assert {slot.id for slot in old_slots} == old_ids
    assert db.query(SchedulingSlot).filter(SchedulingSlot.thread_id == thread.id).count() == 5


def test_repropose_flags_only_previous_responders(db, notifier, make_thread, slot_times):
    thread = make_thread()
    first, second, third = _invites(thread)
    responses = ResponseService(db, notifier=notifier)
    responses.record_response(first.token, "ok", selected_slot_id=thread.slots[0].id)
    responses.record_response(second.token, "no")

    result = ReproposalService(db, notifier=notifier).repropose(thread, _later_slots(slot_times))

    assert result.needs_re_response_count == 2
    for invite in (first, second, third):
        db.refresh(invite)
    assert first.needs_re_response is True
    assert second.needs_re_response is True
    assert third.needs_re_response is False


def test_answering_again_writes_new_generation_and_clears_flag(db, notifier, make_thread, slot_times):
    thread = make_thread()
    invite = _invites(thread)[0]
    responses = ResponseService(db, notifier=notifier)
    responses.record_response(invite.token, "ok", selected_slot_id=thread.slots[0].id)

    ReproposalService(db, notifier=notifier).repropose(thread, _later_slots(slot_times))
    new_slot = SlotRepository.list_for_thread(db, thread.id, proposal_version=2)[0]
    responses.record_response(invite.token, "ok", selected_slot_id=new_slot.id)

    rows = (
        db.query(ThreadResponse)
        .filter(ThreadResponse.invite_id == invite.id)
        .order_by(ThreadResponse.response_version)
        .all()
    )
    assert [row.response_version for row in rows] == [1, 2]
    assert rows[0].selected_slot_id == thread.slots[0].id
    assert ResponseRepository.get_current_for_invite(db, invite.id).selected_slot_id == new_slot.id
    db.refresh(invite)
    assert invite.needs_re_response is False


def test_old_generation_answers_still_count(db, notifier, make_thread, slot_times):
    thread = make_thread(finalize_policy="quorum", quorum_count=2)
    first, second, _ = _invites(thread)
    responses = ResponseService(db, notifier=notifier)
    responses.record_response(first.token, "ok", selected_slot_id=thread.slots[0].id)

    ReproposalService(db, notifier=notifier).repropose(thread, _later_slots(slot_times))
    new_slot = SlotRepository.list_for_thread(db, thread.id, proposal_version=2)[0]
    responses.record_response(second.token, "ok", selected_slot_id=new_slot.id)

    evaluation = FinalizationService(db, notifier=notifier).evaluate(thread)
    assert evaluation.ok_count == 2
    assert evaluation.met is True


def test_repropose_respects_max_reproposals(db, notifier, make_thread, slot_times):
    thread = make_thread(max_reproposals=2)
    service = ReproposalService(db, notifier=notifier)

    service.repropose(thread, _later_slots(slot_times, offset_days=10))
    service.repropose(thread, _later_slots(slot_times, offset_days=20))
    with pytest.raises(MaxReproposalsExceeded) as exc:
        service.repropose(thread, _later_slots(slot_times, offset_days=30))

    assert exc.value.details == {"reproposal_count": 2, "max_reproposals": 2}
    db.refresh(thread)
    assert thread.current_version == 3
    assert thread.policy.reproposal_count == 2


def test_version_never_decreases(db, notifier, make_thread, slot_times):
    thread = make_thread(max_reproposals=3)
    service = ReproposalService(db, notifier=notifier)
    versions = [thread.current_version]

    for offset in (10, 20, 30):
        versions.append(service.repropose(thread, _later_slots(slot_times, offset_days=offset)).current_version)

    assert versions == [1, 2, 3, 4]


def test_repropose_extends_deadline_and_invite_expiry(db, notifier, make_thread, slot_times):
    thread = make_thread(deadline_hours=24)
    before = ensure_aware(thread.policy.deadline_at)

    ReproposalService(db, notifier=notifier).repropose(thread, _later_slots(slot_times), new_deadline_hours=96)

    db.refresh(thread.policy)
    after = ensure_aware(thread.policy.deadline_at)
    assert after > before + timedelta(hours=48)
    for invite in thread.invites:
        assert ensure_aware(invite.expires_at) > after


def test_repropose_emits_event_with_recipients(db, notifier, make_thread, slot_times):
    thread = make_thread()
    notifier.events.clear()

    ReproposalService(db, notifier=notifier).repropose(thread, _later_slots(slot_times), message="New dates")

    assert notifier.types() == ["scheduling_reproposed"]
    event = notifier.events[0]
    assert event.message == "New dates"
    assert event.payload["current_version"] == 2
    assert len(event.payload["recipients"]) == 3
    assert all(recipient["token"] for recipient in event.payload["recipients"])


def test_repropose_rejects_terminal_threads(db, notifier, make_thread, slot_times):
    cancelled = make_thread()
    ThreadService(db, notifier=notifier).cancel(cancelled)

    with pytest.raises(ThreadNotActive):
        ReproposalService(db, notifier=notifier).repropose(cancelled, _later_slots(slot_times))


def test_repropose_allowed_on_draft(db, notifier, make_thread, slot_times):
    draft = make_thread(send=False)
    result = ReproposalService(db, notifier=notifier).repropose(draft, _later_slots(slot_times))
    assert result.current_version == 2


@pytest.mark.parametrize(
    "kwargs",
    [
        {"new_slots": []},
        {"new_deadline_hours": 0},
    ],
)
def test_repropose_rejects_bad_input(db, notifier, make_thread, slot_times, kwargs):
    thread = make_thread()
    params = {"new_slots": _later_slots(slot_times)}
    params.update(kwargs)

    with pytest.raises(ValidationError):
        ReproposalService(db, notifier=notifier).repropose(thread, **params)

    db.refresh(thread)
    assert thread.current_version == 1


def test_repropose_rejects_fixed_mode(db, notifier, make_thread, slot_times):
    thread = make_thread(mode="fixed")
    with pytest.raises(ValidationError):
        ReproposalService(db, notifier=notifier).repropose(thread, _later_slots(slot_times))


def test_validate_slot_inputs_reports_index(slot_times):
    slots = slot_times(2)
    slots[1] = {"start_at": slots[1]["end_at"], "end_at": slots[1]["start_at"]}

    with pytest.raises(ValidationError) as exc:
        validate_slot_inputs(slots)

    assert exc.value.details == {"slot_index": 1}

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from convene.errors import Forbidden, InvalidToken, NotFound, PersistenceError, ThreadNotActive, ValidationError
from convene.models.scheduling_thread import SchedulingThread
from convene.services.response_service import ResponseService
from convene.services.thread_service import ThreadService, _dedupe_invitees, invite_url
from convene.utils.invitee_keys import invitee_key_for_email

ORGANIZER = "user_organizer_1"


def _prepare(db, notifier, slot_times, **overrides):
    params = {
        "title": "Quarterly planning",
        "mode": "candidates",
        "slots": slot_times(2),
        "invitees": [{"email": "a@example.com"}, {"email": "b@example.com"}],
    }
    params.update(overrides)
    return ThreadService(db, notifier=notifier).prepare(ORGANIZER, **params)


def test_prepare_creates_draft_with_policy_slots_and_invites(db, notifier, slot_times):
    thread = _prepare(db, notifier, slot_times, finalize_policy="quorum", quorum_count=2, auto_finalize=True)

    assert thread.status == "draft"
    assert thread.current_version == 1
    assert thread.topology == "one_to_many"
    assert thread.policy.finalize_policy == "quorum"
    assert thread.policy.quorum_count == 2
    assert thread.policy.auto_finalize is True
    assert thread.policy.reproposal_count == 0
    assert thread.policy.max_reproposals == 2
    assert len(thread.slots) == 2
    assert all(slot.proposal_version == 1 and slot.slot_status == "open" for slot in thread.slots)
    assert {invite.email for invite in thread.invites} == {"a@example.com", "b@example.com"}
    assert all(invite.status == "pending" and invite.token for invite in thread.invites)


def test_prepare_single_invitee_is_one_on_one(db, notifier, slot_times):
    thread = _prepare(db, notifier, slot_times, invitees=[{"email": "solo@example.com"}])
    assert thread.topology == "one_on_one"


def test_prepare_dedupes_invitees_case_insensitively(db, notifier, slot_times):
    thread = _prepare(
        db,
        notifier,
        slot_times,
        invitees=[{"email": "Dup@Example.com"}, {"email": "dup@example.com"}, {"email": "other@example.com"}],
    )
    assert len(thread.invites) == 2


def test_prepare_required_people_stores_invitee_keys(db, notifier, slot_times):
    thread = _prepare(db, notifier, slot_times, finalize_policy="required_people", required_emails=["A@example.com"])
    assert thread.policy.required_invitee_keys == [invitee_key_for_email("a@example.com")]


@pytest.mark.parametrize(
    "overrides",
    [
        {"title": "   "},
        {"mode": "round_robin"},
        {"finalize_policy": "coin_flip"},
        {"slots": []},
        {"invitees": []},
        {"finalize_policy": "quorum"},
        {"finalize_policy": "quorum", "quorum_count": 0},
        {"finalize_policy": "required_people"},
        {"required_emails": ["stranger@example.com"]},
        {"participant_limit": 1},
        {"deadline_hours": -1},
        {"deadline_hours": 0},
        {"max_reproposals": -1},
        {"participant_limit": 0},
    ],
)
def test_prepare_rejects_inconsistent_input(db, notifier, slot_times, overrides):
    with pytest.raises(ValidationError):
        _prepare(db, notifier, slot_times, **overrides)

    assert db.query(SchedulingThread).count() == 0


def test_prepare_fixed_mode_needs_exactly_one_slot(db, notifier, slot_times):
    with pytest.raises(ValidationError):
        _prepare(db, notifier, slot_times, mode="fixed", slots=slot_times(2))


def test_prepare_rejects_inverted_slot(db, notifier, slot_times):
    slot = slot_times(1)[0]
    with pytest.raises(ValidationError):
        _prepare(db, notifier, slot_times, slots=[{"start_at": slot["end_at"], "end_at": slot["start_at"]}])


def test_prepare_persistence_failure_raises():
    db = MagicMock()
    db.flush.side_effect = OperationalError("INSERT", {}, Exception("db down"))
    service = ThreadService(db, notifier=MagicMock())

    start = datetime(2026, 12, 1, 10, tzinfo=timezone.utc)
    with pytest.raises(PersistenceError):
        service.prepare(
            ORGANIZER,
            title="t",
            mode="candidates",
            slots=[{"start_at": start, "end_at": start + timedelta(hours=1)}],
            invitees=[{"email": "a@example.com"}],
        )
    db.rollback.assert_called_once()


def test_send_moves_draft_to_sent_and_emits_links(db, notifier, slot_times):
    service = ThreadService(db, notifier=notifier)
    thread = _prepare(db, notifier, slot_times)

    service.send(thread)

    assert thread.status == "sent"
    assert thread.sent_at is not None
    event = notifier.events[-1]
    assert event.type == "scheduling_invites_sent"
    assert {recipient["url"] for recipient in event.payload["recipients"]} == {
        invite_url(invite.token) for invite in thread.invites
    }


def test_send_twice_is_rejected(db, notifier, make_thread):
    thread = make_thread()
    with pytest.raises(ThreadNotActive):
        ThreadService(db, notifier=notifier).send(thread)


def test_cancel_and_cancel_again(db, notifier, make_thread):
    thread = make_thread()
    service = ThreadService(db, notifier=notifier)

    service.cancel(thread, reason="No longer needed")

    assert thread.status == "cancelled"
    assert thread.cancelled_at is not None
    with pytest.raises(ThreadNotActive):
        service.cancel(thread)


def test_get_owned_thread_checks_organizer(db, notifier, make_thread):
    thread = make_thread()
    service = ThreadService(db, notifier=notifier)

    assert service.get_owned_thread(thread.id, ORGANIZER).id == thread.id
    with pytest.raises(Forbidden):
        service.get_owned_thread(thread.id, "user_someone_else")
    with pytest.raises(NotFound):
        service.get_owned_thread(uuid4(), ORGANIZER)


def test_list_threads_filters_by_status(db, notifier, make_thread):
    make_thread(send=False)
    make_thread()
    make_thread(organizer_user_id="user_other")
    service = ThreadService(db, notifier=notifier)

    threads, total = service.list_threads(ORGANIZER)
    sent, sent_total = service.list_threads(ORGANIZER, status="sent")

    assert total == 2
    assert len(threads) == 2
    assert sent_total == 1
    assert sent[0].status == "sent"


def test_detail_includes_current_responses_and_evaluation(db, notifier, make_thread):
    thread = make_thread(finalize_policy="quorum", quorum_count=2)
    invite = sorted(thread.invites, key=lambda i: i.email)[0]
    ResponseService(db, notifier=notifier).record_response(invite.token, "ok", selected_slot_id=thread.slots[0].id)

    detail = ThreadService(db, notifier=notifier).detail(thread)

    assert len(detail.slots) == 3
    assert len(detail.invites) == 3
    assert [response.invite_id for response in detail.current_responses] == [invite.id]
    assert detail.evaluation.reason == "quorum_not_yet: 1/2"
    assert detail.finalization is None


def test_invite_view_shows_slots_and_current_response(db, notifier, make_thread):
    thread = make_thread(mode="open_slots")
    invite = sorted(thread.invites, key=lambda i: i.email)[0]
    ResponseService(db, notifier=notifier).record_response(invite.token, "ok", selected_slot_id=thread.slots[0].id)

    view = ThreadService(db, notifier=notifier).invite_view(invite.token)

    assert view.thread.id == thread.id
    assert view.current_response.answer == "ok"
    assert view.slots[0]["booked_by_me"] is True
    assert [row["is_available"] for row in view.slots] == [False, True, True]


def test_invite_view_unknown_token(db, notifier):
    with pytest.raises(InvalidToken):
        ThreadService(db, notifier=notifier).invite_view("missing")


def test_dedupe_invitees_defaults_name_to_local_part():
    assert _dedupe_invitees([{"email": " Kana@Example.com "}, {"email": ""}]) == [
        {"email": "kana@example.com", "name": "kana"}
    ]

from datetime import datetime, timedelta, timezone

from convene.utils.datetime_utils import ensure_aware, isoformat
from convene.utils.invitee_keys import invitee_key_for_email, normalize_email


def test_invitee_key_is_stable_and_case_insensitive():
    key = invitee_key_for_email("Alice@Example.com ")

    assert key == invitee_key_for_email("alice@example.com")
    assert key.startswith("e:")
    assert len(key) == 18


def test_different_emails_get_different_keys():
    assert invitee_key_for_email("a@example.com") != invitee_key_for_email("b@example.com")


def test_normalize_email():
    assert normalize_email("  Bob@Example.COM ") == "bob@example.com"


def test_ensure_aware_treats_naive_as_utc():
    naive = datetime(2026, 11, 1, 9, 0)
    jst = datetime(2026, 11, 1, 18, 0, tzinfo=timezone(timedelta(hours=9)))

    assert ensure_aware(naive) == datetime(2026, 11, 1, 9, 0, tzinfo=timezone.utc)
    assert ensure_aware(jst).tzinfo == timezone.utc
    assert ensure_aware(None) is None
    assert isoformat(naive) == "2026-11-01T09:00:00+00:00"

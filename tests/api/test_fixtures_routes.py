from convene.models.scheduling_thread import SchedulingThread


def test_create_candidates_fixture(client):
    res = client.post("/test/fixtures/one-to-many-candidates", json={"invitee_count": 2, "slot_count": 4})

    assert res.status_code == 201
    body = res.json()
    assert body["success"] is True
    assert body["organizer_user_id"].startswith("e2e-organizer-")
    assert len(body["invites"]) == 2
    assert len(body["slots"]) == 4
    assert all(invite["url"].endswith(invite["token"]) for invite in body["invites"])

    view = client.get(f"/g/{body['invites'][0]['token']}")
    assert view.json()["thread"]["status"] == "sent"


def test_create_fixture_without_body_uses_defaults(client):
    res = client.post("/test/fixtures/one-to-many-candidates")

    assert res.status_code == 201
    assert len(res.json()["invites"]) == 3


def test_delete_fixture(client, db):
    created = client.post(
        "/test/fixtures/one-to-many-candidates",
        json={"organizer_user_id": "e2e-organizer-fixed"},
    ).json()

    res = client.delete(f"/test/fixtures/one-to-many/{created['thread_id']}")

    assert res.status_code == 200
    assert res.json()["deleted_thread_id"] == created["thread_id"]
    assert db.query(SchedulingThread).count() == 0
    assert client.delete(f"/test/fixtures/one-to-many/{created['thread_id']}").status_code == 404


def test_fixtures_forbidden_in_production(client, monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "production")

    res = client.post("/test/fixtures/one-to-many-candidates")

    assert res.status_code == 403
    assert res.json()["error"]["code"] == "forbidden"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from farmcall import call_queue, main
from farmcall.db import get_session
from farmcall.scoring import ContactScorer


@pytest.fixture
def client(db):
    def _session():
        yield db

    main.app.dependency_overrides[get_session] = _session
    main.app.dependency_overrides[main.get_scorer] = lambda: ContactScorer(geocache=None)
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_ingest_is_idempotent(client, make_contact):
    make_contact(address="5 Wallace St")
    body = {"type": "sold", "address": "23 Wallace Street, Willoughby", "beds": 4, "source": "manual"}

    first = client.post("/api/market-events", json=body).json()
    second = client.post("/api/market-events", json=body).json()

    assert first["inserted"] is True and second["inserted"] is False
    assert first["contact_count"] == second["contact_count"] == 1
    assert first["id"] == second["id"]


def test_ingest_rejects_missing_address(client):
    assert client.post("/api/market-events", json={"type": "listing", "address": " "}).status_code == 422


def test_event_read_update_delete(client, make_contact):
    make_contact(address="2 Oak St")
    event_id = client.post("/api/market-events", json={"type": "listing", "address": "1 Oak St, Willoughby"}).json()["id"]

    got = client.get(f"/api/market-events/{event_id}").json()
    assert got["address"] == "1 OAK ST, WILLOUGHBY"
    assert got["top_contacts"][0]["score"] == 200

    patched = client.patch(f"/api/market-events/{event_id}", json={"status": "withdrawn"}).json()
    assert patched["status"] == "withdrawn"

    assert [e["id"] for e in client.get("/api/market-events").json()] == [event_id]
    assert client.delete(f"/api/market-events/{event_id}").status_code == 200
    assert client.get(f"/api/market-events/{event_id}").status_code == 404


def test_update_conflict_is_409(client):
    a = client.post("/api/market-events", json={"type": "listing", "address": "1 Oak St, Willoughby"}).json()["id"]
    client.post("/api/market-events", json={"type": "listing", "address": "2 Oak St, Willoughby"})
    resp = client.patch(f"/api/market-events/{a}", json={"address": "2 Oak St, Willoughby"})
    assert resp.status_code == 409


def test_queue_flow(client, make_contact):
    top = make_contact(propensity_score=80)
    make_contact(propensity_score=10)

    added = client.post("/api/queue/top-up", json={"count": 1}).json()
    assert added == {"added": 1, "contact_ids": [top.id]}

    queue = client.get("/api/queue").json()
    assert [i["contact_id"] for i in queue] == [top.id]

    resp = client.post(f"/api/queue/{top.id}/outcome", json={"outcome": "left_message", "notes": "voicemail"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "snoozed"
    assert client.get("/api/queue").json() == []

    calls = client.get(f"/api/contacts/{top.id}/calls").json()
    assert [(c["outcome"], c["notes"]) for c in calls] == [("left_message", "voicemail")]

    assert client.post("/api/queue/sweep").json() == {"cooldowns_ended": 0, "snoozes_ended": 0}


def test_outcome_with_timezone_is_stored_as_utc(client, make_contact):
    c = make_contact()
    resp = client.post(f"/api/queue/{c.id}/outcome",
                       json={"outcome": "connected", "called_at": "2030-01-01T21:00:00+11:00"}).json()
    assert resp["cooldown_until"] == "2030-05-01T10:00:00"


def test_manual_re_add_reactivates_done(client, make_contact):
    c = make_contact()
    client.post(f"/api/queue/{c.id}/outcome", json={"outcome": "appraisal_booked"})
    resp = client.post(f"/api/queue/{c.id}").json()
    assert (resp["status"], resp["action"]) == ("active", "reactivated")


def test_manual_add_rejects_do_not_call(client, make_contact):
    c = make_contact(do_not_call=True)
    assert client.post(f"/api/queue/{c.id}").status_code == 400


def test_unknown_contact_is_404(client):
    assert client.post("/api/queue/nobody/outcome", json={"outcome": "connected"}).status_code == 404
    assert client.post("/api/queue/nobody").status_code == 404
    assert client.get("/api/contacts/nobody/calls").status_code == 404


def test_invalid_outcome_is_422(client, make_contact):
    c = make_contact()
    assert client.post(f"/api/queue/{c.id}/outcome", json={"outcome": "hung_up"}).status_code == 422


def test_top_up_count_must_be_positive(client):
    assert client.post("/api/queue/top-up", json={"count": 0}).status_code == 422


def test_storage_error_is_generic(client, monkeypatch):
    def broken(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database is locked at /var/lib/farmcall.db"))

    monkeypatch.setattr(call_queue, "todays_call_list", broken)
    resp = client.get("/api/queue")
    assert resp.status_code == 500
    assert resp.json() == {"detail": "internal error"}


def test_mailbox_poll_needs_configuration(client, monkeypatch):
    monkeypatch.setattr(main, "imap_configured", lambda: False)
    assert client.post("/mailbox/poll").status_code == 503

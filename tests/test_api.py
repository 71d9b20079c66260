from pitstop.config import settings
from pitstop.core.geofencing import GeoPoint
from pitstop.core.presence_session import PresenceSession, TrackerProfile
from pitstop.models.beacon import BeaconKind
from pitstop.models.presence import PresenceRead
from pitstop.utils.clock import utc_now
from pitstop.utils.location_utils import LocationFix, QueueLocationSource

from tests.fakes import auth_headers

HOOK_HEADERS = {"X-Hook-Key": settings.HOOK_SECRET}
BEACON = {"latitude": 50.0755, "longitude": 14.4378, "kind": "flat_tire", "description": "Rear left tire"}


async def test_health(api_client):
    response = await api_client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_requests_need_a_valid_token(api_client, add_user):
    await add_user("alice")

    assert (await api_client.get("/api/beacons")).status_code in (401, 403)
    bad = await api_client.get("/api/beacons", headers={"Authorization": "Bearer nope"})
    assert bad.status_code == 401
    unknown = await api_client.get("/api/beacons", headers=auth_headers("ghost"))
    assert unknown.status_code == 401


async def test_beacon_lifecycle(api_client, add_user, transport):
    await add_user("alice", fcm_token="tok-alice")
    await add_user("bob", fcm_token="tok-bob")
    await add_user("carol", fcm_token="tok-carol")

    created = await api_client.post("/api/beacons", json=BEACON, headers=auth_headers("alice"))
    assert created.status_code == 201
    beacon = created.json()
    assert beacon["status"] == "active"
    assert beacon["display_name"] == "Alice"
    # SOS fan-out ran as a background task
    assert sorted(transport.tokens()) == ["tok-bob", "tok-carol"]

    again = await api_client.post("/api/beacons", json=BEACON, headers=auth_headers("alice"))
    assert again.status_code == 409
    assert again.json()["detail"]["reason"] == "already_active"

    responded = await api_client.post(f"/api/beacons/{beacon['id']}/respond", headers=auth_headers("bob"))
    assert responded.status_code == 200
    assert responded.json()["helper_id"] == "bob"
    assert transport.tokens()[-1] == "tok-alice"

    late = await api_client.post(f"/api/beacons/{beacon['id']}/respond", headers=auth_headers("carol"))
    assert late.status_code == 409
    assert late.json()["detail"]["reason"] == "already_claimed"

    forbidden = await api_client.post(f"/api/beacons/{beacon['id']}/resolve", headers=auth_headers("bob"))
    assert forbidden.status_code == 403

    resolved = await api_client.post(f"/api/beacons/{beacon['id']}/resolve", headers=auth_headers("alice"))
    assert resolved.status_code == 200
    assert resolved.json()["status"] == "resolved"
    assert transport.tokens()[-1] == "tok-bob"

    missing = await api_client.post(f"/api/beacons/{beacon['id']}/respond", headers=auth_headers("carol"))
    assert missing.status_code == 404
    assert missing.json()["detail"]["reason"] == "not_found"


async def test_own_beacon_cannot_be_claimed(api_client, add_user):
    await add_user("alice")
    beacon = (await api_client.post("/api/beacons", json=BEACON, headers=auth_headers("alice"))).json()

    response = await api_client.post(f"/api/beacons/{beacon['id']}/respond", headers=auth_headers("alice"))

    assert response.status_code == 409
    assert response.json()["detail"]["reason"] == "invalid_transition"


async def test_visible_beacons_by_distance(api_client, add_user, services):
    await add_user("alice")
    await add_user("bob")
    await services.engine.create("bob", "Bob", BeaconKind.ACCIDENT, GeoPoint(50.0755, 14.4378))

    near = await api_client.get("/api/beacons", params={"lat": 50.1, "lng": 14.4}, headers=auth_headers("alice"))
    far = await api_client.get("/api/beacons", params={"lat": 49.19, "lng": 16.6}, headers=auth_headers("alice"))
    unknown = await api_client.get("/api/beacons", headers=auth_headers("alice"))
    own = await api_client.get("/api/beacons", headers=auth_headers("bob"))

    assert [b["user_id"] for b in near.json()] == ["bob"]
    assert far.json() == []
    assert [b["user_id"] for b in unknown.json()] == ["bob"]
    assert own.json() == []


async def test_presence_snapshot_and_stop_sharing(api_client, add_user, services):
    await add_user("alice", tracker_visible=True)
    await add_user("bob", tracker_visible=True)
    await services.presence.upsert(PresenceRead(
        user_id="bob", display_name="Bob", latitude=50.0, longitude=14.0, last_active_at=utc_now()
    ))

    snapshot = await api_client.get("/api/presence", headers=auth_headers("alice"))
    assert [p["user_id"] for p in snapshot.json()] == ["bob"]

    stopped = await api_client.delete("/api/presence", headers=auth_headers("bob"))
    assert stopped.json()["tracker_visible"] is False
    assert await services.presence.snapshot() == []


async def test_tracker_settings_update(api_client, add_user):
    await add_user("alice", home_lat=50.0, home_lng=14.0)

    response = await api_client.put(
        "/api/presence/settings",
        json={"tracker_visible": True, "tracker_status": "Cars & coffee", "privacy_radius_m": 800},
        headers=auth_headers("alice"),
    )
    body = response.json()
    assert body["tracker_visible"] is True
    assert body["tracker_status"] == "Cars & coffee"
    assert body["privacy_radius_m"] == 800
    assert body["home_lat"] == 50.0

    cleared = await api_client.put("/api/presence/settings", json={"clear_home": True}, headers=auth_headers("alice"))
    assert cleared.json()["home_lat"] is None
    assert cleared.json()["tracker_visible"] is True


async def test_notification_settings_roundtrip(api_client, add_user):
    await add_user("alice")

    defaults = await api_client.get("/api/notifications/settings", headers=auth_headers("alice"))
    assert defaults.json()["marketplace_notifications"] is False

    updated = await api_client.put(
        "/api/notifications/settings",
        json={"marketplace_notifications": True, "quiet_hours": {"enabled": True, "start_hour": 23, "end_hour": 6}},
        headers=auth_headers("alice"),
    )
    assert updated.json()["quiet_hours"]["start_hour"] == 23

    stored = await api_client.get("/api/notifications/settings", headers=auth_headers("alice"))
    assert stored.json()["marketplace_notifications"] is True
    assert stored.json()["sos_alerts"] is True


async def test_delivery_token_registration(api_client, add_user, services):
    await add_user("alice")

    registered = await api_client.put("/api/notifications/token", json={"token": "tok-1"}, headers=auth_headers("alice"))
    assert registered.json()["registered"] is True
    assert (await services.directory.get("alice")).token == "tok-1"

    cleared = await api_client.delete("/api/notifications/token", headers=auth_headers("alice"))
    assert cleared.json()["registered"] is False
    assert (await services.directory.get("alice")).token is None


async def test_hooks_require_key(api_client):
    payload = {"room": {"id": "r-1", "participants": ["a", "b"]}, "message": {"sender_id": "a", "text": "hi"}}

    assert (await api_client.post("/api/hooks/chat-message", json=payload)).status_code == 401
    wrong = await api_client.post("/api/hooks/chat-message", json=payload, headers={"X-Hook-Key": "wrong"})
    assert wrong.status_code == 401


async def test_chat_hook_returns_report(api_client, add_user, transport):
    await add_user("alice")
    await add_user("bob", fcm_token="tok-bob")
    payload = {
        "room": {"id": "r-1", "participants": ["alice", "bob"], "participant_names": {"alice": "Alice"}},
        "message": {"sender_id": "alice", "text": "On my way"},
    }

    response = await api_client.post("/api/hooks/chat-message", json=payload, headers=HOOK_HEADERS)

    assert response.status_code == 200
    assert response.json() == {
        "trigger": "chat_message",
        "attempted": 1,
        "delivered": 1,
        "failed": 0,
        "skipped": 0,
        "invalid_tokens": 0,
    }
    assert transport.sent[0].title == "New message from Alice"


async def test_event_changed_hook_merges_updates_and_participation(api_client, add_user):
    await add_user("carol", fcm_token="tok-carol")
    await add_user("dave", fcm_token="tok-dave")
    event = {
        "id": "ev-1",
        "title": "Track day",
        "date": "2026-05-01T08:00:00Z",
        "location": "Most",
        "event_type": "trackday",
        "creator_id": "carol",
        "participants": ["carol"],
    }
    after = {**event, "location": "Brno Circuit", "participants": ["carol", "dave"]}

    response = await api_client.post(
        "/api/hooks/event-changed", json={"before": event, "after": after}, headers=HOOK_HEADERS
    )

    # location change to carol and dave, plus the join notice to carol
    assert response.json()["attempted"] == 3


async def test_reminder_sweep_hook(api_client, add_user):
    await add_user("alice", fcm_token="tok-alice")
    response = await api_client.post("/api/hooks/reminder-sweep", json={}, headers=HOOK_HEADERS)
    assert response.status_code == 200
    assert response.json()["trigger"] == "vehicle_reminder"


async def live_session(services, user) -> PresenceSession:
    session = PresenceSession(
        profile=TrackerProfile.from_user(user), store=services.presence, source=QueueLocationSource()
    )
    services.sessions.attach(session)
    await session.handle_fix(LocationFix(50.1, 14.5))
    return session


async def presence_ids(services) -> list[str]:
    return [record.user_id for record in await services.presence.snapshot()]


async def test_hiding_via_settings_reaches_live_session(api_client, add_user, services):
    alice = await add_user("alice", tracker_visible=True)
    session = await live_session(services, alice)
    assert await presence_ids(services) == ["alice"]

    await api_client.put("/api/presence/settings", json={"tracker_visible": False}, headers=auth_headers("alice"))
    assert await presence_ids(services) == []

    # Next fix from the still-open session stays hidden
    await session.handle_fix(LocationFix(50.2, 14.6))
    assert await presence_ids(services) == []


async def test_stop_sharing_reaches_live_session(api_client, add_user, services):
    alice = await add_user("alice", tracker_visible=True)
    session = await live_session(services, alice)

    await api_client.delete("/api/presence", headers=auth_headers("alice"))
    await session.handle_fix(LocationFix(50.2, 14.6))

    assert not session.profile.visible
    assert await presence_ids(services) == []


async def test_home_zone_and_proximity_changes_reach_live_session(api_client, add_user, services):
    alice = await add_user("alice", tracker_visible=True)
    session = await live_session(services, alice)

    await api_client.put(
        "/api/presence/settings", json={"home_lat": 50.1, "home_lng": 14.5}, headers=auth_headers("alice")
    )
    assert session.near_home
    assert await presence_ids(services) == []

    await api_client.put("/api/notifications/settings", json={"proximity_alerts": True}, headers=auth_headers("alice"))
    assert session.profile.proximity_alerts

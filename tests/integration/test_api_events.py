"""Integration tests for the demo backend routes."""
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from eventfeed.api.main import create_app
from eventfeed.api.store import DemoStore
from eventfeed.config import Settings
from eventfeed.models.event import Event, datetime_to_ms
from factories import make_event

LOG_TEXT = "2025-01-15 11:42:00 ERROR camera calibration required\n"


@pytest.fixture(name="files_dir")
def files_dir_fixture(tmp_path):
    files = tmp_path / "files"
    files.mkdir()
    (files / "system_log_1.txt").write_text(LOG_TEXT)
    (tmp_path / "secret.txt").write_text("do not serve")
    return files


@pytest.fixture(name="store")
def store_fixture(files_dir) -> DemoStore:
    return DemoStore(files_dir=files_dir, bcrypt_rounds=4)


@pytest.fixture(name="client")
def client_fixture(store, files_dir):
    app = create_app(
        store=store,
        settings=Settings(backend_jwt_secret="test-secret"),
        files_dir=files_dir,
    )
    with TestClient(app) as c:
        yield c


def auth_headers(client, username="admin", password="admin123") -> dict:
    response = client.post("/api/login", json={"username": username, "password": password})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}


def newer_event(store: DemoStore, index: int, minutes: int, severity: str = "info") -> Event:
    newest = store.get_events(limit=1)[0][0]
    event = make_event(index, severity=severity, event_id=f"new-{index:03d}")
    event.timestamp = newest.timestamp + timedelta(minutes=minutes)
    return event


class TestHealthAndAuth:
    def test_health_needs_no_token(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_login(self, client):
        response = client.post("/api/login", json={"username": "admin", "password": "admin123"})
        assert response.status_code == 200
        body = response.json()
        assert body["token"]
        assert body["user"]["username"] == "admin"
        assert body["user"]["role"] == "administrator"
        assert "password_hash" not in body["user"]

    def test_login_wrong_password(self, client):
        response = client.post("/api/login", json={"username": "admin", "password": "nope"})
        assert response.status_code == 401
        assert response.json() == {
            "error": "Invalid credentials",
            "message": "Username or password is incorrect",
            "code": 401,
        }

    def test_login_unknown_user(self, client):
        response = client.post("/api/login", json={"username": "ghost", "password": "x"})
        assert response.status_code == 401

    def test_login_missing_field(self, client):
        response = client.post("/api/login", json={"username": "admin"})
        assert response.status_code == 400
        assert response.json()["code"] == 400

    def test_events_require_token(self, client):
        response = client.get("/api/events")
        assert response.status_code == 401
        assert response.json()["error"] == "Unauthorized"

    def test_invalid_token(self, client):
        response = client.get("/api/events", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401
        assert response.json()["error"] == "Invalid token"


class TestEvents:
    def test_first_page(self, client, store):
        response = client.get("/api/events", headers=auth_headers(client))
        assert response.status_code == 200
        body = response.json()
        assert len(body["events"]) == 20
        assert body["has_next"] is True
        last = body["events"][-1]
        assert body["next_cursor"] == {"timestamp": last["timestamp"], "event_id": last["id"]}

    def test_paging_covers_every_event_once(self, client, store):
        headers = auth_headers(client)
        seen = []
        params = {"limit": 20}
        while True:
            body = client.get("/api/events", params=params, headers=headers).json()
            seen.extend(body["events"])
            if not body["has_next"]:
                assert body["next_cursor"] is None
                break
            cursor = body["next_cursor"]
            params = {"limit": 20, "after_ts": cursor["timestamp"], "after_id": cursor["event_id"]}

        assert len(seen) == store.count() == 50
        assert len({e["id"] for e in seen}) == 50
        keys = [(e["timestamp"], e["id"]) for e in seen]
        assert keys == sorted(keys, reverse=True)

    def test_before_cursor_returns_newest_newer_events(self, client, store):
        headers = auth_headers(client)
        newest = client.get("/api/events", params={"limit": 1}, headers=headers).json()["events"][0]
        for i in range(5):
            store.add_event(newer_event(store, i, minutes=1))

        body = client.get(
            "/api/events",
            params={"limit": 3, "before_ts": newest["timestamp"], "before_id": newest["id"]},
            headers=headers,
        ).json()

        assert len(body["events"]) == 3
        assert body["has_next"] is True
        assert all(e["timestamp"] > newest["timestamp"] for e in body["events"])

    def test_limit_validation(self, client):
        headers = auth_headers(client)
        assert client.get("/api/events", params={"limit": 0}, headers=headers).status_code == 400
        assert client.get("/api/events", params={"limit": "abc"}, headers=headers).status_code == 400

        capped = client.get("/api/events", params={"limit": 500}, headers=headers).json()
        assert len(capped["events"]) == 50
        assert capped["has_next"] is False

    def test_both_directions_rejected(self, client):
        response = client.get(
            "/api/events",
            params={"before_ts": 1, "after_ts": 2},
            headers=auth_headers(client),
        )
        assert response.status_code == 400

    def test_id_without_timestamp_rejected(self, client):
        response = client.get("/api/events", params={"after_id": "x"}, headers=auth_headers(client))
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid parameters"

    def test_new_events_count(self, client, store):
        headers = auth_headers(client)
        newest = client.get("/api/events", params={"limit": 1}, headers=headers).json()["events"][0]
        store.add_event(newer_event(store, 1, minutes=1, severity="critical"))
        store.add_event(newer_event(store, 2, minutes=2))

        body = client.get(
            "/api/events/new/count", params={"after_ts": newest["timestamp"]}, headers=headers
        ).json()

        assert body == {"total_count": 2, "critical_count": 1}

    def test_get_event(self, client, store):
        event = store.add_event(make_event(1, event_id="known"))
        response = client.get("/api/events/known", headers=auth_headers(client))
        assert response.status_code == 200
        assert response.json()["timestamp"] == datetime_to_ms(event.timestamp)

    def test_get_unknown_event(self, client):
        response = client.get("/api/events/nope", headers=auth_headers(client))
        assert response.status_code == 404
        assert response.json()["error"] == "Event not found"

    def test_seeded_attachments_point_at_log_files(self, client):
        headers = auth_headers(client)
        body = client.get("/api/events", params={"limit": 100}, headers=headers).json()
        urls = {e["download_url"] for e in body["events"] if e.get("download_url")}
        assert urls == {"/api/files/system_log_1.txt"}


class TestUsers:
    def test_own_profile(self, client):
        login = client.post("/api/login", json={"username": "user1", "password": "password123"}).json()
        response = client.get(
            f"/api/user/{login['user']['id']}",
            headers={"Authorization": f"Bearer {login['token']}"},
        )
        assert response.status_code == 200
        assert response.json()["name"] == "John Doe"

    def test_other_profile_forbidden(self, client, store):
        admin_id = store.get_user_by_username("admin").id
        response = client.get(f"/api/user/{admin_id}", headers=auth_headers(client, "demo", "demo123"))
        assert response.status_code == 403


class TestFiles:
    def test_download(self, client):
        response = client.get("/api/files/system_log_1.txt", headers=auth_headers(client))
        assert response.status_code == 200
        assert response.text == LOG_TEXT
        assert int(response.headers["content-length"]) == len(LOG_TEXT.encode())

    def test_missing_file(self, client):
        response = client.get("/api/files/system_log_9.txt", headers=auth_headers(client))
        assert response.status_code == 404
        assert response.json()["error"] == "File not found"

    def test_traversal_not_served(self, client):
        response = client.get("/api/files/..%2Fsecret.txt", headers=auth_headers(client))
        assert response.status_code in (400, 404)
        assert "do not serve" not in response.text

    def test_requires_token(self, client):
        assert client.get("/api/files/system_log_1.txt").status_code == 401

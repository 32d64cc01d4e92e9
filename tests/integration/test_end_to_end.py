"""
End-to-end: the client stack from build_app() talking to the demo backend
in-process through httpx.ASGITransport. No sockets are opened.
"""
from datetime import timedelta

import httpx
import pytest

from eventfeed.api.main import create_app
from eventfeed.api.store import DemoStore
from eventfeed.app import build_app
from eventfeed.config import Settings
from eventfeed.remote.errors import AuthenticationRejectedError
from eventfeed.sync.engine import EventSyncEngine
from factories import make_event

LOG_TEXT = "2025-01-15 11:42:00 ERROR camera calibration required\n" * 50


@pytest.fixture(name="settings")
def settings_fixture(tmp_path) -> Settings:
    files = tmp_path / "files"
    files.mkdir()
    (files / "system_log_1.txt").write_text(LOG_TEXT)
    return Settings(
        api_base_url="http://testserver",
        downloads_dir=tmp_path / "downloads",
        secure_store_dir=tmp_path / "secure",
        backend_files_dir=files,
        backend_jwt_secret="test-secret",
        page_size=20,
        polling_interval_seconds=60.0,
    )


@pytest.fixture(name="store")
def store_fixture(settings) -> DemoStore:
    return DemoStore(files_dir=settings.backend_files_dir, bcrypt_rounds=4)


@pytest.fixture(name="feed")
async def feed_fixture(settings, store, engine):
    backend = create_app(store=store, settings=settings)
    app = build_app(settings, engine=engine, transport=httpx.ASGITransport(app=backend))
    yield app
    await app.aclose()


async def test_login_page_and_download(feed, store):
    assert await feed.connectivity.probe(feed.client) is True
    await feed.session.login(feed.client, "admin", "admin123")

    await feed.sync.load_initial()
    assert len(feed.sync.state.loaded_events) == 20
    assert feed.sync.is_polling

    while feed.sync.state.has_more:
        await feed.sync.load_more()
    loaded = feed.sync.state.loaded_events
    assert len(loaded) == store.count() == 50
    assert len({e.id for e in loaded}) == 50
    assert feed.cache.count() == 50

    with_file = next(e for e in loaded if e.download_url)
    record = await feed.downloads.download(with_file.id, with_file.download_url, with_file.timestamp)
    assert feed.downloads.local_path(record).read_text() == LOG_TEXT
    assert [r.id for r in feed.downloads.list_all()] == [record.id]


async def test_new_events_are_counted_then_prepended(feed, store):
    await feed.session.login(feed.client, "demo", "demo123")
    await feed.sync.load_initial()
    newest = feed.sync.state.loaded_events[0]

    arrival = make_event(1, severity="critical", event_id="arrival-1")
    arrival.timestamp = newest.timestamp + timedelta(seconds=30)
    store.add_event(arrival)

    await feed.sync.check_for_new_events()
    assert feed.sync.state.new_events_count == 1
    assert feed.sync.state.new_critical_count == 1

    await feed.sync.refresh_new_events()
    assert feed.sync.state.loaded_events[0].id == "arrival-1"
    assert feed.sync.state.loaded_events[1].id == newest.id
    assert feed.sync.state.new_events_count == 0


async def test_rejected_token_logs_out(feed):
    await feed.session.login(feed.client, "user1", "password123")
    feed.session.set_logged_in("not-a-jwt", feed.session.user)

    with pytest.raises(AuthenticationRejectedError):
        await feed.client.get_user_profile(feed.session.user.id)

    assert not feed.session.is_logged_in


async def test_offline_feed_serves_cached_pages(feed, engine):
    await feed.session.login(feed.client, "admin", "admin123")
    await feed.sync.load_initial()
    await feed.sync.load_more()
    online_ids = [e.id for e in feed.sync.state.loaded_events]

    feed.connectivity.set_connected(False)
    offline = EventSyncEngine(feed.client, feed.cache, feed.connectivity, page_size=20)
    try:
        await offline.load_initial()
        await offline.load_more()
    finally:
        await offline.close()

    assert [e.id for e in offline.state.loaded_events] == online_ids
    assert offline.state.has_more is False


async def test_session_survives_restart(feed, settings, engine):
    await feed.session.login(feed.client, "admin", "admin123")

    restarted = build_app(settings, engine=engine)
    try:
        assert restarted.session.is_logged_in
        assert restarted.session.user.username == "admin"
    finally:
        await restarted.aclose()

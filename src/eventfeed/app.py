"""
Composition root for the client side.

Wires settings → engine → secure store → session → connectivity → API client
→ event cache → sync engine → download manager, and routes every 401 from the
API client into a session logout.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from eventfeed.config import Settings, get_settings
from eventfeed.db.engine import get_engine
from eventfeed.downloads.manager import FileDownloadManager
from eventfeed.downloads.progress import DownloadProgress
from eventfeed.remote.client import EventApiClient
from eventfeed.session.connectivity import ConnectivityMonitor
from eventfeed.session.context import SessionContext
from eventfeed.session.secure_store import SecureStore
from eventfeed.sync.engine import EventSyncEngine
from eventfeed.sync.event_cache import LocalEventCache

logger = logging.getLogger(__name__)


@dataclass
class EventFeedApp:
    settings: Settings
    session: SessionContext
    connectivity: ConnectivityMonitor
    client: EventApiClient
    cache: LocalEventCache
    sync: EventSyncEngine
    downloads: FileDownloadManager

    async def aclose(self) -> None:
        await self.sync.close()
        await self.client.aclose()


def build_app(
    settings: Optional[Settings] = None,
    engine=None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> EventFeedApp:
    """
    Build every client component and restore the saved session.

    Args:
        settings: Defaults to get_settings().
        engine: SQLAlchemy engine; defaults to the get_engine() singleton.
        transport: httpx transport override (ASGITransport in tests).
    """
    settings = settings or get_settings()
    engine = engine or get_engine()

    session = SessionContext(SecureStore(settings.secure_store_dir), engine)
    session.restore()

    connectivity = ConnectivityMonitor()
    client = EventApiClient(
        settings.api_base_url,
        token_provider=lambda: session.token,
        timeout=settings.request_timeout_seconds,
        transport=transport,
    )
    client.on_auth_rejected(session.handle_auth_rejected)

    cache = LocalEventCache(engine)
    sync = EventSyncEngine(
        client,
        cache,
        connectivity,
        page_size=settings.page_size,
        polling_interval=settings.polling_interval_seconds,
    )
    downloads = FileDownloadManager(
        client,
        engine,
        connectivity,
        settings.downloads_dir,
        progress=DownloadProgress(),
    )

    def _on_session_change(ctx: SessionContext) -> None:
        if not ctx.is_logged_in:
            sync.stop_polling()

    session.subscribe(_on_session_change)

    logger.info("Client ready - api: %s, logged_in: %s", settings.api_base_url, session.is_logged_in)
    return EventFeedApp(
        settings=settings,
        session=session,
        connectivity=connectivity,
        client=client,
        cache=cache,
        sync=sync,
        downloads=downloads,
    )

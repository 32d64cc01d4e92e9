"""
EventSyncEngine: keeps a gap-free, deduplicated prefix of the remote event
stream in memory, backed by the local cache for offline use.

Flow for a page load:
  1. Online: fetch the page from the API
  2. Insert every fetched event into the cache unless its id is already there
  3. Merge the page into state.loaded_events and take paging hints from the server

On any remote error: record state.last_error and serve the same position from
the cache instead. Errors never propagate to the caller; polling failures are
only logged.

load_initial(), load_more() and refresh_new_events() reject (not queue) a
call made while another load is running, via the is_loading/is_loading_more
flags.
"""
import asyncio
import logging
from typing import List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.exc import SQLAlchemyError

from eventfeed.models.event import Cursor, Event, datetime_to_ms
from eventfeed.models.sync import SyncState
from eventfeed.observable import Observable
from eventfeed.remote.client import EventPage
from eventfeed.remote.errors import EventFeedError
from eventfeed.scheduler.jobs import (
    build_scheduler,
    cancel_new_events_poll,
    schedule_new_events_poll,
)
from eventfeed.session.connectivity import ConnectivityMonitor
from eventfeed.sync.event_cache import LocalEventCache

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
DEFAULT_POLLING_INTERVAL = 30.0  # seconds

_RECOVERABLE = (EventFeedError, SQLAlchemyError)


class EventSyncEngine(Observable):
    """
    Owns one feed session's SyncState. Listeners receive the SyncState after
    every change.
    """

    def __init__(
        self,
        client,
        cache: LocalEventCache,
        connectivity: ConnectivityMonitor,
        scheduler: Optional[AsyncIOScheduler] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        polling_interval: float = DEFAULT_POLLING_INTERVAL,
    ):
        """
        Args:
            client: EventApiClient instance (or AsyncMock in tests).
            cache: LocalEventCache over the local SQLite engine.
            connectivity: Online/offline signal checked before every remote call.
            scheduler: APScheduler for polling. Defaults to a private one that
                close() shuts down.
            page_size: Events per page, remote and cached.
            polling_interval: Seconds between new-event count checks.
        """
        super().__init__()
        self.client = client
        self.cache = cache
        self.connectivity = connectivity
        self.page_size = page_size
        self.polling_interval = polling_interval
        self.state = SyncState()
        self._owns_scheduler = scheduler is None
        self._scheduler = scheduler or build_scheduler()
        self._polling = False

    @property
    def is_offline(self) -> bool:
        return self.connectivity.is_offline

    @property
    def is_polling(self) -> bool:
        return self._polling

    # ─── Page loads ───────────────────────────────────────────────────────────

    async def load_initial(self) -> None:
        """Load the newest page, from the API when online, else from the cache."""
        if self.state.is_busy:
            return

        self.state.is_loading = True
        self._publish()
        try:
            if self.is_offline:
                logger.info("Loading initial events from cache (offline)")
                self._load_from_cache()
                return

            logger.info("Loading initial events - limit: %d", self.page_size)
            self.state.last_error = None
            try:
                page = await self.client.get_events(limit=self.page_size)
                self.cache.insert_many_if_absent(page.events)
            except _RECOVERABLE as exc:
                logger.error("Failed to load initial events - error: %s", exc)
                self.state.last_error = str(exc)
                self._load_from_cache()
                return

            self.state.loaded_events = _dedupe(page.events)
            self.state.has_more = page.has_next
            self.state.next_cursor = _next_cursor(page)
            self._update_first_event_timestamp()
            logger.info(
                "Initial events loaded successfully - count: %d, has_more: %s",
                len(page.events),
                page.has_next,
            )
            self.start_polling()
        finally:
            self.state.is_loading = False
            self._publish()

    async def load_more(self) -> None:
        """Append the next older page, from the API when online, else from the cache."""
        cursor = self.state.next_cursor
        if self.state.is_busy or not self.state.has_more or cursor is None:
            return

        self.state.is_loading_more = True
        self._publish()
        try:
            if self.is_offline:
                logger.info("Loading more events from cache (offline)")
                self._load_more_from_cache(cursor)
                return

            logger.info(
                "Loading more events - after_timestamp: %d, after_id: %s",
                cursor.timestamp_ms,
                cursor.event_id,
            )
            try:
                page = await self.client.get_events(limit=self.page_size, after=cursor)
                self.cache.insert_many_if_absent(page.events)
            except _RECOVERABLE as exc:
                logger.error("Failed to load more events - error: %s", exc)
                self.state.last_error = str(exc)
                self._load_more_from_cache(cursor)
                return

            self._append(page.events)
            self.state.has_more = page.has_next
            self.state.next_cursor = _next_cursor(page)
            logger.info(
                "More events loaded successfully - count: %d, has_more: %s",
                len(page.events),
                page.has_next,
            )
        finally:
            self.state.is_loading_more = False
            self._publish()

    async def refresh_new_events(self) -> None:
        """
        Pull events newer than the newest loaded one.

        If the server says nothing newer remains (has_next false) the batch is
        contiguous with the loaded list and gets prepended. Otherwise the batch
        may not reach the loaded list, so it replaces it and paging restarts
        from the batch's oldest event. The cache keeps everything either way.
        """
        if self.is_offline or self.state.is_busy:
            return
        if not self.state.loaded_events or self.state.first_event_timestamp is None:
            return

        cursor = Cursor.from_event(self.state.loaded_events[0])
        logger.info(
            "Refreshing new events - before_timestamp: %d, before_id: %s",
            cursor.timestamp_ms,
            cursor.event_id,
        )

        self.state.is_loading = True
        self.state.last_error = None
        self._publish()
        try:
            page = await self.client.get_events(limit=self.page_size, before=cursor)
            if not page.events:
                logger.info("Refresh: no new events found")
                self._clear_new_event_counts()
                return

            self.cache.insert_many_if_absent(page.events)

            if not page.has_next:
                self._prepend(page.events)
            else:
                logger.info("Refresh: more newer events remain, replacing loaded events")
                self.state.loaded_events = _dedupe(page.events)
                self.state.has_more = True
                self.state.next_cursor = _next_cursor(page)

            self._update_first_event_timestamp()
            self._clear_new_event_counts()
            logger.info("Refresh: new events updated - count: %d", len(page.events))
        except _RECOVERABLE as exc:
            logger.error("Refresh failed - error: %s", exc)
            self.state.last_error = str(exc)
        finally:
            self.state.is_loading = False
            self._publish()

    # ─── Polling ──────────────────────────────────────────────────────────────

    def start_polling(self) -> None:
        """(Re)start the new-events poll. Any previous schedule is cancelled first."""
        self.stop_polling()
        logger.info("Starting polling for new events - interval: %.1f seconds", self.polling_interval)
        self._polling = True
        schedule_new_events_poll(self._scheduler, self._poll_tick, self.polling_interval)

    def stop_polling(self) -> None:
        """Cancel the poll. Idempotent; a tick already running may finish."""
        self._polling = False
        if cancel_new_events_poll(self._scheduler):
            logger.info("Stopping polling for new events")

    async def _poll_tick(self) -> None:
        if not self._polling:
            return
        logger.debug("Polling: checking for new events...")
        await self.check_for_new_events()

    async def check_for_new_events(self) -> None:
        """Update the new-event counters. Never raises for remote failures."""
        first_timestamp = self.state.first_event_timestamp
        if self.is_offline:
            logger.debug("Polling skipped: offline")
            return
        if first_timestamp is None:
            return

        try:
            counts = await self.client.get_new_events_count(datetime_to_ms(first_timestamp))
        except EventFeedError as exc:
            logger.error("Polling: failed to check for new events - error: %s", exc)
            return

        self.state.new_events_count = counts.total_count
        self.state.new_critical_count = counts.critical_count
        if counts.total_count > 0:
            logger.info(
                "Polling: new events found - total: %d, critical: %d",
                counts.total_count,
                counts.critical_count,
            )
        self._publish()

    async def close(self) -> None:
        """Stop polling and shut down the scheduler if this engine created it."""
        self.stop_polling()
        if self._owns_scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            # AsyncIOScheduler may defer shutdown to the next loop iteration.
            await asyncio.sleep(0)

    # ─── Cache fallback ───────────────────────────────────────────────────────

    def _load_from_cache(self) -> None:
        """Replace loaded_events with the newest cached page."""
        try:
            total = self.cache.count()
            events = self.cache.newest(self.page_size)
        except SQLAlchemyError as exc:
            logger.error("Failed to read cached events - error: %s", exc)
            self.state.last_error = str(exc)
            return

        self.state.loaded_events = _dedupe(events)
        self._update_first_event_timestamp()
        self._set_paging_from_cache(events, remaining=total)

    def _load_more_from_cache(self, cursor: Cursor) -> None:
        """Append the cached page strictly older than cursor."""
        try:
            remaining = self.cache.count_older_than(cursor)
            events = self.cache.older_than(cursor, self.page_size)
        except SQLAlchemyError as exc:
            logger.error("Failed to read cached events - error: %s", exc)
            self.state.last_error = str(exc)
            return

        self._append(events)
        self._set_paging_from_cache(events, remaining=remaining)

    def _set_paging_from_cache(self, events: List[Event], remaining: int) -> None:
        """remaining counts cached events from the page's start position onward."""
        if remaining > self.page_size and events:
            self.state.has_more = True
            self.state.next_cursor = Cursor.from_event(events[-1])
        else:
            self.state.has_more = False
            self.state.next_cursor = None

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _append(self, events: List[Event]) -> None:
        seen = set(self.state.event_ids)
        self.state.loaded_events = self.state.loaded_events + [
            e for e in _dedupe(events) if e.id not in seen
        ]

    def _prepend(self, events: List[Event]) -> None:
        fresh = _dedupe(events)
        fresh_ids = {e.id for e in fresh}
        self.state.loaded_events = fresh + [
            e for e in self.state.loaded_events if e.id not in fresh_ids
        ]

    def _update_first_event_timestamp(self) -> None:
        if self.state.loaded_events:
            self.state.first_event_timestamp = self.state.loaded_events[0].timestamp

    def _clear_new_event_counts(self) -> None:
        self.state.new_events_count = 0
        self.state.new_critical_count = 0

    def _publish(self) -> None:
        self.notify(self.state)


def _next_cursor(page: EventPage) -> Optional[Cursor]:
    """The page's cursor, or its last event when the server sends has_next without one."""
    if page.next_cursor is not None or not page.has_next or not page.events:
        return page.next_cursor
    return Cursor.from_event(page.events[-1])


def _dedupe(events: List[Event]) -> List[Event]:
    """Drop repeated ids, keeping the first occurrence and the order."""
    seen = set()
    unique = []
    for event in events:
        if event.id in seen:
            continue
        seen.add(event.id)
        unique.append(event)
    return unique

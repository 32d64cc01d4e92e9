"""
LocalEventCache: the persistent, append-only event store.

Every query returns events in feed order (timestamp desc, id desc), the same
order the server uses, so cached pages line up with remote pages and a
cursor means the same position in both.

Writes are insert-if-absent inside one transaction per batch; an existing row
is never updated. Callers run on the event loop thread and no call here
awaits, so a batch cannot interleave with another writer.
"""
import logging
from typing import Iterable, List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, func, select

from eventfeed.models.event import Cursor, Event

logger = logging.getLogger(__name__)


def _feed_order():
    return (Event.timestamp.desc(), Event.id.desc())


def _older_than(cursor: Cursor):
    """Predicate: strictly after cursor in feed order (i.e. older)."""
    ts = cursor.timestamp
    return or_(
        Event.timestamp < ts,
        and_(Event.timestamp == ts, Event.id < cursor.event_id),
    )


def _newer_than(cursor: Cursor):
    """Predicate: strictly before cursor in feed order (i.e. newer)."""
    ts = cursor.timestamp
    return or_(
        Event.timestamp > ts,
        and_(Event.timestamp == ts, Event.id > cursor.event_id),
    )


class LocalEventCache:
    """Queryable event cache over the SQLite engine."""

    def __init__(self, engine):
        """
        Args:
            engine: SQLAlchemy engine (SQLModel create_engine result).
        """
        self.engine = engine

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    # ─── Writes ───────────────────────────────────────────────────────────────

    def insert_if_absent(self, event: Event) -> bool:
        """Insert event unless its id is already cached. Returns True if inserted."""
        return self.insert_many_if_absent([event]) == 1

    def insert_many_if_absent(self, events: Iterable[Event]) -> int:
        """
        Insert every event whose id is not cached yet, in one transaction.

        Existing rows are left untouched even if the payload differs.

        Returns:
            Number of rows inserted.
        """
        events = list(events)
        if not events:
            return 0

        with self._session() as s:
            ids = {e.id for e in events}
            existing = set(s.exec(select(Event.id).where(Event.id.in_(ids))).all())
            inserted = 0
            for event in events:
                if event.id in existing:
                    continue
                # Store a copy so the caller's instance never becomes session-bound
                s.add(Event(**event.model_dump()))
                existing.add(event.id)
                inserted += 1
            try:
                s.commit()
            except IntegrityError:
                # Another writer got there first; fall back to row-by-row
                s.rollback()
                return self._insert_one_by_one(events)

        if inserted:
            logger.debug("Cached %d new events (%d already present)", inserted, len(events) - inserted)
        return inserted

    def _insert_one_by_one(self, events: List[Event]) -> int:
        inserted = 0
        for event in events:
            with self._session() as s:
                if s.get(Event, event.id) is not None:
                    continue
                s.add(Event(**event.model_dump()))
                try:
                    s.commit()
                    inserted += 1
                except IntegrityError:
                    s.rollback()
        return inserted

    # ─── Reads ────────────────────────────────────────────────────────────────

    def get(self, event_id: str) -> Optional[Event]:
        with self._session() as s:
            return s.get(Event, event_id)

    def exists(self, event_id: str) -> bool:
        return self.get(event_id) is not None

    def count(self) -> int:
        with self._session() as s:
            return s.exec(select(func.count()).select_from(Event)).one()

    def count_older_than(self, cursor: Cursor) -> int:
        with self._session() as s:
            return s.exec(
                select(func.count()).select_from(Event).where(_older_than(cursor))
            ).one()

    def count_newer_than(self, cursor: Cursor) -> int:
        with self._session() as s:
            return s.exec(
                select(func.count()).select_from(Event).where(_newer_than(cursor))
            ).one()

    def newest(self, limit: int) -> List[Event]:
        """The first `limit` events in feed order."""
        with self._session() as s:
            return list(s.exec(select(Event).order_by(*_feed_order()).limit(limit)).all())

    def older_than(self, cursor: Cursor, limit: int) -> List[Event]:
        """Up to `limit` events strictly older than cursor, in feed order."""
        with self._session() as s:
            return list(
                s.exec(
                    select(Event)
                    .where(_older_than(cursor))
                    .order_by(*_feed_order())
                    .limit(limit)
                ).all()
            )

"""Tests for LocalEventCache: insert-if-absent and feed-ordered range queries."""
from eventfeed.models.event import Cursor
from eventfeed.sync.event_cache import LocalEventCache
from factories import make_event, make_events


class TestInsert:
    def test_insert_many_returns_inserted_count(self, engine):
        cache = LocalEventCache(engine)
        assert cache.insert_many_if_absent(make_events(5)) == 5
        assert cache.count() == 5

    def test_empty_batch(self, engine):
        assert LocalEventCache(engine).insert_many_if_absent([]) == 0

    def test_existing_rows_are_never_updated(self, engine):
        cache = LocalEventCache(engine)
        cache.insert_if_absent(make_event(1))

        changed = make_event(1)
        changed.message = "rewritten"
        assert cache.insert_if_absent(changed) is False
        assert cache.get("evt-0001").message == "Event #1"

    def test_duplicates_within_batch_inserted_once(self, engine):
        cache = LocalEventCache(engine)
        assert cache.insert_many_if_absent([make_event(1), make_event(1), make_event(2)]) == 2
        assert cache.count() == 2

    def test_caller_instances_stay_usable(self, engine):
        cache = LocalEventCache(engine)
        events = make_events(3)
        cache.insert_many_if_absent(events)
        assert [e.message for e in events] == ["Event #0", "Event #1", "Event #2"]

    def test_exists(self, engine):
        cache = LocalEventCache(engine)
        cache.insert_if_absent(make_event(7))
        assert cache.exists("evt-0007")
        assert not cache.exists("evt-0008")


class TestQueries:
    def test_newest_in_feed_order(self, engine):
        cache = LocalEventCache(engine)
        events = make_events(10)
        cache.insert_many_if_absent(reversed(events))
        assert [e.id for e in cache.newest(4)] == [e.id for e in events[:4]]

    def test_ties_broken_by_id_desc(self, engine):
        cache = LocalEventCache(engine)
        cache.insert_many_if_absent([
            make_event(1, minutes_ago=5, event_id="a"),
            make_event(2, minutes_ago=5, event_id="c"),
            make_event(3, minutes_ago=5, event_id="b"),
        ])
        assert [e.id for e in cache.newest(10)] == ["c", "b", "a"]

    def test_older_than_is_strict(self, engine):
        cache = LocalEventCache(engine)
        events = make_events(10)
        cache.insert_many_if_absent(events)

        page = cache.older_than(Cursor.from_event(events[3]), 3)
        assert [e.id for e in page] == [e.id for e in events[4:7]]

    def test_older_than_same_timestamp(self, engine):
        cache = LocalEventCache(engine)
        a = make_event(1, minutes_ago=5, event_id="a")
        b = make_event(2, minutes_ago=5, event_id="b")
        c = make_event(3, minutes_ago=5, event_id="c")
        older = make_event(4, minutes_ago=6, event_id="z")
        cache.insert_many_if_absent([a, b, c, older])

        page = cache.older_than(Cursor.from_event(b), 10)
        assert [e.id for e in page] == ["a", "z"]

    def test_counts_relative_to_cursor(self, engine):
        cache = LocalEventCache(engine)
        events = make_events(10)
        cache.insert_many_if_absent(events)
        cursor = Cursor.from_event(events[3])

        assert cache.count_older_than(cursor) == 6
        assert cache.count_newer_than(cursor) == 3

    def test_returned_events_are_detached(self, engine):
        cache = LocalEventCache(engine)
        cache.insert_many_if_absent(make_events(2))
        event = cache.newest(1)[0]
        # Attribute access after the session closed must not raise
        assert event.device_name == "Device 0"

"""Tests for ConnectivityMonitor and the Observable base."""
from unittest.mock import AsyncMock

from eventfeed.observable import Observable
from eventfeed.session.connectivity import ConnectivityMonitor


class TestConnectivityMonitor:
    def test_defaults_online(self):
        monitor = ConnectivityMonitor()
        assert monitor.is_connected
        assert not monitor.is_offline

    def test_notifies_only_on_change(self):
        monitor = ConnectivityMonitor()
        changes = []
        monitor.subscribe(changes.append)

        monitor.set_connected(True)
        monitor.set_connected(False)
        monitor.set_connected(False)
        monitor.set_connected(True)

        assert changes == [False, True]

    async def test_probe_records_result(self):
        monitor = ConnectivityMonitor()
        client = AsyncMock()
        client.check_availability = AsyncMock(return_value=False)

        assert await monitor.probe(client) is False
        assert monitor.is_offline


class TestObservable:
    def test_failing_listener_does_not_break_others(self):
        observable = Observable()
        received = []

        def broken(value):
            raise RuntimeError("listener bug")

        observable.subscribe(broken)
        observable.subscribe(received.append)

        observable.notify(1)

        assert received == [1]

    def test_unsubscribe_twice_is_safe(self):
        observable = Observable()
        unsubscribe = observable.subscribe(lambda: None)
        unsubscribe()
        unsubscribe()
        observable.notify()

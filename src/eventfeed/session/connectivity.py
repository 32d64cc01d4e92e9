"""Observable online/offline signal."""
import logging

from eventfeed.observable import Observable

logger = logging.getLogger(__name__)


class ConnectivityMonitor(Observable):
    """
    Holds the reachability boolean consulted before every remote call.

    The platform (or probe()) pushes changes in with set_connected();
    listeners receive the new value only when it actually changes.
    """

    def __init__(self, is_connected: bool = True) -> None:
        super().__init__()
        self._is_connected = is_connected

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    @property
    def is_offline(self) -> bool:
        return not self._is_connected

    def set_connected(self, is_connected: bool) -> None:
        if is_connected == self._is_connected:
            return
        self._is_connected = is_connected
        logger.info("Connectivity changed: %s", "online" if is_connected else "offline")
        self.notify(is_connected)

    async def probe(self, client) -> bool:
        """Check the API health endpoint and record the result."""
        reachable = await client.check_availability()
        self.set_connected(reachable)
        return reachable

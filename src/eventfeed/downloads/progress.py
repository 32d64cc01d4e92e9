"""In-memory download progress, keyed by file id."""
from typing import Dict, Optional

from eventfeed.observable import Observable


class DownloadProgress(Observable):
    """
    Maps file id → fraction in [0, 1] for transfers in flight.

    Entries exist only while a transfer runs; listeners receive
    (file_id, fraction) on updates and (file_id, None) on removal.
    Nothing here is persisted: after a restart every transfer is gone.
    """

    def __init__(self) -> None:
        super().__init__()
        self._progress: Dict[str, float] = {}

    def set(self, file_id: str, fraction: float) -> None:
        fraction = min(max(fraction, 0.0), 1.0)
        self._progress[file_id] = fraction
        self.notify(file_id, fraction)

    def clear(self, file_id: str) -> None:
        if self._progress.pop(file_id, None) is not None:
            self.notify(file_id, None)

    def get(self, file_id: str) -> Optional[float]:
        return self._progress.get(file_id)

    def snapshot(self) -> Dict[str, float]:
        return dict(self._progress)

    def __contains__(self, file_id: str) -> bool:
        return file_id in self._progress

"""In-memory feed state owned by EventSyncEngine."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from eventfeed.models.event import Cursor, Event


@dataclass
class SyncState:
    """Snapshot of one feed session. Not persisted."""

    loaded_events: List[Event] = field(default_factory=list)  # newest first, unique ids
    has_more: bool = True
    next_cursor: Optional[Cursor] = None  # older boundary for load_more()
    first_event_timestamp: Optional[datetime] = None  # pivot for polling/refresh
    new_events_count: int = 0
    new_critical_count: int = 0
    is_loading: bool = False
    is_loading_more: bool = False
    last_error: Optional[str] = None

    @property
    def is_busy(self) -> bool:
        return self.is_loading or self.is_loading_more

    @property
    def event_ids(self) -> List[str]:
        return [e.id for e in self.loaded_events]

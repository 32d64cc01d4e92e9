"""Event cache model, severity levels, and the pagination cursor."""
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel

EPOCH = datetime(1970, 1, 1)
_ONE_MS = timedelta(milliseconds=1)


def ms_to_datetime(timestamp_ms: int) -> datetime:
    """Unix milliseconds → naive UTC datetime (exact, no float rounding)."""
    return EPOCH + timedelta(milliseconds=timestamp_ms)


def datetime_to_ms(value: datetime) -> int:
    """Naive UTC datetime → Unix milliseconds. Sub-millisecond parts are dropped."""
    return (value - EPOCH) // _ONE_MS


class Severity(str, Enum):
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Severity":
        """Map a wire value onto a known level; anything unrecognised is UNKNOWN."""
        try:
            return cls((value or "").lower())
        except ValueError:
            return cls.UNKNOWN


class Event(SQLModel, table=True):
    """
    One row per IoT device event, keyed by the server-assigned id.

    Rows are immutable once stored. Feed order is (timestamp desc, id desc);
    the matching compound index is created by run_migrations().
    """

    id: str = Field(primary_key=True)
    device_id: str
    device_name: str
    type: str  # "facial_authentication", "tailgating_detection", ...
    severity: str = Severity.UNKNOWN.value
    message: str
    # naive UTC, millisecond precision
    timestamp: datetime = Field(
        sa_column=Column(DateTime(timezone=False), index=True, nullable=False)
    )
    location: str
    download_url: Optional[str] = None

    @property
    def severity_level(self) -> Severity:
        return Severity.parse(self.severity)

    @property
    def timestamp_ms(self) -> int:
        return datetime_to_ms(self.timestamp)


@dataclass(frozen=True)
class Cursor:
    """A position in the feed order: (timestamp ms, event id)."""

    timestamp_ms: int
    event_id: str

    @classmethod
    def from_event(cls, event: Event) -> "Cursor":
        return cls(timestamp_ms=event.timestamp_ms, event_id=event.id)

    @property
    def timestamp(self) -> datetime:
        return ms_to_datetime(self.timestamp_ms)

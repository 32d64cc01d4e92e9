"""
In-memory data for the demo backend: three users and a seeded event stream.

Passwords (bcrypt):
    admin  → admin123
    user1  → password123
    demo   → demo123

Events are kept in one list and sorted on read in feed order
(timestamp desc, id desc). Attachments point at system_log_*.txt files found
in the files directory; with no such files no event carries a download_url.
"""
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional, Tuple

from eventfeed.api.security import hash_password
from eventfeed.models.event import Event, Severity, datetime_to_ms

logger = logging.getLogger(__name__)

DEFAULT_BCRYPT_ROUNDS = 10
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20

_SEED_USERS = [
    # username, password, email, name, role
    ("admin", "admin123", "admin@ioteventfeed.com", "Admin User", "administrator"),
    ("user1", "password123", "user1@ioteventfeed.com", "John Doe", "user"),
    ("demo", "demo123", "demo@ioteventfeed.com", "Demo User", "user"),
]

_MAIN = ("DEVICE-001", "Device - Main Entrance", "Main Entrance, Building A")
_SERVER = ("DEVICE-002", "Device - Server Room Access", "Server Room, Floor 3")
_EXEC = ("DEVICE-003", "Device - Executive Floor", "Executive Floor, Building B")
_PARKING = ("DEVICE-004", "Device - Parking Garage", "Parking Garage, Level 2")
_LAB = ("DEVICE-005", "Device - Research Lab", "Research Lab, Building C")
_DATA = ("DEVICE-006", "Device - Data Center", "Data Center, Basement")
_WAREHOUSE = ("DEVICE-007", "Device - Warehouse Entrance", "Warehouse Entrance, Building D")

# device, type, severity, message, minutes ago, attachment slot (or None)
_SEED_EVENTS = [
    (_MAIN, "facial_authentication", "info", "Facial authentication successful", 5, None),
    (_SERVER, "facial_authentication", "warning", "Facial authentication failed", 12, None),
    (_MAIN, "tailgating_detection", "critical",
     "Tailgating detected - Unauthorized person followed authorized user", 18, 1),
    (_EXEC, "facial_authentication", "info", "Facial authentication successful", 25, None),
    (_SERVER, "access_denied", "warning",
     "Access denied - Authentication failure after 3 attempts", 32, None),
    (_PARKING, "facial_authentication", "info", "Facial authentication successful", 45, None),
    (_MAIN, "tailgating_detection", "critical",
     "Tailgating detected - Multiple unauthorized individuals", 60, 2),
    (_LAB, "facial_authentication", "info", "Facial authentication successful", 45, None),
    (_EXEC, "access_denied", "error",
     "Access denied - Face mask detected, authentication required", 30, None),
    (_DATA, "facial_authentication", "info", "Facial authentication successful", 120, None),
    (_SERVER, "system", "error", "System error - Camera calibration required", 100, 0),
    (_MAIN, "facial_authentication", "info", "Facial authentication successful", 180, None),
    (_PARKING, "tailgating_detection", "critical",
     "Tailgating detected - Vehicle tailgating through gate", 150, 3),
    (_WAREHOUSE, "facial_authentication", "warning",
     "Facial authentication failed - Low confidence match", 240, None),
    (_LAB, "facial_authentication", "info", "Facial authentication successful", 195, None),
]

_GENERATED_LOCATIONS = [
    "Main Entrance, Building A", "Server Room, Floor 3", "Executive Floor, Building B",
    "Parking Garage, Level 2", "Research Lab, Building C", "Data Center, Basement",
    "Warehouse Entrance, Building D", "Conference Room, Floor 5", "IT Office, Floor 2",
    "Lobby, Building A",
]
_GENERATED_DEVICE_NAMES = [
    "Device - Main Entrance", "Device - Server Room Access", "Device - Executive Floor",
    "Device - Parking Garage", "Device - Research Lab", "Device - Data Center",
    "Device - Warehouse Entrance", "Device - Conference Room", "Device - IT Office",
    "Device - Lobby",
]
_GENERATED_TYPES = [
    "facial_authentication", "tailgating_detection", "access_denied", "facial_authentication",
    "facial_authentication", "tailgating_detection", "access_denied", "facial_authentication",
    "facial_authentication", "tailgating_detection",
]
_GENERATED_SEVERITIES = [
    "info", "critical", "warning", "info", "info", "critical", "warning", "info", "info", "critical",
]
_GENERATED_MESSAGES = [
    "Facial authentication successful", "Tailgating detected",
    "Access denied - Authentication failure", "Facial authentication successful",
    "Facial authentication successful", "Tailgating detected", "Access denied",
    "Facial authentication successful", "Facial authentication successful", "Tailgating detected",
]


@dataclass
class DemoUser:
    id: str
    username: str
    email: str
    name: str
    role: str
    password_hash: str


def _now_ms_precision() -> datetime:
    now = datetime.utcnow()
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def find_log_files(files_dir: Optional[Path]) -> List[str]:
    """Names of system_log_*.txt files in files_dir, sorted."""
    if files_dir is None or not Path(files_dir).is_dir():
        return []
    return sorted(
        p.name
        for p in Path(files_dir).iterdir()
        if p.is_file() and p.name.startswith("system_log_") and p.suffix == ".txt"
    )


class DemoStore:
    """Users and events for the demo backend. Safe to share across request threads."""

    def __init__(
        self,
        files_dir: Optional[Path] = None,
        seed_events: bool = True,
        bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS,
        now: Optional[datetime] = None,
    ):
        self._lock = threading.RLock()
        self._users = {}
        self._events: List[Event] = []
        self._seed_users(bcrypt_rounds)
        if seed_events:
            self._seed_events(now or _now_ms_precision(), find_log_files(files_dir))

    # ─── Users ────────────────────────────────────────────────────────────────

    def _seed_users(self, rounds: int) -> None:
        for username, password, email, name, role in _SEED_USERS:
            self._users[username] = DemoUser(
                id=str(uuid.uuid4()),
                username=username,
                email=email,
                name=name,
                role=role,
                password_hash=hash_password(password, rounds=rounds),
            )

    def get_user_by_username(self, username: str) -> Optional[DemoUser]:
        with self._lock:
            return self._users.get(username)

    def get_user_by_id(self, user_id: str) -> Optional[DemoUser]:
        with self._lock:
            for user in self._users.values():
                if user.id == user_id:
                    return user
        return None

    # ─── Events ───────────────────────────────────────────────────────────────

    def _seed_events(self, now: datetime, log_files: List[str]) -> None:
        def attachment(slot: int) -> Optional[str]:
            if not log_files:
                return None
            return f"/api/files/{log_files[slot % len(log_files)]}"

        for (device_id, device_name, location), type_, severity, message, minutes, slot in _SEED_EVENTS:
            self._events.append(Event(
                id=str(uuid.uuid4()),
                device_id=device_id,
                device_name=device_name,
                type=type_,
                severity=severity,
                message=message,
                timestamp=now - timedelta(minutes=minutes),
                location=location,
                download_url=attachment(slot) if slot is not None else None,
            ))

        # Older tail, spread over ~25 hours, to exercise paging
        for i in range(16, 51):
            idx = i % 10
            severity = _GENERATED_SEVERITIES[idx]
            download_url = None
            if log_files:
                if i % 7 == 0:
                    severity = Severity.ERROR.value
                    download_url = attachment(i // 7)
                elif _GENERATED_TYPES[idx] == "tailgating_detection" and i % 3 == 0:
                    download_url = attachment(i // 3)
            self._events.append(Event(
                id=str(uuid.uuid4()),
                device_id=f"DEVICE-{idx + 1:03d}",
                device_name=_GENERATED_DEVICE_NAMES[idx],
                type=_GENERATED_TYPES[idx],
                severity=severity,
                message=f"{_GENERATED_MESSAGES[idx]} - Event #{i}",
                timestamp=now - timedelta(hours=i // 2, minutes=i % 60),
                location=_GENERATED_LOCATIONS[idx],
                download_url=download_url,
            ))
        logger.info("Seeded %d demo events (%d log files)", len(self._events), len(log_files))

    def add_event(self, event: Event) -> Event:
        """Append an event, e.g. a new arrival while the demo is running."""
        with self._lock:
            self._events.append(event)
        return event

    def get_event(self, event_id: str) -> Optional[Event]:
        with self._lock:
            for event in self._events:
                if event.id == event_id:
                    return event
        return None

    def count(self) -> int:
        with self._lock:
            return len(self._events)

    def get_events(
        self,
        limit: int = DEFAULT_PAGE_SIZE,
        before_ts: Optional[int] = None,
        before_id: Optional[str] = None,
        after_ts: Optional[int] = None,
        after_id: Optional[str] = None,
    ) -> Tuple[List[Event], bool]:
        """
        One page in feed order and whether more events match.

        after_*  keeps events strictly older than the (ts, id) position.
        before_* keeps events strictly newer; the page holds the newest
                 `limit` of them, so has_next means a gap to the position.
        Without an id the position compares on timestamp alone.
        """
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        with self._lock:
            events = sorted(self._events, key=_feed_key, reverse=True)

        if before_ts is not None:
            events = [e for e in events if _is_newer(e, before_ts, before_id)]
        if after_ts is not None:
            events = [e for e in events if _is_older(e, after_ts, after_id)]

        return events[:limit], len(events) > limit

    def count_newer(self, after_ts: int) -> Tuple[int, int]:
        """(total, critical) events strictly newer than after_ts (ms)."""
        with self._lock:
            newer = [e for e in self._events if datetime_to_ms(e.timestamp) > after_ts]
        critical = sum(1 for e in newer if e.severity_level is Severity.CRITICAL)
        return len(newer), critical


def _feed_key(event: Event):
    return (event.timestamp, event.id)


def _is_newer(event: Event, ts: int, event_id: Optional[str]) -> bool:
    event_ts = datetime_to_ms(event.timestamp)
    if event_ts != ts:
        return event_ts > ts
    return event_id is not None and event.id > event_id


def _is_older(event: Event, ts: int, event_id: Optional[str]) -> bool:
    event_ts = datetime_to_ms(event.timestamp)
    if event_ts != ts:
        return event_ts < ts
    return event_id is not None and event.id < event_id

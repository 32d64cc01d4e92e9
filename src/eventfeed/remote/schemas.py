"""
Wire schemas for the event API.

Shared by the HTTP client (decoding) and the demo backend (encoding), so both
sides agree on field names. Event timestamps travel as Unix milliseconds and
are converted to datetimes here, at the boundary only.
"""
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, Field

from eventfeed.models.event import Cursor, Event, datetime_to_ms, ms_to_datetime
from eventfeed.models.user import User


class ErrorBody(BaseModel):
    error: str
    message: Optional[str] = None
    code: int


class ApiUser(BaseModel):
    id: str
    username: str
    email: str
    name: str
    role: str

    def to_user(self) -> User:
        return User(**self.model_dump())

    @classmethod
    def from_user(cls, user) -> "ApiUser":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            name=user.name,
            role=user.role,
        )


class LoginRequest(BaseModel):
    username: str
    password: str


class LoginResponse(BaseModel):
    token: str
    user: ApiUser


class ApiEvent(BaseModel):
    id: str
    device_id: str
    device_name: str
    type: str
    severity: str
    message: str
    timestamp: int  # Unix milliseconds
    location: str
    download_url: Optional[str] = None

    def to_event(self) -> Event:
        fields = self.model_dump()
        fields["timestamp"] = ms_to_datetime(self.timestamp)
        return Event(**fields)

    @classmethod
    def from_event(cls, event: Event) -> "ApiEvent":
        return cls(
            id=event.id,
            device_id=event.device_id,
            device_name=event.device_name,
            type=event.type,
            severity=event.severity,
            message=event.message,
            timestamp=datetime_to_ms(event.timestamp),
            location=event.location,
            download_url=event.download_url,
        )


class ApiCursor(BaseModel):
    timestamp: int = Field(validation_alias=AliasChoices("timestamp", "timestamp_ms"))
    event_id: str

    def to_cursor(self) -> Cursor:
        return Cursor(timestamp_ms=self.timestamp, event_id=self.event_id)


class EventListResponse(BaseModel):
    events: List[ApiEvent]
    has_next: bool
    next_cursor: Optional[ApiCursor] = None


class NewEventsCountResponse(BaseModel):
    total_count: int
    critical_count: int

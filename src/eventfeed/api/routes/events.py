"""Event feed routes: cursor pages, single event, new-event count."""
from typing import Optional

from fastapi import APIRouter, Depends, Request

from eventfeed.api.errors import ApiError
from eventfeed.api.security import get_current_user
from eventfeed.api.store import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from eventfeed.remote.schemas import (
    ApiCursor,
    ApiEvent,
    EventListResponse,
    NewEventsCountResponse,
)

router = APIRouter(dependencies=[Depends(get_current_user)])


@router.get("", response_model=EventListResponse)
def list_events(
    request: Request,
    limit: Optional[int] = None,
    before_ts: Optional[int] = None,
    before_id: Optional[str] = None,
    after_ts: Optional[int] = None,
    after_id: Optional[str] = None,
):
    """
    Events newest first. after_* pages toward older events, before_* fetches
    the newest events above a position. The two directions are exclusive.
    """
    if limit is not None and limit <= 0:
        raise ApiError(
            400,
            "Invalid limit format",
            f"The 'limit' parameter must be a positive integer (max: {MAX_PAGE_SIZE})",
        )
    if before_ts is not None and after_ts is not None:
        raise ApiError(400, "Invalid parameters", "Cannot use both 'before_ts' and 'after_ts'")
    if before_id is not None and before_ts is None:
        raise ApiError(400, "Invalid parameters", "'before_id' requires 'before_ts'")
    if after_id is not None and after_ts is None:
        raise ApiError(400, "Invalid parameters", "'after_id' requires 'after_ts'")

    events, has_next = request.app.state.store.get_events(
        limit=limit or DEFAULT_PAGE_SIZE,
        before_ts=before_ts,
        before_id=before_id,
        after_ts=after_ts,
        after_id=after_id,
    )
    next_cursor = None
    if has_next and events:
        last = events[-1]
        next_cursor = ApiCursor(timestamp=last.timestamp_ms, event_id=last.id)
    return EventListResponse(
        events=[ApiEvent.from_event(e) for e in events],
        has_next=has_next,
        next_cursor=next_cursor,
    )


@router.get("/new/count", response_model=NewEventsCountResponse)
def new_events_count(request: Request, after_ts: int):
    """How many events (and critical events) are newer than after_ts."""
    total, critical = request.app.state.store.count_newer(after_ts)
    return NewEventsCountResponse(total_count=total, critical_count=critical)


@router.get("/{event_id}", response_model=ApiEvent)
def get_event(event_id: str, request: Request):
    event = request.app.state.store.get_event(event_id)
    if event is None:
        raise ApiError(404, "Event not found", "The requested event does not exist")
    return ApiEvent.from_event(event)

"""
Async HTTP client for the IoT event API.

Every authenticated request carries the bearer token returned by
token_provider(). A 401 from any authenticated endpoint notifies the
auth-rejected listeners (the session logs out in response) before the
AuthenticationRejectedError propagates; the client itself knows nothing about
sessions.

All httpx failures are translated into the eventfeed error taxonomy so callers
only ever catch EventFeedError subclasses.
"""
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from eventfeed.models.event import Cursor, Event
from eventfeed.observable import Observable
from eventfeed.remote.errors import (
    AuthenticationRejectedError,
    DecodingError,
    DownloadFailedError,
    InvalidResponseError,
    RemoteUnreachableError,
)
from eventfeed.remote.schemas import (
    ApiEvent,
    ApiUser,
    EventListResponse,
    LoginRequest,
    LoginResponse,
    NewEventsCountResponse,
)

logger = logging.getLogger(__name__)

API_PREFIX = "/api"
HEALTH_PATH = "/health"
DEFAULT_TIMEOUT = 10.0  # seconds
HEALTH_TIMEOUT = 5.0

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass
class EventPage:
    """One page of events in feed order, plus the server's paging hints."""

    events: List[Event]
    has_next: bool
    next_cursor: Optional[Cursor] = None


class EventApiClient:
    """
    Thin async wrapper over httpx.AsyncClient for the event API.

    Usage:
        client = EventApiClient("http://localhost:8080", token_provider=lambda: session.token)
        client.on_auth_rejected(session.handle_auth_rejected)
        page = await client.get_events(limit=20)
    """

    def __init__(
        self,
        base_url: str,
        token_provider: Optional[Callable[[], Optional[str]]] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: Server root, e.g. "http://localhost:8080" (no /api suffix).
            token_provider: Returns the current bearer token, or None when logged out.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (MockTransport / ASGITransport in tests).
        """
        self._base_url = base_url.rstrip("/")
        self._token_provider = token_provider or (lambda: None)
        self._auth_rejected = Observable()
        self._http = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "EventApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    @property
    def base_url(self) -> str:
        return self._base_url

    def on_auth_rejected(self, listener: Callable[[], Any]) -> Callable[[], None]:
        """Register a callback fired on every 401 from an authenticated call."""
        return self._auth_rejected.subscribe(listener)

    def full_url(self, path: str) -> str:
        """Resolve an absolute URL or a server-relative path (e.g. a download_url)."""
        if path.startswith("http://") or path.startswith("https://"):
            return path
        if not path.startswith("/"):
            path = "/" + path
        return f"{self._base_url}{path}"

    # ─── Authentication ───────────────────────────────────────────────────────

    async def login(self, username: str, password: str) -> LoginResponse:
        """
        POST /api/login.

        Raises:
            AuthenticationRejectedError: bad credentials (message from the server).
                Does not notify auth-rejected listeners; nobody is logged in yet.
        """
        payload = await self._request(
            "POST",
            f"{API_PREFIX}/login",
            json=LoginRequest(username=username, password=password).model_dump(),
            authenticated=False,
        )
        return _decode(LoginResponse, payload)

    # ─── Events ───────────────────────────────────────────────────────────────

    async def get_events(
        self,
        limit: Optional[int] = None,
        after: Optional[Cursor] = None,
        before: Optional[Cursor] = None,
    ) -> EventPage:
        """
        Fetch one page of events, newest first.

        Args:
            limit: Page size. The server defaults to 20 and caps at 100.
            after: Return events strictly older than this cursor.
            before: Return events strictly newer than this cursor.
        """
        if after is not None and before is not None:
            raise ValueError("Cannot page with both 'after' and 'before' cursors")

        params: Dict[str, Any] = {}
        if limit is not None:
            params["limit"] = limit
        if after is not None:
            params["after_ts"] = after.timestamp_ms
            params["after_id"] = after.event_id
        if before is not None:
            params["before_ts"] = before.timestamp_ms
            params["before_id"] = before.event_id

        payload = await self._request("GET", f"{API_PREFIX}/events", params=params or None)
        response = _decode(EventListResponse, payload)
        return EventPage(
            events=[_to_event(e) for e in response.events],
            has_next=response.has_next,
            next_cursor=response.next_cursor.to_cursor() if response.next_cursor else None,
        )

    async def get_event(self, event_id: str) -> Event:
        """GET /api/events/{id}: full detail for one event."""
        payload = await self._request("GET", f"{API_PREFIX}/events/{event_id}")
        return _to_event(_decode(ApiEvent, payload))

    async def get_new_events_count(self, after_timestamp_ms: int) -> NewEventsCountResponse:
        """GET /api/events/new/count: events newer than after_timestamp_ms."""
        payload = await self._request(
            "GET",
            f"{API_PREFIX}/events/new/count",
            params={"after_ts": after_timestamp_ms},
        )
        return _decode(NewEventsCountResponse, payload)

    # ─── User profile ─────────────────────────────────────────────────────────

    async def get_user_profile(self, user_id: str) -> ApiUser:
        payload = await self._request("GET", f"{API_PREFIX}/user/{user_id}")
        return _decode(ApiUser, payload)

    # ─── Files ────────────────────────────────────────────────────────────────

    @asynccontextmanager
    async def stream_download(self, url: str) -> AsyncIterator[httpx.Response]:
        """
        Open an authenticated streaming GET for an attachment.

        Yields the httpx response once the status is known to be 2xx.

        Raises:
            DownloadFailedError: non-2xx status (status_code set) or any
                transport error, including errors while iterating the body.
        """
        full_url = self.full_url(url)
        try:
            async with self._http.stream("GET", full_url, headers=self._headers()) as response:
                if response.status_code == 401:
                    self._emit_auth_rejected()
                if not response.is_success:
                    logger.error(
                        "File download failed: HTTP %s from %s", response.status_code, full_url
                    )
                    raise DownloadFailedError(
                        f"Failed to download file: HTTP {response.status_code}",
                        status_code=response.status_code,
                    )
                yield response
        except httpx.HTTPError as exc:
            raise DownloadFailedError(f"Failed to download file: {exc!r}") from exc

    # ─── Connectivity ─────────────────────────────────────────────────────────

    async def check_availability(self, timeout: float = HEALTH_TIMEOUT) -> bool:
        """Return True if GET /health answers 200 within timeout."""
        try:
            response = await self._http.get(HEALTH_PATH, timeout=timeout)
        except httpx.HTTPError as exc:
            logger.warning("API is not reachable: %r", exc)
            return False
        if response.status_code != 200:
            logger.warning("API health check returned status %s", response.status_code)
            return False
        return True

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _headers(self, authenticated: bool = True) -> Dict[str, str]:
        headers = {"accept": "application/json"}
        token = self._token_provider() if authenticated else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _emit_auth_rejected(self) -> None:
        logger.warning("Request rejected with 401, notifying session")
        self._auth_rejected.notify()

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        authenticated: bool = True,
    ) -> Any:
        """Send a request and return the parsed JSON body of a 2xx response."""
        try:
            response = await self._http.request(
                method,
                path,
                params=params,
                json=json,
                headers=self._headers(authenticated),
            )
        except httpx.TimeoutException as exc:
            logger.warning("Timeout on %s request to %s", method, path)
            raise RemoteUnreachableError(f"Timeout on {method} {path}") from exc
        except httpx.HTTPError as exc:
            raise RemoteUnreachableError(f"Network error on {method} {path}: {exc!r}") from exc

        if response.status_code == 401:
            if authenticated:
                self._emit_auth_rejected()
            raise AuthenticationRejectedError(_error_message(response) or "Unauthorized")

        if not response.is_success:
            logger.warning("HTTP %s from %s %s", response.status_code, method, path)
            raise InvalidResponseError(response.status_code, _error_message(response))

        try:
            return response.json()
        except ValueError as exc:
            raise DecodingError(f"Expected JSON from {method} {path}: {exc}") from exc


def _decode(model: Type[ModelT], payload: Any) -> ModelT:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise DecodingError(f"Failed to decode {model.__name__}: {exc}") from exc


def _to_event(api_event: ApiEvent) -> Event:
    try:
        return api_event.to_event()
    except (OverflowError, ValueError) as exc:
        raise DecodingError(f"Event {api_event.id} has an unusable timestamp: {exc}") from exc


def _error_message(response: httpx.Response) -> Optional[str]:
    """Pull message (or error) out of an {"error", "message", "code"} body."""
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    return body.get("message") or body.get("error")

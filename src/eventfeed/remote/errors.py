"""Error taxonomy shared by the API client, sync engine and download manager."""
from typing import Optional


class EventFeedError(Exception):
    """Base class for every error raised by eventfeed."""


class NetworkUnavailableError(EventFeedError):
    """Raised when a remote-dependent operation is refused because we are offline."""


class RemoteUnreachableError(EventFeedError):
    """Raised when the server could not be reached (connect, read or timeout failure)."""


class InvalidResponseError(EventFeedError):
    """Raised for non-2xx responses other than 401."""

    def __init__(self, status_code: int, message: Optional[str] = None):
        self.status_code = status_code
        super().__init__(message or f"Server error: HTTP {status_code}")


class AuthenticationRejectedError(EventFeedError):
    """Raised on HTTP 401. Carries the server's message when one was sent."""

    def __init__(self, message: str = "Unauthorized"):
        self.message = message
        super().__init__(message)


class DecodingError(EventFeedError):
    """Raised when a 2xx response body is not the JSON shape we expect."""


class DownloadFailedError(EventFeedError):
    """Raised when an attachment transfer fails (non-2xx or transport error)."""

    def __init__(self, message: str = "Failed to download file", status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class DownloadCancelledError(DownloadFailedError):
    """Raised inside a transfer after cancel() was called for its file id."""

    def __init__(self, file_id: str):
        self.file_id = file_id
        super().__init__(f"Download cancelled: {file_id}")


class FileIOError(EventFeedError):
    """Raised when writing or deleting a local file fails."""

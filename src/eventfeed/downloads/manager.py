"""
FileDownloadManager: fetches event attachments to disk and keeps a durable
index of them (DownloadRecord rows).

Flow for a single download:
  1. Already downloaded (record + file on disk) → return the record
  2. Same file id already in flight → await that transfer's outcome
  3. Otherwise start a transfer, registered as in flight until it ends:
     streaming GET → buffered writes → progress updates → DownloadRecord row

On any failure (HTTP status, transport error, cancellation, disk error) the
partial file is removed and the progress entry cleared before the error
propagates. A DownloadRecord is only written after the file is complete.

Reads self-heal: get_record() and list_all() delete records whose backing
file has disappeared. is_downloaded() only reports; it never deletes.
"""
import asyncio
import logging
import re
from datetime import datetime
from functools import partial
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional
from urllib.parse import unquote, urlsplit

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from eventfeed.downloads.progress import DownloadProgress
from eventfeed.models.download import DownloadRecord
from eventfeed.remote.errors import (
    DownloadCancelledError,
    FileIOError,
    NetworkUnavailableError,
)
from eventfeed.session.connectivity import ConnectivityMonitor

logger = logging.getLogger(__name__)

KIB = 1024
MIB = 1024 * KIB

_UNSAFE_FILENAME_CHARS = re.compile(r'[/\\:*?"<>|]')


def optimal_buffer_size(content_length: Optional[int]) -> int:
    """Write-buffer size for a transfer, chosen by its Content-Length."""
    if content_length is None:
        return 256 * KIB
    if content_length < MIB:
        return 64 * KIB
    if content_length < 10 * MIB:
        return 256 * KIB
    return 512 * KIB


def remote_filename(url: str) -> str:
    """Last path segment of url, or the url itself when it has none."""
    name = unquote(PurePosixPath(urlsplit(url).path).name)
    return name or url


def generate_file_id(event_id: str, url: str) -> str:
    return f"{event_id}_{remote_filename(url)}"


def sanitize_filename(name: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", name)


def local_storage_name(event_id: str, url: str) -> str:
    """On-disk name for an attachment; never contains a path separator."""
    return f"{sanitize_filename(event_id)}_{sanitize_filename(remote_filename(url))}"


class FileDownloadManager:
    """Download lifecycle per file id, with at most one transfer per id."""

    def __init__(
        self,
        client,
        engine,
        connectivity: ConnectivityMonitor,
        downloads_dir: Path,
        progress: Optional[DownloadProgress] = None,
    ):
        """
        Args:
            client: EventApiClient (provides stream_download and full_url).
            engine: SQLAlchemy engine of the local cache (DownloadRecord rows).
            connectivity: Online/offline signal; downloads are refused offline.
            downloads_dir: Directory that holds the downloaded files.
            progress: Shared progress map; a new one is created if omitted.
        """
        self.client = client
        self.engine = engine
        self.connectivity = connectivity
        self.downloads_dir = Path(downloads_dir)
        self.progress = progress or DownloadProgress()
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._cancel_events: Dict[str, asyncio.Event] = {}

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    def file_path(self, local_name: str) -> Path:
        """Path under downloads_dir; any name resolving elsewhere is refused."""
        path = self.downloads_dir / local_name
        if local_name in ("", ".", "..") or path.resolve().parent != self.downloads_dir.resolve():
            raise FileIOError(f"Refusing to store {local_name!r} outside {self.downloads_dir}")
        return path

    def is_in_flight(self, event_id: str, url: str) -> bool:
        task = self._in_flight.get(generate_file_id(event_id, url))
        return task is not None and not task.done()

    # ─── Lookup ───────────────────────────────────────────────────────────────

    def is_downloaded(self, event_id: str, url: str) -> bool:
        """True iff a record exists and its file is on disk. Never deletes."""
        file_id = generate_file_id(event_id, url)
        with self._session() as s:
            record = s.get(DownloadRecord, file_id)
        if record is None:
            logger.debug("Checking file download status - event_id: %s, not_downloaded", event_id)
            return False
        exists = self.file_path(record.local_storage_name).exists()
        logger.debug(
            "Checking file download status - event_id: %s, filename: %s, exists: %s",
            event_id,
            record.remote_filename,
            exists,
        )
        return exists

    def get_record(self, event_id: str, url: str) -> Optional[DownloadRecord]:
        """The record for this event/url if its file exists; a stale record is deleted."""
        file_id = generate_file_id(event_id, url)
        with self._session() as s:
            record = s.get(DownloadRecord, file_id)
            if record is None:
                return None
            if self.file_path(record.local_storage_name).exists():
                return record
            logger.info("Removing stale download record %s (file missing)", file_id)
            s.delete(record)
            s.commit()
        return None

    def list_all(self) -> List[DownloadRecord]:
        """All valid records, newest download first. Stale records are pruned in one commit."""
        with self._session() as s:
            records = s.exec(
                select(DownloadRecord).order_by(DownloadRecord.downloaded_at.desc())
            ).all()
            valid = []
            stale = []
            for record in records:
                if self.file_path(record.local_storage_name).exists():
                    valid.append(record)
                else:
                    stale.append(record)
            for record in stale:
                s.delete(record)
            if stale:
                s.commit()
                logger.info("Removed %d stale download records", len(stale))
        return valid

    def local_path(self, record: DownloadRecord) -> Optional[Path]:
        """Path of the record's file, or None if it is gone."""
        path = self.file_path(record.local_storage_name)
        return path if path.exists() else None

    # ─── Download ─────────────────────────────────────────────────────────────

    async def download(
        self,
        event_id: str,
        url: str,
        event_timestamp: datetime,
    ) -> DownloadRecord:
        """
        Download the attachment at url for event_id, at most once at a time.

        Concurrent callers for the same event/url share one transfer and all
        receive its record or its exception.

        Returns:
            The persisted DownloadRecord (existing one if already downloaded).

        Raises:
            NetworkUnavailableError: offline and not already downloaded.
            DownloadFailedError: non-2xx status or transport error.
            DownloadCancelledError: cancel() was called for this file.
            FileIOError: the file or its record could not be written.
        """
        file_id = generate_file_id(event_id, url)
        logger.info("File download requested - event_id: %s, url: %s", event_id, url)

        existing = self.get_record(event_id, url)
        if existing is not None:
            logger.info("File download skipped - already downloaded - event_id: %s", event_id)
            return existing

        task = self._in_flight.get(file_id)
        if task is not None and not task.done():
            logger.info("File download already in progress - waiting - event_id: %s", event_id)
            return await asyncio.shield(task)

        if self.connectivity.is_offline:
            raise NetworkUnavailableError(f"Cannot download {url} while offline")

        logger.info("Starting file download - event_id: %s", event_id)
        self._cancel_events[file_id] = asyncio.Event()
        task = asyncio.ensure_future(
            self._perform_download(file_id, event_id, url, event_timestamp)
        )
        self._in_flight[file_id] = task
        task.add_done_callback(partial(self._unregister, file_id))

        # shield: a caller being cancelled must not abort the shared transfer
        record = await asyncio.shield(task)
        logger.info("File download completed successfully - event_id: %s", event_id)
        return record

    def cancel(self, event_id: str, url: str) -> bool:
        """
        Ask the in-flight transfer for this event/url to stop.

        The transfer notices between chunks and unwinds through its failure
        path. Returns True if a transfer was running.
        """
        file_id = generate_file_id(event_id, url)
        self.progress.clear(file_id)
        cancel_event = self._cancel_events.get(file_id)
        if cancel_event is None:
            return False
        logger.info("Cancelling file download - event_id: %s", event_id)
        cancel_event.set()
        return True

    def delete(self, record: DownloadRecord) -> None:
        """
        Remove the record's file (already absent is fine), then the record.

        Raises:
            FileIOError: the file or the record could not be removed.
        """
        path = self.file_path(record.local_storage_name)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise FileIOError(f"Failed to delete {path}: {exc}") from exc

        try:
            with self._session() as s:
                existing = s.get(DownloadRecord, record.id)
                if existing is not None:
                    s.delete(existing)
                    s.commit()
        except SQLAlchemyError as exc:
            raise FileIOError(f"Failed to delete download record {record.id}: {exc}") from exc
        logger.info("Deleted download %s", record.id)

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _unregister(self, file_id: str, task: asyncio.Task) -> None:
        if self._in_flight.get(file_id) is task:
            del self._in_flight[file_id]
            self._cancel_events.pop(file_id, None)

    async def _perform_download(
        self,
        file_id: str,
        event_id: str,
        url: str,
        event_timestamp: datetime,
    ) -> DownloadRecord:
        filename = remote_filename(url)
        local_name = local_storage_name(event_id, url)
        path = self.file_path(local_name)
        cancel_event = self._cancel_events[file_id]

        logger.info(
            "File download starting - event_id: %s, filename: %s, local_path: %s",
            event_id,
            filename,
            local_name,
        )
        self.progress.set(file_id, 0.0)
        completed = False
        try:
            try:
                self.downloads_dir.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise FileIOError(f"Failed to create {self.downloads_dir}: {exc}") from exc

            async with self.client.stream_download(url) as response:
                content_length = _content_length(response)
                if content_length is not None:
                    logger.debug(
                        "File download progress - event_id: %s, total_size: %d bytes",
                        event_id,
                        content_length,
                    )
                await self._write_body(file_id, response, path, content_length, cancel_event)

            self.progress.set(file_id, 1.0)

            try:
                size = path.stat().st_size
            except OSError as exc:
                raise FileIOError(f"Failed to stat {path}: {exc}") from exc

            record = DownloadRecord(
                id=file_id,
                event_id=event_id,
                download_url=url,
                remote_filename=filename,
                local_storage_name=local_name,
                size_bytes=size,
                downloaded_at=datetime.utcnow(),
                event_timestamp=event_timestamp,
            )
            record = self._save_record(record)
            completed = True
            logger.info(
                "File download finished - event_id: %s, filename: %s, size: %d bytes",
                event_id,
                filename,
                size,
            )
            return record

        except Exception as exc:
            logger.error("File download error - event_id: %s, error: %s", event_id, exc)
            raise

        finally:
            if not completed:
                try:
                    path.unlink(missing_ok=True)
                except OSError as exc:
                    logger.error("Failed to remove partial file %s: %s", path, exc)
            self.progress.clear(file_id)

    async def _write_body(
        self,
        file_id: str,
        response,
        path: Path,
        content_length: Optional[int],
        cancel_event: asyncio.Event,
    ) -> None:
        """Stream the body to path through a write buffer, publishing progress."""
        buffer_size = optimal_buffer_size(content_length)
        buffer = bytearray()
        downloaded = 0
        last_progress_update = 0

        try:
            with open(path, "wb") as fh:
                async for chunk in response.aiter_bytes():
                    if cancel_event.is_set():
                        raise DownloadCancelledError(file_id)
                    buffer.extend(chunk)
                    downloaded += len(chunk)

                    if len(buffer) >= buffer_size:
                        fh.write(buffer)
                        buffer.clear()

                    if content_length and downloaded - last_progress_update >= buffer_size:
                        self.progress.set(file_id, downloaded / content_length)
                        last_progress_update = downloaded

                if cancel_event.is_set():
                    raise DownloadCancelledError(file_id)
                if buffer:
                    fh.write(buffer)
        except OSError as exc:
            raise FileIOError(f"Failed to write {path}: {exc}") from exc

    def _save_record(self, record: DownloadRecord) -> DownloadRecord:
        try:
            with self._session() as s:
                merged = s.merge(record)
                s.commit()
                s.refresh(merged)
                return merged
        except SQLAlchemyError as exc:
            raise FileIOError(f"Failed to save download record {record.id}: {exc}") from exc


def _content_length(response) -> Optional[int]:
    raw = response.headers.get("Content-Length")
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value >= 0 else None

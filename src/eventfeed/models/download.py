"""Persistent index of downloaded event attachments."""
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel


class DownloadRecord(SQLModel, table=True):
    """
    One row per attachment file stored on disk.

    id is derived as f"{event_id}_{remote_filename}" so the same event/url pair
    always maps to the same row. A row is only meaningful while its backing
    file (downloads_dir / local_storage_name) exists.
    """

    id: str = Field(primary_key=True)
    event_id: str = Field(index=True)
    download_url: str
    remote_filename: str
    local_storage_name: str
    size_bytes: Optional[int] = None  # measured after the transfer completes
    # Both columns hold naive UTC.
    downloaded_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime(timezone=False), nullable=False),
    )
    # denormalized from the event, for sorting/cleanup
    event_timestamp: datetime = Field(sa_column=Column(DateTime(timezone=False), nullable=False))

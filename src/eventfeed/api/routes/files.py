"""Attachment download route."""
import logging
from pathlib import Path

from fastapi import APIRouter, Depends, Request
from fastapi.responses import FileResponse

from eventfeed.api.errors import ApiError
from eventfeed.api.security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(get_current_user)])


@router.get("/{filename}")
def download_file(filename: str, request: Request):
    """Stream a file from the files directory. Only bare file names are accepted."""
    if Path(filename).name != filename or filename in ("", ".", ".."):
        logger.warning("File download rejected: invalid filename %r", filename)
        raise ApiError(400, "Invalid filename", "Filename contains invalid characters")

    path = Path(request.app.state.files_dir) / filename
    if not path.is_file():
        raise ApiError(404, "File not found", "The requested file does not exist")

    logger.info("File download started - filename: %s, size: %d bytes", filename, path.stat().st_size)
    return FileResponse(path, media_type="application/octet-stream", filename=filename)

"""
FastAPI application factory for the demo event backend.

Usage:
    python -m eventfeed serve --port 8080
"""
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI

from eventfeed.api.errors import install_error_handlers
from eventfeed.api.routes import auth, events, files, users
from eventfeed.api.store import DemoStore
from eventfeed.config import Settings, get_settings

logger = logging.getLogger(__name__)


def create_app(
    store: Optional[DemoStore] = None,
    settings: Optional[Settings] = None,
    files_dir: Optional[Path] = None,
) -> FastAPI:
    """Build and return the FastAPI app. The store defaults to a freshly seeded DemoStore."""
    settings = settings or get_settings()
    files_dir = Path(files_dir or settings.backend_files_dir)
    store = store or DemoStore(files_dir=files_dir)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Demo backend ready: %d events, files from %s", store.count(), files_dir)
        yield

    app = FastAPI(
        title="IoT Event Feed API",
        description="Demo backend for the event feed client",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.store = store
    app.state.settings = settings
    app.state.files_dir = files_dir

    install_error_handlers(app)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    app.include_router(auth.router, prefix="/api", tags=["auth"])
    app.include_router(users.router, prefix="/api/user", tags=["users"])
    app.include_router(events.router, prefix="/api/events", tags=["events"])
    app.include_router(files.router, prefix="/api/files", tags=["files"])

    return app

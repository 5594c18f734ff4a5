"""FastAPI application entrypoint and configuration.

This module provides the main FastAPI application factory that sets up
logging, CORS middleware, the tileset, task, POI and font routers, a health
check endpoint, and a startup hook submitting POI index builds for the
archives already present in the tilesets directory.

Example:
    The application can be run with uvicorn:
        $ uvicorn mapserver.main:app --reload

    Or imported and used programmatically:
        >>> from mapserver.main import app
        >>> # Use app in ASGI server
"""

from __future__ import annotations

import contextlib
import logging
from typing import TYPE_CHECKING

import fastapi
from fastapi.middleware import cors

from mapserver.api import fonts, poi, tasks, tilesets
from mapserver.core import config, logging_setup
from mapserver.services import tasks as task_service

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


def index_existing_tilesets(
    settings: config.Settings,
    tracker: task_service.TaskTracker,
) -> list[str]:
    """Submit a POI index build for every archive in the tilesets directory.

    Returns:
        The submitted task ids, in archive name order.
    """
    task_ids = []
    archives = settings.tilesets_dir.glob(f"*{tilesets.ARCHIVE_SUFFIX}")
    for path in sorted(archives):
        logger.info("Load tile file: %s", path.name)
        task_ids.append(tracker.submit_index(path))
    return task_ids


@contextlib.asynccontextmanager
async def lifespan(app: fastapi.FastAPI) -> AsyncIterator[None]:
    settings = config.get_settings()
    if settings.index_on_startup:
        index_existing_tilesets(settings, task_service.get_task_tracker())
    yield


def create_app() -> fastapi.FastAPI:
    """Create and configure the FastAPI application.

    Configures logging from settings, includes the tileset, task, POI and font
    routers, and adds a health check endpoint. CORS origins are configured
    from settings, allowing cross-origin requests from specified domains.

    Returns:
        Configured FastAPI application instance ready for ASGI server.
    """
    settings = config.get_settings()
    logging_setup.configure_logging(settings.log_level)
    app = fastapi.FastAPI(title="Map Server", version="0.1.0", lifespan=lifespan)

    app.include_router(tasks.router)
    app.include_router(tilesets.router)
    app.include_router(poi.router)
    app.include_router(fonts.router)

    app.add_middleware(
        cors.CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health() -> dict[str, str]:  # type: ignore[misc]
        """Health check endpoint for monitoring and load balancers.

        Returns:
            Dictionary with status "ok" if the service is running.
        """
        return {"status": "ok"}

    return app


app = create_app()

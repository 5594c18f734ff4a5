"""POI search and index build endpoints.

Search reads the sibling ``.idx`` index of a vector archive. Indexes are
built in the background, either at startup or on request through the
index endpoint, so search answers 404 until the index is ready.

Example:
    Search an archive for a keyword:
        >>> client.get("/api/poi/city.mbtiles", params={"keywords": "Cafe"})
        >>> # Returns: [{"name": "Cafe", "coordinate": "13.4,52.5"}, ...]
"""

from __future__ import annotations

import dataclasses
from typing import Any

import fastapi

from mapserver.api import tasks as api_tasks
from mapserver.api import tilesets
from mapserver.core import config
from mapserver.services import poi, tasks

router = fastapi.APIRouter(prefix="/api/poi", tags=["poi"])


@router.get("/{tileset}")
async def search_poi(
    tileset: str,
    keywords: str,
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> list[dict[str, Any]]:
    """Search the POI index of an archive by a single keyword.

    Args:
        tileset: Archive file name.
        keywords: One keyword, matched case-sensitively as a substring of
            the POI name.
        settings: Application settings (injected via FastAPI Depends).

    Returns:
        At most ``settings.search_limit`` POIs in index order, each with
        ``name`` and ``coordinate`` (``"lon,lat"``).

    Raises:
        HTTPException: 400 for blank or multi-word keywords, 404 when the
            archive or its index does not exist.
    """
    if not poi.is_single_keyword(keywords):
        raise fastapi.HTTPException(
            status_code=400,
            detail="Exactly one keyword is supported",
        )

    path = tilesets.resolve_tileset(tileset, settings)
    try:
        points = poi.search(path, keywords.strip(), settings.search_limit)
    except FileNotFoundError as exc:
        raise fastapi.HTTPException(
            status_code=404,
            detail="POI index not ready",
        ) from exc

    return [dataclasses.asdict(point) for point in points]


@router.post("/{tileset}/index")
async def build_poi_index(
    tileset: str,
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
    tracker: tasks.TaskTracker = fastapi.Depends(api_tasks._get_tracker),  # noqa: B008
) -> api_tasks.TaskSubmitted:
    """Build the POI index of an archive in the background.

    Non-vector archives and archives that already have an index finish
    immediately without writing anything.

    Returns:
        Dictionary with the index task id, pollable at ``/api/tasks``.
    """
    path = tilesets.resolve_tileset(tileset, settings)
    return api_tasks.TaskSubmitted(task_id=tracker.submit_index(path))

"""Background task submission and progress endpoints.

Merges are submitted with archive names from the tilesets directory and
answered immediately with a task id. Progress of merges and POI index
builds is polled by task id: 0..99 while running, 100 when done, -1 when
the job failed.

Example:
    Submit a merge and poll it:
        >>> response = client.post(
        ...     "/api/tilesets/merge",
        ...     json={"sources": ["a.mbtiles", "b.mbtiles"],
        ...           "target": "ab.mbtiles"},
        ... )
        >>> task_id = response.json()["task_id"]
        >>> client.get(f"/api/tasks/{task_id}").json()
        >>> # Returns: {"task_id": "...", "progress": 42}
"""

from __future__ import annotations

from typing_extensions import TypedDict

import fastapi
import pydantic

from mapserver.api import tilesets
from mapserver.core import config
from mapserver.services import tasks

router = fastapi.APIRouter(tags=["tasks"])


class MergeRequest(pydantic.BaseModel):
    sources: list[str] = pydantic.Field(min_length=1)
    target: str


class TaskSubmitted(TypedDict):
    task_id: str


class TaskStatus(TypedDict):
    task_id: str
    progress: int


def _get_tracker() -> tasks.TaskTracker:
    """Resolve the task tracker dependency."""
    return tasks.get_task_tracker()


@router.post("/api/tilesets/merge")
async def submit_merge(
    request: MergeRequest,
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
    tracker: tasks.TaskTracker = fastapi.Depends(_get_tracker),  # noqa: B008
) -> TaskSubmitted:
    """Merge several archives into a new archive in the background.

    All sources must exist and share the same tile format; format mismatches
    surface as progress -1 when polling. The target is written to the
    tilesets directory once the merge completes.

    Args:
        request: Source archive names, in merge order, and the target name.
        settings: Application settings (injected via FastAPI Depends).
        tracker: Task tracker (injected via FastAPI Depends).

    Returns:
        Dictionary with the task id. The same set of sources always yields
        the same id.

    Raises:
        HTTPException: 400 for invalid names, 404 for missing sources, 409
            when the same sources are being merged into another target.
    """
    sources = [
        tilesets.resolve_tileset(name, settings) for name in request.sources
    ]
    target = tilesets.resolve_tileset(request.target, settings, must_exist=False)
    try:
        task_id = tracker.submit_merge(sources, target)
    except tasks.TaskConflictError as exc:
        raise fastapi.HTTPException(status_code=409, detail=str(exc)) from exc

    return TaskSubmitted(task_id=task_id)


@router.get("/api/tasks")
async def list_tasks(
    tracker: tasks.TaskTracker = fastapi.Depends(_get_tracker),  # noqa: B008
) -> list[TaskStatus]:
    """List every task submitted since the process started."""
    return [
        TaskStatus(task_id=item.task_id, progress=item.progress)
        for item in tracker.tasks()
    ]


@router.get("/api/tasks/{task_id}")
async def get_task(
    task_id: str,
    tracker: tasks.TaskTracker = fastapi.Depends(_get_tracker),  # noqa: B008
) -> TaskStatus:
    """Poll the progress of a merge or index task.

    Raises:
        HTTPException: 404 if the task id was never submitted.
    """
    progress = tracker.progress(task_id)
    if progress is None:
        raise fastapi.HTTPException(status_code=404, detail="Task not found")

    return TaskStatus(task_id=task_id, progress=progress)

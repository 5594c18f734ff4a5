"""Shared fixtures for building throwaway tile archives in tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from fastapi import testclient

from mapserver import main
from mapserver.api import tasks as api_tasks
from mapserver.core import config
from mapserver.db import mbtiles
from mapserver.services import tasks

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Callable, Iterable, Iterator


@pytest.fixture
def settings(tmp_path: pathlib.Path) -> config.Settings:
    """Settings rooted in a temp dir with a tiny page size to force paging."""
    test_settings = config.Settings(
        data_dir=tmp_path / "data",
        page_size=2,
        max_workers=2,
        index_on_startup=False,
        allow_origins=["*"],
    )
    test_settings.ensure_directories()
    return test_settings


@pytest.fixture
def make_archive(
    settings: config.Settings,
) -> Callable[..., pathlib.Path]:
    """Factory writing an MBTiles archive into the tilesets directory."""

    def _make(
        name: str,
        tiles: Iterable[mbtiles.TileRow] = (),
        fmt: str = "pbf",
        bounds: str = "0,0,1,1",
        minzoom: int = 0,
        maxzoom: int = 2,
        **extra: str,
    ) -> pathlib.Path:
        metadata = {
            "name": name,
            "format": fmt,
            "bounds": bounds,
            "minzoom": str(minzoom),
            "maxzoom": str(maxzoom),
            **extra,
        }
        return mbtiles.create_archive(
            settings.tilesets_dir / name,
            metadata,
            tiles,
        )

    return _make


@pytest.fixture
def tracker(settings: config.Settings) -> Iterator[tasks.TaskTracker]:
    """Task tracker with its own worker pool, shut down after the test."""
    task_tracker = tasks.TaskTracker(settings)
    yield task_tracker
    task_tracker.shutdown(wait=True)


@pytest.fixture
def client(
    settings: config.Settings,
    tracker: tasks.TaskTracker,
) -> Iterator[testclient.TestClient]:
    """Test client wired to the temp settings and tracker."""
    app = main.create_app()
    app.dependency_overrides[config.get_settings] = lambda: settings
    app.dependency_overrides[api_tasks._get_tracker] = lambda: tracker
    try:
        yield testclient.TestClient(app)
    finally:
        app.dependency_overrides.clear()

"""Helpers for building tile rows, vector tile payloads and executors in tests."""

from __future__ import annotations

import concurrent.futures
from typing import TYPE_CHECKING, Any

import mapbox_vector_tile

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from mapserver.db import mbtiles


def tile_rows(
    count: int,
    zoom: int,
    row: int = 0,
    payload_size: int = 8,
) -> list[mbtiles.TileRow]:
    """Tile rows with distinct columns on one zoom level and row."""
    return [
        (zoom, column, row, bytes([column % 256]) * payload_size)
        for column in range(count)
    ]


def vector_tile(features: Iterable[dict[str, Any]], layer: str = "poi") -> bytes:
    """Encode features given as ``{"geometry": WKT, "properties": {...}}``."""
    return mapbox_vector_tile.encode(
        [{"name": layer, "features": list(features)}]
    )


def point(name: str | None, x: int = 10, y: int = 20) -> dict[str, Any]:
    properties = {} if name is None else {"name": name}
    return {"geometry": f"POINT ({x} {y})", "properties": properties}


class DeferredExecutor(concurrent.futures.Executor):
    """Executor that queues jobs until ``run_all`` is called."""

    def __init__(self) -> None:
        self.pending: list[tuple[Callable[..., Any], tuple[Any, ...]]] = []

    def submit(
        self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any
    ) -> Any:
        self.pending.append((fn, args))
        return concurrent.futures.Future()

    def run_all(self) -> None:
        while self.pending:
            fn, args = self.pending.pop(0)
            fn(*args)

"""Data models shared by the archive, index and job services.

This module defines the value objects passed between the MBTiles readers,
the merge planner, the POI extractor and the task tracker. Everything here
is plain data: descriptors are derived read-only from an archive's metadata
at plan time, and POI entries are owned by the sibling index of the archive
they came from.

Example:
    Aggregating the bounds of two archives:
        >>> from mapserver.db.models import union_bounds
        >>> union_bounds([(0.0, 0.0, 1.0, 1.0), (2.0, 2.0, 3.0, 3.0)])
        (0.0, 0.0, 3.0, 3.0)
"""

from __future__ import annotations

import dataclasses
import enum
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Iterable

BBox = tuple[float, float, float, float]
TaskKind = Literal["merge", "index"]

VECTOR_FORMATS = frozenset({"pbf", "mvt"})

FAILED = -1
DONE = 100


def union_bounds(boxes: Iterable[BBox]) -> BBox:
    """Componentwise union of bounding boxes.

    Args:
        boxes: Boxes as ``(min_lon, min_lat, max_lon, max_lat)``.

    Returns:
        The smallest box covering every input box.

    Raises:
        ValueError: If no boxes are given.
    """
    boxes = list(boxes)
    if not boxes:
        raise ValueError("Cannot compute the union of zero bounding boxes")

    return (
        min(box[0] for box in boxes),
        min(box[1] for box in boxes),
        max(box[2] for box in boxes),
        max(box[3] for box in boxes),
    )


def format_number(value: float) -> str:
    """Render a coordinate without a trailing ``.0`` for whole numbers."""
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def format_bounds(bounds: BBox) -> str:
    """Serialize bounds the way MBTiles metadata stores them."""
    return ",".join(format_number(v) for v in bounds)


@dataclasses.dataclass(frozen=True)
class SourceDescriptor:
    """Read-only summary of one tile archive.

    Attributes:
        path: Location of the archive on disk.
        format: Tile encoding from the ``format`` metadata key
            ("pbf", "png", ...).
        min_zoom: Lowest zoom level stored.
        max_zoom: Highest zoom level stored.
        bounds: ``(min_lon, min_lat, max_lon, max_lat)`` in WGS84.
        tile_count: Number of rows in the ``tiles`` relation.
        compression: Declared (or sniffed) payload compression, None when
            tiles are stored raw.
        file_size: Size of the archive file in bytes.
    """

    path: pathlib.Path
    format: str
    min_zoom: int
    max_zoom: int
    bounds: BBox
    tile_count: int
    compression: str | None = None
    file_size: int = 0

    @property
    def is_vector(self) -> bool:
        return self.format.lower() in VECTOR_FORMATS

    @property
    def is_gzipped(self) -> bool:
        return (self.compression or "").lower() == "gzip"


@dataclasses.dataclass
class MergePlan:
    """Outcome of validating and aggregating a set of merge sources.

    ``remaining`` keeps the submission order of the non-base sources; the
    streamer copies them strictly in that order.
    """

    base: SourceDescriptor
    remaining: list[SourceDescriptor]
    format: str
    min_zoom: int
    max_zoom: int
    bounds: BBox
    total_tiles: int

    def aggregated_metadata(self) -> dict[str, str]:
        """Metadata values to write into the merged archive."""
        return {
            "bounds": format_bounds(self.bounds),
            "minzoom": str(self.min_zoom),
            "maxzoom": str(self.max_zoom),
        }


class GeometryType(enum.IntEnum):
    """Geometry kinds stored in the ``geometry_type`` index column."""

    POINT = 0
    OTHER = 1


@dataclasses.dataclass(frozen=True)
class PoiEntry:
    """One named feature stored in a POI index."""

    name: str
    geometry: str
    geometry_type: GeometryType = GeometryType.POINT


@dataclasses.dataclass(frozen=True)
class PoiPoint:
    """POI search result returned to API callers."""

    name: str
    coordinate: str | None


@dataclasses.dataclass(frozen=True)
class TaskProgress:
    """Snapshot of a background job's progress.

    ``progress`` is 0..99 while running, 100 on success and -1 on failure.
    """

    task_id: str
    progress: int

    @property
    def finished(self) -> bool:
        return self.progress in (FAILED, DONE)

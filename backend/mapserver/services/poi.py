"""POI index building and keyword search.

Vector archives (``format`` of ``pbf`` or ``mvt``) are scanned page by page.
Every tile payload is gunzipped when the archive is compressed, decoded with
``mapbox_vector_tile`` and reduced to its named single-point features, which
are appended to the archive's sibling ``.idx`` file in batches.

Decoding never raises: :func:`decode_tile` returns a :class:`DecodeResult`
carrying either the decoded layers or the error, and the index build skips
tiles that fail to decode while counting them.

Example:
    Build the index for an archive and search it:
        >>> from mapserver.services import poi
        >>> poi.build_index(pathlib.Path("city.mbtiles"))
        >>> poi.search(pathlib.Path("city.mbtiles"), "Cafe", limit=10)
"""

from __future__ import annotations

import dataclasses
import gzip
import logging
import os
import sqlite3
import zlib
from typing import TYPE_CHECKING, Any, NamedTuple

import mapbox_vector_tile

from mapserver.db import mbtiles, poi_index
from mapserver.db import models as db_models
from mapserver.utils import geometry

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Callable

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 5000
DEFAULT_EXTENT = 4096
NAME_ATTRIBUTE = "name"


class TileDecodeError(Exception):
    """A tile payload could not be decompressed or decoded."""


class DecodeResult(NamedTuple):
    layers: dict[str, Any]
    error: TileDecodeError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclasses.dataclass
class IndexBuildResult:
    """Summary of one finished index build."""

    index_path: pathlib.Path
    tiles_read: int = 0
    tiles_skipped: int = 0
    poi_count: int = 0


def has_text(value: object) -> bool:
    """True for strings holding at least one non-whitespace character."""
    return isinstance(value, str) and bool(value.strip())


def is_single_keyword(keyword: str) -> bool:
    """True when ``keyword`` is one non-blank word."""
    return has_text(keyword) and len(keyword.split()) == 1


def decode_tile(data: bytes, gzipped: bool = False) -> DecodeResult:
    """Decode one vector tile payload.

    Args:
        data: Raw ``tile_data`` blob.
        gzipped: Whether the archive stores gzip-compressed payloads.

    Returns:
        DecodeResult with the decoded layers keyed by layer name, or with
        ``error`` set and no layers.
    """
    try:
        payload = gzip.decompress(data) if gzipped else data
    except (OSError, EOFError, TypeError, zlib.error) as exc:
        return DecodeResult({}, TileDecodeError(f"Bad gzip payload: {exc}"))

    try:
        return DecodeResult(mapbox_vector_tile.decode(payload))
    except Exception as exc:  # third-party protobuf errors vary by backend
        return DecodeResult({}, TileDecodeError(f"Bad vector tile: {exc}"))


def extract_points(
    layers: dict[str, Any],
    z: int,
    column: int,
    tms_row: int,
) -> list[db_models.PoiEntry]:
    """Keep the named single-point features of a decoded tile.

    Args:
        layers: Output of :func:`decode_tile`.
        z: Zoom level of the tile.
        column: Tile column.
        tms_row: Tile row as stored in the archive.

    Returns:
        POI entries with WGS84 point WKT, in decoding order.
    """
    entries: list[db_models.PoiEntry] = []
    for layer in layers.values():
        extent = int(layer.get("extent") or DEFAULT_EXTENT)
        for feature in layer.get("features", []):
            geom = feature.get("geometry") or {}
            if geom.get("type") != "Point":
                continue

            name = (feature.get("properties") or {}).get(NAME_ATTRIBUTE)
            if not has_text(name):
                continue

            px, py = geom["coordinates"][:2]
            lon, lat = geometry.tile_point_to_lonlat(
                z, column, tms_row, px, py, extent
            )
            entries.append(
                db_models.PoiEntry(
                    name=name,
                    geometry=geometry.point_wkt(lon, lat),
                    geometry_type=db_models.GeometryType.POINT,
                )
            )
    return entries


def _fill_index(
    descriptor: db_models.SourceDescriptor,
    index_conn: sqlite3.Connection,
    result: IndexBuildResult,
    page_size: int,
    report: Callable[[int], None],
) -> None:
    buffer: list[db_models.PoiEntry] = []

    with mbtiles.connect(descriptor.path) as archive_conn:
        for page in mbtiles.iter_tile_pages(archive_conn, page_size):
            for z, x, y, data in page:
                result.tiles_read += 1
                decoded = decode_tile(data, descriptor.is_gzipped)
                if not decoded.ok:
                    result.tiles_skipped += 1
                    logger.warning(
                        "Skipping tile %s/%s/%s of %s: %s",
                        z,
                        x,
                        y,
                        descriptor.path.name,
                        decoded.error,
                    )
                    continue

                buffer.extend(extract_points(decoded.layers, z, x, y))
                if len(buffer) > page_size:
                    result.poi_count += poi_index.insert_many(
                        index_conn, buffer
                    )
                    buffer.clear()

            if descriptor.tile_count:
                report(result.tiles_read * 100 // descriptor.tile_count)

    result.poi_count += poi_index.insert_many(index_conn, buffer)


def build_index(
    archive_path: pathlib.Path,
    page_size: int = DEFAULT_PAGE_SIZE,
    report: Callable[[int], None] | None = None,
) -> IndexBuildResult | None:
    """Build the sibling POI index of a vector archive.

    The build is skipped for non-vector archives and when an index already
    exists. The index is written to a temporary file and renamed into place
    once complete, so an existing ``.idx`` is always a finished index.

    Args:
        archive_path: MBTiles archive to scan.
        page_size: Rows per page and the insert buffer threshold.
        report: Optional callback receiving progress percentages.

    Returns:
        IndexBuildResult for a completed build, None when skipped.

    Raises:
        ArchiveError: If the archive cannot be read or the index cannot be
            written.
    """
    descriptor = mbtiles.describe(archive_path)
    if not descriptor.is_vector:
        logger.debug(
            "Not indexing %s: format %s", archive_path.name, descriptor.format
        )
        return None

    index_path = poi_index.index_path_for(archive_path)
    if index_path.exists():
        logger.debug("POI index already present: %s", index_path)
        return None

    tmp_path = index_path.with_name(index_path.name + ".tmp")
    tmp_path.unlink(missing_ok=True)
    result = IndexBuildResult(index_path=index_path)
    logger.info(
        "Building POI index for %s (%d tiles)",
        archive_path.name,
        descriptor.tile_count,
    )

    try:
        with mbtiles.connect(tmp_path) as index_conn:
            poi_index.create(index_conn)
            _fill_index(
                descriptor,
                index_conn,
                result,
                page_size,
                report or (lambda _percent: None),
            )
        os.replace(tmp_path, index_path)
    except (sqlite3.Error, OSError) as exc:
        tmp_path.unlink(missing_ok=True)
        raise mbtiles.ArchiveError(
            f"Building POI index for {archive_path} failed: {exc}"
        ) from exc
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise

    logger.info(
        "POI index %s ready: %d POIs, %d tile(s) skipped",
        index_path.name,
        result.poi_count,
        result.tiles_skipped,
    )
    return result


def search(
    archive_path: pathlib.Path,
    keyword: str,
    limit: int = 10,
) -> list[db_models.PoiPoint]:
    """Search the POI index of an archive by name substring.

    Args:
        archive_path: Archive whose sibling index is queried.
        keyword: Single keyword; callers reject multi-word input first.
        limit: Maximum number of results.

    Returns:
        At most ``limit`` points in storage order.

    Raises:
        FileNotFoundError: If the archive has no index yet.
    """
    index_path = poi_index.index_path_for(archive_path)
    if not index_path.is_file():
        raise FileNotFoundError(index_path)

    return [
        db_models.PoiPoint(
            name=entry.name,
            coordinate=(
                geometry.coordinate_text(entry.geometry)
                if entry.geometry_type == db_models.GeometryType.POINT
                else None
            ),
        )
        for entry in poi_index.search(index_path, keyword, limit)
    ]

"""Tile archive listing, metadata and XYZ tile endpoints.

This module serves the MBTiles archives found in the configured tilesets
directory. Tiles are addressed the way the archives store them: ``y`` is
the TMS row, as in the MBTiles 1.3 specification.

Example:
    List archives and fetch a vector tile:
        >>> client.get("/api/tilesets").json()
        >>> # Returns: [{"name": "city.mbtiles", "metadata": {...},
        >>> #            "indexed": true}]
        >>> client.get("/api/tilesets/city.mbtiles/14/8514/10741.pbf")
        >>> # Returns the raw tile_data blob as application/x-protobuf
"""

from __future__ import annotations

import pathlib
from typing_extensions import TypedDict

import fastapi
from fastapi import responses

from mapserver.core import config
from mapserver.db import mbtiles, poi_index

router = fastapi.APIRouter(prefix="/api/tilesets", tags=["tilesets"])

ARCHIVE_SUFFIX = ".mbtiles"

MEDIA_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "pbf": "application/x-protobuf",
    "mvt": "application/x-protobuf",
}


class TilesetSummary(TypedDict):
    name: str
    metadata: dict[str, str]
    indexed: bool


def validate_tileset_name(name: str) -> str:
    """Validate an archive name to keep lookups inside the tilesets dir.

    Only plain ``*.mbtiles`` file names are accepted: no path separators,
    no leading dot.

    Args:
        name: Archive file name from the request.

    Returns:
        Validated name.

    Raises:
        HTTPException: If the name is not a plain MBTiles file name.
    """
    if (
        not name.endswith(ARCHIVE_SUFFIX)
        or name.startswith(".")
        or "/" in name
        or "\\" in name
        or pathlib.PurePath(name).name != name
    ):
        raise fastapi.HTTPException(
            status_code=400,
            detail="Invalid tileset name",
        )

    return name


def resolve_tileset(
    name: str,
    settings: config.Settings,
    must_exist: bool = True,
) -> pathlib.Path:
    """Map a validated archive name to its path.

    Raises:
        HTTPException: 400 for invalid names, 404 if ``must_exist`` and
            the archive is missing.
    """
    path = settings.tilesets_dir / validate_tileset_name(name)
    if must_exist and not path.is_file():
        raise fastapi.HTTPException(
            status_code=404,
            detail="Tileset not found",
        )

    return path


@router.get("")
async def list_tilesets(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> list[TilesetSummary]:
    """List the archives in the tilesets directory with their metadata.

    Returns:
        One entry per ``*.mbtiles`` file, sorted by name. ``indexed`` tells
        whether the POI index is ready for search.
    """
    summaries: list[TilesetSummary] = []
    for path in sorted(settings.tilesets_dir.glob(f"*{ARCHIVE_SUFFIX}")):
        with mbtiles.connect(path) as conn:
            metadata = mbtiles.read_metadata(conn)
        summaries.append(
            TilesetSummary(
                name=path.name,
                metadata=metadata,
                indexed=poi_index.index_path_for(path).is_file(),
            )
        )
    return summaries


@router.get("/{tileset}/metadata")
async def get_tileset_metadata(
    tileset: str,
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> dict[str, str]:
    """Return the ``metadata`` relation of one archive as a mapping."""
    path = resolve_tileset(tileset, settings)
    with mbtiles.connect(path) as conn:
        return mbtiles.read_metadata(conn)


@router.get("/{tileset}/{z}/{x}/{y}.{ext}")
async def get_tile(
    tileset: str,
    z: int,
    x: int,
    y: int,
    ext: str,
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> responses.Response:
    """Serve one tile blob from an archive.

    Args:
        tileset: Archive file name.
        z: Zoom level.
        x: Tile column.
        y: Tile row (TMS).
        ext: One of png, jpg, jpeg, webp, pbf or mvt; selects the media
            type of the response.
        settings: Application settings (injected via FastAPI Depends).

    Returns:
        The raw tile bytes. Vector tiles from gzip-compressed archives are
        returned as stored with ``Content-Encoding: gzip``.

    Raises:
        HTTPException: 400 for unknown extensions, 404 for unknown archives
            or tiles.
    """
    media_type = MEDIA_TYPES.get(ext.lower())
    if media_type is None:
        raise fastapi.HTTPException(
            status_code=400,
            detail="Unsupported tile format",
        )

    path = resolve_tileset(tileset, settings)
    with mbtiles.connect(path) as conn:
        data = mbtiles.read_tile(conn, z, x, y)

    if data is None:
        raise fastapi.HTTPException(status_code=404, detail="Tile not found")

    headers = {}
    is_vector = media_type == "application/x-protobuf"
    if is_vector and data[:2] == mbtiles.GZIP_MAGIC:
        headers["Content-Encoding"] = "gzip"

    return responses.Response(
        content=data,
        media_type=media_type,
        headers=headers,
    )

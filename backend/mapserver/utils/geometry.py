"""Geometry helpers built on shapely.

Vector tiles carry coordinates in tile-local units (``extent`` steps per
tile side, y axis pointing up once decoded). The POI extractor converts
those to WGS84 longitude/latitude with :func:`tile_point_to_lonlat` before
serializing them to WKT, and the search API turns stored WKT back into a
coordinate string.

Example:
    Convert the centre of tile 0/0/0 to lon/lat:
        >>> tile_point_to_lonlat(0, 0, 0, 2048, 2048, 4096)
        (0.0, 0.0)
"""

from __future__ import annotations

import math

from shapely import geometry as shapely_geometry
from shapely import wkt as shapely_wkt

from mapserver.db import models as db_models


def tile_point_to_lonlat(
    z: int,
    column: int,
    tms_row: int,
    px: float,
    py: float,
    extent: int,
) -> tuple[float, float]:
    """Project a tile-local point to longitude/latitude.

    Args:
        z: Zoom level of the tile.
        column: Tile column (x).
        tms_row: Tile row in the TMS scheme used by MBTiles.
        px: Tile-local x in ``[0, extent]``.
        py: Tile-local y in ``[0, extent]``, measured upwards.
        extent: Tile extent from the decoded layer.

    Returns:
        ``(lon, lat)`` in degrees.
    """
    n = 2**z
    x_frac = column + px / extent
    # XYZ rows grow southwards, TMS rows and decoded y grow northwards.
    y_frac = n - (tms_row + py / extent)
    lon = x_frac / n * 360.0 - 180.0
    lat = math.degrees(math.atan(math.sinh(math.pi * (1 - 2 * y_frac / n))))
    return lon, lat


def point_wkt(lon: float, lat: float) -> str:
    return shapely_geometry.Point(lon, lat).wkt


def coordinate_text(wkt: str) -> str | None:
    """Render a stored point geometry as ``"lon,lat"``.

    Returns:
        The coordinate string, or None if the WKT is not a point.
    """
    geom = shapely_wkt.loads(wkt)
    if not isinstance(geom, shapely_geometry.Point) or geom.is_empty:
        return None
    return (
        f"{db_models.format_number(geom.x)},{db_models.format_number(geom.y)}"
    )

"""SQLite helpers for MBTiles tile archives.

An archive is a SQLite file with a ``tiles`` relation
(``zoom_level, tile_column, tile_row, tile_data``) and a ``metadata``
relation of ``name, value`` string pairs, per the MBTiles 1.3 convention.
Rows are addressed in the TMS scheme, so ``tile_row`` grows northwards.

The helpers here are small: the merge and POI services compose
them into paged streaming copies, and the tile endpoints use them for
single lookups.

Example:
    Stream an archive page by page:
        >>> from mapserver.db import mbtiles
        >>> with mbtiles.connect(path) as conn:
        ...     for page in mbtiles.iter_tile_pages(conn, page_size=5000):
        ...         handle(page)
"""

from __future__ import annotations

import contextlib
import logging
import sqlite3
from typing import TYPE_CHECKING

from mapserver.db import models as db_models

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Iterable, Iterator, Mapping

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"

TileRow = tuple[int, int, int, bytes]

CREATE_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS metadata (name TEXT, value TEXT);
CREATE UNIQUE INDEX IF NOT EXISTS metadata_name ON metadata (name);
CREATE TABLE IF NOT EXISTS tiles (
  zoom_level INTEGER,
  tile_column INTEGER,
  tile_row INTEGER,
  tile_data BLOB
);
"""

SELECT_PAGE_SQL = """
SELECT zoom_level, tile_column, tile_row, tile_data
FROM tiles
ORDER BY zoom_level, tile_column, tile_row
LIMIT ? OFFSET ?
"""

INSERT_TILE_SQL = (
    "INSERT INTO tiles (zoom_level, tile_column, tile_row, tile_data) "
    "VALUES (?, ?, ?, ?)"
)


class ArchiveError(RuntimeError):
    """Raised when a tile archive cannot be read, written or published."""


@contextlib.contextmanager
def connect(path: pathlib.Path) -> Iterator[sqlite3.Connection]:
    """Open an archive, committing on success and always closing it.

    Args:
        path: Location of the SQLite file. It is created when missing, so
            callers reading existing archives check existence first.

    Yields:
        An open sqlite3 connection.
    """
    conn = sqlite3.connect(str(path))
    try:
        yield conn
        conn.commit()
    except BaseException:
        conn.rollback()
        raise
    finally:
        conn.close()


def read_metadata(conn: sqlite3.Connection) -> dict[str, str]:
    """Return every ``metadata`` row as a name to value mapping."""
    rows = conn.execute("SELECT name, value FROM metadata").fetchall()
    return {str(name): str(value) for name, value in rows if name is not None}


def count_tiles(conn: sqlite3.Connection) -> int:
    row = conn.execute("SELECT COUNT(*) FROM tiles").fetchone()
    return int(row[0]) if row else 0


def iter_tile_pages(
    conn: sqlite3.Connection,
    page_size: int,
) -> Iterator[list[TileRow]]:
    """Yield the archive's tile rows in offset/limit pages.

    Pages are ordered by tile key so consecutive queries see a stable
    order even when ``tiles`` is a view over deduplicated storage.

    Args:
        conn: Open archive connection.
        page_size: Maximum number of rows per page.

    Yields:
        Non-empty lists of ``(zoom, column, row, data)`` tuples.
    """
    offset = 0
    while True:
        page = conn.execute(SELECT_PAGE_SQL, (page_size, offset)).fetchall()
        if not page:
            return
        yield [(int(z), int(x), int(y), bytes(data)) for z, x, y, data in page]
        if len(page) < page_size:
            return
        offset += page_size


def insert_tiles(conn: sqlite3.Connection, rows: Iterable[TileRow]) -> int:
    """Batch insert tile rows; duplicate keys are not deduplicated.

    Returns:
        Number of rows inserted.
    """
    cursor = conn.executemany(INSERT_TILE_SQL, rows)
    return cursor.rowcount


def write_metadata(
    conn: sqlite3.Connection,
    values: Mapping[str, str],
) -> None:
    """Set metadata keys, updating existing rows and inserting missing ones."""
    for name, value in values.items():
        cursor = conn.execute(
            "UPDATE metadata SET value = ? WHERE name = ?",
            (value, name),
        )
        if cursor.rowcount == 0:
            conn.execute(
                "INSERT INTO metadata (name, value) VALUES (?, ?)",
                (name, value),
            )


def read_tile(
    conn: sqlite3.Connection,
    z: int,
    x: int,
    y: int,
) -> bytes | None:
    """Fetch a single tile blob by its TMS key, or None if absent."""
    row = conn.execute(
        "SELECT tile_data FROM tiles "
        "WHERE zoom_level = ? AND tile_column = ? AND tile_row = ?",
        (z, x, y),
    ).fetchone()
    return bytes(row[0]) if row is not None else None


def create_archive(
    path: pathlib.Path,
    metadata: Mapping[str, str],
    tiles: Iterable[TileRow] = (),
) -> pathlib.Path:
    """Write a new MBTiles file with the given metadata and tiles.

    Args:
        path: Destination file; must not exist yet.
        metadata: Metadata name/value pairs.
        tiles: Tile rows in ``(zoom, column, row, data)`` form.

    Returns:
        The path of the written archive.

    Raises:
        FileExistsError: If ``path`` already exists.
    """
    if path.exists():
        raise FileExistsError(path)

    with connect(path) as conn:
        conn.executescript(CREATE_SCHEMA_SQL)
        write_metadata(conn, metadata)
        insert_tiles(conn, tiles)
    return path


def _sniff_compression(conn: sqlite3.Connection) -> str | None:
    row = conn.execute("SELECT tile_data FROM tiles LIMIT 1").fetchone()
    data = row[0] if row is not None else None
    # NULL or TEXT tile_data carries no gzip header.
    if isinstance(data, bytes) and data[:2] == GZIP_MAGIC:
        return "gzip"
    return None


def _parse_bounds(raw: str) -> db_models.BBox:
    # Such as: 120.85098267,30.68516394,122.03475952,31.87872381
    parts = [float(part) for part in raw.split(",")]
    if len(parts) != 4:
        raise ValueError(f"Malformed bounds: {raw!r}")
    return (parts[0], parts[1], parts[2], parts[3])


def describe(path: pathlib.Path) -> db_models.SourceDescriptor:
    """Read the descriptor of one archive.

    Args:
        path: Existing MBTiles file.

    Returns:
        SourceDescriptor built from the ``format``, ``minzoom``,
        ``maxzoom`` and ``bounds`` metadata keys plus the tile count.

    Raises:
        ArchiveError: If the file is missing, is not a readable archive or
            lacks one of the required metadata keys.
    """
    if not path.is_file():
        raise ArchiveError(f"Tile archive not found: {path}")

    try:
        with connect(path) as conn:
            metadata = read_metadata(conn)
            tile_count = count_tiles(conn)
            compression = metadata.get("compression") or _sniff_compression(
                conn
            )
    except sqlite3.Error as exc:
        raise ArchiveError(f"Unreadable tile archive {path}: {exc}") from exc

    try:
        return db_models.SourceDescriptor(
            path=path,
            format=metadata["format"],
            min_zoom=int(metadata["minzoom"]),
            max_zoom=int(metadata["maxzoom"]),
            bounds=_parse_bounds(metadata["bounds"]),
            tile_count=tile_count,
            compression=compression,
            file_size=path.stat().st_size,
        )
    except (KeyError, ValueError) as exc:
        raise ArchiveError(
            f"Incomplete metadata in tile archive {path}: {exc}"
        ) from exc

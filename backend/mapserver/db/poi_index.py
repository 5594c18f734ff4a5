"""POI index storage next to each tile archive.

Every vector archive ``<name>.mbtiles`` may own a sibling SQLite file
``<name>.mbtiles.idx`` holding one ``poi`` relation of named features. The
index is written once by the POI extractor and then only read by keyword
search; there is no incremental update.
"""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING

from mapserver.db import mbtiles
from mapserver.db import models as db_models

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Iterable

INDEX_SUFFIX = ".idx"

CREATE_TABLE_SQL = """
CREATE TABLE poi (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL,
  geometry TEXT NOT NULL,
  geometry_type INTEGER NOT NULL
);
"""

INSERT_SQL = "INSERT INTO poi (name, geometry, geometry_type) VALUES (?, ?, ?)"

# instr() keeps the match case-sensitive, unlike LIKE in SQLite.
SEARCH_SQL = """
SELECT name, geometry, geometry_type
FROM poi
WHERE instr(name, ?) > 0
ORDER BY id
LIMIT ?
"""


def index_path_for(archive_path: pathlib.Path) -> pathlib.Path:
    """Return the sibling index location of an archive."""
    return archive_path.with_name(archive_path.name + INDEX_SUFFIX)


def create(conn: sqlite3.Connection) -> None:
    conn.execute(CREATE_TABLE_SQL)


def insert_many(
    conn: sqlite3.Connection,
    entries: Iterable[db_models.PoiEntry],
) -> int:
    """Insert a batch of POIs in one statement.

    Returns:
        Number of rows written.
    """
    cursor = conn.executemany(
        INSERT_SQL,
        [(e.name, e.geometry, int(e.geometry_type)) for e in entries],
    )
    return max(cursor.rowcount, 0)


def count(index_path: pathlib.Path) -> int:
    with mbtiles.connect(index_path) as conn:
        row = conn.execute("SELECT COUNT(*) FROM poi").fetchone()
    return int(row[0]) if row else 0


def search(
    index_path: pathlib.Path,
    keyword: str,
    limit: int,
) -> list[db_models.PoiEntry]:
    """Find POIs whose name contains ``keyword``.

    Args:
        index_path: Existing ``.idx`` file.
        keyword: Single keyword matched as a case-sensitive substring.
        limit: Maximum number of rows returned.

    Returns:
        Matching entries in storage order, no relevance ranking.
    """
    with mbtiles.connect(index_path) as conn:
        rows = conn.execute(SEARCH_SQL, (keyword, limit)).fetchall()

    return [
        db_models.PoiEntry(
            name=str(name),
            geometry=str(geometry),
            geometry_type=db_models.GeometryType(int(geometry_type)),
        )
        for name, geometry, geometry_type in rows
    ]

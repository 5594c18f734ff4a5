"""Storage helpers for tile archives and POI indexes.

Both stores are plain SQLite files. ``mbtiles`` reads and writes archives
following the MBTiles 1.3 layout, ``poi_index`` owns the sibling ``.idx``
files and ``models`` holds the value objects passed between them and the
services.

Example:
    Describe an archive before planning a merge:
        >>> from mapserver.db import mbtiles
        >>> descriptor = mbtiles.describe(pathlib.Path("city.mbtiles"))
"""

"""Offline map server backend package.

This package serves map tiles and point-of-interest search results from
MBTiles archives stored on local disk. Besides plain tile serving it hosts
the long-running archive jobs: fusing several tile archives into one and
building a searchable POI index from the vector tiles inside an archive.

- Tile archives are read straight from SQLite (MBTiles 1.3 convention)
- Merge and index jobs run on a bounded background worker pool
- Job progress is polled by task id, callers never block on a job
- POI search reads a sibling ``<archive>.idx`` SQLite index

See module sub-docstrings for details on architecture and usage.
"""

"""API router subpackage for the map server backend.

Each module exposes its own APIRouter for composition in the application's
main FastAPI instance.

Submodules:
    - tilesets: Listing archives, archive metadata and raw tile serving.
    - tasks: Submitting archive merge jobs and polling task progress.
    - poi: Submitting POI index builds and keyword search.
    - fonts: Serving font glyph ranges for map styles.
"""

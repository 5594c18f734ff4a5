"""Font glyph endpoint for map styles.

Glyphs are stored as pre-rendered protobuf ranges, one folder per font
stack under the configured fonts directory::

    fonts/
      Open Sans Regular/
        0-255.pbf
        256-511.pbf

Example:
    Fetch the first glyph range of a font:
        >>> client.get("/api/fonts/Open Sans Regular/0-255.pbf")
        >>> # Returns the raw range file as application/x-protobuf
"""

from __future__ import annotations

import pathlib

import fastapi
from fastapi import responses

from mapserver.core import config

router = fastapi.APIRouter(prefix="/api/fonts", tags=["fonts"])

GLYPH_SUFFIX = ".pbf"
GLYPH_MEDIA_TYPE = "application/x-protobuf"


def validate_path_segment(value: str) -> str:
    """Accept a font name or glyph range only as a single plain path segment.

    Raises:
        HTTPException: 400 if the value is empty, hidden or holds a path
            separator.
    """
    if (
        not value.strip()
        or value.startswith(".")
        or "/" in value
        or "\\" in value
        or pathlib.PurePath(value).name != value
    ):
        raise fastapi.HTTPException(
            status_code=400,
            detail="Invalid font name or range",
        )

    return value


@router.get("/{font_name}/{glyph_range}.pbf")
async def get_glyphs(
    font_name: str,
    glyph_range: str,
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> responses.Response:
    """Serve one glyph range of a font.

    Args:
        font_name: Font folder name, e.g. ``Open Sans Regular``.
        glyph_range: Range file stem, e.g. ``0-255``.
        settings: Application settings (injected via FastAPI Depends).

    Returns:
        The raw range file as ``application/x-protobuf``.

    Raises:
        HTTPException: 400 for invalid names, 404 if the font or the range
            does not exist.
    """
    path = (
        settings.fonts_dir
        / validate_path_segment(font_name)
        / (validate_path_segment(glyph_range) + GLYPH_SUFFIX)
    )
    if not path.is_file():
        raise fastapi.HTTPException(status_code=404, detail="Font not found")

    return responses.Response(
        content=path.read_bytes(),
        media_type=GLYPH_MEDIA_TYPE,
    )

"""Application settings and configuration management.

This module provides Pydantic-based settings management that loads
configuration from environment variables or a .env file. Settings include
the data directory holding tile archives, paging and worker pool sizes for
background jobs, POI search limits, CORS origins and the log level.

Example:
    Settings can be accessed via the cached get_settings() function:
        >>> from mapserver.core.config import get_settings
        >>> settings = get_settings()
        >>> print(settings.tilesets_dir)

    Environment variables can override defaults:
        >>> DATA_DIR=/srv/maps
        >>> PAGE_SIZE=2000
        >>> MAX_WORKERS=8
"""

import functools
import pathlib

import pydantic
import pydantic_settings


class Settings(pydantic_settings.BaseSettings):
    """Runtime configuration pulled from environment variables or defaults.

    All settings can be overridden via environment variables or .env file.
    The tilesets and fonts directories are created on initialization via
    ensure_directories().

    Attributes:
        data_dir: Root data directory; archives live in ``tilesets/`` and
            font glyphs in ``fonts/``.
        page_size: Rows per page when streaming tiles and the flush
            threshold of the POI insert buffer.
        max_workers: Size of the background pool running merge and
            index jobs.
        search_limit: Maximum number of POI search results.
        index_on_startup: Submit a POI index build for every archive found
            in the tilesets directory when the application starts.
        allow_origins: List of allowed CORS origins (["*"] allows all).
        log_level: Level name for the ``mapserver`` logger.

    Example:
        Create settings with custom values:
            >>> settings = Settings(
            ...     data_dir=Path("/srv/maps"),
            ...     max_workers=2,
            ... )
            >>> settings.ensure_directories()
    """

    data_dir: pathlib.Path = pathlib.Path("/tmp/mapserver/data")
    page_size: int = pydantic.Field(default=5000, gt=0)
    max_workers: int = pydantic.Field(default=4, gt=0)
    search_limit: int = pydantic.Field(default=10, gt=0)
    index_on_startup: bool = True
    allow_origins: list[str] = ["*"]
    log_level: str = "INFO"

    model_config = pydantic_settings.SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def tilesets_dir(self) -> pathlib.Path:
        """Directory holding ``*.mbtiles`` archives and their indexes."""
        return self.data_dir / "tilesets"

    @property
    def fonts_dir(self) -> pathlib.Path:
        """Directory holding one folder of ``<range>.pbf`` glyphs per font."""
        return self.data_dir / "fonts"

    def ensure_directories(self) -> None:
        """Create the tilesets and fonts directories if missing."""
        self.tilesets_dir.mkdir(parents=True, exist_ok=True)
        self.fonts_dir.mkdir(parents=True, exist_ok=True)


@functools.lru_cache
def get_settings() -> Settings:
    """Get cached settings instance with directories initialized.

    Settings are loaded from environment variables or .env file and cached
    for the lifetime of the application. Directories are created on first call.
    Subsequent calls return the same cached instance.

    Returns:
        Settings instance with all configuration values populated and
        directories ensured to exist.
    """
    settings = Settings()
    settings.ensure_directories()
    return settings

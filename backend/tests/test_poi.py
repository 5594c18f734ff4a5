"""Tests for POI extraction, the POI index store and keyword search.

Vector tiles are produced with ``mapbox_vector_tile.encode`` so the full
decode path runs. These tests verify:
    - Only named single-point features reach the index,
    - A second build over an indexed archive writes nothing,
    - Non-vector archives are skipped, corrupt tiles are skipped and counted,
    - gzip-compressed archives are decompressed before decoding,
    - Search is a case-sensitive substring match in storage order, capped.
"""

from __future__ import annotations

import gzip
from typing import TYPE_CHECKING

import pytest

from helpers import point, vector_tile
from mapserver.db import mbtiles, poi_index
from mapserver.db import models as db_models
from mapserver.services import poi
from mapserver.utils import geometry

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Callable


POLYGON = {
    "geometry": "POLYGON ((0 0, 100 0, 100 100, 0 100, 0 0))",
    "properties": {"name": "Lake"},
}


def _names(index_path: pathlib.Path) -> list[str]:
    with mbtiles.connect(index_path) as conn:
        rows = conn.execute("SELECT name FROM poi ORDER BY id").fetchall()
    return [row[0] for row in rows]


def _write_index(
    archive: pathlib.Path,
    names: list[str],
) -> pathlib.Path:
    index_path = poi_index.index_path_for(archive)
    with mbtiles.connect(index_path) as conn:
        poi_index.create(conn)
        poi_index.insert_many(
            conn,
            [db_models.PoiEntry(name, "POINT (1.5 2.25)") for name in names],
        )
    return index_path


def test_build_index_keeps_named_points(
    make_archive: Callable[..., pathlib.Path],
) -> None:
    """Three tiles: named + unnamed point, named point, polygon only."""
    archive = make_archive(
        "city.mbtiles",
        [
            (14, 0, 0, vector_tile([point("Cafe"), point(None, 30, 40)])),
            (14, 1, 0, vector_tile([point("Park")])),
            (14, 2, 0, vector_tile([POLYGON])),
        ],
    )

    result = poi.build_index(archive, page_size=2)

    assert result is not None
    assert result.tiles_read == 3
    assert result.tiles_skipped == 0
    assert result.poi_count == 2
    assert result.index_path == archive.with_name("city.mbtiles.idx")
    assert _names(result.index_path) == ["Cafe", "Park"]


def test_build_index_stores_lonlat_point_wkt(
    make_archive: Callable[..., pathlib.Path],
) -> None:
    archive = make_archive(
        "city.mbtiles",
        [(0, 0, 0, vector_tile([point("Centre", 2048, 2048)]))],
    )
    poi.build_index(archive)

    entries = poi_index.search(poi_index.index_path_for(archive), "Centre", 10)
    assert len(entries) == 1
    assert entries[0].geometry_type == db_models.GeometryType.POINT
    assert geometry.coordinate_text(entries[0].geometry) == "0,0"


def test_build_index_is_idempotent(
    make_archive: Callable[..., pathlib.Path],
) -> None:
    archive = make_archive(
        "city.mbtiles", [(0, 0, 0, vector_tile([point("Cafe")]))]
    )
    first = poi.build_index(archive)
    assert first is not None
    before = poi_index.count(first.index_path)

    assert poi.build_index(archive) is None
    assert poi_index.count(first.index_path) == before == 1


def test_build_index_skips_raster_archives(
    make_archive: Callable[..., pathlib.Path],
) -> None:
    archive = make_archive("photo.mbtiles", [(0, 0, 0, b"png")], fmt="png")
    assert poi.build_index(archive) is None
    assert not poi_index.index_path_for(archive).exists()


def test_build_index_skips_corrupt_tiles(
    make_archive: Callable[..., pathlib.Path],
) -> None:
    archive = make_archive(
        "city.mbtiles",
        [
            (1, 0, 0, vector_tile([point("Cafe")])),
            (1, 0, 1, b"\x0f\xff\xff\xff"),
            (1, 1, 0, vector_tile([point("Park")])),
        ],
    )

    result = poi.build_index(archive)

    assert result is not None
    assert result.tiles_skipped == 1
    assert _names(result.index_path) == ["Cafe", "Park"]


def test_build_index_gzip_archive(
    make_archive: Callable[..., pathlib.Path],
) -> None:
    archive = make_archive(
        "city.mbtiles",
        [(0, 0, 0, gzip.compress(vector_tile([point("Cafe")])))],
    )
    result = poi.build_index(archive)
    assert result is not None
    assert _names(result.index_path) == ["Cafe"]


def test_build_index_flushes_buffer_in_batches(
    monkeypatch: pytest.MonkeyPatch,
    make_archive: Callable[..., pathlib.Path],
) -> None:
    archive = make_archive(
        "city.mbtiles",
        [
            (2, column, 0, vector_tile([point(f"P{column}-{i}") for i in range(2)]))
            for column in range(4)
        ],
    )
    batches: list[int] = []
    original = poi_index.insert_many

    def recording_insert(conn: object, entries: list[db_models.PoiEntry]) -> int:
        batches.append(len(entries))
        return original(conn, entries)  # type: ignore[arg-type]

    monkeypatch.setattr(poi_index, "insert_many", recording_insert)

    result = poi.build_index(archive, page_size=2)

    assert result is not None
    assert result.poi_count == 8
    assert sum(batches) == 8
    assert all(size <= 4 for size in batches)


def test_build_index_reports_progress(
    make_archive: Callable[..., pathlib.Path],
) -> None:
    archive = make_archive(
        "city.mbtiles",
        [(2, column, 0, vector_tile([point("Cafe")])) for column in range(4)],
    )
    reports: list[int] = []
    poi.build_index(archive, page_size=2, report=reports.append)
    assert reports == [50, 100]


def test_decode_tile_result_variants() -> None:
    ok = poi.decode_tile(vector_tile([point("Cafe")]))
    assert ok.ok
    assert "poi" in ok.layers

    bad = poi.decode_tile(b"\x0f\xff\xff\xff")
    assert not bad.ok
    assert isinstance(bad.error, poi.TileDecodeError)
    assert bad.layers == {}

    not_gzip = poi.decode_tile(b"plain", gzipped=True)
    assert isinstance(not_gzip.error, poi.TileDecodeError)

    null_tile = poi.decode_tile(None, gzipped=True)  # type: ignore[arg-type]
    assert isinstance(null_tile.error, poi.TileDecodeError)


def test_extract_points_filters_features() -> None:
    decoded = poi.decode_tile(
        vector_tile(
            [
                point("Cafe"),
                point(None),
                point("   "),
                POLYGON,
                {
                    "geometry": "MULTIPOINT ((1 1), (2 2))",
                    "properties": {"name": "Pair"},
                },
            ]
        )
    )
    entries = poi.extract_points(decoded.layers, 0, 0, 0)
    assert [e.name for e in entries] == ["Cafe"]
    assert entries[0].geometry.startswith("POINT")


@pytest.mark.parametrize(
    ("value", "expected"),
    [("Cafe", True), ("", False), ("  ", False), (None, False), (42, False)],
)
def test_has_text(value: object, expected: bool) -> None:
    assert poi.has_text(value) is expected


@pytest.mark.parametrize(
    ("keyword", "expected"),
    [("Caf", True), (" Caf ", True), ("Cafe Park", False), ("", False)],
)
def test_is_single_keyword(keyword: str, expected: bool) -> None:
    assert poi.is_single_keyword(keyword) is expected


def test_search_substring_in_storage_order(
    make_archive: Callable[..., pathlib.Path],
) -> None:
    archive = make_archive("city.mbtiles")
    _write_index(archive, ["Cafe", "Cafeteria", "Park"])

    results = poi.search(archive, "Caf", limit=10)

    assert [r.name for r in results] == ["Cafe", "Cafeteria"]
    assert results[0].coordinate == "1.5,2.25"


def test_search_is_case_sensitive(
    make_archive: Callable[..., pathlib.Path],
) -> None:
    archive = make_archive("city.mbtiles")
    _write_index(archive, ["Cafe", "cafe"])
    assert [r.name for r in poi.search(archive, "caf")] == ["cafe"]


def test_search_limits_results(
    make_archive: Callable[..., pathlib.Path],
) -> None:
    archive = make_archive("city.mbtiles")
    _write_index(archive, [f"Shop {i}" for i in range(25)])

    results = poi.search(archive, "Shop", limit=10)

    assert len(results) == 10
    assert results[0].name == "Shop 0"


def test_search_without_index(
    make_archive: Callable[..., pathlib.Path],
) -> None:
    archive = make_archive("city.mbtiles")
    with pytest.raises(FileNotFoundError):
        poi.search(archive, "Cafe")


def test_tile_point_to_lonlat() -> None:
    assert geometry.tile_point_to_lonlat(0, 0, 0, 2048, 2048, 4096) == (0.0, 0.0)
    lon, lat = geometry.tile_point_to_lonlat(1, 1, 1, 4096, 4096, 4096)
    assert lon == pytest.approx(180.0)
    assert lat == pytest.approx(85.0511287798)


def test_coordinate_text_non_point() -> None:
    assert geometry.coordinate_text("LINESTRING (0 0, 1 1)") is None

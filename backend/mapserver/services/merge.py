"""Tile archive fusion: merge planning and streaming copy.

Merging several MBTiles archives into one happens in two phases.

Planning reads a descriptor for every source, rejects mixed tile formats and
aggregates the metadata: the merged bounds are the componentwise union and
the merged zoom range is the union of all zoom ranges. The source with the
largest file becomes the *base*.

Streaming duplicates the base file wholesale into ``<target>.tmp``, appends
the tiles of every remaining source page by page in submission order, writes
the aggregated metadata and finally renames the temporary file onto the
target path. A POI index left over from a replaced target is removed.

Tile keys are not deduplicated across sources: merging is only correct for
spatially disjoint archives.

Example:
    Merge two archives, printing progress:
        >>> from mapserver.services import merge
        >>> merge.merge_archives(
        ...     [pathlib.Path("north.mbtiles"), pathlib.Path("south.mbtiles")],
        ...     pathlib.Path("all.mbtiles"),
        ...     report=print,
        ... )
"""

from __future__ import annotations

import logging
import os
import shutil
import sqlite3
from typing import TYPE_CHECKING

from mapserver.db import mbtiles, poi_index
from mapserver.db import models as db_models

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Callable, Sequence

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 5000
TMP_SUFFIX = ".tmp"


class MergeValidationError(ValueError):
    """Raised when a set of sources cannot be merged."""


def _percent(done: int, total: int) -> int:
    if total <= 0:
        return 0
    return done * 100 // total


def plan_merge(source_paths: Sequence[pathlib.Path]) -> db_models.MergePlan:
    """Validate the sources and aggregate their metadata.

    Repeated paths are merged once. Ties on file size keep the earliest
    source as base.

    Args:
        source_paths: Archives to merge, in submission order.

    Returns:
        MergePlan with the base source, the remaining sources in
        submission order and the aggregated metadata.

    Raises:
        MergeValidationError: If no sources are given or their formats
            differ.
        ArchiveError: If a source is missing or unreadable.
    """
    unique_paths = list(dict.fromkeys(source_paths))
    if not unique_paths:
        raise MergeValidationError("At least one source archive is required")

    descriptors = [mbtiles.describe(path) for path in unique_paths]

    formats = {d.format for d in descriptors}
    if len(formats) > 1:
        raise MergeValidationError(
            "These tile archives have different formats: "
            + ", ".join(sorted(formats))
        )

    base = descriptors[0]
    for descriptor in descriptors[1:]:
        if descriptor.file_size > base.file_size:
            base = descriptor

    return db_models.MergePlan(
        base=base,
        remaining=[d for d in descriptors if d is not base],
        format=base.format,
        min_zoom=min(d.min_zoom for d in descriptors),
        max_zoom=max(d.max_zoom for d in descriptors),
        bounds=db_models.union_bounds(d.bounds for d in descriptors),
        total_tiles=sum(d.tile_count for d in descriptors),
    )


def _copy_source(
    source: db_models.SourceDescriptor,
    target_conn: sqlite3.Connection,
    page_size: int,
) -> int:
    copied = 0
    with mbtiles.connect(source.path) as source_conn:
        for page in mbtiles.iter_tile_pages(source_conn, page_size):
            mbtiles.insert_tiles(target_conn, page)
            copied += len(page)
    return copied


def stream_merge(
    plan: db_models.MergePlan,
    target_path: pathlib.Path,
    report: Callable[[int], None],
    page_size: int = DEFAULT_PAGE_SIZE,
) -> pathlib.Path:
    """Materialize a merge plan at ``target_path``.

    Progress is reported once after the base copy and once per remaining
    source as ``cumulative_tiles * 100 // total_tiles``.

    Args:
        plan: Result of :func:`plan_merge`.
        target_path: Final location of the merged archive.
        report: Callback receiving progress percentages.
        page_size: Rows fetched and inserted per batch.

    Returns:
        The published target path.

    Raises:
        ArchiveError: If copying, streaming or publishing fails. The
            temporary file is removed in that case.
    """
    tmp_path = target_path.with_name(target_path.name + TMP_SUFFIX)

    try:
        shutil.copyfile(plan.base.path, tmp_path)
    except OSError as exc:
        tmp_path.unlink(missing_ok=True)
        raise mbtiles.ArchiveError(
            f"Copy the largest file failed: {plan.base.path}: {exc}"
        ) from exc

    done = plan.base.tile_count
    report(_percent(done, plan.total_tiles))
    logger.info("Copied base archive %s to %s", plan.base.path, tmp_path)

    try:
        with mbtiles.connect(tmp_path) as target_conn:
            for source in plan.remaining:
                _copy_source(source, target_conn, page_size)
                done += source.tile_count
                report(_percent(done, plan.total_tiles))
                logger.info("Merged file: %s", source.path)

            mbtiles.write_metadata(target_conn, plan.aggregated_metadata())

        os.replace(tmp_path, target_path)
        # A replaced target must not keep the POI index of its old tiles.
        poi_index.index_path_for(target_path).unlink(missing_ok=True)
    except (sqlite3.Error, OSError) as exc:
        tmp_path.unlink(missing_ok=True)
        raise mbtiles.ArchiveError(
            f"Merging into {target_path} failed: {exc}"
        ) from exc
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise

    logger.info("Published merged archive %s", target_path)
    return target_path


def merge_archives(
    source_paths: Sequence[pathlib.Path],
    target_path: pathlib.Path,
    report: Callable[[int], None],
    page_size: int = DEFAULT_PAGE_SIZE,
) -> db_models.MergePlan:
    """Plan and run a merge end to end.

    Nothing is written when planning fails.

    Args:
        source_paths: Archives to merge, in submission order.
        target_path: Final location of the merged archive.
        report: Callback receiving progress percentages.
        page_size: Rows fetched and inserted per batch.

    Returns:
        The executed plan.

    Raises:
        MergeValidationError: If the sources cannot be merged or the target
            is one of the sources.
        ArchiveError: On any I/O failure.
    """
    resolved_target = target_path.resolve()
    if any(path.resolve() == resolved_target for path in source_paths):
        raise MergeValidationError(
            f"Target {target_path} is also one of the merge sources"
        )

    plan = plan_merge(source_paths)
    logger.info(
        "Merging %d archive(s) into %s, base %s, %d tiles in total",
        len(plan.remaining) + 1,
        target_path,
        plan.base.path,
        plan.total_tiles,
    )
    stream_merge(plan, target_path, report, page_size)
    return plan

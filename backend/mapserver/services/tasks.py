"""Background job tracking for archive merges and POI index builds.

Jobs run on a bounded ``ThreadPoolExecutor``; each job is single-threaded
end to end. The only state shared between the workers and the request
handlers is the task id to progress mapping, kept in a lock-protected
progress store. Handlers poll it and never wait on a job.

Progress values:
    - ``0..99`` while the job runs (never 100 before it has finished),
    - ``100`` once the job succeeded,
    - ``-1`` once it failed; nothing is written for that job afterwards.

Task ids are content fingerprints: the MD5 digest of the sorted source paths
for merges, so the same set of sources always maps to the same id whatever
order it was submitted in. A submission whose id is still running is
coalesced with the running job instead of racing on the same files, as long
as it asks for the same target; a different target is refused with
:class:`TaskConflictError`.

Example:
    Submit a merge and poll it:
        >>> tracker = TaskTracker(get_settings())
        >>> task_id = tracker.submit_merge(["a.mbtiles", "b.mbtiles"], "ab.mbtiles")
        >>> tracker.progress(task_id)
        0
"""

from __future__ import annotations

import concurrent.futures
import functools
import hashlib
import logging
import pathlib
import threading
from typing import TYPE_CHECKING, Protocol

from mapserver.core import config
from mapserver.db import mbtiles
from mapserver.db import models as db_models
from mapserver.services import merge, poi

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

logger = logging.getLogger(__name__)


def compute_task_id(paths: Iterable[str | pathlib.Path]) -> str:
    """Fingerprint a set of paths, independent of their order."""
    joined = "".join(sorted(str(path) for path in paths))
    return hashlib.md5(joined.encode("utf-8")).hexdigest()


def compute_index_task_id(archive_path: str | pathlib.Path) -> str:
    return compute_task_id([f"index:{archive_path}"])


class TaskConflictError(RuntimeError):
    """Raised when a running task id is resubmitted for another target."""


class ProgressStoreProtocol(Protocol):
    """Protocol interface for the shared task progress mapping."""

    def set(self, task_id: str, progress: int) -> None: ...

    def get(self, task_id: str) -> int | None: ...

    def all(self) -> Iterable[db_models.TaskProgress]: ...


class InMemoryProgressStore(ProgressStoreProtocol):
    """Thread-safe in-process progress store.

    Entries are kept for the lifetime of the process.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._store: dict[str, int] = {}

    def set(self, task_id: str, progress: int) -> None:
        with self._lock:
            self._store[task_id] = progress

    def get(self, task_id: str) -> int | None:
        with self._lock:
            return self._store.get(task_id)

    def all(self) -> Iterable[db_models.TaskProgress]:
        with self._lock:
            items = list(self._store.items())
        return [db_models.TaskProgress(k, v) for k, v in items]


class TaskTracker:
    """Dispatches merge and index jobs and exposes their progress."""

    def __init__(
        self,
        settings: config.Settings,
        store: ProgressStoreProtocol | None = None,
        executor: concurrent.futures.Executor | None = None,
    ) -> None:
        """Initialize the tracker.

        Args:
            settings: Provides page size and the worker pool size.
            store: Progress store; a fresh in-memory store by default.
            executor: Worker pool; a ThreadPoolExecutor with
                ``settings.max_workers`` threads by default.
        """
        self.settings = settings
        self.store = store or InMemoryProgressStore()
        self._executor = executor or concurrent.futures.ThreadPoolExecutor(
            max_workers=settings.max_workers,
            thread_name_prefix="mapserver-task",
        )
        self._dispatch_lock = threading.Lock()
        self._targets: dict[str, pathlib.Path | None] = {}

    def submit_merge(
        self,
        source_paths: Iterable[str | pathlib.Path],
        target_path: str | pathlib.Path,
    ) -> str:
        """Start merging ``source_paths`` into ``target_path``.

        Returns immediately with the task id; the merge runs in the
        background.

        Raises:
            TaskConflictError: If a merge of the same sources into another
                target is still running.
        """
        sources = [pathlib.Path(path) for path in source_paths]
        target = pathlib.Path(target_path)
        task_id = compute_task_id(sources)

        def job(report: Callable[[int], None]) -> object:
            return merge.merge_archives(
                sources, target, report, self.settings.page_size
            )

        return self._dispatch(task_id, "merge", job, target=target)

    def submit_index(self, archive_path: str | pathlib.Path) -> str:
        """Start building the POI index of one archive in the background."""
        archive = pathlib.Path(archive_path)
        task_id = compute_index_task_id(archive)

        def job(report: Callable[[int], None]) -> object:
            return poi.build_index(archive, self.settings.page_size, report)

        return self._dispatch(task_id, "index", job)

    def progress(self, task_id: str) -> int | None:
        """Current progress of a task, or None if it was never submitted."""
        return self.store.get(task_id)

    def get(self, task_id: str) -> db_models.TaskProgress | None:
        value = self.store.get(task_id)
        if value is None:
            return None
        return db_models.TaskProgress(task_id, value)

    def tasks(self) -> list[db_models.TaskProgress]:
        return list(self.store.all())

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting jobs, optionally waiting for running ones."""
        self._executor.shutdown(wait=wait)

    def _dispatch(
        self,
        task_id: str,
        kind: db_models.TaskKind,
        job: Callable[[Callable[[int], None]], object],
        target: pathlib.Path | None = None,
    ) -> str:
        with self._dispatch_lock:
            current = self.store.get(task_id)
            if current is not None and current not in (
                db_models.FAILED,
                db_models.DONE,
            ):
                running_target = self._targets.get(task_id)
                if running_target != target:
                    raise TaskConflictError(
                        f"{kind} task {task_id} is already running for "
                        f"{running_target}, not {target}"
                    )
                logger.info(
                    "%s task %s already running at %d%%, not resubmitted",
                    kind,
                    task_id,
                    current,
                )
                return task_id

            self._targets[task_id] = target
            self.store.set(task_id, 0)
            self._executor.submit(self._run, task_id, kind, job)

        logger.info("Submitted %s task %s", kind, task_id)
        return task_id

    def _report(self, task_id: str, percent: int) -> None:
        self.store.set(task_id, max(0, min(percent, db_models.DONE - 1)))

    def _run(
        self,
        task_id: str,
        kind: db_models.TaskKind,
        job: Callable[[Callable[[int], None]], object],
    ) -> None:
        try:
            job(functools.partial(self._report, task_id))
        except (merge.MergeValidationError, mbtiles.ArchiveError) as exc:
            logger.error("%s task %s failed: %s", kind, task_id, exc)
            self.store.set(task_id, db_models.FAILED)
            return
        except Exception:
            logger.exception("%s task %s failed unexpectedly", kind, task_id)
            self.store.set(task_id, db_models.FAILED)
            return

        self.store.set(task_id, db_models.DONE)
        logger.info("%s task %s finished", kind, task_id)


@functools.lru_cache
def get_task_tracker() -> TaskTracker:
    """Process-wide tracker used as a FastAPI dependency."""
    return TaskTracker(config.get_settings())

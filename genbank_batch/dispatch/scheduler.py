"""Bounded worker pool for batch jobs."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Callable, Generic, Iterable, TypeVar
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

JobWorker = Callable[[T], R]
ErrorHandler = Callable[[T, BaseException], None]


class BatchScheduler(Generic[T, R]):
    """Thread pool with a concurrency cap.

    Items are queued in input order and picked up by the next free worker; each
    worker blocks for the whole job. A worker that raises never cancels siblings.
    """

    def __init__(self, *, max_parallel: int = 1) -> None:
        self._max_parallel = max(1, int(max_parallel))

    @property
    def max_parallel(self) -> int:
        return self._max_parallel

    def run(
        self,
        items: Iterable[T],
        worker: JobWorker,
        *,
        on_error: ErrorHandler | None = None,
    ) -> list[R | None]:
        """Run ``worker`` over ``items`` and return results in input order once all finish."""
        pending = list(items)
        results: list[R | None] = [None] * len(pending)
        if not pending:
            return results
        with ThreadPoolExecutor(max_workers=self._max_parallel, thread_name_prefix="batch-worker") as executor:
            futures: dict[Future, int] = {
                executor.submit(worker, item): index for index, item in enumerate(pending)
            }
            for future in as_completed(futures):
                index = futures[future]
                try:
                    results[index] = future.result()
                except Exception as exc:  # noqa: BLE001
                    logger.exception("Worker failed for item %d", index)
                    if on_error is not None:
                        on_error(pending[index], exc)
        return results


__all__ = ["BatchScheduler", "ErrorHandler", "JobWorker"]

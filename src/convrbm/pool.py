"""Worker pool shared by batched activations.

The pool belongs to whoever drives training; layers only receive it as an
argument, so several layers can share one set of threads.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


class WorkerPool:
    """Thin wrapper around ``ThreadPoolExecutor`` for batch-parallel work.

    Args:
        max_workers: Number of threads. Defaults to the CPU count.
    """

    def __init__(self, max_workers: Optional[int] = None) -> None:
        self.max_workers = int(max_workers or os.cpu_count() or 1)
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="convrbm"
        )
        logger.debug("WorkerPool started with %d workers", self.max_workers)

    def split(self, n: int) -> List[Tuple[int, int]]:
        """Split ``range(n)`` into at most ``max_workers`` contiguous chunks."""
        n_chunks = max(1, min(self.max_workers, n))
        step, extra = divmod(n, n_chunks)
        ranges = []
        start = 0
        for i in range(n_chunks):
            end = start + step + (1 if i < extra else 0)
            if end > start:
                ranges.append((start, end))
            start = end
        return ranges

    def run_chunks(self, fn: Callable[[int, int], None], n: int) -> None:
        """Call ``fn(start, end)`` for every chunk and wait for all of them.

        The first exception raised by a chunk is re-raised here.
        """
        futures = [self._executor.submit(fn, s, e) for s, e in self.split(n)]
        for fut in futures:
            fut.result()

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "WorkerPool":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()


def maybe_parallel(
    fn: Callable[[int, int], None],
    n: int,
    pool: Optional[WorkerPool] = None,
    serial: bool = False,
) -> None:
    """Run ``fn`` over ``range(n)`` on ``pool``, or inline when serial."""
    if serial or pool is None or pool.max_workers <= 1 or n <= 1:
        fn(0, n)
        return
    pool.run_chunks(fn, n)

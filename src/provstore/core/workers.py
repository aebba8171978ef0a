"""Bounded worker pool for CPU-bound work (archive builds, piece commitments, proofs).

Deal monitoring runs on the event loop; anything that hashes large inputs is
pushed through this pool so a burst of archive builds cannot starve polling.
"""

from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WorkerPool:
    """Runs blocking callables on a fixed-size executor.

    ``kind="process"`` requires the callable and its arguments to be picklable;
    the module-level functions in ``provstore.archive`` and ``provstore.proofs`` are.
    """

    def __init__(self, max_workers: int = 2, kind: str = "thread"):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if kind not in ("thread", "process"):
            raise ValueError(f"Unknown worker pool kind: {kind}")
        self.max_workers = max_workers
        self.kind = kind
        self._executor: Executor | None = None
        self._slots: asyncio.Semaphore | None = None
        self._stats = {"submitted": 0, "completed": 0, "failed": 0, "busy_seconds": 0.0}

    def _ensure_started(self) -> Executor:
        if self._executor is None:
            if self.kind == "process":
                self._executor = ProcessPoolExecutor(max_workers=self.max_workers)
            else:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers, thread_name_prefix="provstore-worker"
                )
            logger.debug(f"Started {self.kind} worker pool with {self.max_workers} workers")
        return self._executor

    async def run(self, fn: Callable[..., T], *args: Any) -> T:
        """Run ``fn(*args)`` on the pool and await its result."""
        executor = self._ensure_started()
        if self._slots is None:
            self._slots = asyncio.Semaphore(self.max_workers)
        loop = asyncio.get_running_loop()
        self._stats["submitted"] += 1
        async with self._slots:
            start = time.monotonic()
            try:
                result = await loop.run_in_executor(executor, fn, *args)
            except Exception:
                self._stats["failed"] += 1
                raise
            finally:
                self._stats["busy_seconds"] += time.monotonic() - start
        self._stats["completed"] += 1
        return result

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait, cancel_futures=True)
            self._executor = None
            self._slots = None

    def get_stats(self) -> dict[str, Any]:
        return {"kind": self.kind, "max_workers": self.max_workers, **self._stats}

    def __enter__(self) -> WorkerPool:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()

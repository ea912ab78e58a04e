"""
worker.py — In-process background work queue.

Session updates hand derived computations (metrics recalculation, subject
refresh, progress creation) to this queue instead of awaiting them, so the
request returns before the classification oracle answers.

  submit(name, job)  — non-blocking enqueue; False when the queue is full
  join()             — wait until every queued job has finished
  stop(drain=True)   — shutdown from the app lifespan

Jobs are zero-argument coroutine factories. A job that raises is logged with
its name and counted in `failed`; it never reaches the submitter.
"""
import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[object]]


@dataclass
class WorkerStats:
    submitted: int = 0
    processed: int = 0
    failed: int = 0
    dropped: int = 0


class BackgroundWorker:
    """Bounded asyncio.Queue consumed by `concurrency` worker tasks."""

    def __init__(self, concurrency: int = 2, max_queue_size: int = 1000):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.concurrency = concurrency
        self.max_queue_size = max_queue_size
        self.stats = WorkerStats()
        # Created in start(): asyncio primitives must be bound to the running loop
        self._queue: Optional[asyncio.Queue] = None
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    def start(self) -> None:
        if self.running:
            logger.warning("BackgroundWorker already running")
            return
        self._queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._tasks = [
            asyncio.create_task(self._run(i), name=f"studytrack-worker-{i}")
            for i in range(self.concurrency)
        ]
        logger.info(
            "BackgroundWorker started (concurrency=%d, queue_size=%d)",
            self.concurrency, self.max_queue_size,
        )

    def submit(self, name: str, job: Job) -> bool:
        """
        Enqueue a job without waiting. Returns False (and counts a drop) when the
        worker is not running or the queue is full.
        """
        if self._queue is None or not self.running:
            self.stats.dropped += 1
            logger.warning("BackgroundWorker not running — dropped job=%s", name)
            return False
        try:
            self._queue.put_nowait((name, job))
        except asyncio.QueueFull:
            self.stats.dropped += 1
            logger.warning(
                "BackgroundWorker queue full (%d) — dropped job=%s",
                self.max_queue_size, name,
            )
            return False
        self.stats.submitted += 1
        return True

    async def join(self) -> None:
        """Wait until all submitted jobs have been processed."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self, drain: bool = True, timeout: Optional[float] = 10.0) -> None:
        """
        Stop the worker tasks. With drain=True, pending jobs get up to `timeout`
        seconds to finish first; whatever remains afterwards is discarded.
        """
        if not self.running:
            return
        if drain and self._queue is not None:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "BackgroundWorker drain timed out after %ss — %d job(s) discarded",
                    timeout, self.pending,
                )

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info(
            "BackgroundWorker stopped (submitted=%d processed=%d failed=%d dropped=%d)",
            self.stats.submitted, self.stats.processed, self.stats.failed, self.stats.dropped,
        )

    async def _run(self, index: int) -> None:
        assert self._queue is not None
        while True:
            name, job = await self._queue.get()
            try:
                await job()
                self.stats.processed += 1
            except asyncio.CancelledError:
                raise
            except Exception:
                self.stats.failed += 1
                logger.error("Background job failed job=%s worker=%d", name, index, exc_info=True)
            finally:
                self._queue.task_done()

"""Bounded worker pool that processes render jobs in the background."""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, List, Optional

logger = logging.getLogger(__name__)


class RenderQueue:
    """Feeds job IDs to a fixed number of asyncio workers."""

    DEFAULT_MAX_WORKERS = 2

    def __init__(
        self,
        handler: Callable[[str], Awaitable[None]],
        max_workers: int = DEFAULT_MAX_WORKERS,
        sweep: Optional[Callable[[], object]] = None,
        sweep_interval: Optional[float] = None,
    ):
        """
        Initialize the queue.

        Args:
            handler: Coroutine run once per job ID
            max_workers: Maximum concurrent jobs
            sweep: Optional periodic maintenance callable (stale job reconciliation)
            sweep_interval: Seconds between sweeps; no sweeping if None
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")

        self.handler = handler
        self.max_workers = max_workers
        self.sweep = sweep
        self.sweep_interval = sweep_interval

        self._queue: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []
        self._sweeper: Optional[asyncio.Task] = None
        self._backlog: List[str] = []
        self._active = 0

    @property
    def is_running(self) -> bool:
        return bool(self._workers)

    @property
    def depth(self) -> int:
        """Jobs waiting for a worker."""
        if self._queue is None:
            return len(self._backlog)
        return self._queue.qsize()

    @property
    def active(self) -> int:
        """Jobs currently being processed."""
        return self._active

    async def start(self, job_ids: Iterable[str] = ()) -> None:
        """
        Start the workers.

        Args:
            job_ids: Jobs to enqueue ahead of new submissions (recovered work)
        """
        if self.is_running:
            return

        # Bind the queue to the running loop
        self._queue = asyncio.Queue()
        for job_id in dict.fromkeys(list(job_ids) + self._backlog):
            self._queue.put_nowait(job_id)
        self._backlog.clear()

        self._workers = [
            asyncio.create_task(self._work(n), name=f"render-worker-{n}")
            for n in range(self.max_workers)
        ]

        if self.sweep is not None and self.sweep_interval:
            self._sweeper = asyncio.create_task(self._sweep_loop(), name="render-sweeper")

        logger.info(
            f"Started {self.max_workers} render workers, {self._queue.qsize()} jobs queued"
        )

    def enqueue(self, job_id: str) -> None:
        """Queue a job for processing. Held until start() if not running."""
        if self._queue is None or not self.is_running:
            self._backlog.append(job_id)
            return
        self._queue.put_nowait(job_id)

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self) -> None:
        """Cancel workers. Unfinished jobs stay in processing for recovery."""
        tasks = list(self._workers)
        if self._sweeper is not None:
            tasks.append(self._sweeper)

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        # Keep anything still waiting so a later start() picks it up
        if self._queue is not None:
            while not self._queue.empty():
                self._backlog.append(self._queue.get_nowait())

        self._workers = []
        self._sweeper = None
        self._queue = None
        self._active = 0
        logger.info("Stopped render workers")

    async def _work(self, worker_number: int) -> None:
        while True:
            job_id = await self._queue.get()
            self._active += 1
            try:
                await self.handler(job_id)
            except Exception:
                logger.exception(f"Worker {worker_number} crashed on render job {job_id}")
            finally:
                self._active -= 1
                self._queue.task_done()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                self.sweep()
            except Exception:
                logger.exception("Stale render job sweep failed")

"""Admission control for background jobs."""
import asyncio
import logging
from typing import Coroutine, Optional

from scrape_engine.config import config

logger = logging.getLogger(__name__)


class JobLauncher:
    """Runs job coroutines as background tasks.

    With ``max_concurrent_jobs`` unset every job starts immediately. When set,
    jobs queue on a semaphore before their coroutine runs.
    """

    def __init__(self, max_concurrent_jobs: Optional[int] = config.MAX_CONCURRENT_JOBS):
        if max_concurrent_jobs is not None and max_concurrent_jobs < 1:
            raise ValueError("max_concurrent_jobs must be >= 1 or None")
        self.max_concurrent_jobs = max_concurrent_jobs
        self._semaphore = asyncio.Semaphore(max_concurrent_jobs) if max_concurrent_jobs else None
        self._tasks: dict[str, asyncio.Task] = {}

    def launch(self, job_id: str, coro: Coroutine) -> asyncio.Task:
        """Schedule ``coro`` for ``job_id`` on the running loop."""
        task = asyncio.create_task(self._admit(coro), name=f"job-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job_id, None))
        return task

    async def _admit(self, coro: Coroutine):
        try:
            if self._semaphore is None:
                return await coro
            async with self._semaphore:
                return await coro
        finally:
            # Cancelled before admission: the coroutine never started
            coro.close()

    def task_for(self, job_id: str) -> Optional[asyncio.Task]:
        return self._tasks.get(job_id)

    def job_ids(self) -> list[str]:
        """Jobs whose task has not finished, queued ones included."""
        return [job_id for job_id, task in self._tasks.items() if not task.done()]

    def running(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    def cancel(self, job_id: str) -> bool:
        task = self._tasks.get(job_id)
        if task is None or task.done():
            return False
        return task.cancel()

    async def shutdown(self) -> None:
        """Cancel and await every outstanding job task."""
        tasks = list(self._tasks.values())
        if not tasks:
            return
        logger.info(f"Cancelling {len(tasks)} running jobs")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

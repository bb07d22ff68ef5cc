"""Batch scheduler: bounded fan-out of targets to the retrying fetcher."""
import asyncio
import logging
from collections.abc import Sequence
from typing import Awaitable, Callable

from scrape_engine.config import config
from scrape_engine.fetch.models import ScrapeTarget, ScrapingResult
from scrape_engine.fetch.retry import RetryingFetcher, error_message
from scrape_engine.jobs.metrics import EngineMetrics

logger = logging.getLogger(__name__)


class BatchScheduler:
    """Scrapes targets in fixed-size batches.

    Batches run strictly one after another with a pause in between, so at
    most ``batch_size`` fetches are ever in flight. Results come back in
    input order, one per target.
    """

    def __init__(
        self,
        fetcher: RetryingFetcher,
        batch_size: int = config.BATCH_SIZE,
        batch_delay: float = config.BATCH_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        metrics: EngineMetrics | None = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if batch_delay < 0:
            raise ValueError("batch_delay must be >= 0")
        self.fetcher = fetcher
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self._sleep = sleep
        self._metrics = metrics

    def partition(self, targets: Sequence[ScrapeTarget]) -> list[list[ScrapeTarget]]:
        """Split targets into consecutive batches of ``batch_size``."""
        if isinstance(targets, (str, bytes)) or not isinstance(targets, Sequence):
            raise TypeError("targets must be a sequence of ScrapeTarget")
        for target in targets:
            if not isinstance(target, ScrapeTarget):
                raise TypeError(f"Expected ScrapeTarget, got {type(target).__name__}")
        return [
            list(targets[i : i + self.batch_size])
            for i in range(0, len(targets), self.batch_size)
        ]

    async def scrape_many(self, targets: Sequence[ScrapeTarget]) -> list[ScrapingResult]:
        """Scrape every target; individual failures are returned, not raised."""
        batches = self.partition(targets)
        results: list[ScrapingResult] = []

        for index, batch in enumerate(batches, start=1):
            logger.info(f"Batch {index}/{len(batches)}: scraping {len(batch)} targets")
            batch_results = await asyncio.gather(*(self._scrape_isolated(t) for t in batch))
            results.extend(batch_results)

            failed = sum(1 for r in batch_results if not r.success)
            if self._metrics:
                self._metrics.increment("batches")
                self._metrics.increment("targets_ok", len(batch_results) - failed)
                self._metrics.increment("targets_failed", failed)
            logger.info(f"Batch {index}/{len(batches)} done: {len(batch_results) - failed} ok, {failed} failed")

            if index < len(batches) and self.batch_delay > 0:
                await self._sleep(self.batch_delay)

        return results

    async def scrape_one(self, target: ScrapeTarget) -> ScrapingResult:
        """Scrape a single target through the same isolation path."""
        return (await self.scrape_many([target]))[0]

    async def _scrape_isolated(self, target: ScrapeTarget) -> ScrapingResult:
        try:
            return await self.fetcher.fetch(target.url, target.selectors, target.options)
        except Exception as e:
            logger.warning(f"Unexpected error scraping {target.url}: {e}", exc_info=True)
            return ScrapingResult.failure(target.url, error_message(e))

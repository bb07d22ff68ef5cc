"""Single-URL fetch with bounded retries and linear backoff."""
import asyncio
import logging
from functools import partial
from typing import Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_incrementing,
)

from scrape_engine.config import config
from scrape_engine.fetch.client import ExtractWorker
from scrape_engine.fetch.models import FetchOptions, ScrapingResult, SelectorConfig
from scrape_engine.jobs.metrics import EngineMetrics

logger = logging.getLogger(__name__)


def _is_failure(result: ScrapingResult) -> bool:
    return not result.success


def error_message(exc: BaseException) -> str:
    """Exception text, falling back to the class name for bare exceptions."""
    return str(exc) or type(exc).__name__


class RetryingFetcher:
    """Wraps the extract worker so that every failure becomes a result.

    Attempt ``n`` that fails is followed by a pause of ``retry_delay * n``
    seconds. Only the final failure is reported; earlier attempt errors are
    dropped.
    """

    def __init__(
        self,
        worker: ExtractWorker,
        retry_limit: int = config.RETRY_LIMIT,
        retry_delay: float = config.RETRY_DELAY,
        attempt_timeout: Optional[float] = config.FETCH_TIMEOUT,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        metrics: EngineMetrics | None = None,
    ):
        if retry_limit < 1:
            raise ValueError("retry_limit must be >= 1")
        if retry_delay < 0:
            raise ValueError("retry_delay must be >= 0")
        self.worker = worker
        self.retry_limit = retry_limit
        self.retry_delay = retry_delay
        self.attempt_timeout = attempt_timeout or None
        self._sleep = sleep
        self._metrics = metrics

    async def fetch(
        self,
        url: str,
        selectors: list[SelectorConfig],
        options: Optional[FetchOptions] = None,
    ) -> ScrapingResult:
        """Fetch ``url``; never raises except for cancellation."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry_limit),
            wait=wait_incrementing(start=self.retry_delay, increment=self.retry_delay),
            retry=retry_if_exception_type(Exception) | retry_if_result(_is_failure),
            before_sleep=partial(self._log_retry, url),
            retry_error_callback=partial(self._give_up, url),
            sleep=self._sleep,
        )
        result = await retrying(self._attempt, url, selectors, options)
        # Workers may report a redirected or normalized URL; callers key on the input
        if result.url != url:
            result = result.model_copy(update={"url": url})
        return result

    async def _attempt(
        self,
        url: str,
        selectors: list[SelectorConfig],
        options: Optional[FetchOptions],
    ) -> ScrapingResult:
        try:
            async with asyncio.timeout(self.attempt_timeout):
                return await self.worker.extract(url, selectors, options)
        except TimeoutError as e:
            raise TimeoutError(f"Fetch timed out after {self.attempt_timeout}s") from e

    def _log_retry(self, url: str, retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        reason = error_message(outcome.exception()) if outcome.failed else outcome.result().error
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"Attempt {retry_state.attempt_number}/{self.retry_limit} failed for {url}: "
            f"{reason} - retrying in {delay:.1f}s"
        )
        if self._metrics:
            self._metrics.increment("retries")

    def _give_up(self, url: str, retry_state: RetryCallState) -> ScrapingResult:
        outcome = retry_state.outcome
        attempts = retry_state.attempt_number
        if outcome.failed:
            message = error_message(outcome.exception())
        else:
            message = outcome.result().error or "Scrape failed"
        logger.error(f"Giving up on {url} after {attempts} attempts: {message}")
        if not outcome.failed:
            return outcome.result().model_copy(update={"attempts": attempts})
        return ScrapingResult.failure(url, message, attempts=attempts)

"""Pipeline controller driving asynchronous single-URL scrape jobs."""
import asyncio
import logging
import time
import uuid
from typing import Awaitable, Callable, Optional

from scrape_engine.config import config
from scrape_engine.fetch.ai_client import Analyzer
from scrape_engine.fetch.client import ExtractWorker
from scrape_engine.fetch.models import FetchOptions, ScrapingResult, SelectorConfig, SelectorType
from scrape_engine.fetch.retry import error_message
from scrape_engine.jobs.admission import JobLauncher
from scrape_engine.jobs.metrics import EngineMetrics
from scrape_engine.jobs.models import (
    PROGRESS_AI_DONE,
    PROGRESS_AI_STARTED,
    PROGRESS_COMPLETED,
    PROGRESS_FAILED,
    PROGRESS_SCRAPED,
    AIOptions,
    AnalysisResult,
    Job,
    JobStatus,
    ScrapeOptions,
)
from scrape_engine.jobs.registry import JobRegistry
from scrape_engine.parse.html_parser import PageContent, extract_page_content, next_page_url, page_text
from scrape_engine.store.file_export import FileExporter

logger = logging.getLogger(__name__)

DOCUMENT_SELECTOR = SelectorConfig(
    id="document",
    selector="html",
    name="document",
    type=SelectorType.HTML,
)


class JobNotFoundError(LookupError):
    """No job with this id."""


class JobStateError(RuntimeError):
    """The job is not in a state that allows the requested operation."""


class AnalyzerUnavailableError(RuntimeError):
    """No AI-analysis worker is configured."""


class ScrapeFailedError(RuntimeError):
    """The extract worker reported a failed scrape."""


def _document_html(result: ScrapingResult) -> str:
    value = result.data.get(DOCUMENT_SELECTOR.id)
    if isinstance(value, list):
        value = value[0] if value else None
    return value if isinstance(value, str) else ""


class PipelineController:
    """Runs each job through fetch, extract, optional AI analysis and completion.

    ``start`` registers the job before anything else happens and returns its
    id; the stages run on a background task and are observed by polling
    ``get_status``. Stage errors end the job as ``failed`` and never reach the
    caller of ``start``.
    """

    def __init__(
        self,
        registry: JobRegistry,
        worker: ExtractWorker,
        analyzer: Optional[Analyzer] = None,
        launcher: Optional[JobLauncher] = None,
        exporter: Optional[FileExporter] = None,
        job_timeout: Optional[float] = config.JOB_TIMEOUT,
        metrics: EngineMetrics | None = None,
        page_delay: float = config.PAGE_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.registry = registry
        self.worker = worker
        self.analyzer = analyzer
        self.launcher = launcher or JobLauncher()
        self.exporter = exporter or FileExporter()
        self.job_timeout = job_timeout
        self.metrics = metrics or EngineMetrics()
        self.page_delay = page_delay
        self.sleep = sleep

    async def start(self, options: ScrapeOptions, job_id: str | None = None) -> str:
        """Register a job and launch its pipeline in the background."""
        job_id = job_id or uuid.uuid4().hex
        self.registry.create(Job(id=job_id, url=options.url))
        self.metrics.increment("jobs_started")
        logger.info(f"Job {job_id} started for {options.url}")
        self.launcher.launch(job_id, self._run(job_id, options))
        return job_id

    def get_status(self, job_id: str) -> Optional[Job]:
        return self.registry.get(job_id)

    def list_jobs(self) -> list[Job]:
        return self.registry.list_jobs()

    async def cancel(self, job_id: str) -> bool:
        """Cancel a running job; it ends as failed. False if nothing was running."""
        task = self.launcher.task_for(job_id)
        if not self.launcher.cancel(job_id):
            return False
        await asyncio.gather(task, return_exceptions=True)
        # Covers jobs cancelled while still waiting for admission
        self._fail(job_id, "Job cancelled")
        return True

    async def delete(self, job_id: str) -> bool:
        await self.cancel(job_id)
        return self.registry.delete(job_id)

    async def wait(self, job_id: str, timeout: float | None = None) -> Optional[Job]:
        """Wait for a job's background task, then return its snapshot."""
        task = self.launcher.task_for(job_id)
        if task is not None:
            await asyncio.wait({task}, timeout=timeout)
        return self.registry.get(job_id)

    async def shutdown(self) -> None:
        """Cancel every job still running or waiting for admission."""
        pending = self.launcher.job_ids()
        await self.launcher.shutdown()
        for job_id in pending:
            self._fail(job_id, "Job cancelled")

    async def run_ai_analysis(self, job_id: str, ai_options: AIOptions) -> AnalysisResult:
        """Analyze a completed job on demand. Errors propagate to the caller."""
        job = self.registry.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        if job.status != JobStatus.COMPLETED:
            raise JobStateError(f"Job {job_id} is {job.status.value}; only completed jobs can be analyzed")
        if self.analyzer is None:
            raise AnalyzerUnavailableError("No AI worker configured")

        analysis = await self.analyzer.analyze(job, ai_options)

        def attach(j: Job) -> None:
            j.ai_analysis = analysis
            if analysis.structured_data is not None:
                j.data.structured_data = analysis.structured_data

        self._update(job_id, attach)
        logger.info(f"Job {job_id}: standalone AI analysis stored")
        return analysis

    async def _run(self, job_id: str, options: ScrapeOptions) -> None:
        started = time.monotonic()
        timeout = options.timeout_seconds or self.job_timeout or None
        deadline = asyncio.timeout(timeout)
        status = JobStatus.FAILED
        try:
            async with deadline:
                await self._run_stages(job_id, options)
            status = JobStatus.COMPLETED
        except asyncio.CancelledError:
            logger.warning(f"Job {job_id} cancelled")
            self._fail(job_id, "Job cancelled")
            raise
        except TimeoutError as e:
            message = f"Job timed out after {timeout}s" if deadline.expired() else error_message(e)
            logger.error(f"Job {job_id} failed: {message}")
            self._fail(job_id, message)
        except ScrapeFailedError as e:
            logger.error(f"Job {job_id} failed: {e}")
            self._fail(job_id, error_message(e))
        except Exception as e:
            logger.error(f"Job {job_id} failed: {e}", exc_info=True)
            self._fail(job_id, error_message(e))
        finally:
            self.metrics.record_job_finished(status.value, time.monotonic() - started)

    async def _run_stages(self, job_id: str, options: ScrapeOptions) -> None:
        fetch_options = self._fetch_options(options)
        result = await self._fetch_stage(options.url, fetch_options)
        content = extract_page_content(
            _document_html(result),
            base_url=options.url,
            scrape_text=options.scrape_text,
            scrape_images=options.scrape_images,
            scrape_videos=options.scrape_videos,
            scrape_tables=options.scrape_tables,
            scrape_lists=options.scrape_lists,
            include_links=options.include_links,
            skip_headers_footers=options.skip_headers_footers,
        )
        if options.pagination.enabled and options.pagination.next_button_selector:
            extra_text, pages = await self._paginate(job_id, options, _document_html(result), fetch_options)
            content.text.extend(extra_text)
        else:
            pages = 1
        job = self._update(job_id, lambda j: self._apply_content(j, result, content, options, pages))
        logger.info(f"Job {job_id}: scraped {job.metadata.total_elements} elements")

        if options.ai_options.enabled:
            job = self._update(job_id, lambda j: setattr(j, "progress", PROGRESS_AI_STARTED))
            analysis = await self._analyze_stage(job, options.ai_options)

            def store_analysis(j: Job) -> None:
                j.ai_analysis = analysis
                if analysis.structured_data is not None:
                    j.data.structured_data = analysis.structured_data
                j.progress = PROGRESS_AI_DONE

            job = self._update(job_id, store_analysis)
            logger.info(f"Job {job_id}: AI analysis done")

        if options.export_options:
            export = options.export_options
            path = await self.exporter.export(
                [job.to_wire()],
                filename=f"job_{job_id}",
                fmt=export.format,
                save_to_public=export.save_to_public,
            )
            self._update(job_id, lambda j: setattr(j, "export_path", path.as_posix()))

        def complete(j: Job) -> None:
            j.status = JobStatus.COMPLETED
            j.progress = PROGRESS_COMPLETED

        self._update(job_id, complete)
        logger.info(f"Job {job_id} completed")

    @staticmethod
    def _fetch_options(options: ScrapeOptions) -> FetchOptions:
        return FetchOptions(
            headers=options.headers,
            cookies=options.cookies,
            enable_javascript=options.handle_dynamic_content,
            wait_for_selector=options.selector,
            wait_timeout=options.wait_time,
        )

    async def _fetch_stage(self, url: str, fetch_options: FetchOptions) -> ScrapingResult:
        result = await self.worker.extract(url, [DOCUMENT_SELECTOR], fetch_options)
        if not result.success:
            raise ScrapeFailedError(result.error or "Scrape failed")
        return result

    async def _paginate(
        self, job_id: str, options: ScrapeOptions, html: str, fetch_options: FetchOptions
    ) -> tuple[list[str], int]:
        """Follow the next-page link, collecting text, until max_pages or no link.

        Returns the extra text blocks and the number of pages read, the first
        page included. A page that fails to load ends pagination, not the job.
        """
        pagination = options.pagination
        texts: list[str] = []
        pages = 1
        current_url = options.url
        visited = {current_url}
        while pages < pagination.max_pages:
            next_url = next_page_url(html, pagination.next_button_selector, current_url)
            if next_url is None or next_url in visited:
                break
            await self.sleep(self.page_delay)
            result = await self.worker.extract(next_url, [DOCUMENT_SELECTOR], fetch_options)
            if not result.success:
                logger.warning(f"Job {job_id}: pagination stopped at {next_url}: {result.error}")
                break
            visited.add(next_url)
            html = _document_html(result)
            texts.extend(page_text(html))
            current_url = next_url
            pages += 1
        logger.info(f"Job {job_id}: read {pages} pages")
        return texts, pages

    async def _analyze_stage(self, job: Job, ai_options: AIOptions) -> AnalysisResult:
        if self.analyzer is None:
            raise AnalyzerUnavailableError("AI analysis requested but no AI worker configured")
        return await self.analyzer.analyze(job, ai_options)

    @staticmethod
    def _apply_content(
        job: Job, result: ScrapingResult, content: PageContent, options: ScrapeOptions, pages: int = 1
    ) -> None:
        job.data.text = content.text
        job.data.images = content.images
        job.data.videos = content.videos
        job.data.tables = content.tables
        job.data.lists = content.lists
        if options.include_links:
            job.data.links = content.links

        meta = result.metadata
        job.metadata.page_title = (meta.page_title if meta and meta.page_title else content.title)
        job.metadata.page_description = content.description
        job.metadata.page_keywords = content.keywords
        job.metadata.total_elements = job.data.count_elements()
        job.metadata.pages_scraped = pages
        if meta:
            job.metadata.status_code = meta.status_code
            job.metadata.content_type = meta.content_type
            job.metadata.response_time_ms = meta.response_time_ms
        job.progress = PROGRESS_SCRAPED

    def _update(self, job_id: str, mutator: Callable[[Job], None]) -> Job:
        job = self.registry.update(job_id, mutator)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} was removed while running")
        return job

    def _fail(self, job_id: str, message: str) -> None:
        def mark_failed(job: Job) -> None:
            if job.status.is_terminal:
                return
            job.status = JobStatus.FAILED
            job.error = message
            job.progress = PROGRESS_FAILED

        self.registry.update(job_id, mark_failed)

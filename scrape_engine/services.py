"""Wiring of engine components from configuration."""
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from scrape_engine.config import config
from scrape_engine.fetch.ai_client import Analyzer, RemoteAnalyzerClient
from scrape_engine.fetch.client import ExtractWorker, LocalExtractClient, RemoteExtractClient
from scrape_engine.fetch.retry import RetryingFetcher
from scrape_engine.jobs.admission import JobLauncher
from scrape_engine.jobs.batch import BatchScheduler
from scrape_engine.jobs.metrics import EngineMetrics
from scrape_engine.jobs.pipeline import PipelineController
from scrape_engine.jobs.registry import JobRegistry
from scrape_engine.store.file_export import FileExporter
from scrape_engine.store.sqlite_sink import SqliteSink
from scrape_engine.store.supabase_sink import SupabaseSink

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the API and CLI need, built once per process."""

    scheduler: BatchScheduler
    controller: PipelineController
    exporter: FileExporter
    sqlite_sink: SqliteSink
    supabase_sink: Optional[SupabaseSink]
    metrics: EngineMetrics
    closers: list[Callable[[], Awaitable[None]]] = field(default_factory=list)

    async def aclose(self) -> None:
        await self.controller.shutdown()
        for close in self.closers:
            await close()


def build_services(
    worker: Optional[ExtractWorker] = None,
    analyzer: Optional[Analyzer] = None,
    registry: Optional[JobRegistry] = None,
    exporter: Optional[FileExporter] = None,
    sqlite_sink: Optional[SqliteSink] = None,
    supabase_sink: Optional[SupabaseSink] = None,
) -> Services:
    """Build services; collaborators not passed in are created from ``config``."""
    closers = []
    if worker is None:
        if config.EXTRACT_WORKER_URL:
            worker = RemoteExtractClient(config.EXTRACT_WORKER_URL)
            logger.info(f"Using remote extract worker at {config.EXTRACT_WORKER_URL}")
        else:
            worker = LocalExtractClient()
            logger.info("Using local extract worker")
        closers.append(worker.aclose)
    if analyzer is None and config.AI_WORKER_URL:
        analyzer = RemoteAnalyzerClient(config.AI_WORKER_URL)
        closers.append(analyzer.aclose)
    if supabase_sink is None and config.SUPABASE_URL and config.SUPABASE_SERVICE_ROLE:
        supabase_sink = SupabaseSink()

    metrics = EngineMetrics()
    exporter = exporter or FileExporter()
    fetcher = RetryingFetcher(worker, metrics=metrics)
    controller = PipelineController(
        registry=registry or JobRegistry(),
        worker=worker,
        analyzer=analyzer,
        launcher=JobLauncher(),
        exporter=exporter,
        metrics=metrics,
    )
    return Services(
        scheduler=BatchScheduler(fetcher, metrics=metrics),
        controller=controller,
        exporter=exporter,
        sqlite_sink=sqlite_sink or SqliteSink(),
        supabase_sink=supabase_sink,
        metrics=metrics,
        closers=closers,
    )

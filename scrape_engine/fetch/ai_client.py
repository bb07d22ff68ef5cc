"""AI-analysis worker client."""
import logging
from typing import Protocol

import httpx

from scrape_engine.config import config
from scrape_engine.jobs.models import AIOptions, AnalysisResult, Job

logger = logging.getLogger(__name__)

# Upper bound on text shipped to the analyzer per job
MAX_ANALYSIS_CHARS = 50_000


class Analyzer(Protocol):
    async def analyze(self, job: Job, options: AIOptions) -> AnalysisResult:
        ...


class RemoteAnalyzerClient:
    """Sends a job snapshot to the AI worker. Errors propagate to the caller."""

    def __init__(
        self,
        base_url: str,
        timeout: float = config.TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def analyze(self, job: Job, options: AIOptions) -> AnalysisResult:
        payload = {
            "url": job.url,
            "text": job.text_content(limit=MAX_ANALYSIS_CHARS),
            "metadata": job.metadata.to_wire(),
            "options": options.to_wire(),
        }
        logger.debug(f"Requesting analysis for job {job.id} ({len(payload['text'])} chars)")
        response = await self.client.post(f"{self.base_url}/analyze", json=payload)
        response.raise_for_status()
        return AnalysisResult.model_validate(response.json())

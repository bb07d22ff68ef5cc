"""Fetch/extract worker clients."""
import logging
import time
from typing import Optional, Protocol
from urllib.parse import urlparse

import httpx

from scrape_engine.config import config
from scrape_engine.fetch.models import (
    FetchOptions,
    ResultMetadata,
    ScrapingResult,
    SelectorConfig,
)
from scrape_engine.fetch.rate_limit import RateLimiter
from scrape_engine.parse.html_parser import extract_selectors, page_title

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
)


def is_valid_url(url: str | None) -> bool:
    """Check that url is an absolute http(s) URL."""
    if not url:
        return False
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _build_http_client(timeout: float) -> httpx.AsyncClient:
    limits = httpx.Limits(
        max_connections=100,
        max_keepalive_connections=20,
    )
    return httpx.AsyncClient(http2=True, timeout=timeout, limits=limits)


class ExtractWorker(Protocol):
    """Turns a URL and selector list into a ScrapingResult."""

    async def extract(
        self,
        url: str,
        selectors: list[SelectorConfig],
        options: Optional[FetchOptions] = None,
    ) -> ScrapingResult:
        ...


class RemoteExtractClient:
    """Calls an external extract worker over HTTP.

    Non-2xx answers and transport errors raise; callers decide whether to retry.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = config.TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = client or _build_http_client(timeout)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def extract(
        self,
        url: str,
        selectors: list[SelectorConfig],
        options: Optional[FetchOptions] = None,
    ) -> ScrapingResult:
        payload = {
            "url": url,
            "selectors": [selector.to_wire() for selector in selectors],
            "options": options.to_wire() if options else {},
        }
        response = await self.client.post(f"{self.base_url}/extract", json=payload)
        response.raise_for_status()
        return ScrapingResult.model_validate(response.json())


class LocalExtractClient:
    """In-process extract worker: plain HTTP fetch plus selectolax extraction.

    Ordinary fetch failures (bad URL, transport error, non-2xx) come back as
    ``success=False`` results rather than exceptions.
    """

    def __init__(
        self,
        timeout: float = config.TIMEOUT,
        rate_per_domain: float = config.RATE_PER_DOMAIN,
        client: httpx.AsyncClient | None = None,
    ):
        self.client = client or _build_http_client(timeout)
        self.rate_limiter = RateLimiter(rate_per_domain)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def extract(
        self,
        url: str,
        selectors: list[SelectorConfig],
        options: Optional[FetchOptions] = None,
    ) -> ScrapingResult:
        options = options or FetchOptions()
        if not is_valid_url(url):
            return ScrapingResult.failure(url, "Invalid URL provided")
        if options.enable_javascript or options.wait_for_selector:
            logger.debug(f"JavaScript rendering not available locally, fetching raw HTML for {url}")

        await self.rate_limiter.acquire(url)

        headers = {"User-Agent": DEFAULT_USER_AGENT, **options.headers}
        if options.cookies:
            headers["Cookie"] = options.cookies
        request_kwargs = {}
        if isinstance(options.body, (dict, list)):
            request_kwargs["json"] = options.body
        elif options.body is not None:
            request_kwargs["content"] = str(options.body)

        start = time.monotonic()
        try:
            response = await self.client.request(
                options.method.upper(),
                url,
                headers=headers,
                follow_redirects=options.follow_redirects,
                **request_kwargs,
            )
        except httpx.HTTPError as e:
            logger.warning(f"Network error for {url}: {e}")
            return ScrapingResult.failure(url, str(e) or type(e).__name__)
        response_time_ms = int((time.monotonic() - start) * 1000)

        metadata = ResultMetadata(
            status_code=response.status_code,
            content_type=response.headers.get("content-type"),
            response_time_ms=response_time_ms,
        )
        if not response.is_success:
            return ScrapingResult(
                url=url,
                success=False,
                error=f"HTTP {response.status_code}",
                metadata=metadata,
            )

        html = response.text
        metadata.page_title = page_title(html)
        return ScrapingResult(
            url=url,
            data=extract_selectors(html, selectors),
            success=True,
            metadata=metadata,
        )

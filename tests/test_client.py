"""Tests for the extract and analyzer worker clients."""
import asyncio
import json

import httpx
import pytest

from scrape_engine.fetch.ai_client import RemoteAnalyzerClient
from scrape_engine.fetch.client import LocalExtractClient, RemoteExtractClient, is_valid_url
from scrape_engine.fetch.models import FetchOptions, SelectorConfig
from scrape_engine.fetch.rate_limit import RateLimiter
from scrape_engine.jobs.models import AIOptions, Job

PAGE = "<html><head><title>Hello</title></head><body><h1>Big title</h1></body></html>"
SELECTORS = [SelectorConfig(id="heading", selector="h1")]


def local_client(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return LocalExtractClient(rate_per_domain=0, client=client)


def test_is_valid_url():
    assert is_valid_url("https://example.com/x")
    assert is_valid_url("http://localhost:8000")
    assert not is_valid_url("ftp://example.com")
    assert not is_valid_url("example.com")
    assert not is_valid_url("")
    assert not is_valid_url(None)


def test_local_extract_success():
    seen = {}

    def handler(request):
        seen["headers"] = request.headers
        return httpx.Response(200, text=PAGE, headers={"content-type": "text/html"})

    async def go():
        async with local_client(handler) as worker:
            return await worker.extract(
                "https://example.com",
                SELECTORS,
                FetchOptions(headers={"X-Test": "1"}, cookies="session=abc"),
            )

    result = asyncio.run(go())
    assert result.success
    assert result.data == {"heading": ["Big title"]}
    assert result.metadata.status_code == 200
    assert result.metadata.page_title == "Hello"
    assert result.metadata.content_type == "text/html"
    assert seen["headers"]["x-test"] == "1"
    assert seen["headers"]["cookie"] == "session=abc"
    assert "Mozilla" in seen["headers"]["user-agent"]


def test_local_extract_http_error_status():
    worker = local_client(lambda request: httpx.Response(404, text="missing"))
    result = asyncio.run(worker.extract("https://example.com/nope", SELECTORS))
    assert not result.success
    assert result.error == "HTTP 404"
    assert result.metadata.status_code == 404


def test_local_extract_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    result = asyncio.run(local_client(handler).extract("https://example.com", SELECTORS))
    assert not result.success
    assert result.error == "connection refused"


def test_local_extract_invalid_url():
    calls = []
    worker = local_client(lambda request: calls.append(request) or httpx.Response(200))
    result = asyncio.run(worker.extract("not a url", SELECTORS))
    assert not result.success
    assert result.error == "Invalid URL provided"
    assert calls == []


def test_remote_extract_posts_payload():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"url": "https://example.com", "success": True, "data": {"heading": ["X"]}})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    worker = RemoteExtractClient("http://worker:9000/", client=client)
    result = asyncio.run(worker.extract("https://example.com", SELECTORS))
    assert seen["url"] == "http://worker:9000/extract"
    assert seen["body"]["selectors"][0]["id"] == "heading"
    assert seen["body"]["selectors"][0]["type"] == "text"
    assert result.success
    assert result.data == {"heading": ["X"]}


def test_remote_extract_raises_on_error_status():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
    worker = RemoteExtractClient("http://worker:9000", client=client)
    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(worker.extract("https://example.com", SELECTORS))


def test_remote_analyzer():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"summary": "short", "keywords": ["k"]})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    analyzer = RemoteAnalyzerClient("http://ai:9001", client=client)
    job = Job(id="j1", url="https://example.com")
    job.data.text = ["First paragraph.", "Second paragraph."]
    result = asyncio.run(analyzer.analyze(job, AIOptions(generate_summary=True)))
    assert result.summary == "short"
    assert seen["body"]["text"] == "First paragraph.\n\nSecond paragraph."
    assert seen["body"]["options"]["generateSummary"] is True


def test_rate_limiter_spaces_same_domain():
    clock_value = [100.0]
    limiter = RateLimiter(rate_per_second=2.0, clock=lambda: clock_value[0])

    async def go():
        return [
            await limiter.reserve("https://a.example.com/1"),
            await limiter.reserve("https://a.example.com/2"),
            await limiter.reserve("https://b.example.com/1"),
        ]

    assert asyncio.run(go()) == [0.0, 0.5, 0.0]


def test_rate_limiter_disabled():
    limiter = RateLimiter(rate_per_second=0)
    assert asyncio.run(limiter.reserve("https://a.example.com")) == 0.0

"""Tests for the HTTP API."""
import asyncio

import httpx

from scrape_engine.api.main import create_app
from scrape_engine.fetch.models import ScrapingResult
from scrape_engine.jobs.models import AnalysisResult
from scrape_engine.jobs.registry import JobRegistry
from scrape_engine.services import build_services
from scrape_engine.store.file_export import FileExporter
from scrape_engine.store.sqlite_sink import SqliteSink

PAGE = "<html><head><title>T</title></head><body><p>A paragraph long enough to count.</p></body></html>"


class FakeWorker:
    async def extract(self, url, selectors, options=None):
        if "broken" in url:
            return ScrapingResult(url=url, success=False, error="HTTP 500")
        return ScrapingResult(url=url, success=True, data={s.id: [PAGE] for s in selectors})


class FakeAnalyzer:
    async def analyze(self, job, options):
        return AnalysisResult(summary="done", keywords=["k"])


def make_app(tmp_path, analyzer=None, api_key=None):
    services = build_services(
        worker=FakeWorker(),
        analyzer=analyzer,
        registry=JobRegistry(ttl_seconds=0),
        exporter=FileExporter(base_dir=tmp_path / "exports", public_dir=tmp_path / "public"),
        sqlite_sink=SqliteSink(db_path=tmp_path / "api.db"),
    )
    services.scheduler.batch_delay = 0
    services.scheduler.fetcher.retry_delay = 0
    return create_app(services=services, api_key=api_key), services


def call(app, scenario):
    """Run ``scenario(client)`` against the app on a single event loop."""

    async def go():
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            return await scenario(client)

    return asyncio.run(go())


def test_health(tmp_path):
    app, _ = make_app(tmp_path)

    async def scenario(client):
        return await client.get("/health")

    response = call(app, scenario)
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_scrape_returns_results_in_order(tmp_path):
    app, _ = make_app(tmp_path)
    body = {
        "targets": [
            {"url": "https://example.com/a", "selectors": [{"id": "t", "selector": "title"}]},
            {"url": "https://example.com/broken", "selectors": [{"id": "t", "selector": "title"}]},
        ]
    }

    async def scenario(client):
        return await client.post("/scrape", json=body)

    response = call(app, scenario)
    assert response.status_code == 200
    results = response.json()
    assert [r["url"] for r in results] == ["https://example.com/a", "https://example.com/broken"]
    assert [r["success"] for r in results] == [True, False]
    assert results[1]["error"] == "HTTP 500"


def test_scrape_rejects_empty_targets(tmp_path):
    app, _ = make_app(tmp_path)

    async def scenario(client):
        return await client.post("/scrape", json={"targets": []})

    assert call(app, scenario).status_code == 400


def test_start_job_and_poll(tmp_path):
    app, services = make_app(tmp_path)

    async def scenario(client):
        started = await client.post("/start-job", json={"options": {"url": "https://example.com"}})
        job_id = started.json()["jobId"]
        await services.controller.wait(job_id)
        status = await client.get(f"/job/{job_id}")
        listing = await client.get("/jobs")
        return started, status, listing

    started, status, listing = call(app, scenario)
    assert started.status_code == 200
    assert started.json()["success"] is True
    job = status.json()
    assert job["status"] == "completed"
    assert job["progress"] == 100
    assert job["data"]["text"] == ["A paragraph long enough to count."]
    assert job["metadata"]["pageTitle"] == "T"
    assert [j["id"] for j in listing.json()] == [job["id"]]


def test_start_job_invalid_url(tmp_path):
    app, _ = make_app(tmp_path)

    async def scenario(client):
        return await client.post("/start-job", json={"options": {"url": "not-a-url"}})

    response = call(app, scenario)
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid URL provided"


def test_start_job_duplicate_id(tmp_path):
    app, services = make_app(tmp_path)

    async def scenario(client):
        body = {"options": {"url": "https://example.com"}, "jobId": "fixed"}
        first = await client.post("/start-job", json=body)
        second = await client.post("/start-job", json=body)
        await services.controller.wait("fixed")
        return first, second

    first, second = call(app, scenario)
    assert first.json()["jobId"] == "fixed"
    assert second.status_code == 400
    assert "already exists" in second.json()["detail"]


def test_unknown_job_is_404(tmp_path):
    app, _ = make_app(tmp_path)

    async def scenario(client):
        return (
            await client.get("/job/missing"),
            await client.delete("/job/missing"),
            await client.post("/job/missing/cancel"),
        )

    assert [r.status_code for r in call(app, scenario)] == [404, 404, 404]


def test_delete_job(tmp_path):
    app, services = make_app(tmp_path)

    async def scenario(client):
        started = await client.post("/start-job", json={"options": {"url": "https://example.com"}})
        job_id = started.json()["jobId"]
        await services.controller.wait(job_id)
        deleted = await client.delete(f"/job/{job_id}")
        after = await client.get(f"/job/{job_id}")
        return deleted, after

    deleted, after = call(app, scenario)
    assert deleted.json() == {"success": True}
    assert after.status_code == 404


def test_analyze_completed_job(tmp_path):
    app, services = make_app(tmp_path, analyzer=FakeAnalyzer())

    async def scenario(client):
        started = await client.post("/start-job", json={"options": {"url": "https://example.com"}})
        job_id = started.json()["jobId"]
        await services.controller.wait(job_id)
        analyzed = await client.post("/analyze", json={"jobId": job_id, "options": {"generateSummary": True}})
        status = await client.get(f"/job/{job_id}")
        return analyzed, status

    analyzed, status = call(app, scenario)
    assert analyzed.status_code == 200
    assert analyzed.json()["aiAnalysis"]["summary"] == "done"
    assert status.json()["aiAnalysis"]["keywords"] == ["k"]
    assert status.json()["status"] == "completed"


def test_analyze_errors(tmp_path):
    app, services = make_app(tmp_path, analyzer=None)

    async def scenario(client):
        missing = await client.post("/analyze", json={"jobId": "missing"})
        started = await client.post("/start-job", json={"options": {"url": "https://example.com/broken"}})
        failed_id = started.json()["jobId"]
        await services.controller.wait(failed_id)
        wrong_state = await client.post("/analyze", json={"jobId": failed_id})
        started = await client.post("/start-job", json={"options": {"url": "https://example.com"}})
        ok_id = started.json()["jobId"]
        await services.controller.wait(ok_id)
        no_analyzer = await client.post("/analyze", json={"jobId": ok_id})
        return missing, wrong_state, no_analyzer

    missing, wrong_state, no_analyzer = call(app, scenario)
    assert missing.status_code == 404
    assert wrong_state.status_code == 409
    assert no_analyzer.status_code == 503


def test_save_file(tmp_path):
    app, _ = make_app(tmp_path)
    body = {"results": [{"url": "https://example.com", "success": True}], "filename": "out", "format": "csv"}

    async def scenario(client):
        return await client.post("/save-file", json=body)

    response = call(app, scenario)
    assert response.status_code == 200
    assert response.json()["filePath"].endswith("exports/out.csv")
    assert (tmp_path / "exports" / "out.csv").exists()


def test_save_file_bad_format(tmp_path):
    app, _ = make_app(tmp_path)

    async def scenario(client):
        return await client.post("/save-file", json={"results": [], "format": "yaml"})

    assert call(app, scenario).status_code == 400


def test_save_db_sqlite(tmp_path):
    app, services = make_app(tmp_path)
    body = {
        "results": [
            {"url": "https://example.com/1", "success": True, "data": {"title": ["One"]}},
            {"url": "https://example.com/2", "success": False, "error": "x"},
        ],
        "dbConfig": {"table": "pages", "columns": {"title": "title"}, "dbType": "sqlite"},
    }

    async def scenario(client):
        response = await client.post("/save-db", json=body)
        return response, await services.sqlite_sink.count("pages")

    response, count = call(app, scenario)
    assert response.status_code == 200
    assert response.json() == {"success": True, "inserted": 1}
    assert count == 1


def test_save_db_unsupported_type(tmp_path):
    app, _ = make_app(tmp_path)
    body = {
        "results": [{"url": "https://example.com/1", "success": True, "data": {"title": ["One"]}}],
        "dbConfig": {"table": "pages", "columns": {"title": "title"}, "dbType": "mongodb"},
    }

    async def scenario(client):
        return await client.post("/save-db", json=body)

    assert call(app, scenario).status_code == 400


def test_api_key_required_when_configured(tmp_path):
    app, _ = make_app(tmp_path, api_key="secret")

    async def scenario(client):
        return (
            await client.get("/jobs"),
            await client.get("/jobs", headers={"X-API-KEY": "secret"}),
            await client.get("/health"),
        )

    denied, allowed, health = call(app, scenario)
    assert denied.status_code == 403
    assert allowed.status_code == 200
    assert health.status_code == 200


def test_metrics_endpoint(tmp_path):
    app, _ = make_app(tmp_path)

    async def scenario(client):
        await client.post("/scrape", json={"targets": [{"url": "https://example.com", "selectors": []}]})
        return await client.get("/metrics")

    summary = call(app, scenario).json()
    assert summary["targets_ok"] == 1
    assert summary["batches"] == 1


def test_test_selector_returns_flat_matches(tmp_path):
    app, _ = make_app(tmp_path)
    body = {
        "url": "https://example.com",
        "selector": {"id": "p", "selector": "p", "type": "list", "listItemSelector": "li"},
    }

    async def scenario(client):
        return await client.post("/test-selector", json=body)

    response = call(app, scenario)
    assert response.status_code == 200
    assert response.json() == {"success": True, "result": [PAGE], "count": 1}


def test_test_selector_validation(tmp_path):
    app, _ = make_app(tmp_path)

    async def scenario(client):
        bad_url = await client.post("/test-selector", json={"url": "nope", "selector": {"id": "t", "selector": "h1"}})
        no_selector = await client.post("/test-selector", json={"url": "https://example.com"})
        blank = await client.post("/test-selector", json={"url": "https://example.com", "selector": {"id": "t", "selector": " "}})
        broken = await client.post(
            "/test-selector", json={"url": "https://example.com/broken", "selector": {"id": "t", "selector": "h1"}}
        )
        return bad_url, no_selector, blank, broken

    bad_url, no_selector, blank, broken = call(app, scenario)
    assert bad_url.status_code == 400
    assert bad_url.json()["detail"] == "Invalid URL provided"
    assert no_selector.status_code == 400
    assert no_selector.json()["detail"] == "Invalid selector provided"
    assert blank.status_code == 400
    assert broken.status_code == 502
    assert broken.json()["detail"] == "HTTP 500"


def test_upload_urls(tmp_path):
    app, _ = make_app(tmp_path)
    content = b"https://a.example.com\nhttps://\nnot-a-url\nhttp://b.example.com/page\n"

    async def scenario(client):
        return await client.post("/upload-urls", files={"file": ("urls.txt", content, "text/plain")})

    response = call(app, scenario)
    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "validUrls": ["https://a.example.com", "http://b.example.com/page"],
        "invalidUrls": ["https://"],
        "totalValid": 2,
        "totalInvalid": 1,
    }


def test_upload_urls_json_file(tmp_path):
    app, _ = make_app(tmp_path)
    content = b'[{"url": "https://a.example.com"}, {"url": "https://b.example.com"}]'

    async def scenario(client):
        return await client.post("/upload-urls", files={"file": ("urls.json", content, "application/json")})

    assert call(app, scenario).json()["validUrls"] == ["https://a.example.com", "https://b.example.com"]


def test_upload_urls_errors(tmp_path):
    app, _ = make_app(tmp_path)

    async def scenario(client):
        missing = await client.post("/upload-urls")
        malformed = await client.post("/upload-urls", files={"file": ("urls.json", b"{oops", "application/json")})
        return missing, malformed

    missing, malformed = call(app, scenario)
    assert missing.status_code == 400
    assert missing.json()["detail"] == "No file uploaded"
    assert malformed.status_code == 400


def test_save_file_xml(tmp_path):
    app, _ = make_app(tmp_path)
    body = {"results": [{"url": "https://example.com", "success": True}], "filename": "out", "format": "xml"}

    async def scenario(client):
        return await client.post("/save-file", json=body)

    response = call(app, scenario)
    assert response.status_code == 200
    assert response.json()["filePath"].endswith("exports/out.xml")
    assert (tmp_path / "exports" / "out.xml").read_bytes().startswith(b"<?xml")

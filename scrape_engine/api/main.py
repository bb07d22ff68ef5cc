"""FastAPI main application."""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.security import APIKeyHeader
from pydantic import Field

from scrape_engine.config import config
from scrape_engine.fetch.client import is_valid_url
from scrape_engine.fetch.models import ScrapeTarget, ScrapingResult, SelectorConfig, WireModel
from scrape_engine.jobs.models import AIOptions, ScrapeOptions
from scrape_engine.jobs.pipeline import (
    AnalyzerUnavailableError,
    JobNotFoundError,
    JobStateError,
)
from scrape_engine.jobs.registry import JobExistsError
from scrape_engine.parse.url_list import extract_urls, split_valid
from scrape_engine.services import Services, build_services
from scrape_engine.store.models import DatabaseConfig

logger = logging.getLogger(__name__)

# API Key security (if configured)
API_KEY_HEADER = APIKeyHeader(name="X-API-KEY", auto_error=False)


class ScrapeRequest(WireModel):
    targets: list[ScrapeTarget]


class SelectorCheckRequest(WireModel):
    url: Optional[str] = None
    selector: Optional[SelectorConfig] = None


class StartJobRequest(WireModel):
    options: ScrapeOptions
    job_id: Optional[str] = None


class AnalyzeRequest(WireModel):
    job_id: str
    options: AIOptions = Field(default_factory=AIOptions)


class SaveFileRequest(WireModel):
    results: list[dict[str, Any]]
    filename: Optional[str] = None
    format: str = "json"
    save_to_public: bool = False


class SaveDbRequest(WireModel):
    results: list[ScrapingResult]
    db_config: DatabaseConfig


def get_services(request: Request) -> Services:
    return request.app.state.services


def verify_api_key(request: Request, api_key: str = Depends(API_KEY_HEADER)) -> bool:
    """Verify API key if configured."""
    expected_key = request.app.state.api_key
    if expected_key:
        if not api_key or api_key != expected_key:
            raise HTTPException(status_code=403, detail="Invalid API key")
    return True


def create_app(services: Services | None = None, api_key: str | None = config.API_KEY) -> FastAPI:
    """Build the API around ``services`` (created from config when omitted)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.services.aclose()

    app = FastAPI(title="Scrape Engine API", version="0.1.0", lifespan=lifespan)
    app.state.services = services or build_services()
    app.state.api_key = api_key

    @app.get("/health")
    async def health(svc: Services = Depends(get_services)):
        """Health check endpoint (no auth required)."""
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "jobs": len(svc.controller.registry),
            "running": svc.controller.launcher.running(),
        }

    @app.get("/metrics")
    async def get_metrics(svc: Services = Depends(get_services), _: bool = Depends(verify_api_key)):
        return svc.metrics.get_summary()

    @app.post("/scrape")
    async def scrape(
        request: ScrapeRequest,
        svc: Services = Depends(get_services),
        _: bool = Depends(verify_api_key),
    ):
        """Scrape many targets; failures come back per element."""
        if not request.targets:
            raise HTTPException(status_code=400, detail="Invalid targets provided")
        results = await svc.scheduler.scrape_many(request.targets)
        return [result.to_wire() for result in results]

    @app.post("/test-selector")
    async def test_selector(
        request: SelectorCheckRequest,
        svc: Services = Depends(get_services),
        _: bool = Depends(verify_api_key),
    ):
        """Run one selector against a live page and return what it matches."""
        if not is_valid_url(request.url):
            raise HTTPException(status_code=400, detail="Invalid URL provided")
        if request.selector is None or not request.selector.selector.strip():
            raise HTTPException(status_code=400, detail="Invalid selector provided")

        result = await svc.scheduler.fetcher.fetch(request.url, [request.selector])
        if not result.success:
            raise HTTPException(status_code=502, detail=result.error or "Scrape failed")
        matched = result.data.get(request.selector.id, [])
        if isinstance(matched, dict) and "error" in matched:
            raise HTTPException(status_code=400, detail=matched["error"])
        if not isinstance(matched, list):
            matched = [matched]
        flat = []
        for value in matched:
            flat.extend(value if isinstance(value, list) else [value])
        return {"success": True, "result": flat, "count": len(flat)}

    @app.post("/upload-urls")
    async def upload_urls(
        file: Optional[UploadFile] = File(None),
        _: bool = Depends(verify_api_key),
    ):
        """Read a .json, .csv or text file of URLs and split them into valid and invalid."""
        if file is None:
            raise HTTPException(status_code=400, detail="No file uploaded")
        content = await file.read()
        try:
            urls = extract_urls(content.decode("utf-8"), file.filename or "")
        except (UnicodeDecodeError, ValueError) as e:
            logger.error(f"Error processing uploaded file {file.filename}: {e}")
            raise HTTPException(status_code=400, detail=f"Error processing file: {e}")
        finally:
            await file.close()
        valid, invalid = split_valid(urls)
        return {
            "success": True,
            "validUrls": valid,
            "invalidUrls": invalid,
            "totalValid": len(valid),
            "totalInvalid": len(invalid),
        }

    @app.post("/start-job")
    async def start_job(
        request: StartJobRequest,
        svc: Services = Depends(get_services),
        _: bool = Depends(verify_api_key),
    ):
        """Start an asynchronous single-URL job and return its id."""
        if not is_valid_url(request.options.url):
            raise HTTPException(status_code=400, detail="Invalid URL provided")
        try:
            job_id = await svc.controller.start(request.options, job_id=request.job_id)
        except JobExistsError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"success": True, "jobId": job_id}

    @app.get("/job/{job_id}")
    async def job_status(job_id: str, svc: Services = Depends(get_services), _: bool = Depends(verify_api_key)):
        job = svc.controller.get_status(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Job not found")
        return job.to_wire()

    @app.get("/jobs")
    async def list_jobs(svc: Services = Depends(get_services), _: bool = Depends(verify_api_key)):
        return [job.to_wire() for job in svc.controller.list_jobs()]

    @app.delete("/job/{job_id}")
    async def delete_job(job_id: str, svc: Services = Depends(get_services), _: bool = Depends(verify_api_key)):
        if not await svc.controller.delete(job_id):
            raise HTTPException(status_code=404, detail="Job not found")
        return {"success": True}

    @app.post("/job/{job_id}/cancel")
    async def cancel_job(job_id: str, svc: Services = Depends(get_services), _: bool = Depends(verify_api_key)):
        if svc.controller.get_status(job_id) is None:
            raise HTTPException(status_code=404, detail="Job not found")
        return {"success": await svc.controller.cancel(job_id)}

    @app.post("/analyze")
    async def analyze(
        request: AnalyzeRequest,
        svc: Services = Depends(get_services),
        _: bool = Depends(verify_api_key),
    ):
        """Run AI analysis on a completed job."""
        try:
            analysis = await svc.controller.run_ai_analysis(request.job_id, request.options)
        except JobNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except JobStateError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except AnalyzerUnavailableError as e:
            raise HTTPException(status_code=503, detail=str(e))
        except httpx.HTTPError as e:
            logger.error(f"AI worker error for job {request.job_id}: {e}")
            raise HTTPException(status_code=502, detail=f"AI worker error: {e}")
        except Exception as e:
            logger.error(f"Error running AI analysis for job {request.job_id}: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=f"Internal error: {str(e)}")
        return {"success": True, "jobId": request.job_id, "aiAnalysis": analysis.to_wire()}

    @app.post("/save-file")
    async def save_file(
        request: SaveFileRequest,
        svc: Services = Depends(get_services),
        _: bool = Depends(verify_api_key),
    ):
        try:
            path = await svc.exporter.export(
                request.results,
                filename=request.filename,
                fmt=request.format,
                save_to_public=request.save_to_public,
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except OSError as e:
            logger.error(f"Error saving to file: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=str(e))
        return {"success": True, "filePath": path.as_posix(), "format": request.format}

    @app.post("/save-db")
    async def save_db(
        request: SaveDbRequest,
        svc: Services = Depends(get_services),
        _: bool = Depends(verify_api_key),
    ):
        db_type = request.db_config.db_type
        if db_type == "sqlite":
            sink = svc.sqlite_sink
        elif db_type == "postgres" and svc.supabase_sink is not None:
            sink = svc.supabase_sink
        else:
            raise HTTPException(status_code=400, detail=f"Unsupported database type: {db_type}")
        try:
            inserted = await sink.save(request.results, request.db_config)
        except Exception as e:
            logger.error(f"Error saving scraping results to database: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=f"Failed to save results to database: {e}")
        if inserted == 0:
            raise HTTPException(status_code=400, detail="No valid data to insert")
        return {"success": True, "inserted": inserted}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    config.validate()
    uvicorn.run(app, host=config.HOST, port=config.PORT)

"""Data models for asynchronous scrape jobs."""
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import Field

from scrape_engine.fetch.models import WireModel, utcnow

# Fixed stage weights
PROGRESS_SUBMITTED = 10
PROGRESS_SCRAPED = 50
PROGRESS_AI_STARTED = 60
PROGRESS_AI_DONE = 90
PROGRESS_COMPLETED = 100
PROGRESS_FAILED = 0


class JobStatus(str, Enum):
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.IN_PROGRESS


class AIOptions(WireModel):
    """Which analyses to request from the AI worker."""

    enabled: bool = False
    perform_sentiment_analysis: bool = False
    extract_entities: bool = False
    generate_summary: bool = False
    extract_keywords: bool = False
    categorize_content: bool = False
    extract_structured_data: bool = False
    cleaning_level: Optional[str] = None


class Sentiment(WireModel):
    overall: str
    score: float


class Entity(WireModel):
    name: str
    type: str
    count: int = 1


class AnalysisResult(WireModel):
    sentiment: Optional[Sentiment] = None
    entities: Optional[list[Entity]] = None
    summary: Optional[str] = None
    keywords: Optional[list[str]] = None
    categories: Optional[list[str]] = None
    structured_data: Optional[dict[str, Any]] = None
    cleaned_text: Optional[str] = None


class ExportOptions(WireModel):
    format: Literal["json", "jsonl", "csv", "text", "xml", "excel"] = "json"
    save_to_public: bool = False


class PaginationOptions(WireModel):
    """Follow a "next page" control and collect text from each page."""

    enabled: bool = False
    next_button_selector: Optional[str] = None
    max_pages: int = Field(5, ge=1)


class ScrapeOptions(WireModel):
    """Request for a single-URL scrape job."""

    url: str
    scrape_text: bool = True
    scrape_images: bool = False
    scrape_videos: bool = False
    scrape_tables: bool = True
    scrape_lists: bool = True
    include_links: bool = False
    skip_headers_footers: bool = False
    handle_dynamic_content: bool = False
    selector: Optional[str] = None
    wait_time: Optional[int] = None
    headers: dict[str, str] = Field(default_factory=dict)
    cookies: Optional[str] = None
    timeout_seconds: Optional[float] = None
    ai_options: AIOptions = Field(default_factory=AIOptions)
    export_options: Optional[ExportOptions] = None
    pagination: PaginationOptions = Field(default_factory=PaginationOptions)


class JobData(WireModel):
    text: list[str] = Field(default_factory=list)
    images: list[str] = Field(default_factory=list)
    videos: list[str] = Field(default_factory=list)
    tables: list[list[list[str]]] = Field(default_factory=list)
    lists: list[list[str]] = Field(default_factory=list)
    links: Optional[list[str]] = None
    structured_data: Optional[dict[str, Any]] = None

    def count_elements(self) -> int:
        return (
            len(self.text)
            + len(self.images)
            + len(self.videos)
            + len(self.tables)
            + len(self.lists)
            + len(self.links or [])
        )


class JobMetadata(WireModel):
    page_title: str = ""
    page_description: str = ""
    page_keywords: list[str] = Field(default_factory=list)
    total_elements: int = 0
    status_code: Optional[int] = None
    content_type: Optional[str] = None
    response_time_ms: Optional[int] = None
    pages_scraped: int = 0


class Job(WireModel):
    """Tracked state of one asynchronous scrape request."""

    id: str
    url: str
    timestamp: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    status: JobStatus = JobStatus.IN_PROGRESS
    progress: int = PROGRESS_SUBMITTED
    data: JobData = Field(default_factory=JobData)
    metadata: JobMetadata = Field(default_factory=JobMetadata)
    ai_analysis: Optional[AnalysisResult] = None
    error: Optional[str] = None
    export_path: Optional[str] = None

    def text_content(self, limit: int | None = None) -> str:
        """Scraped text joined into one document for analysis."""
        text = "\n\n".join(self.data.text)
        return text[:limit] if limit else text

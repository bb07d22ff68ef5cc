"""Data models for scrape targets and results."""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WireModel(BaseModel):
    """Base model: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Dump to a JSON-ready dict using wire names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class SelectorType(str, Enum):
    TEXT = "text"
    HTML = "html"
    ATTRIBUTE = "attribute"
    LIST = "list"


class SelectorConfig(WireModel):
    """One extraction instruction, passed through to the extract worker."""

    id: str
    selector: str
    name: str = ""
    type: SelectorType = SelectorType.TEXT
    attribute: Optional[str] = None
    list_item_selector: Optional[str] = None


class FetchOptions(WireModel):
    """Per-target fetch options, opaque to the orchestrator."""

    headers: dict[str, str] = Field(default_factory=dict)
    method: str = "GET"
    body: Any = None
    wait_for_selector: Optional[str] = None
    wait_timeout: Optional[int] = None
    enable_javascript: bool = False
    follow_redirects: bool = True
    throttle: Optional[int] = None
    proxy: Optional[str] = None
    cookies: Optional[str] = None


class ScrapeTarget(WireModel):
    """A URL plus its extraction instructions. Immutable once submitted."""

    model_config = ConfigDict(frozen=True)

    url: str
    selectors: list[SelectorConfig] = Field(default_factory=list)
    options: Optional[FetchOptions] = None


class ResultMetadata(WireModel):
    status_code: Optional[int] = None
    content_type: Optional[str] = None
    response_time_ms: Optional[int] = None
    page_title: Optional[str] = None


class ScrapingResult(WireModel):
    """Final outcome for one target."""

    url: str
    timestamp: datetime = Field(default_factory=utcnow)
    data: dict[str, Any] = Field(default_factory=dict)
    success: bool
    error: Optional[str] = None
    metadata: Optional[ResultMetadata] = None
    attempts: Optional[int] = Field(default=None, description="Calls made before giving up")

    @classmethod
    def failure(cls, url: str, error: str, attempts: int | None = None) -> "ScrapingResult":
        return cls(url=url, success=False, error=error, attempts=attempts)

"""Read URL lists from uploaded or local files."""
import csv
import io
import logging
import re
from typing import Any

import orjson

from scrape_engine.fetch.client import is_valid_url

logger = logging.getLogger(__name__)

URL_PREFIX = re.compile(r"^https?://", re.IGNORECASE)


def _collect_json_urls(value: Any, urls: list[str]) -> None:
    if isinstance(value, str):
        if URL_PREFIX.match(value):
            urls.append(value)
    elif isinstance(value, list):
        for item in value:
            _collect_json_urls(item, urls)
    elif isinstance(value, dict):
        for item in value.values():
            _collect_json_urls(item, urls)


def extract_urls(content: str, filename: str = "") -> list[str]:
    """URL candidates from a file body, by extension.

    ``.json``: every http(s) string anywhere in the document.
    ``.csv``: the first column of each row.
    Anything else: one URL per line.
    Raises ValueError for malformed JSON.
    """
    name = filename.lower()
    urls: list[str] = []
    if name.endswith(".json"):
        _collect_json_urls(orjson.loads(content), urls)
        return urls
    if name.endswith(".csv"):
        for row in csv.reader(io.StringIO(content)):
            if row:
                urls.append(row[0].strip().strip("\"'"))
    else:
        urls = [line.strip() for line in content.splitlines()]
    return [url for url in urls if url and URL_PREFIX.match(url)]


def split_valid(urls: list[str]) -> tuple[list[str], list[str]]:
    """Partition URLs into (valid, invalid)."""
    valid, invalid = [], []
    for url in urls:
        (valid if is_valid_url(url) else invalid).append(url)
    if invalid:
        logger.info(f"Rejected {len(invalid)} invalid URLs")
    return valid, invalid

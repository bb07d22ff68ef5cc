"""Parse HTML: selector extraction and page content buckets."""
import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urljoin

from selectolax.parser import HTMLParser, Node

from scrape_engine.fetch.models import SelectorConfig, SelectorType

logger = logging.getLogger(__name__)

TEXT_SELECTOR = "p, h1, h2, h3, h4, h5, h6, span, div"
VIDEO_SELECTOR = 'video, iframe[src*="youtube"], iframe[src*="vimeo"]'
MIN_TEXT_LENGTH = 10


def extract_text_by_selector(parser: HTMLParser, selector: str, default: str = "") -> str:
    """Extract text from first matching element."""
    node = parser.css_first(selector)
    return node.text(strip=True) if node else default


def extract_all_text_by_selector(parser: HTMLParser | Node, selector: str) -> list[str]:
    """Extract text from all matching elements."""
    return [node.text(strip=True) for node in parser.css(selector) if node.text(strip=True)]


def extract_selector(parser: HTMLParser, selector: SelectorConfig) -> list[Any]:
    """Apply one selector config to a parsed document.

    ``list`` selectors return the item texts of every match flattened into
    one list; ``attribute`` selectors without an attribute fall back to text.
    """
    nodes = parser.css(selector.selector)
    if selector.type == SelectorType.HTML:
        return [node.html for node in nodes]
    if selector.type == SelectorType.ATTRIBUTE and selector.attribute:
        return [node.attributes.get(selector.attribute) for node in nodes]
    if selector.type == SelectorType.LIST and selector.list_item_selector:
        items: list[str] = []
        for node in nodes:
            items.extend(item.text(strip=True) for item in node.css(selector.list_item_selector))
        return items
    return [node.text(strip=True) for node in nodes]


def extract_selectors(html: str, selectors: list[SelectorConfig]) -> dict[str, Any]:
    """Extract every selector; a failing selector records its error instead."""
    parser = HTMLParser(html)
    data: dict[str, Any] = {}
    for selector in selectors:
        try:
            data[selector.id] = extract_selector(parser, selector)
        except Exception as e:
            logger.warning(f"Error extracting selector {selector.name or selector.id}: {e}")
            data[selector.id] = {"error": str(e)}
    return data


def page_title(html: str) -> str:
    return extract_text_by_selector(HTMLParser(html), "title")


def parse_table(node: Node) -> list[list[str]]:
    """Rows of cell texts; empty rows dropped."""
    rows = []
    for row in node.css("tr"):
        cells = [cell.text(strip=True) for cell in row.css("th, td")]
        if cells:
            rows.append(cells)
    return rows


def parse_list(node: Node) -> list[str]:
    return extract_all_text_by_selector(node, "li")


@dataclass
class PageContent:
    """Content buckets and page descriptors extracted from one document."""

    text: list[str] = field(default_factory=list)
    images: list[str] = field(default_factory=list)
    videos: list[str] = field(default_factory=list)
    tables: list[list[list[str]]] = field(default_factory=list)
    lists: list[list[str]] = field(default_factory=list)
    links: list[str] = field(default_factory=list)
    title: str = ""
    description: str = ""
    keywords: list[str] = field(default_factory=list)


def _text_blocks(parser: HTMLParser) -> list[str]:
    return [text for text in extract_all_text_by_selector(parser, TEXT_SELECTOR) if len(text) > MIN_TEXT_LENGTH]


def page_text(html: str) -> list[str]:
    """Text blocks longer than MIN_TEXT_LENGTH, in document order."""
    return _text_blocks(HTMLParser(html))


def _meta_content(parser: HTMLParser, name: str) -> str:
    node = parser.css_first(f'meta[name="{name}"]')
    if not node:
        return ""
    return (node.attributes.get("content") or "").strip()


def extract_page_content(
    html: str,
    base_url: str = "",
    scrape_text: bool = True,
    scrape_images: bool = False,
    scrape_videos: bool = False,
    scrape_tables: bool = True,
    scrape_lists: bool = True,
    include_links: bool = False,
    skip_headers_footers: bool = False,
) -> PageContent:
    """Split a full document into content buckets."""
    parser = HTMLParser(html)
    content = PageContent(
        title=extract_text_by_selector(parser, "title"),
        description=_meta_content(parser, "description"),
        keywords=[k.strip() for k in _meta_content(parser, "keywords").split(",") if k.strip()],
    )

    if skip_headers_footers:
        for node in parser.css("header, footer, nav"):
            node.decompose()

    if scrape_text:
        content.text = _text_blocks(parser)

    if scrape_images:
        for node in parser.css("img"):
            src = node.attributes.get("src")
            if src and not src.startswith("data:"):
                content.images.append(urljoin(base_url, src))

    if scrape_videos:
        for node in parser.css(VIDEO_SELECTOR):
            src = node.attributes.get("src")
            if src:
                content.videos.append(urljoin(base_url, src))

    if scrape_tables:
        content.tables = [table for table in map(parse_table, parser.css("table")) if table]

    if scrape_lists:
        content.lists = [items for items in map(parse_list, parser.css("ul, ol")) if items]

    if include_links:
        seen = set()
        for node in parser.css("a[href]"):
            href = node.attributes.get("href")
            if not href or href.startswith(("#", "javascript:", "mailto:")):
                continue
            absolute = urljoin(base_url, href)
            if absolute not in seen:
                seen.add(absolute)
                content.links.append(absolute)

    return content


def next_page_url(html: str, selector: str, base_url: str) -> str | None:
    """Absolute URL behind the pagination control, if the page has one."""
    node = HTMLParser(html).css_first(selector)
    if node is None:
        return None
    href = node.attributes.get("href")
    if not href and node.parent is not None:
        # Controls are often a button or span wrapped in the link
        href = node.parent.attributes.get("href")
    if not href or href.startswith(("#", "javascript:")):
        return None
    return urljoin(base_url, href)

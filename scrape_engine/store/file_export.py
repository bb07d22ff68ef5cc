"""Export scrape results and job snapshots to files."""
import csv
import io
import logging
import re
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import aiofiles
import openpyxl
import orjson
from openpyxl.styles import Font

from scrape_engine.config import EXPORT_DIR, PUBLIC_EXPORT_DIR

logger = logging.getLogger(__name__)

EXTENSIONS = {"json": "json", "jsonl": "jsonl", "csv": "csv", "text": "txt", "xml": "xml", "excel": "xlsx"}
XML_TAG = re.compile(r"^[A-Za-z_][A-Za-z0-9_.-]*$")


def sanitize_filename(filename: str) -> str:
    """Lowercase and replace anything but letters and digits with underscores."""
    return re.sub(r"[^a-z0-9]", "_", filename, flags=re.IGNORECASE).lower()


def generate_filename(url: str | None) -> str:
    """Filename stem from the URL's host and the current time."""
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
    host = urlparse(url or "").hostname
    if not host:
        return f"scraping_data_{timestamp}"
    return f"scraping_{host.replace('.', '_')}_{timestamp}"


def flatten_record(record: dict[str, Any]) -> dict[str, Any]:
    """Flatten nested dicts one level deep (``metadata_statusCode``); lists become JSON."""
    flat: dict[str, Any] = {}
    for key, value in record.items():
        if isinstance(value, dict):
            for nested_key, nested_value in value.items():
                flat[f"{key}_{nested_key}"] = _cell(nested_value)
        else:
            flat[key] = _cell(value)
    return flat


def _cell(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return orjson.dumps(value).decode()
    return value


def _render_csv(records: list[dict[str, Any]]) -> str:
    rows = [flatten_record(record) for record in records]
    fieldnames: list[str] = []
    for row in rows:
        fieldnames.extend(key for key in row if key not in fieldnames)
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=fieldnames)
    writer.writeheader()
    writer.writerows(rows)
    return buffer.getvalue()


def _render_text(records: list[dict[str, Any]]) -> str:
    lines = []
    for index, record in enumerate(records, start=1):
        lines.append(f"--- Item {index} ---")
        for key, value in record.items():
            if isinstance(value, (dict, list)):
                value = orjson.dumps(value).decode()
            lines.append(f"{key}: {value}")
        lines.append("")
    return "\n".join(lines)


def _xml_element(parent: ET.Element, key: str, value: Any) -> None:
    if isinstance(value, list):
        for entry in value:
            _xml_element(parent, key, entry)
        return
    if XML_TAG.match(key):
        element = ET.SubElement(parent, key)
    else:
        element = ET.SubElement(parent, "field", name=key)
    if isinstance(value, dict):
        for nested_key, nested_value in value.items():
            _xml_element(element, str(nested_key), nested_value)
    elif value is not None:
        element.text = str(value).lower() if isinstance(value, bool) else str(value)


def _render_xml(records: list[dict[str, Any]]) -> bytes:
    """``<root><item>...</item></root>``; list values repeat their element."""
    root = ET.Element("root")
    for record in records:
        item = ET.SubElement(root, "item")
        for key, value in record.items():
            _xml_element(item, key, value)
    ET.indent(root)
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)


def _render_excel(records: list[dict[str, Any]]) -> bytes:
    """One sheet, bold frozen header, columns from the flattened records."""
    rows = [flatten_record(record) for record in records]
    columns: list[str] = []
    for row in rows:
        columns.extend(key for key in row if key not in columns)

    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Scraped Data"
    ws.append(columns)
    for cell in ws[1]:
        cell.font = Font(bold=True)
    ws.freeze_panes = "A2"
    for row in rows:
        ws.append(["" if row.get(col) is None else row[col] for col in columns])

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


class FileExporter:
    """Writes records under the private export dir or the public one."""

    def __init__(self, base_dir: Path = EXPORT_DIR, public_dir: Path = PUBLIC_EXPORT_DIR):
        self.base_dir = Path(base_dir)
        self.public_dir = Path(public_dir)

    def _target(self, filename: str, fmt: str, save_to_public: bool) -> Path:
        directory = self.public_dir if save_to_public else self.base_dir
        directory.mkdir(parents=True, exist_ok=True)
        return directory / f"{sanitize_filename(filename)}.{EXTENSIONS[fmt]}"

    def render(self, records: list[dict[str, Any]], fmt: str) -> bytes:
        if fmt == "json":
            return orjson.dumps(records, option=orjson.OPT_INDENT_2)
        if fmt == "jsonl":
            return b"".join(orjson.dumps(record) + b"\n" for record in records)
        if fmt == "csv":
            return _render_csv(records).encode("utf-8")
        if fmt == "text":
            return _render_text(records).encode("utf-8")
        if fmt == "xml":
            return _render_xml(records)
        if fmt == "excel":
            return _render_excel(records)
        raise ValueError(f"Unsupported export format: {fmt}")

    async def export(
        self,
        records: list[dict[str, Any]],
        filename: str | None = None,
        fmt: str = "json",
        save_to_public: bool = False,
    ) -> Path:
        """Write ``records`` and return the file path."""
        fmt = fmt.lower()
        content = self.render(records, fmt)
        if not filename:
            filename = generate_filename(records[0].get("url") if records else None)
        path = self._target(filename, fmt, save_to_public)
        async with aiofiles.open(path, "wb") as f:
            await f.write(content)
        logger.info(f"Exported {len(records)} records to {path}")
        return path

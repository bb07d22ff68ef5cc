"""Tests for the SQLite sink and row mapping."""
import asyncio
import sqlite3

import pytest
from pydantic import ValidationError

from scrape_engine.fetch.models import ScrapingResult
from scrape_engine.store.models import DatabaseConfig, build_rows
from scrape_engine.store.sqlite_sink import SqliteSink

RESULTS = [
    ScrapingResult(url="https://example.com/1", success=True, data={"title": ["One"], "tags": ["a", "b"]}),
    ScrapingResult(url="https://example.com/2", success=False, error="HTTP 500"),
    ScrapingResult(url="https://example.com/3", success=True, data={"title": ["Three"]}),
]


def db_config(**options):
    return DatabaseConfig(
        table="products",
        columns={"title": "title", "tags": "tags"},
        options=options,
    )


def test_build_rows_skips_failures():
    rows = build_rows(RESULTS, db_config())
    assert [row["url"] for row in rows] == ["https://example.com/1", "https://example.com/3"]
    assert rows[0]["title"] == '["One"]'
    assert rows[1]["tags"] is None
    assert "scraped_at" in rows[0]


def test_build_rows_without_url_or_timestamp():
    rows = build_rows(RESULTS, db_config(include_url=False, include_timestamp=False))
    assert set(rows[0]) == {"title", "tags"}


def test_build_rows_unencoded():
    rows = build_rows(RESULTS, db_config(), encode=False)
    assert rows[0]["tags"] == ["a", "b"]


def test_invalid_identifiers_rejected():
    with pytest.raises(ValidationError):
        DatabaseConfig(table="drop table;", columns={"title": "title"})
    with pytest.raises(ValidationError):
        DatabaseConfig(table="products", columns={"title": "bad column"})
    with pytest.raises(ValidationError):
        DatabaseConfig(table="products", columns={})


def test_wire_names_accepted():
    cfg = DatabaseConfig.model_validate(
        {"table": "t", "columns": {"a": "a"}, "dbType": "sqlite", "options": {"batchSize": 2}}
    )
    assert cfg.options.batch_size == 2


def test_save_creates_table_and_inserts(tmp_path):
    sink = SqliteSink(db_path=tmp_path / "out.db")
    inserted = asyncio.run(sink.save(RESULTS, db_config(batch_size=1)))
    assert inserted == 2
    assert asyncio.run(sink.count("products")) == 2

    with sqlite3.connect(tmp_path / "out.db") as conn:
        rows = conn.execute("SELECT title, tags, url FROM products ORDER BY id").fetchall()
    assert rows[0] == ('["One"]', '["a","b"]', "https://example.com/1")
    assert rows[1][0] == '["Three"]'


def test_save_appends_to_existing_table(tmp_path):
    sink = SqliteSink(db_path=tmp_path / "out.db")
    asyncio.run(sink.save(RESULTS, db_config()))
    asyncio.run(sink.save(RESULTS, db_config()))
    assert asyncio.run(sink.count("products")) == 4


def test_save_nothing_successful(tmp_path):
    sink = SqliteSink(db_path=tmp_path / "out.db")
    failed = [ScrapingResult(url="https://example.com", success=False, error="x")]
    assert asyncio.run(sink.save(failed, db_config())) == 0
    assert not (tmp_path / "out.db").exists()

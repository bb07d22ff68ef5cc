"""Database destination descriptors and row mapping."""
import re
from typing import Any, Literal

import orjson
from pydantic import Field, field_validator

from scrape_engine.fetch.models import ScrapingResult, WireModel

IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def check_identifier(name: str) -> str:
    if not IDENTIFIER.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


class DatabaseOptions(WireModel):
    include_timestamp: bool = True
    include_url: bool = True
    batch_size: int = Field(default=100, ge=1)


class DatabaseConfig(WireModel):
    """Where to store results: table plus selector id to column mapping."""

    table: str
    columns: dict[str, str]
    db_type: Literal["sqlite", "postgres", "mysql", "mongodb"] = "sqlite"
    options: DatabaseOptions = Field(default_factory=DatabaseOptions)

    @field_validator("table")
    @classmethod
    def _valid_table(cls, value: str) -> str:
        return check_identifier(value)

    @field_validator("columns")
    @classmethod
    def _valid_columns(cls, value: dict[str, str]) -> dict[str, str]:
        if not value:
            raise ValueError("columns mapping must not be empty")
        for column in value.values():
            check_identifier(column)
        return value

    def column_names(self) -> list[str]:
        names = list(self.columns.values())
        if self.options.include_url:
            names.append("url")
        if self.options.include_timestamp:
            names.append("scraped_at")
        return names


def _encode(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return orjson.dumps(value).decode()
    return value


def build_rows(
    results: list[ScrapingResult],
    db_config: DatabaseConfig,
    encode: bool = True,
) -> list[dict[str, Any]]:
    """One row per successful result; values for unmapped selectors are dropped."""
    rows = []
    for result in results:
        if not result.success:
            continue
        row = {
            column: (_encode(result.data.get(selector_id)) if encode else result.data.get(selector_id))
            for selector_id, column in db_config.columns.items()
        }
        if db_config.options.include_url:
            row["url"] = result.url
        if db_config.options.include_timestamp:
            row["scraped_at"] = result.timestamp.isoformat()
        rows.append(row)
    return rows

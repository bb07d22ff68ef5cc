"""SQLite destination for scrape results."""
import logging
from pathlib import Path

import aiosqlite

from scrape_engine.config import SQLITE_DB
from scrape_engine.fetch.models import ScrapingResult
from scrape_engine.store.models import DatabaseConfig, build_rows, check_identifier

logger = logging.getLogger(__name__)


class SqliteSink:
    """Stores mapped result rows in a local SQLite database."""

    def __init__(self, db_path: Path = SQLITE_DB):
        self.db_path = Path(db_path)

    async def ensure_table(self, db: aiosqlite.Connection, db_config: DatabaseConfig) -> None:
        """Create the table if it doesn't exist."""
        columns = ", ".join(f'"{name}" TEXT' for name in db_config.column_names())
        await db.execute(
            f"""
            CREATE TABLE IF NOT EXISTS "{db_config.table}" (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                {columns}
            )
            """
        )

    async def save(self, results: list[ScrapingResult], db_config: DatabaseConfig) -> int:
        """Insert one row per successful result. Returns rows inserted."""
        rows = build_rows(results, db_config)
        if not rows:
            logger.info("No successful results to store")
            return 0

        names = db_config.column_names()
        column_list = ", ".join(f'"{name}"' for name in names)
        placeholders = ", ".join("?" for _ in names)
        statement = f'INSERT INTO "{db_config.table}" ({column_list}) VALUES ({placeholders})'
        batch_size = db_config.options.batch_size

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.db_path) as db:
            await self.ensure_table(db, db_config)
            for i in range(0, len(rows), batch_size):
                chunk = rows[i : i + batch_size]
                await db.executemany(statement, [tuple(row[name] for name in names) for row in chunk])
            await db.commit()

        logger.info(f"Inserted {len(rows)} rows into {db_config.table} ({self.db_path})")
        return len(rows)

    async def count(self, table: str) -> int:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(f'SELECT COUNT(*) FROM "{check_identifier(table)}"')
            row = await cursor.fetchone()
            return row[0]

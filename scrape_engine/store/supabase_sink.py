"""Supabase (Postgres) destination for scrape results."""
import asyncio
import logging
from typing import Optional

from supabase import create_client, Client
from tenacity import retry, stop_after_attempt, wait_exponential

from scrape_engine.config import config
from scrape_engine.fetch.models import ScrapingResult
from scrape_engine.store.models import DatabaseConfig, build_rows

logger = logging.getLogger(__name__)


class SupabaseSink:
    """Inserts mapped result rows into a Supabase table."""

    def __init__(
        self,
        url: Optional[str] = None,
        key: Optional[str] = None,
        client: Optional[Client] = None,
    ):
        if client is None:
            url = url or config.SUPABASE_URL
            key = key or config.SUPABASE_SERVICE_ROLE
            if not url or not key:
                raise ValueError("Supabase configuration missing")
            client = create_client(url, key)
        self.client: Client = client

    async def save(self, results: list[ScrapingResult], db_config: DatabaseConfig) -> int:
        """Insert one row per successful result (sync client runs in a thread)."""
        rows = build_rows(results, db_config, encode=False)
        if not rows:
            return 0

        loop = asyncio.get_running_loop()
        batch_size = db_config.options.batch_size
        for i in range(0, len(rows), batch_size):
            chunk = rows[i : i + batch_size]
            try:
                await loop.run_in_executor(None, self._insert_sync, db_config.table, chunk)
            except Exception as e:
                logger.error(f"Supabase insert error on {db_config.table}: {e}")
                raise
        logger.info(f"Inserted {len(rows)} rows into Supabase table {db_config.table}")
        return len(rows)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _insert_sync(self, table: str, rows: list[dict]) -> None:
        """Synchronous insert (called from thread pool)."""
        self.client.table(table).insert(rows).execute()

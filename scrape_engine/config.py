"""Configuration management from environment variables."""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file
load_dotenv()

# Project root
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(PROJECT_ROOT / "data")))
EXPORT_DIR = DATA_DIR / "scraping"
PUBLIC_EXPORT_DIR = PROJECT_ROOT / "public" / "data"
SQLITE_DB = DATA_DIR / "scraping.db"


def _optional_int(name: str) -> int | None:
    """Read a positive int, treating 0 or unset as disabled."""
    value = int(os.getenv(name, "0"))
    return value if value > 0 else None


class Config:
    """Application configuration."""

    # External workers
    EXTRACT_WORKER_URL: str | None = os.getenv("EXTRACT_WORKER_URL")
    AI_WORKER_URL: str | None = os.getenv("AI_WORKER_URL")

    # Batch scraping
    BATCH_SIZE: int = int(os.getenv("BATCH_SIZE", "5"))
    BATCH_DELAY: float = float(os.getenv("BATCH_DELAY", "0.5"))
    RETRY_LIMIT: int = int(os.getenv("RETRY_LIMIT", "3"))
    RETRY_DELAY: float = float(os.getenv("RETRY_DELAY", "1.0"))
    FETCH_TIMEOUT: float = float(os.getenv("FETCH_TIMEOUT", "30"))
    RATE_PER_DOMAIN: float = float(os.getenv("RATE_PER_DOMAIN", "2.0"))
    TIMEOUT: int = int(os.getenv("TIMEOUT", "30"))

    # Jobs
    JOB_TIMEOUT: int | None = _optional_int("JOB_TIMEOUT")
    MAX_CONCURRENT_JOBS: int | None = _optional_int("MAX_CONCURRENT_JOBS")
    JOB_TTL_SECONDS: int = int(os.getenv("JOB_TTL_SECONDS", "3600"))
    PAGE_DELAY: float = float(os.getenv("PAGE_DELAY", "1.0"))

    # Supabase
    SUPABASE_URL: str | None = os.getenv("SUPABASE_URL")
    SUPABASE_SERVICE_ROLE: str | None = os.getenv("SUPABASE_SERVICE_ROLE")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # API
    API_KEY: str | None = os.getenv("API_KEY")
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))

    @classmethod
    def validate(cls) -> None:
        """Validate configuration values."""
        errors = []
        if cls.BATCH_SIZE < 1:
            errors.append("BATCH_SIZE must be >= 1")
        if cls.BATCH_DELAY < 0:
            errors.append("BATCH_DELAY must be >= 0")
        if cls.RETRY_LIMIT < 1:
            errors.append("RETRY_LIMIT must be >= 1")
        if cls.RETRY_DELAY < 0:
            errors.append("RETRY_DELAY must be >= 0")
        if cls.PAGE_DELAY < 0:
            errors.append("PAGE_DELAY must be >= 0")
        if cls.JOB_TTL_SECONDS < 0:
            errors.append("JOB_TTL_SECONDS must be >= 0")
        if bool(cls.SUPABASE_URL) != bool(cls.SUPABASE_SERVICE_ROLE):
            errors.append("SUPABASE_URL and SUPABASE_SERVICE_ROLE must be set together")
        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")


config = Config()

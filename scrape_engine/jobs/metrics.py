"""Runtime counters for batch scrapes and jobs."""
import time
import logging
from collections import defaultdict
from typing import Dict

logger = logging.getLogger(__name__)


class EngineMetrics:
    """Track scrape outcomes and job durations for the process lifetime."""

    def __init__(self):
        self.start_time = time.time()
        self.counters: Dict[str, int] = defaultdict(int)
        self.job_seconds_total = 0.0

    def increment(self, key: str, amount: int = 1) -> None:
        """Increment a counter."""
        self.counters[key] += amount

    def record_job_finished(self, status: str, duration_seconds: float) -> None:
        self.increment(f"jobs_{status}")
        self.job_seconds_total += duration_seconds

    def get_rate(self) -> float:
        """Targets processed per second since start."""
        elapsed = time.time() - self.start_time
        processed = self.counters.get("targets_ok", 0) + self.counters.get("targets_failed", 0)
        if elapsed > 0:
            return processed / elapsed
        return 0.0

    def avg_job_seconds(self) -> float:
        finished = self.counters.get("jobs_completed", 0) + self.counters.get("jobs_failed", 0)
        return self.job_seconds_total / finished if finished else 0.0

    def get_summary(self) -> Dict:
        """Get summary statistics."""
        return {
            "uptime_seconds": round(time.time() - self.start_time, 2),
            "targets_ok": self.counters.get("targets_ok", 0),
            "targets_failed": self.counters.get("targets_failed", 0),
            "retries": self.counters.get("retries", 0),
            "batches": self.counters.get("batches", 0),
            "jobs_started": self.counters.get("jobs_started", 0),
            "jobs_completed": self.counters.get("jobs_completed", 0),
            "jobs_failed": self.counters.get("jobs_failed", 0),
            "target_rate": round(self.get_rate(), 3),
            "avg_job_seconds": round(self.avg_job_seconds(), 3),
        }

    def report(self) -> None:
        """Log current metrics."""
        summary = self.get_summary()
        logger.info(
            f"Targets OK: {summary['targets_ok']} | Failed: {summary['targets_failed']} | "
            f"Retries: {summary['retries']} | "
            f"Jobs: {summary['jobs_started']} started, {summary['jobs_completed']} completed, "
            f"{summary['jobs_failed']} failed | Avg job: {summary['avg_job_seconds']:.2f}s"
        )

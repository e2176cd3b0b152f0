"""SAQ queue shared by the API (to enqueue) and the worker (to run jobs)."""

import logging
from typing import Any

from saq import CronJob, Queue

from tollgate.config import settings

logger = logging.getLogger(__name__)

queue = Queue.from_url(settings.redis_url, name="tollgate")

# Sweeps are short; two slots let a manual run overlap the cron run
WORKER_CONCURRENCY = 2


async def on_startup(_ctx: dict[str, Any]) -> None:
    logger.info(f"Worker started on queue {queue.name}")


async def on_shutdown(_ctx: dict[str, Any]) -> None:
    logger.info("Worker stopping")


def get_queue_settings() -> dict[str, Any]:
    """Keyword arguments for ``saq.Worker``."""
    # Deferred so tasks can import services without a cycle through the queue
    from tollgate.tasks.maintenance import (
        MAINTENANCE_TIMEOUT_SECONDS,
        SWEEP_CRON,
        sweep_sessions,
        sweep_tokens,
    )

    jobs = [sweep_sessions, sweep_tokens]
    return {
        "queue": queue,
        "functions": jobs,
        "cron_jobs": [
            CronJob(job, cron=SWEEP_CRON, timeout=MAINTENANCE_TIMEOUT_SECONDS) for job in jobs
        ],
        "concurrency": WORKER_CONCURRENCY,
        "startup": on_startup,
        "shutdown": on_shutdown,
    }

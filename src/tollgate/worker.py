"""Entry point for the background worker process."""

import asyncio

from saq import Worker

from tollgate.logging import setup_logging
from tollgate.tasks.queue import get_queue_settings


def build_worker() -> Worker:
    return Worker(**get_queue_settings())


def run_worker() -> None:
    """Configure logging and block running sweeps until interrupted."""
    setup_logging()
    asyncio.run(build_worker().start())


if __name__ == "__main__":
    run_worker()

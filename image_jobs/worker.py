"""Entry point for the RQ worker that executes queued image jobs."""

from __future__ import annotations

import logging

from redis import Redis
from rq import Queue, Worker

from image_jobs.core.config import get_settings
from image_jobs.core.logging import configure_logging
from image_jobs.models import QUEUE_NAMES

logger = logging.getLogger(__name__)


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    settings.ensure_directories()

    connection = Redis.from_url(settings.redis_url)
    queues = [Queue(name, connection=connection) for name in QUEUE_NAMES.values()]
    logger.info("Starting worker on %s", ", ".join(queue.name for queue in queues))
    Worker(queues, connection=connection).work(with_scheduler=True)


if __name__ == "__main__":
    main()

"""Librarease worker entry point: ``python -m librarease.worker``."""

import asyncio
import logging
import signal
import sys

from librarease.config import settings
from librarease.container import services_from_settings
from librarease.database import dispose_db
from librarease.logging_config import configure_logging
from librarease.queue.broker import create_redis
from librarease.queue.handlers import build_mux
from librarease.queue.server import WorkerServer, overdue_scheduler

logger = logging.getLogger(__name__)


async def serve() -> None:
    services = services_from_settings(settings, with_hub=False)
    client = create_redis(settings.redis_url, settings.redis_password)
    server = WorkerServer(
        client,
        build_mux(services),
        concurrency=settings.worker_concurrency,
        max_retry=settings.worker_max_retry,
    )
    server.every(
        "overdue-scheduler",
        settings.overdue_check_interval_seconds,
        overdue_scheduler(client, services.broker, settings.overdue_check_interval_seconds),
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, server.stop)

    try:
        await server.run()
    finally:
        await services.aclose()
        await client.aclose()
        await dispose_db()


def main() -> None:
    configure_logging(settings.log_level)
    logger.info("Starting Librarease worker...")
    try:
        asyncio.run(serve())
    except Exception:
        logger.exception("Worker terminated with an error")
        sys.exit(1)
    logger.info("Worker shutdown complete")


if __name__ == "__main__":
    main()

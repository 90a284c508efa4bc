from __future__ import annotations

import asyncio
import logging
import signal

from loyalty.config import settings
from loyalty.db.session import dispose_database, ping_database
from loyalty.logging_setup import configure_logging
from loyalty.services.period_service import local_timezone
from loyalty.services.ranking_watcher import cancel_watcher, run_ranking_watcher

logger = logging.getLogger(__name__)


async def startup_checks() -> None:
    await ping_database()
    logger.info("Startup checks passed: database is available (tz=%s)", local_timezone().key)


async def run() -> None:
    configure_logging(settings.log_level)
    await startup_checks()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass

    watcher_task: asyncio.Task[None] | None = asyncio.create_task(run_ranking_watcher())
    try:
        await stop_event.wait()
    finally:
        await cancel_watcher(watcher_task)
        await dispose_database()
        logger.info("Worker stopped")


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()

from __future__ import annotations

import asyncio
import contextlib
import logging

from loyalty.config import settings
from loyalty.services.ranking_service import run_pending_ranking

logger = logging.getLogger(__name__)


async def run_ranking_watcher() -> None:
    interval = max(settings.ranking_watcher_interval_seconds, 1)
    while True:
        try:
            if settings.ranking_watcher_enabled:
                winners = await run_pending_ranking()
                if winners:
                    logger.info("Ranking watcher recorded %s winner(s)", len(winners))
            await asyncio.sleep(interval)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Ranking watcher failed: %s", exc)
            await asyncio.sleep(interval)


async def cancel_watcher(task: asyncio.Task[None] | None) -> None:
    if task is None:
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task

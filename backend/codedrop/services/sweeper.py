"""Retention sweeper.

Purges expired records (and records whose download limit is used up) together
with their blobs. Runs as an asyncio task within the FastAPI process.
"""
import asyncio
import logging
from datetime import datetime
from typing import Callable

from codedrop.services.record_store import FileRecordStore

logger = logging.getLogger(__name__)


class RetentionSweeper:
    def __init__(self, store: FileRecordStore, clock: Callable[[], datetime], interval_seconds: float = 3600.0):
        self.store = store
        self.clock = clock
        self.interval_seconds = interval_seconds

    async def sweep(self) -> int:
        """Delete every purgeable record. Returns how many were removed.

        A failure on one record is logged and skipped; the next run retries it.
        """
        now = self.clock()
        candidates = {r.id: r for r in await self.store.list_expired(now)}
        for record in await self.store.list_exhausted(now):
            candidates.setdefault(record.id, record)

        purged = 0
        for record in candidates.values():
            try:
                if await self.store.delete(record.id):
                    purged += 1
            except Exception:
                logger.exception(f"Failed to purge file {record.id} (code {record.code}), will retry next sweep")
        if purged:
            logger.info(f"Sweep purged {purged} file(s)")
        return purged

    async def run_forever(self) -> None:
        """Main sweeper loop. Sweeps every `interval_seconds` until cancelled."""
        logger.info(f"Retention sweeper started (interval={self.interval_seconds}s)")
        while True:
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Sweeper loop error: {e}")
            await asyncio.sleep(self.interval_seconds)

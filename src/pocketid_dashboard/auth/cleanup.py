"""Periodic removal of expired session records."""

import asyncio
import logging

from pocketid_dashboard.auth.session import SessionStore

logger = logging.getLogger(__name__)


class SessionCleanup:
    """Sweeps expired sessions now and then every ``interval_minutes``."""

    def __init__(self, store: SessionStore, interval_minutes: int = 60):
        self._store = store
        self.interval_seconds = interval_minutes * 60
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        removed = await self._store.sweep_expired()
        logger.info(f"Cleaned up {removed} expired sessions")
        return removed

    async def _run(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Session cleanup failed: {e}")
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        logger.info(f"Starting session cleanup every {self.interval_seconds // 60} minutes")
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

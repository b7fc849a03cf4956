from __future__ import annotations

import asyncio
import logging
from typing import Callable

from .errors import ChatError
from .models import USERS, _now_ms

logger = logging.getLogger(__name__)


class PresenceTracker:
    """Keeps one user's online flag and last-seen timestamp fresh in the store.

    Every call performs exactly one write to the user record. The written
    last-seen value never moves backwards, even if the clock does or a new
    tracker is created for the same user; the first write reads the stored
    value to seed the floor.
    """

    def __init__(
        self,
        store,
        user_id: str,
        *,
        heartbeat_interval_s: float = 30.0,
        now_func: Callable[[], int] = _now_ms,
    ) -> None:
        self._store = store
        self.user_id = user_id
        self.heartbeat_interval_s = heartbeat_interval_s
        self._now = now_func
        self._last_seen_ms = 0
        self._seeded = False
        self._heartbeat_task: asyncio.Task | None = None

    @property
    def last_seen_ms(self) -> int:
        return self._last_seen_ms

    async def _seed(self) -> None:
        records = await self._store.list(USERS, {"id": self.user_id}, limit=1)
        if records:
            stored = int(records[0].get("last_seen_ms") or 0)
            self._last_seen_ms = max(self._last_seen_ms, stored)
        self._seeded = True

    async def _write(self, patch: dict) -> int:
        if not self._seeded:
            await self._seed()
        last_seen_ms = max(self._now(), self._last_seen_ms)
        await self._store.update(USERS, self.user_id, {**patch, "last_seen_ms": last_seen_ms})
        self._last_seen_ms = last_seen_ms
        return last_seen_ms

    async def mark_online(self) -> int:
        return await self._write({"is_online": True})

    async def heartbeat(self) -> int:
        return await self._write({})

    async def mark_offline(self) -> int:
        return await self._write({"is_online": False})

    def start(self) -> None:
        if self._heartbeat_task is None:
            self._heartbeat_task = asyncio.create_task(self._run_heartbeat())

    async def stop(self) -> None:
        """Cancel the heartbeat and record the disconnect."""

        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass
            self._heartbeat_task = None
        await self.mark_offline()

    async def _run_heartbeat(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.heartbeat_interval_s)
                try:
                    await self.heartbeat()
                except ChatError as exc:
                    # retried on the next tick
                    logger.warning("heartbeat for %s failed: %s", self.user_id, exc)
        except asyncio.CancelledError:
            return

"""Worker wiring for abandoned reward reservation sweeps."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from rewardledger_api.core.settings import settings
from rewardledger_api.services.rewards import RewardReconciliationService

SessionFactory = Callable[[], Awaitable[AsyncSession]] | Callable[[], AsyncSession]


class ReservationCleanupWorker:
    """Periodically releases reward reservations that were never confirmed."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        interval_seconds: int | None = None,
        limit: int | None = None,
        older_than_seconds: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.interval_seconds = interval_seconds or settings.reservation_cleanup_interval_seconds
        self._limit = limit or settings.reservation_cleanup_limit
        self._older_than_seconds = older_than_seconds or settings.reward_reservation_stale_seconds
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.is_running: bool = False

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self.is_running = True
        logger.info(
            "Reservation cleanup worker started",
            interval_seconds=self.interval_seconds,
            limit=self._limit,
            older_than_seconds=self._older_than_seconds,
        )

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        logger.info("Reservation cleanup worker stopped")

    async def run_once(self, *, now: datetime | None = None) -> Dict[str, int]:
        """Execute a single sweep and return the number of released reservations."""

        session = await self._ensure_session()
        async with session as managed_session:
            service = RewardReconciliationService(managed_session)
            released = await service.sweep_stale_reservations(
                older_than_seconds=self._older_than_seconds,
                limit=self._limit,
                now=now,
            )
        return {"released": released}

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as exc:  # pragma: no cover - loop must survive a failed sweep
                logger.exception("Reservation cleanup iteration failed", error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def _ensure_session(self) -> AsyncSession:
        maybe_session = self._session_factory()
        if isinstance(maybe_session, AsyncSession):
            return maybe_session
        return await maybe_session

"""Worker wiring for claim voucher expiry sweeps."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from rewardledger_api.core.settings import settings
from rewardledger_api.services.claims import ClaimLifecycleTracker

SessionFactory = Callable[[], Awaitable[AsyncSession]] | Callable[[], AsyncSession]


class VoucherExpiryWorker:
    """Periodically expires issued vouchers whose deadline has passed."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        interval_seconds: int | None = None,
        limit: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.interval_seconds = interval_seconds or settings.voucher_expiry_interval_seconds
        self._limit = limit or settings.voucher_expiry_limit
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.is_running: bool = False

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self.is_running = True
        logger.info("Voucher expiry worker started", interval_seconds=self.interval_seconds, limit=self._limit)

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        logger.info("Voucher expiry worker stopped")

    async def run_once(self, *, now: datetime | None = None) -> Dict[str, int]:
        session = await self._ensure_session()
        async with session as managed_session:
            tracker = ClaimLifecycleTracker(managed_session)
            expired = await tracker.expire_overdue_vouchers(now=now, limit=self._limit)
        return {"expired": expired}

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as exc:  # pragma: no cover - loop must survive a failed sweep
                logger.exception("Voucher expiry iteration failed", error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def _ensure_session(self) -> AsyncSession:
        maybe_session = self._session_factory()
        if isinstance(maybe_session, AsyncSession):
            return maybe_session
        return await maybe_session

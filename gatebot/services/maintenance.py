"""
Out-of-band upkeep for the gate: everything that must never sit on the scan path.

One pass does three things:
  - drains the anchoring queue (submit / confirm code hashes)
  - replays attendance records that failed right after a grant
  - purges scan attempts past the retention window (at most once per day)
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from gatebot.models.models import utcnow
from gatebot.services.access_service import AccessControlService
from gatebot.services.stats_service import purge_scan_attempts

logger = logging.getLogger(__name__)

PURGE_INTERVAL = timedelta(days=1)


class Maintenance:
    def __init__(
        self,
        access: AccessControlService,
        retention_days: int = 365,
        interval: float = 30.0,
    ) -> None:
        self._access         = access
        self._retention      = timedelta(days=retention_days)
        self._interval       = interval
        self._last_purge: Optional[datetime] = None

    async def run_once(self, now: Optional[datetime] = None) -> dict[str, int]:
        now = now or utcnow()
        report = {"anchored": 0, "anchor_failed": 0, "attendance_replayed": 0, "purged": 0}

        anchor = self._access.anchor
        if anchor is not None and anchor.enabled:
            async with self._access.session_factory() as session:
                stats = await anchor.process_pending(session)
                await session.commit()
            report["anchored"]      = stats["confirmed"]
            report["anchor_failed"] = stats["failed"]

        report["attendance_replayed"] = await self._access.validator.retry_pending_attendance()

        if self._last_purge is None or now - self._last_purge >= PURGE_INTERVAL:
            async with self._access.session_factory() as session:
                report["purged"] = await purge_scan_attempts(session, now - self._retention)
                await session.commit()
            self._last_purge = now
            if report["purged"]:
                logger.info("Purged %d scan attempts older than %s", report["purged"], self._retention)

        return report

    async def run_forever(self, stop: asyncio.Event) -> None:
        logger.info("Maintenance loop started (every %.0fs)", self._interval)
        while not stop.is_set():
            try:
                await self.run_once()
            except SQLAlchemyError:
                logger.exception("Maintenance pass failed; retrying next cycle")
            try:
                await asyncio.wait_for(stop.wait(), self._interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Maintenance loop stopped")

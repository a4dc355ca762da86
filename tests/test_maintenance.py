"""
Integration tests — out-of-band maintenance pass (maintenance.py).
"""
from __future__ import annotations

import asyncio
from datetime import timedelta

from sqlalchemy import func, select

from gatebot.models.models import ScanAttempt, ScanOutcome
from gatebot.services.maintenance import Maintenance


class TestMaintenance:

    async def test_purges_old_attempts_once_a_day(self, access, seed, session_factory, clock) -> None:
        event_id, _ = await seed()
        async with session_factory() as session:
            session.add(ScanAttempt(
                scanned_at=clock.now - timedelta(days=30),
                token_presented="0" * 64,
                event_id=event_id,
                access_point="north-gate",
                outcome=ScanOutcome.DENIED,
                reason="QR_NOT_FOUND",
            ))
            await session.commit()

        maintenance = Maintenance(access, retention_days=7)
        first = await maintenance.run_once(now=clock.now)
        assert first["purged"] == 1

        async with session_factory() as session:
            session.add(ScanAttempt(
                scanned_at=clock.now - timedelta(days=30),
                token_presented="0" * 64,
                event_id=event_id,
                access_point="north-gate",
                outcome=ScanOutcome.DENIED,
                reason="QR_NOT_FOUND",
            ))
            await session.commit()

        # Same day: no second purge
        second = await maintenance.run_once(now=clock.now + timedelta(hours=1))
        assert second["purged"] == 0
        third = await maintenance.run_once(now=clock.now + timedelta(days=1))
        assert third["purged"] == 1

        async with session_factory() as session:
            left = (await session.execute(select(func.count()).select_from(ScanAttempt))).scalar_one()
        assert left == 0

    async def test_without_anchor_skips_queue(self, access, clock) -> None:
        report = await Maintenance(access).run_once(now=clock.now)
        assert report["anchored"] == 0
        assert report["anchor_failed"] == 0
        assert report["attendance_replayed"] == 0

    async def test_loop_stops_on_event(self, access) -> None:
        stop = asyncio.Event()
        task = asyncio.create_task(Maintenance(access, interval=0.01).run_forever(stop))
        await asyncio.sleep(0.05)
        stop.set()
        await asyncio.wait_for(task, 1.0)
        assert task.done() and task.exception() is None

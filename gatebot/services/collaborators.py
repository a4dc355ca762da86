"""
Boundaries to the rest of the platform.

The access-code core only needs two things from outside: "is this registration
approved / which event is it for?" and "record that this person checked in".
Both are expressed as protocols; the SQL adapters below read the platform's
tables directly and are what the bot wires up by default.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gatebot.models.models import Attendance, Event, Registration, RegistrationStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanContext:
    """Where and how a token was presented."""
    access_point: str
    device_info:  Optional[dict[str, Any]] = None
    location:     Optional[dict[str, Any]] = None
    scanned_by:   Optional[int]            = None
    extra:        dict[str, Any]           = field(default_factory=dict)


class RegistrationDirectory(Protocol):
    async def is_approved(self, registration_id: int) -> bool: ...

    async def get_event(self, registration_id: int) -> Optional[int]: ...

    async def get_event_end(self, registration_id: int) -> Optional[datetime]: ...


class AttendanceRecorder(Protocol):
    async def record_attendance(
        self,
        registration_id: int,
        event_id: int,
        access_code_id: str,
        context: ScanContext,
    ) -> None: ...


# ── SQL adapters ──────────────────────────────────────────────────────────────

class SqlRegistrationDirectory:
    """Reads registrations/events from the shared database, one short session per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _get(self, registration_id: int) -> Optional[Registration]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Registration).where(Registration.id == registration_id)
            )
            return result.scalar_one_or_none()

    async def is_approved(self, registration_id: int) -> bool:
        reg = await self._get(registration_id)
        return reg is not None and reg.status == RegistrationStatus.APPROVED

    async def get_event(self, registration_id: int) -> Optional[int]:
        reg = await self._get(registration_id)
        return reg.event_id if reg else None

    async def get_event_end(self, registration_id: int) -> Optional[datetime]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Event.ends_at)
                .join(Registration, Registration.event_id == Event.id)
                .where(Registration.id == registration_id)
            )
            return result.scalar_one_or_none()


class SqlAttendanceRecorder:
    """Writes an Attendance row in its own transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def record_attendance(
        self,
        registration_id: int,
        event_id: int,
        access_code_id: str,
        context: ScanContext,
    ) -> None:
        async with self._session_factory() as session:
            session.add(Attendance(
                registration_id=registration_id,
                event_id=event_id,
                access_code_id=access_code_id,
                access_point=context.access_point,
            ))
            await session.commit()
        logger.info(
            "Attendance recorded: registration %d at event %d (%s)",
            registration_id, event_id, context.access_point,
        )


# ── Operator read helpers ─────────────────────────────────────────────────────

async def list_events(session: AsyncSession) -> list[Event]:
    result = await session.execute(
        select(Event).order_by(Event.id.desc())
    )
    return list(result.scalars().all())


async def get_event_by_id(session: AsyncSession, event_id: int) -> Optional[Event]:
    return await session.get(Event, event_id)


async def get_registration(session: AsyncSession, registration_id: int) -> Optional[Registration]:
    return await session.get(Registration, registration_id)

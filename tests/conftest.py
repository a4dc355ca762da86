"""
Shared pytest fixtures for the gate tests.

Sets required environment variables BEFORE any gatebot module is imported so
that pydantic-settings and SQLAlchemy engine initialisation use safe test values.
"""
from __future__ import annotations

import os
from datetime import datetime, timedelta
from typing import AsyncGenerator, Optional

# ── Set env vars before any gatebot import ────────────────────────────────────
os.environ.setdefault("BOT_TOKEN", "test-token-for-pytest")
os.environ.setdefault("ADMIN_IDS", "123456789")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("QR_TOKEN_PEPPER", "test-pepper")

# ── Third-party ───────────────────────────────────────────────────────────────
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# ── Gate imports (safe after env vars are set) ────────────────────────────────
from gatebot.models.base import Base
from gatebot.models.models import Event, Registration, RegistrationStatus
from gatebot.services.access_service import AccessControlService
from gatebot.services.collaborators import SqlAttendanceRecorder, SqlRegistrationDirectory
from gatebot.services.issuer import CodeIssuer
from gatebot.services.regeneration import RegenerationCoordinator
from gatebot.services.scan_validator import ScanValidator

T0 = datetime(2026, 5, 14, 9, 0, 0)


# ── Clock ─────────────────────────────────────────────────────────────────────

class FakeClock:
    """Callable clock the services accept in place of utcnow()."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ── DB fixtures ───────────────────────────────────────────────────────────────

@pytest.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """
    Session factory over a throw-away SQLite file.

    A file (not :memory:) so that concurrent sessions see the same database and
    the conditional UPDATEs in the scan path really race each other.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'gate.db'}",
        echo=False,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    finally:
        await engine.dispose()


@pytest.fixture
async def async_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ── Seed helpers ──────────────────────────────────────────────────────────────

@pytest.fixture
def seed(session_factory):
    """
    Factory fixture — creates an event + registration and returns their ids.

        event_id, registration_id = await seed()
        _, other_reg = await seed(event_id=event_id, status="pending")
    """

    async def _seed(
        event_id: Optional[int] = None,
        status: str = RegistrationStatus.APPROVED,
        event_end: Optional[datetime] = None,
        name: str = "Ada Lovelace",
    ) -> tuple[int, int]:
        async with session_factory() as session:
            if event_id is None:
                event = Event(
                    name="TradeConnect Expo",
                    starts_at=T0,
                    ends_at=event_end or T0 + timedelta(hours=8),
                )
                session.add(event)
                await session.flush()
                event_id = event.id
            reg = Registration(event_id=event_id, attendee_name=name, status=status)
            session.add(reg)
            await session.commit()
            return event_id, reg.id

    return _seed


# ── Service fixtures ──────────────────────────────────────────────────────────

@pytest.fixture
def issuer(session_factory, clock) -> CodeIssuer:
    return CodeIssuer(SqlRegistrationDirectory(session_factory), clock=clock)


@pytest.fixture
def validator(session_factory, clock) -> ScanValidator:
    return ScanValidator(
        session_factory,
        attendance=SqlAttendanceRecorder(session_factory),
        clock=clock,
    )


@pytest.fixture
def access(session_factory, issuer, validator, clock) -> AccessControlService:
    return AccessControlService(
        session_factory,
        issuer=issuer,
        validator=validator,
        regenerator=RegenerationCoordinator(issuer, clock=clock),
        clock=clock,
    )


# ── Mock helpers ──────────────────────────────────────────────────────────────

class _MockCode:
    """Minimal code object for state-machine tests (no DB required)."""

    def __init__(
        self,
        status: str = "active",
        expires_at: datetime = T0 + timedelta(hours=1),
        usage_count: int = 0,
    ) -> None:
        self.status      = status
        self.expires_at  = expires_at
        self.usage_count = usage_count


@pytest.fixture
def make_code():
    """Factory fixture — returns a callable that builds a _MockCode."""
    return _MockCode

"""
Code issuer — creates the single active access code for an approved registration.

The issuer only flushes; committing is left to the caller so that regeneration
can invalidate the old code and issue the new one in a single transaction.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gatebot.models.models import AccessCode, CodeStatus, as_naive_utc, utcnow
from gatebot.services.anchor_service import IntegrityAnchor
from gatebot.services.collaborators import RegistrationDirectory
from gatebot.services.outcomes import Failure, ReasonCode, TokenCollisionError
from gatebot.services.qr_service import hash_token, make_qr_token
from gatebot.services.state_machine import is_expired

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedCode:
    """A persisted code together with its one-time-visible token."""
    code:  AccessCode
    token: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "codeId":    self.code.id,
            "token":     self.token,
            "expiresAt": self.code.expires_at.isoformat(),
            "status":    self.code.status,
        }


async def get_active_code(session: AsyncSession, registration_id: int) -> Optional[AccessCode]:
    """The stored-active code of a registration (may be logically expired)."""
    result = await session.execute(
        select(AccessCode).where(
            AccessCode.registration_id == registration_id,
            AccessCode.status == CodeStatus.ACTIVE.value,
        )
    )
    return result.scalar_one_or_none()


async def mark_expired(session: AsyncSession, code: AccessCode, now: datetime) -> bool:
    """Materialize lazy expiry. Conditional, so a concurrent transition wins."""
    result = await session.execute(
        update(AccessCode)
        .where(
            AccessCode.id == code.id,
            AccessCode.status == CodeStatus.ACTIVE.value,
            AccessCode.expires_at <= now,
        )
        .values(status=CodeStatus.EXPIRED.value)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        code.status = CodeStatus.EXPIRED.value
    return bool(result.rowcount)


class CodeIssuer:
    def __init__(
        self,
        registrations: RegistrationDirectory,
        anchor: Optional[IntegrityAnchor] = None,
        default_validity: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._registrations    = registrations
        self._anchor           = anchor
        self._default_validity = default_validity
        self._clock            = clock

    async def issue(
        self,
        session: AsyncSession,
        registration_id: int,
        expires_at: Optional[datetime] = None,
        metadata: Optional[dict[str, Any]] = None,
        issued_by: Optional[int] = None,
        replaces_id: Optional[str] = None,
    ) -> Tuple[Optional[IssuedCode], Optional[Failure]]:
        """
        Issue a new active code.
        Returns (issued, failure); exactly one of them is None.

        On a storage-level uniqueness race the session is rolled back, which
        discards anything else the caller had pending in it.
        """
        now = self._clock()
        expires_at = as_naive_utc(expires_at)

        if expires_at is not None and expires_at <= now:
            return None, Failure.of(ReasonCode.INVALID_EXPIRY)

        if not await self._registrations.is_approved(registration_id):
            return None, Failure.of(ReasonCode.REGISTRATION_NOT_APPROVED)

        existing = await get_active_code(session, registration_id)
        if existing is not None:
            if not is_expired(existing, now):
                return None, Failure.of(ReasonCode.CODE_ALREADY_EXISTS)
            await mark_expired(session, existing, now)

        event_id = await self._registrations.get_event(registration_id)
        if expires_at is None:
            expires_at = await self._default_expiry(registration_id, now)

        token, token_hash = await self._unique_token(session, registration_id)

        code = AccessCode(
            registration_id=registration_id,
            event_id=event_id,
            token_hash=token_hash,
            status=CodeStatus.ACTIVE.value,
            issued_at=now,
            expires_at=expires_at,
            usage_count=0,
            issued_by=issued_by,
            replaces_id=replaces_id,
            meta=dict(metadata or {}),
        )
        session.add(code)
        try:
            await session.flush()
        except IntegrityError:
            await session.rollback()
            logger.warning("Concurrent issuance for registration %d lost the race", registration_id)
            return None, Failure.of(ReasonCode.CODE_ALREADY_EXISTS)

        if self._anchor is not None:
            await self._anchor.enqueue(session, code)

        logger.info(
            "Access code %s issued for registration %d (expires %s)",
            code.id, registration_id, expires_at.isoformat(),
        )
        return IssuedCode(code=code, token=token), None

    async def _default_expiry(self, registration_id: int, now: datetime) -> datetime:
        """Later of the event end and now + the policy window."""
        floor = now + self._default_validity
        event_end = await self._registrations.get_event_end(registration_id)
        if event_end is not None and event_end > floor:
            return event_end
        return floor

    async def _unique_token(self, session: AsyncSession, registration_id: int) -> Tuple[str, str]:
        for attempt in range(2):
            token = make_qr_token(registration_id)
            token_hash = hash_token(token)
            taken = await session.execute(
                select(AccessCode.id).where(AccessCode.token_hash == token_hash)
            )
            if taken.scalar_one_or_none() is None:
                return token, token_hash
            logger.warning(
                "Token hash collision for registration %d (attempt %d)", registration_id, attempt + 1
            )
        raise TokenCollisionError(f"could not generate a unique token for registration {registration_id}")

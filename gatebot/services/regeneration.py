"""
Regeneration and invalidation of access codes.

Regeneration is the only way a registration ends up with more than one code
row: the active code is invalidated (with reason, time and actor) and flushed
*before* the replacement is inserted, inside the same transaction, so the
partial unique index never sees two active codes for one registration.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from gatebot.models.models import AccessCode, CodeStatus, as_naive_utc, utcnow
from gatebot.services.issuer import CodeIssuer, IssuedCode, get_active_code
from gatebot.services.outcomes import Failure, ReasonCode
from gatebot.services.state_machine import can_transition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Regeneration:
    old_code: AccessCode
    new_code: IssuedCode

    def as_dict(self) -> dict[str, Any]:
        return {
            "oldCode": {
                "codeId":             self.old_code.id,
                "status":             self.old_code.status,
                "invalidationReason": self.old_code.invalidation_reason,
            },
            "newCode": self.new_code.as_dict(),
        }


async def _invalidate_row(
    session: AsyncSession,
    code: AccessCode,
    reason: str,
    invalidated_by: Optional[int],
    now: datetime,
) -> bool:
    """CAS active → invalidated. False if another transition got there first."""
    result = await session.execute(
        update(AccessCode)
        .where(AccessCode.id == code.id, AccessCode.status == CodeStatus.ACTIVE.value)
        .values(
            status=CodeStatus.INVALIDATED.value,
            invalidation_reason=reason,
            invalidated_at=now,
            invalidated_by=invalidated_by,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    await session.flush()
    await session.refresh(code)
    return True


class RegenerationCoordinator:
    def __init__(self, issuer: CodeIssuer, clock: Callable[[], datetime] = utcnow) -> None:
        self._issuer = issuer
        self._clock  = clock

    async def regenerate(
        self,
        session: AsyncSession,
        registration_id: int,
        reason: str,
        expires_at: Optional[datetime] = None,
        regenerated_by: Optional[int] = None,
    ) -> Tuple[Optional[Regeneration], Optional[Failure]]:
        """
        Supersede the active code of a registration.
        The caller commits; on failure the caller should roll back.
        """
        now = self._clock()
        expires_at = as_naive_utc(expires_at)
        if expires_at is not None and expires_at <= now:
            return None, Failure.of(ReasonCode.INVALID_EXPIRY)

        old = await get_active_code(session, registration_id)
        if old is None:
            return None, Failure.of(ReasonCode.ACTIVE_CODE_NOT_FOUND)

        if not await _invalidate_row(session, old, reason, regenerated_by, now):
            return None, Failure.of(ReasonCode.ACTIVE_CODE_NOT_FOUND)

        issued, failure = await self._issuer.issue(
            session,
            registration_id,
            expires_at=expires_at,
            metadata=dict(old.meta or {}),
            issued_by=regenerated_by,
            replaces_id=old.id,
        )
        if failure is not None:
            return None, failure

        logger.info(
            "Registration %d: code %s replaced by %s (%s)",
            registration_id, old.id, issued.code.id, reason,
        )
        return Regeneration(old_code=old, new_code=issued), None

    async def invalidate(
        self,
        session: AsyncSession,
        code_id: str,
        reason: str,
        invalidated_by: Optional[int] = None,
    ) -> Tuple[Optional[AccessCode], Optional[Failure]]:
        """Revoke one code without issuing a replacement. The caller commits."""
        code = (
            await session.execute(select(AccessCode).where(AccessCode.id == code_id))
        ).scalar_one_or_none()
        if code is None:
            return None, Failure.of(ReasonCode.CODE_NOT_FOUND)

        if not can_transition(code.status, CodeStatus.INVALIDATED):
            return None, Failure.of(ReasonCode.INVALID_TRANSITION)

        if not await _invalidate_row(session, code, reason, invalidated_by, self._clock()):
            return None, Failure.of(ReasonCode.INVALID_TRANSITION)

        logger.info("Access code %s invalidated: %s", code.id, reason)
        return code, None


async def codes_for_registration(session: AsyncSession, registration_id: int) -> List[AccessCode]:
    """Full code history of a registration, newest first."""
    result = await session.execute(
        select(AccessCode)
        .where(AccessCode.registration_id == registration_id)
        .order_by(AccessCode.issued_at.desc(), AccessCode.id)
    )
    return list(result.scalars().all())

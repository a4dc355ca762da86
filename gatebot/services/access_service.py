"""
AccessControlService — the one object the bot (or any other transport) talks to.

Owns the unit of work for the mutating operations: each call opens a session,
runs the coordinator, and commits on success / rolls back on a business
failure. Results are plain dicts so a handler can render or serialise them
without touching ORM objects.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gatebot.config import settings
from gatebot.models.models import AccessCode, utcnow
from gatebot.services.anchor_service import IntegrityAnchor, build_integrity_anchor
from gatebot.services.collaborators import (
    ScanContext,
    SqlAttendanceRecorder,
    SqlRegistrationDirectory,
)
from gatebot.services.issuer import CodeIssuer
from gatebot.services.outcomes import Failure, ReasonCode, ValidationResult
from gatebot.services.regeneration import RegenerationCoordinator, codes_for_registration
from gatebot.services.scan_validator import ScanValidator
from gatebot.services.stats_service import code_stats, scan_stats
from gatebot.services.throttle import SlidingWindowLimiter
from gatebot.validators import (
    InvalidateRequest,
    IssueRequest,
    RegenerateRequest,
    ScanRequest,
)

logger = logging.getLogger(__name__)


def input_failure(error: ValidationError) -> Failure:
    """First pydantic error as an INVALID_INPUT failure."""
    first = error.errors()[0]
    field = ".".join(str(part) for part in first["loc"]) or "request"
    return Failure.of(ReasonCode.INVALID_INPUT, f"{field}: {first['msg']}")


def code_summary(code: AccessCode) -> dict[str, Any]:
    return {
        "codeId":             code.id,
        "registrationId":     code.registration_id,
        "eventId":            code.event_id,
        "status":             code.status,
        "issuedAt":           code.issued_at.isoformat(),
        "expiresAt":          code.expires_at.isoformat(),
        "usageCount":         code.usage_count,
        "lastUsedAt":         code.last_used_at.isoformat() if code.last_used_at else None,
        "invalidationReason": code.invalidation_reason,
        "replacesId":         code.replaces_id,
    }


class AccessControlService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        issuer: CodeIssuer,
        validator: ScanValidator,
        regenerator: RegenerationCoordinator,
        anchor: Optional[IntegrityAnchor] = None,
        scan_timeout: float = 5.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session_factory = session_factory
        self.issuer          = issuer
        self.validator       = validator
        self.regenerator     = regenerator
        self.anchor          = anchor
        self._scan_timeout   = scan_timeout
        self._clock          = clock

    # ── Issuance ──────────────────────────────────────────────────────────────

    async def issue(
        self,
        registration_id: int,
        expires_at: Optional[datetime] = None,
        metadata: Optional[dict[str, Any]] = None,
        issued_by: Optional[int] = None,
    ) -> dict[str, Any]:
        try:
            request = IssueRequest(
                registration_id=registration_id, expires_at=expires_at, metadata=metadata or {}
            )
        except ValidationError as e:
            return input_failure(e).as_dict()

        async with self.session_factory() as session:
            issued, failure = await self.issuer.issue(
                session,
                request.registration_id,
                expires_at=request.expires_at,
                metadata=request.metadata,
                issued_by=issued_by,
            )
            if failure is not None:
                await session.rollback()
                return failure.as_dict()
            await session.commit()
        return issued.as_dict()

    # ── Scanning ──────────────────────────────────────────────────────────────

    async def validate(
        self,
        token: str,
        event_id: int,
        access_point: str,
        device_info: Optional[dict[str, Any]] = None,
        location: Optional[dict[str, Any]] = None,
        scanned_by: Optional[int] = None,
        verify_anchor: bool = False,
    ) -> dict[str, Any]:
        try:
            request = ScanRequest(
                token=token,
                event_id=event_id,
                access_point=access_point,
                device_info=device_info,
                location=location,
            )
        except ValidationError as e:
            # A malformed token is a denial, not an error; nothing is stored
            if any(err["loc"][:1] == ("token",) for err in e.errors()):
                return ValidationResult.denied(ReasonCode.INVALID_HASH_FORMAT).as_dict()
            logger.info("Scan request rejected: %s", input_failure(e).message)
            return ValidationResult.denied(ReasonCode.INVALID_INPUT).as_dict()

        result = await self.validate_result(
            request.token, request.event_id,
            ScanContext(
                access_point=request.access_point,
                device_info=request.device_info,
                location=request.location,
                scanned_by=scanned_by,
            ),
            verify_anchor=verify_anchor,
        )
        return result.as_dict()

    async def validate_result(
        self,
        token: str,
        event_id: int,
        context: ScanContext,
        verify_anchor: bool = False,
    ) -> ValidationResult:
        """
        Same as validate() but returns the ValidationResult for rendering.

        The scan timeout bounds the grant decision only; attendance and the
        anchor check run after it and cannot turn a grant into an error.
        """
        return await self.validator.validate(
            token, event_id, context,
            verify_anchor=verify_anchor,
            timeout=self._scan_timeout,
        )

    # ── Regeneration / invalidation ───────────────────────────────────────────

    async def regenerate(
        self,
        registration_id: int,
        reason: str,
        expires_at: Optional[datetime] = None,
        regenerated_by: Optional[int] = None,
    ) -> dict[str, Any]:
        try:
            request = RegenerateRequest(registration_id=registration_id, reason=reason, expires_at=expires_at)
        except ValidationError as e:
            return input_failure(e).as_dict()

        async with self.session_factory() as session:
            regen, failure = await self.regenerator.regenerate(
                session,
                request.registration_id,
                request.reason,
                expires_at=request.expires_at,
                regenerated_by=regenerated_by,
            )
            if failure is not None:
                await session.rollback()
                return failure.as_dict()
            await session.commit()
        return regen.as_dict()

    async def invalidate(
        self,
        code_id: str,
        reason: str,
        invalidated_by: Optional[int] = None,
    ) -> dict[str, Any]:
        try:
            request = InvalidateRequest(code_id=code_id, reason=reason)
        except ValidationError as e:
            return input_failure(e).as_dict()

        async with self.session_factory() as session:
            code, failure = await self.regenerator.invalidate(
                session, request.code_id, request.reason, invalidated_by=invalidated_by
            )
            if failure is not None:
                await session.rollback()
                return failure.as_dict()
            await session.commit()
        return {"codeId": code.id, "status": code.status}

    # ── Read side ─────────────────────────────────────────────────────────────

    async def stats(self, event_id: int, now: Optional[datetime] = None) -> dict[str, Any]:
        async with self.session_factory() as session:
            codes = await code_stats(session, event_id, now=now or self._clock())
            scans = await scan_stats(session, event_id)
        return {
            "eventId": event_id,
            "codes":   dict(codes.by_status, total=codes.total),
            "scans": {
                "total":    scans.total_attempts,
                "granted":  scans.granted,
                "denied":   scans.denied,
                "errors":   scans.errors,
                "byReason": dict(scans.by_reason),
            },
        }

    async def codes_for_registration(self, registration_id: int) -> list[dict[str, Any]]:
        async with self.session_factory() as session:
            codes = await codes_for_registration(session, registration_id)
        return [code_summary(c) for c in codes]

    async def verify_anchor(self, code_id: str) -> dict[str, Any]:
        async with self.session_factory() as session:
            code = (
                await session.execute(select(AccessCode).where(AccessCode.id == code_id))
            ).scalar_one_or_none()
        if code is None:
            return Failure.of(ReasonCode.CODE_NOT_FOUND).as_dict()
        if self.anchor is None:
            return {"codeId": code_id, "status": "unknown", "anchored": None,
                    "anchoredAt": None, "tamperEvidence": None}
        verification = await self.anchor.verify_code(code)
        return dict(verification.as_dict(), codeId=code_id)


def build_access_service(
    session_factory: async_sessionmaker[AsyncSession],
    clock: Callable[[], datetime] = utcnow,
) -> AccessControlService:
    """Wire the default SQL collaborators and settings-driven policy."""
    anchor    = build_integrity_anchor()
    directory = SqlRegistrationDirectory(session_factory)
    issuer = CodeIssuer(
        directory,
        anchor=anchor,
        default_validity=timedelta(hours=settings.QR_DEFAULT_VALIDITY_HOURS),
        clock=clock,
    )
    validator = ScanValidator(
        session_factory,
        attendance=SqlAttendanceRecorder(session_factory),
        anchor=anchor,
        throttle=SlidingWindowLimiter(settings.SCAN_RATE_LIMIT, settings.SCAN_RATE_PERIOD),
        reuse_allowed=settings.QR_ALLOW_REUSE,
        max_attendance_retries=settings.ATTENDANCE_MAX_RETRIES,
        clock=clock,
    )
    return AccessControlService(
        session_factory,
        issuer=issuer,
        validator=validator,
        regenerator=RegenerationCoordinator(issuer, clock=clock),
        anchor=anchor,
        scan_timeout=settings.SCAN_TIMEOUT_SECONDS,
        clock=clock,
    )

"""
Scan validator — decides grant/deny for a presented token at an access point.

Pipeline
--------
1. normalize + format check            → INVALID_HASH_FORMAT (no storage, no log row)
2. per-access-point throttle           → RATE_LIMITED
3. keyed hash + lookup                 → QR_NOT_FOUND
4. event binding                       → EVENT_MISMATCH
5. state-machine predicate             → QR_EXPIRED / QR_ALREADY_USED / QR_INVALIDATED
6. compare-and-swap on the code row    → at most one grant per single-use code
7. append ScanAttempt, commit

Only steps 3-7 run under the scan timeout. Attendance and the optional anchor
check come after the decision is committed and can only annotate it.

Every scan runs in its own session. The CAS in step 6 is a conditional UPDATE,
so concurrent scans on several bot instances still grant a single-use code once.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gatebot.models.models import (
    AccessCode,
    AttendanceRetry,
    AttendanceRetryStatus,
    CodeStatus,
    ScanAttempt,
    ScanOutcome,
    ScanReview,
    utcnow,
)
from gatebot.services.anchor_service import AnchorStatus, AnchorVerification, IntegrityAnchor
from gatebot.services.collaborators import AttendanceRecorder, ScanContext
from gatebot.services.issuer import mark_expired
from gatebot.services.outcomes import ReasonCode, ValidationResult
from gatebot.services.qr_service import hash_token, normalize_token, validate_token_format
from gatebot.services.state_machine import denial_reason, status_after_scan
from gatebot.services.throttle import SlidingWindowLimiter

logger = logging.getLogger(__name__)


class ScanValidator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        attendance: Optional[AttendanceRecorder] = None,
        anchor: Optional[IntegrityAnchor] = None,
        throttle: Optional[SlidingWindowLimiter] = None,
        reuse_allowed: bool = False,
        max_attendance_retries: int = 10,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory        = session_factory
        self._attendance             = attendance
        self._anchor                 = anchor
        self._throttle               = throttle
        self._reuse_allowed          = reuse_allowed
        self._max_attendance_retries = max_attendance_retries
        self._clock                  = clock

    async def validate(
        self,
        token: str,
        event_id: int,
        context: ScanContext,
        verify_anchor: bool = False,
        timeout: Optional[float] = None,
    ) -> ValidationResult:
        """
        Decide one scan. ``timeout`` bounds the decision and its commit only;
        a decision that timed out is reported as a retryable INTERNAL_ERROR.
        """
        token = normalize_token(token or "")
        if not validate_token_format(token):
            return ValidationResult.denied(ReasonCode.INVALID_HASH_FORMAT)

        token_hash = hash_token(token)

        if self._throttle is not None and not self._throttle.hit(context.access_point):
            await self._log_attempt_safely(
                token_hash, event_id, context, ScanOutcome.DENIED, ReasonCode.RATE_LIMITED
            )
            return ValidationResult.denied(ReasonCode.RATE_LIMITED)

        try:
            result, attempt_id, code = await asyncio.wait_for(
                self._check_and_commit(token_hash, event_id, context), timeout
            )
        except asyncio.TimeoutError:
            logger.error("Scan decision at %s exceeded %.1fs", context.access_point, timeout)
            await self._log_attempt_safely(
                token_hash, event_id, context, ScanOutcome.ERROR, ReasonCode.INTERNAL_ERROR
            )
            return ValidationResult.internal_error()
        except SQLAlchemyError:
            logger.exception("Storage failure while validating a scan at %s", context.access_point)
            await self._log_attempt_safely(
                token_hash, event_id, context, ScanOutcome.ERROR, ReasonCode.INTERNAL_ERROR
            )
            return ValidationResult.internal_error()

        if not result.is_valid:
            logger.info(
                "Access denied (%s) for event %d at %s",
                result.reason.value, event_id, context.access_point,
            )
            return result

        logger.info(
            "Access granted: code %s, registration %d, event %d at %s",
            code.id, code.registration_id, event_id, context.access_point,
        )
        # Committed; from here on the grant stands whatever happens
        await self._record_attendance(code, event_id, context)
        if verify_anchor and self._anchor is not None and code.anchor_hash:
            await self._check_anchor(result, code, attempt_id)
        return result

    # ── Decision + commit ─────────────────────────────────────────────────────

    async def _check_and_commit(
        self,
        token_hash: str,
        event_id: int,
        context: ScanContext,
    ) -> Tuple[ValidationResult, int, Optional[AccessCode]]:
        now = self._clock()
        async with self._session_factory() as session:
            code = (
                await session.execute(select(AccessCode).where(AccessCode.token_hash == token_hash))
            ).scalar_one_or_none()

            if code is None:
                reason: Optional[ReasonCode] = ReasonCode.QR_NOT_FOUND
            elif code.event_id != event_id:
                reason = ReasonCode.EVENT_MISMATCH
            else:
                reason = denial_reason(code, now, self._reuse_allowed)
                if reason is None and not await self._compare_and_swap(session, code, now):
                    # Lost a race: report whatever state the winner left behind
                    await session.refresh(code)
                    reason = denial_reason(code, now, self._reuse_allowed) or ReasonCode.QR_ALREADY_USED
                if reason is ReasonCode.QR_EXPIRED:
                    await mark_expired(session, code, now)

            attempt = ScanAttempt(
                scanned_at=now,
                token_presented=token_hash,
                access_code_id=code.id if code else None,
                event_id=event_id,
                access_point=context.access_point,
                device_info=context.device_info,
                location=context.location,
                scanned_by=context.scanned_by,
                outcome=ScanOutcome.GRANTED if reason is None else ScanOutcome.DENIED,
                reason=reason.value if reason else None,
            )
            session.add(attempt)
            await session.commit()

        if reason is not None:
            return ValidationResult.denied(reason), attempt.id, code
        return (
            ValidationResult.granted(
                registration_id=code.registration_id,
                code_id=code.id,
                usage_count=code.usage_count,
                metadata=dict(code.meta or {}),
            ),
            attempt.id,
            code,
        )

    async def _compare_and_swap(self, session: AsyncSession, code: AccessCode, now: datetime) -> bool:
        """Commit the scan on the row only if it is still eligible. True on success."""
        conditions = [
            AccessCode.id == code.id,
            AccessCode.status == CodeStatus.ACTIVE.value,
            AccessCode.expires_at > now,
        ]
        if not self._reuse_allowed:
            conditions.append(AccessCode.usage_count == 0)

        result = await session.execute(
            update(AccessCode)
            .where(*conditions)
            .values(
                status=status_after_scan(self._reuse_allowed).value,
                usage_count=AccessCode.usage_count + 1,
                last_used_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        await session.refresh(code)
        return True

    # ── Side effects after a grant ────────────────────────────────────────────

    async def _record_attendance(self, code: AccessCode, event_id: int, context: ScanContext) -> None:
        if self._attendance is None:
            return
        try:
            await self._attendance.record_attendance(code.registration_id, event_id, code.id, context)
        except Exception as e:
            # The attendance collaborator is opaque; any failure is queued
            logger.warning(
                "Attendance for registration %d not recorded, queued for retry: %s",
                code.registration_id, e,
            )
            await self._queue_attendance(code, event_id, context, str(e))

    async def _queue_attendance(
        self,
        code: AccessCode,
        event_id: int,
        context: ScanContext,
        error: str,
    ) -> None:
        try:
            async with self._session_factory() as session:
                session.add(AttendanceRetry(
                    registration_id=code.registration_id,
                    event_id=event_id,
                    access_code_id=code.id,
                    access_point=context.access_point,
                    scanned_by=context.scanned_by,
                    last_error=error,
                    last_attempt_at=self._clock(),
                ))
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Could not queue attendance for registration %d", code.registration_id)

    async def pending_attendance(self) -> int:
        """Queued attendance records still waiting for a replay."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count())
                .select_from(AttendanceRetry)
                .where(AttendanceRetry.status == AttendanceRetryStatus.PENDING)
            )
            return result.scalar_one()

    async def retry_pending_attendance(self, limit: int = 50) -> int:
        """
        Replay queued attendance records. Returns how many went through.
        A record that keeps failing is marked failed after
        ``max_attendance_retries`` replays.
        """
        if self._attendance is None:
            return 0
        done = 0
        async with self._session_factory() as session:
            result = await session.execute(
                select(AttendanceRetry)
                .where(
                    AttendanceRetry.status == AttendanceRetryStatus.PENDING,
                    AttendanceRetry.retry_count < self._max_attendance_retries,
                )
                .order_by(AttendanceRetry.id)
                .limit(limit)
            )
            for record in result.scalars().all():
                record.last_attempt_at = self._clock()
                try:
                    await self._attendance.record_attendance(
                        record.registration_id,
                        record.event_id,
                        record.access_code_id,
                        ScanContext(access_point=record.access_point, scanned_by=record.scanned_by),
                    )
                except Exception as e:
                    record.retry_count += 1
                    record.last_error = str(e)
                    if record.retry_count >= self._max_attendance_retries:
                        record.status = AttendanceRetryStatus.FAILED
                        logger.error(
                            "Attendance for registration %d given up after %d retries: %s",
                            record.registration_id, record.retry_count, e,
                        )
                    else:
                        logger.warning(
                            "Attendance retry %d failed for registration %d: %s",
                            record.retry_count, record.registration_id, e,
                        )
                    continue
                record.status = AttendanceRetryStatus.DONE
                done += 1
            await session.commit()
        return done

    async def _check_anchor(self, result: ValidationResult, code: AccessCode, attempt_id: int) -> None:
        """Advisory: a mismatch flags the scan for review but never revokes the grant."""
        try:
            verification = await asyncio.wait_for(self._anchor.verify_code(code), self._anchor.timeout)
        except asyncio.TimeoutError:
            logger.warning("Anchor check for code %s timed out; status unknown", code.id)
            verification = AnchorVerification(status=AnchorStatus.UNKNOWN)
        except Exception:
            logger.exception("Anchor check for code %s failed; status unknown", code.id)
            verification = AnchorVerification(status=AnchorStatus.UNKNOWN)

        result.anchor_status = verification.status.value
        if verification.status is not AnchorStatus.MISMATCHED:
            return

        result.needs_review = True
        logger.warning("Anchor mismatch on granted code %s: %s", code.id, verification.tamper_evidence)
        try:
            async with self._session_factory() as session:
                session.add(ScanReview(
                    scan_attempt_id=attempt_id,
                    access_code_id=code.id,
                    anchor_status=verification.status.value,
                    evidence=verification.tamper_evidence,
                ))
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Could not store review flag for scan %d", attempt_id)

    # ── Audit rows outside the main transaction ───────────────────────────────

    async def _log_attempt_safely(
        self,
        token_hash: str,
        event_id: int,
        context: ScanContext,
        outcome: str,
        reason: ReasonCode,
    ) -> None:
        try:
            async with self._session_factory() as session:
                session.add(ScanAttempt(
                    scanned_at=self._clock(),
                    token_presented=token_hash,
                    event_id=event_id,
                    access_point=context.access_point,
                    device_info=context.device_info,
                    location=context.location,
                    scanned_by=context.scanned_by,
                    outcome=outcome,
                    reason=reason.value,
                ))
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Could not write scan attempt (%s)", reason.value)

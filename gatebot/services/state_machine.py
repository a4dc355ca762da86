"""
Access-code lifecycle rules.

    active ──scan (single-use)──▶ used
      │  └─scan (reuse allowed)─▶ active
      ├──now ≥ expires_at──────▶ expired
      └──invalidate/regenerate─▶ invalidated

``used``, ``expired`` and ``invalidated`` are terminal. Regenerating an expired
code issues a *new* code instead of reviving the old one.

Everything here is pure: functions take any object exposing ``status``,
``expires_at`` and ``usage_count`` plus an explicit ``now`` and never mutate it,
so eligibility checks can run as often as needed (dry runs, tests) before the
scan validator commits anything.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from gatebot.models.models import CodeStatus
from gatebot.services.outcomes import ReasonCode


class CodeLike(Protocol):
    status:      str
    expires_at:  datetime
    usage_count: int


TERMINAL_STATES: frozenset[CodeStatus] = frozenset({
    CodeStatus.USED,
    CodeStatus.EXPIRED,
    CodeStatus.INVALIDATED,
})

TRANSITIONS: dict[CodeStatus, frozenset[CodeStatus]] = {
    CodeStatus.ACTIVE: frozenset({
        CodeStatus.ACTIVE,         # reusable scan: usage_count grows, state stays
        CodeStatus.USED,
        CodeStatus.EXPIRED,
        CodeStatus.INVALIDATED,
    }),
    CodeStatus.USED:        frozenset(),
    CodeStatus.EXPIRED:     frozenset(),
    CodeStatus.INVALIDATED: frozenset(),
}

_STATUS_REASONS: dict[CodeStatus, ReasonCode] = {
    CodeStatus.USED:        ReasonCode.QR_ALREADY_USED,
    CodeStatus.EXPIRED:     ReasonCode.QR_EXPIRED,
    CodeStatus.INVALIDATED: ReasonCode.QR_INVALIDATED,
}


def can_transition(src: str, dst: str) -> bool:
    """True if ``src → dst`` is an allowed forward transition."""
    return CodeStatus(dst) in TRANSITIONS[CodeStatus(src)]


def is_expired(code: CodeLike, now: datetime) -> bool:
    return now >= code.expires_at


def effective_status(code: CodeLike, now: datetime) -> CodeStatus:
    """
    Status as it should be read at ``now``.
    A stored ``active`` code past its expiry is logically ``expired``.
    """
    status = CodeStatus(code.status)
    if status is CodeStatus.ACTIVE and is_expired(code, now):
        return CodeStatus.EXPIRED
    return status


def is_valid_for_scan(code: CodeLike, now: datetime, reuse_allowed: bool = False) -> bool:
    return (
        CodeStatus(code.status) is CodeStatus.ACTIVE
        and now < code.expires_at
        and (reuse_allowed or code.usage_count == 0)
    )


def denial_reason(
    code: CodeLike,
    now: datetime,
    reuse_allowed: bool = False,
) -> Optional[ReasonCode]:
    """Reason a scan of ``code`` at ``now`` must be refused, or None if it may pass."""
    status = effective_status(code, now)
    if status is not CodeStatus.ACTIVE:
        return _STATUS_REASONS[status]
    # Single-use code that was counted but never flipped to used
    if not reuse_allowed and code.usage_count > 0:
        return ReasonCode.QR_ALREADY_USED
    return None


def status_after_scan(reuse_allowed: bool) -> CodeStatus:
    return CodeStatus.ACTIVE if reuse_allowed else CodeStatus.USED

"""
Access statistics and audit analytics for an event.

Metrics computed
----------------
- Access codes by *effective* status (lazy expiry applied at read time)
- Scan attempts: granted / denied / error, and denials by reason code
- Suspicious patterns inside a time window:
    * access points with repeated denials
    * codes presented unusually often
- Retention purge of old scan attempts
"""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import delete, exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from gatebot.models.models import (
    CODE_STATUS_LABELS,
    AccessCode,
    CodeStatus,
    ScanAttempt,
    ScanOutcome,
    ScanReview,
    utcnow,
)
from gatebot.services.state_machine import effective_status

REPEATED_FAILURE_THRESHOLD = 5
RAPID_PRESENTATION_THRESHOLD = 10


@dataclass
class CodeStats:
    event_id:  int
    by_status: Dict[str, int] = field(
        default_factory=lambda: {s.value: 0 for s in CodeStatus}
    )

    @property
    def total(self) -> int:
        return sum(self.by_status.values())


@dataclass
class ScanStats:
    event_id:       int
    total_attempts: int            = 0
    granted:        int            = 0
    denied:         int            = 0
    errors:         int            = 0
    by_reason:      Dict[str, int] = field(default_factory=dict)

    @property
    def grant_rate_pct(self) -> float:
        if self.total_attempts == 0:
            return 0.0
        return round(self.granted / self.total_attempts * 100, 1)


@dataclass
class SuspiciousReport:
    window_minutes:      int
    repeated_failures:   List[Tuple[str, int]] = field(default_factory=list)   # (access point, denials)
    rapid_presentations: List[Tuple[str, int]] = field(default_factory=list)   # (code id, attempts)

    @property
    def is_clean(self) -> bool:
        return not self.repeated_failures and not self.rapid_presentations


async def code_stats(
    session: AsyncSession,
    event_id: int,
    now: Optional[datetime] = None,
) -> CodeStats:
    now = now or utcnow()
    rows = await session.execute(
        select(AccessCode.status, AccessCode.expires_at, AccessCode.usage_count)
        .where(AccessCode.event_id == event_id)
    )
    stats = CodeStats(event_id=event_id)
    for status, expires_at, usage_count in rows:
        row = _Row(status, expires_at, usage_count)
        stats.by_status[effective_status(row, now).value] += 1
    return stats


@dataclass
class _Row:
    status:      str
    expires_at:  datetime
    usage_count: int


async def scan_stats(
    session: AsyncSession,
    event_id: int,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
) -> ScanStats:
    q = (
        select(ScanAttempt.outcome, ScanAttempt.reason, func.count())
        .where(ScanAttempt.event_id == event_id)
        .group_by(ScanAttempt.outcome, ScanAttempt.reason)
    )
    if since:
        q = q.where(ScanAttempt.scanned_at >= since)
    if until:
        q = q.where(ScanAttempt.scanned_at <= until)

    stats = ScanStats(event_id=event_id)
    for outcome, reason, count in await session.execute(q):
        stats.total_attempts += count
        if outcome == ScanOutcome.GRANTED:
            stats.granted += count
        elif outcome == ScanOutcome.ERROR:
            stats.errors += count
        else:
            stats.denied += count
        if reason:
            stats.by_reason[reason] = stats.by_reason.get(reason, 0) + count
    return stats


async def detect_suspicious_patterns(
    session: AsyncSession,
    event_id: int,
    window_minutes: int = 60,
    now: Optional[datetime] = None,
) -> SuspiciousReport:
    start = (now or utcnow()) - timedelta(minutes=window_minutes)
    rows = await session.execute(
        select(ScanAttempt.access_point, ScanAttempt.access_code_id, ScanAttempt.outcome)
        .where(ScanAttempt.event_id == event_id, ScanAttempt.scanned_at >= start)
    )

    failures: Counter[str] = Counter()
    presentations: Counter[str] = Counter()
    for access_point, code_id, outcome in rows:
        if outcome != ScanOutcome.GRANTED:
            failures[access_point] += 1
        if code_id:
            presentations[code_id] += 1

    return SuspiciousReport(
        window_minutes=window_minutes,
        repeated_failures=[
            (ap, n) for ap, n in failures.most_common() if n >= REPEATED_FAILURE_THRESHOLD
        ],
        rapid_presentations=[
            (cid, n) for cid, n in presentations.most_common() if n >= RAPID_PRESENTATION_THRESHOLD
        ],
    )


async def purge_scan_attempts(session: AsyncSession, older_than: datetime) -> int:
    """Retention: drop attempts older than the cut-off, keeping any under review."""
    result = await session.execute(
        delete(ScanAttempt)
        .where(
            ScanAttempt.scanned_at < older_than,
            ~exists().where(ScanReview.scan_attempt_id == ScanAttempt.id),
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def format_stats_text(codes: CodeStats, scans: ScanStats, event_name: str = "") -> str:
    """Render stats as a Telegram Markdown message."""
    title = event_name or f"Event #{codes.event_id}"
    lines = [
        f"📊 *Access report — {title}*",
        "",
        f"🎫 *Codes:* `{codes.total}`",
    ]
    for status in CodeStatus:
        lines.append(f"  {CODE_STATUS_LABELS[status]}: `{codes.by_status[status.value]}`")

    lines += [
        "",
        f"📷 *Scans:* `{scans.total_attempts}`",
        f"  ✅ Granted: `{scans.granted}` ({scans.grant_rate_pct}%)",
        f"  ❌ Denied: `{scans.denied}`",
        f"  ⚠️ Errors: `{scans.errors}`",
    ]
    if scans.by_reason:
        lines.append("")
        lines.append("*Denials by reason:*")
        for reason, count in sorted(scans.by_reason.items(), key=lambda x: -x[1]):
            lines.append(f"  • `{reason}`: {count}")
    return "\n".join(lines)

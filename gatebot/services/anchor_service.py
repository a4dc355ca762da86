"""
Integrity anchor — optional tamper-evidence side channel.

Code hashes are submitted to an external append-only ledger (a blockchain
notarisation service behind a small HTTP API) so that a disputed scan can later
be checked against what was anchored at issuance time.

The ledger is treated as unreliable:
  - issuance only *queues* a hash (AnchorRecord); a background loop submits it
  - every call is time-bounded and retried with backoff
  - verification failures degrade to ``unknown``, never to ``mismatched``

Ledger HTTP contract
--------------------
POST /anchors          {"hash": h}  → {"receipt_id", "status": "pending"|"confirmed", "anchored_at"?}
GET  /anchors/{hash}                → {"hash", "status", "anchored_at"?}  |  404
"""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Sequence

import httpx
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from gatebot.config import settings
from gatebot.models.models import AccessCode, AnchorRecord, AnchorRecordStatus, utcnow

logger = logging.getLogger(__name__)

RETRY_DELAYS = (0.5, 1.5)


class AnchorStatus(str, enum.Enum):
    UNKNOWN    = "unknown"      # ledger unreachable, disabled, or nothing anchored yet
    PENDING    = "pending"      # submitted, not yet confirmed on the ledger
    CONFIRMED  = "confirmed"    # ledger holds exactly this hash
    MISMATCHED = "mismatched"   # evidence of tampering


class AnchorUnavailableError(Exception):
    """Ledger could not be reached or answered with an unexpected status."""


@dataclass(frozen=True)
class AnchorReceipt:
    code_hash:   str
    receipt_id:  str
    confirmed:   bool
    anchored_at: Optional[datetime] = None


@dataclass(frozen=True)
class AnchorVerification:
    status:          AnchorStatus
    anchored:        Optional[bool]     = None   # None → could not determine
    anchored_at:     Optional[datetime] = None
    tamper_evidence: Optional[str]      = None

    def as_dict(self) -> dict:
        return {
            "status":         self.status.value,
            "anchored":       self.anchored,
            "anchoredAt":     self.anchored_at.isoformat() if self.anchored_at else None,
            "tamperEvidence": self.tamper_evidence,
        }


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return ts.replace(tzinfo=None) if ts.tzinfo else ts


# ── HTTP client ───────────────────────────────────────────────────────────────

class LedgerClient:
    """Async HTTP client for the anchoring ledger."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 2.0,
        retries: int = 2,
        retry_delays: Sequence[float] = RETRY_DELAYS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url     = base_url.rstrip("/")
        self._api_key      = api_key
        self._timeout      = timeout
        self._retries      = retries
        self._retry_delays = tuple(retry_delays) or (0.0,)
        self._transport    = transport

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict] = None,
    ) -> tuple[int, Optional[dict]]:
        """Make an HTTP request with retries and backoff on transport errors."""
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        url = f"{self._base_url}{path}"
        last_exc: Optional[Exception] = None

        for attempt in range(1 + self._retries):
            try:
                async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                    resp = await client.request(method, url, json=json, headers=headers)
                try:
                    data = resp.json()
                except ValueError:
                    data = None
                if not isinstance(data, dict):
                    # Only JSON objects are part of the contract
                    data = None
                return resp.status_code, data
            except httpx.HTTPError as e:
                last_exc = e
                if attempt < self._retries:
                    delay = self._retry_delays[min(attempt, len(self._retry_delays) - 1)]
                    logger.warning(
                        "Ledger retry %d/%d for %s %s: %s (wait %.1fs)",
                        attempt + 1, self._retries, method, path, e, delay,
                    )
                    await asyncio.sleep(delay)

        raise AnchorUnavailableError(f"{method} {path} failed: {last_exc}")

    async def anchor(self, code_hash: str) -> AnchorReceipt:
        status, data = await self._request("POST", "/anchors", json={"hash": code_hash})
        if status not in (200, 201, 202) or not data or "receipt_id" not in data:
            raise AnchorUnavailableError(f"anchor rejected with HTTP {status}")
        return AnchorReceipt(
            code_hash=code_hash,
            receipt_id=str(data["receipt_id"]),
            confirmed=data.get("status") == "confirmed",
            anchored_at=_parse_ts(data.get("anchored_at")),
        )

    async def verify(self, code_hash: str) -> AnchorVerification:
        status, data = await self._request("GET", f"/anchors/{code_hash}")
        if status == 404:
            return AnchorVerification(status=AnchorStatus.UNKNOWN, anchored=False)
        if status != 200 or not data:
            raise AnchorUnavailableError(f"verify failed with HTTP {status}")

        ledger_hash = data.get("hash")
        anchored_at = _parse_ts(data.get("anchored_at"))
        if ledger_hash and ledger_hash != code_hash:
            return AnchorVerification(
                status=AnchorStatus.MISMATCHED,
                anchored=True,
                anchored_at=anchored_at,
                tamper_evidence=f"ledger holds {ledger_hash[:16]}…, expected {code_hash[:16]}…",
            )
        if data.get("status") == "confirmed":
            return AnchorVerification(status=AnchorStatus.CONFIRMED, anchored=True, anchored_at=anchored_at)
        return AnchorVerification(status=AnchorStatus.PENDING, anchored=False)


# ── Service ───────────────────────────────────────────────────────────────────

class IntegrityAnchor:
    """
    Best-effort anchoring of access-code hashes.

    Nothing in here is on the grant/deny path: issuance only enqueues, and scan
    verification is advisory and time-bounded.
    """

    def __init__(
        self,
        client: Optional[LedgerClient] = None,
        timeout: float = 2.0,
        max_retries: int = 5,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._client      = client
        self._timeout     = timeout
        self._max_retries = max_retries
        self._clock       = clock

    @property
    def enabled(self) -> bool:
        return self._client is not None

    @property
    def timeout(self) -> float:
        return self._timeout

    # ── Direct contract ───────────────────────────────────────────────────────

    async def anchor(self, code_hash: str) -> AnchorReceipt:
        if self._client is None:
            raise AnchorUnavailableError("anchoring is disabled")
        try:
            return await asyncio.wait_for(self._client.anchor(code_hash), self._timeout)
        except asyncio.TimeoutError as e:
            raise AnchorUnavailableError("anchor timed out") from e

    async def verify(self, code_hash: str) -> AnchorVerification:
        """Ledger view of a hash; any failure degrades to ``unknown``."""
        if self._client is None:
            return AnchorVerification(status=AnchorStatus.UNKNOWN)
        try:
            return await asyncio.wait_for(self._client.verify(code_hash), self._timeout)
        except (asyncio.TimeoutError, AnchorUnavailableError) as e:
            logger.warning("Anchor verification unavailable for %s…: %s", code_hash[:12], e)
            return AnchorVerification(status=AnchorStatus.UNKNOWN)

    async def verify_code(self, code: AccessCode) -> AnchorVerification:
        """Check a stored code against its anchor, if it has one."""
        if not code.anchor_hash:
            return AnchorVerification(status=AnchorStatus.UNKNOWN, anchored=False)
        if code.anchor_hash != code.token_hash:
            return AnchorVerification(
                status=AnchorStatus.MISMATCHED,
                anchored=True,
                tamper_evidence="stored token hash differs from the anchored hash",
            )

        result = await self.verify(code.anchor_hash)
        if result.status is AnchorStatus.UNKNOWN and result.anchored is False:
            # We recorded a confirmed anchor but the ledger has never seen it
            return AnchorVerification(
                status=AnchorStatus.MISMATCHED,
                anchored=False,
                tamper_evidence="ledger has no record of the anchored hash",
            )
        return result

    # ── Queue ─────────────────────────────────────────────────────────────────

    async def enqueue(self, session: AsyncSession, code: AccessCode) -> Optional[AnchorRecord]:
        """Queue a freshly issued code for anchoring. No network I/O."""
        if not self.enabled:
            return None
        record = AnchorRecord(
            access_code_id=code.id,
            code_hash=code.token_hash,
            status=AnchorRecordStatus.PENDING,
        )
        session.add(record)
        await session.flush()
        return record

    async def process_pending(self, session: AsyncSession, limit: int = 50) -> dict[str, int]:
        """
        Submit queued hashes and confirm submitted ones.
        Returns counters; the caller commits.
        """
        stats = {"processed": 0, "confirmed": 0, "failed": 0}
        if not self.enabled:
            return stats

        result = await session.execute(
            select(AnchorRecord)
            .where(
                or_(
                    AnchorRecord.status == AnchorRecordStatus.PENDING,
                    AnchorRecord.status == AnchorRecordStatus.SUBMITTED,
                ),
                AnchorRecord.retry_count < self._max_retries,
            )
            .order_by(AnchorRecord.id)
            .limit(limit)
        )
        for record in result.scalars().all():
            stats["processed"] += 1
            record.last_attempt_at = self._clock()
            try:
                if record.status == AnchorRecordStatus.PENDING:
                    receipt = await self.anchor(record.code_hash)
                    record.receipt_id = receipt.receipt_id
                    confirmed   = receipt.confirmed
                    anchored_at = receipt.anchored_at
                else:
                    verification = await asyncio.wait_for(
                        self._client.verify(record.code_hash), self._timeout
                    )
                    if verification.status is AnchorStatus.MISMATCHED:
                        record.status     = AnchorRecordStatus.FAILED
                        record.last_error = verification.tamper_evidence
                        stats["failed"] += 1
                        logger.warning(
                            "Ledger disagrees about code %s: %s",
                            record.access_code_id, verification.tamper_evidence,
                        )
                        continue
                    confirmed   = verification.status is AnchorStatus.CONFIRMED
                    anchored_at = verification.anchored_at
            except (AnchorUnavailableError, asyncio.TimeoutError) as e:
                record.retry_count += 1
                record.last_error = str(e)
                if record.retry_count >= self._max_retries:
                    record.status = AnchorRecordStatus.FAILED
                    stats["failed"] += 1
                    logger.warning("Anchoring gave up for code %s: %s", record.access_code_id, e)
                continue

            if confirmed:
                record.status      = AnchorRecordStatus.CONFIRMED
                record.anchored_at = anchored_at or self._clock()
                await session.execute(
                    update(AccessCode)
                    .where(
                        AccessCode.id == record.access_code_id,
                        AccessCode.token_hash == record.code_hash,
                    )
                    .values(anchor_hash=record.code_hash)
                )
                stats["confirmed"] += 1
                logger.info("Code %s anchored (receipt %s)", record.access_code_id, record.receipt_id)
            elif record.status == AnchorRecordStatus.SUBMITTED:
                # Still unconfirmed; each poll counts against the retry budget
                record.retry_count += 1
                if record.retry_count >= self._max_retries:
                    record.status     = AnchorRecordStatus.FAILED
                    record.last_error = "never confirmed by the ledger"
                    stats["failed"] += 1
            else:
                record.status = AnchorRecordStatus.SUBMITTED

        await session.flush()
        return stats


def build_integrity_anchor() -> IntegrityAnchor:
    """IntegrityAnchor configured from settings; disabled when ANCHOR_URL is unset."""
    client = None
    if settings.anchor_enabled:
        client = LedgerClient(
            settings.ANCHOR_URL,
            api_key=settings.ANCHOR_API_KEY,
            timeout=settings.ANCHOR_TIMEOUT_SECONDS,
        )
    return IntegrityAnchor(
        client,
        timeout=settings.ANCHOR_TIMEOUT_SECONDS,
        max_retries=settings.ANCHOR_MAX_RETRIES,
    )

"""
ORM models for the TradeConnect access-control gate.

Domain overview
---------------
Event  — a conference / fair with a start and end time
  └─ Registration  — an attendee's sign-up (approved by the registration service)
       └─ AccessCode — QR access token; one *active* code per registration
            ├─ ScanAttempt — append-only log of every scan at an access point
            └─ AnchorRecord — best-effort tamper-evidence anchoring queue

AttendanceRetry holds check-ins the attendance collaborator refused right after
a grant, until the maintenance loop replays them.

Event / Registration / Attendance belong to the surrounding platform; they are
mapped here only so the default SQL collaborators have something to read.
"""
from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gatebot.models.base import Base


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column in this schema is naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Offset-aware input converted to the naive UTC the columns store."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def new_code_id() -> str:
    return str(uuid.uuid4())


# ─────────────────────────── Constants ────────────────────────────────────────

class CodeStatus(str, enum.Enum):
    ACTIVE      = "active"       # Issued, may be scanned
    USED        = "used"         # Consumed by a single-use scan
    EXPIRED     = "expired"      # Past expires_at (materialized lazily)
    INVALIDATED = "invalidated"  # Revoked explicitly or superseded by regeneration


CODE_STATUS_LABELS: dict[CodeStatus, str] = {
    CodeStatus.ACTIVE:      "🟢 Active",
    CodeStatus.USED:        "✅ Used",
    CodeStatus.EXPIRED:     "⌛ Expired",
    CodeStatus.INVALIDATED: "⛔ Invalidated",
}


class RegistrationStatus:
    PENDING   = "pending"
    APPROVED  = "approved"
    CANCELLED = "cancelled"


class ScanOutcome:
    GRANTED = "granted"
    DENIED  = "denied"
    ERROR   = "error"      # infrastructure failure, outcome undetermined

    EMOJI = {
        "granted": "✅",
        "denied":  "❌",
        "error":   "⚠️",
    }


class AnchorRecordStatus:
    PENDING   = "pending"    # Queued, not yet sent
    SUBMITTED = "submitted"  # Accepted by the ledger, awaiting confirmation
    CONFIRMED = "confirmed"
    FAILED    = "failed"     # Retry budget exhausted


class AttendanceRetryStatus:
    PENDING = "pending"
    DONE    = "done"
    FAILED  = "failed"       # Retry budget exhausted


# ─────────────────────────── Collaborator tables ──────────────────────────────

class Event(Base):
    """Event owned by the platform's event service."""
    __tablename__ = "events"

    id:        Mapped[int]                = mapped_column(Integer, primary_key=True, autoincrement=True)
    name:      Mapped[str]                = mapped_column(String(255))
    starts_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    ends_at:   Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    registrations: Mapped[list["Registration"]] = relationship(back_populates="event")


class Registration(Base):
    """Attendee registration owned by the platform's registration service."""
    __tablename__ = "registrations"

    id:            Mapped[int]      = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id:      Mapped[int]      = mapped_column(ForeignKey("events.id"), index=True)
    attendee_name: Mapped[str]      = mapped_column(String(255))
    status:        Mapped[str]      = mapped_column(String(20), default=RegistrationStatus.PENDING)
    created_at:    Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    event: Mapped["Event"] = relationship(back_populates="registrations")


class Attendance(Base):
    """Check-in record written by the attendance collaborator after a grant."""
    __tablename__ = "attendances"

    id:              Mapped[int]           = mapped_column(Integer, primary_key=True, autoincrement=True)
    registration_id: Mapped[int]           = mapped_column(Integer, index=True)
    event_id:        Mapped[int]           = mapped_column(Integer, index=True)
    access_code_id:  Mapped[str]           = mapped_column(String(36))
    access_point:    Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    checked_in_at:   Mapped[datetime]      = mapped_column(DateTime, default=utcnow)


# ─────────────────────────── Access control ───────────────────────────────────

class AccessCode(Base):
    """
    QR access code bound to one registration.

    ``token_hash`` is the keyed hash of the presented token; the token itself is
    only ever shown once, at issuance.
    """
    __tablename__ = "access_codes"
    __table_args__ = (
        # At most one active code per registration, enforced by the database
        Index(
            "uq_access_codes_active_registration",
            "registration_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    id:                  Mapped[str]                = mapped_column(String(36), primary_key=True, default=new_code_id)
    registration_id:     Mapped[int]                = mapped_column(Integer, index=True)
    event_id:            Mapped[int]                = mapped_column(Integer, index=True)
    token_hash:          Mapped[str]                = mapped_column(String(64), unique=True, index=True)
    status:              Mapped[str]                = mapped_column(String(20), default=CodeStatus.ACTIVE.value, index=True)
    issued_at:           Mapped[datetime]           = mapped_column(DateTime, default=utcnow)
    expires_at:          Mapped[datetime]           = mapped_column(DateTime)
    usage_count:         Mapped[int]                = mapped_column(Integer, default=0)
    last_used_at:        Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    invalidation_reason: Mapped[Optional[str]]      = mapped_column(String(500), nullable=True)
    invalidated_at:      Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    invalidated_by:      Mapped[Optional[int]]      = mapped_column(Integer, nullable=True)
    issued_by:           Mapped[Optional[int]]      = mapped_column(Integer, nullable=True)
    replaces_id:         Mapped[Optional[str]]      = mapped_column(String(36), nullable=True)
    anchor_hash:         Mapped[Optional[str]]      = mapped_column(String(64), nullable=True)
    # "metadata" is reserved on declarative classes
    meta:                Mapped[dict[str, Any]]     = mapped_column("metadata", JSON, default=dict)

    @property
    def status_label(self) -> str:
        try:
            return CODE_STATUS_LABELS[CodeStatus(self.status)]
        except ValueError:
            return self.status

    def __repr__(self) -> str:
        return (
            f"<AccessCode(id={self.id}, registration_id={self.registration_id}, "
            f"status={self.status}, hash={self.token_hash[:12]}...)>"
        )


class ScanAttempt(Base):
    """
    One scan at an access point. Rows are written once and never updated;
    only the retention purge removes them.
    """
    __tablename__ = "scan_attempts"

    id:              Mapped[int]                      = mapped_column(Integer, primary_key=True, autoincrement=True)
    scanned_at:      Mapped[datetime]                 = mapped_column(DateTime, default=utcnow, index=True)
    token_presented: Mapped[str]                      = mapped_column(String(64))   # keyed hash, never the raw token
    access_code_id:  Mapped[Optional[str]]            = mapped_column(String(36), nullable=True, index=True)
    event_id:        Mapped[int]                      = mapped_column(Integer, index=True)
    access_point:    Mapped[str]                      = mapped_column(String(100))
    device_info:     Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    location:        Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    scanned_by:      Mapped[Optional[int]]            = mapped_column(Integer, nullable=True)
    outcome:         Mapped[str]                      = mapped_column(String(10))   # ScanOutcome.*
    reason:          Mapped[Optional[str]]            = mapped_column(String(40), nullable=True)

    @property
    def outcome_emoji(self) -> str:
        return ScanOutcome.EMOJI.get(self.outcome, "❓")


class ScanReview(Base):
    """Granted scan flagged for manual review by the elevated anchor check."""
    __tablename__ = "scan_reviews"

    id:              Mapped[int]           = mapped_column(Integer, primary_key=True, autoincrement=True)
    scan_attempt_id: Mapped[int]           = mapped_column(ForeignKey("scan_attempts.id"))
    access_code_id:  Mapped[str]           = mapped_column(String(36), index=True)
    anchor_status:   Mapped[str]           = mapped_column(String(20))
    evidence:        Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at:      Mapped[datetime]      = mapped_column(DateTime, default=utcnow)


class AnchorRecord(Base):
    """Queue entry for submitting a code hash to the external ledger."""
    __tablename__ = "anchor_records"

    id:              Mapped[int]                = mapped_column(Integer, primary_key=True, autoincrement=True)
    access_code_id:  Mapped[str]                = mapped_column(String(36), index=True)
    code_hash:       Mapped[str]                = mapped_column(String(64), index=True)
    status:          Mapped[str]                = mapped_column(String(20), default=AnchorRecordStatus.PENDING)
    receipt_id:      Mapped[Optional[str]]      = mapped_column(String(255), nullable=True)
    anchored_at:     Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    retry_count:     Mapped[int]                = mapped_column(Integer, default=0)
    last_error:      Mapped[Optional[str]]      = mapped_column(Text, nullable=True)
    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at:      Mapped[datetime]           = mapped_column(DateTime, default=utcnow)


class AttendanceRetry(Base):
    """Attendance record that failed after a grant, replayed out-of-band."""
    __tablename__ = "attendance_retries"

    id:              Mapped[int]                = mapped_column(Integer, primary_key=True, autoincrement=True)
    registration_id: Mapped[int]                = mapped_column(Integer)
    event_id:        Mapped[int]                = mapped_column(Integer)
    access_code_id:  Mapped[str]                = mapped_column(String(36), index=True)
    access_point:    Mapped[str]                = mapped_column(String(100))
    scanned_by:      Mapped[Optional[int]]      = mapped_column(Integer, nullable=True)
    status:          Mapped[str]                = mapped_column(String(20), default=AttendanceRetryStatus.PENDING, index=True)
    retry_count:     Mapped[int]                = mapped_column(Integer, default=0)
    last_error:      Mapped[Optional[str]]      = mapped_column(Text, nullable=True)
    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at:      Mapped[datetime]           = mapped_column(DateTime, default=utcnow)

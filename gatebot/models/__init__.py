from gatebot.models.base import Base, engine, AsyncSessionFactory
from gatebot.models.models import (
    Event,
    Registration,
    Attendance,
    AccessCode,
    ScanAttempt,
    ScanReview,
    AnchorRecord,
    AttendanceRetry,
    CodeStatus,
    CODE_STATUS_LABELS,
    RegistrationStatus,
    ScanOutcome,
    AnchorRecordStatus,
    AttendanceRetryStatus,
    as_naive_utc,
    utcnow,
)

__all__ = [
    "Base",
    "engine",
    "AsyncSessionFactory",
    "Event",
    "Registration",
    "Attendance",
    "AccessCode",
    "ScanAttempt",
    "ScanReview",
    "AnchorRecord",
    "AttendanceRetry",
    "CodeStatus",
    "CODE_STATUS_LABELS",
    "RegistrationStatus",
    "ScanOutcome",
    "AnchorRecordStatus",
    "AttendanceRetryStatus",
    "as_naive_utc",
    "utcnow",
]

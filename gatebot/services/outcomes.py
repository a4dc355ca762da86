"""
Stable reason codes and result payloads shared by the access-code services.

Access-point hardware branches on ``ReasonCode`` values; the messages are for
humans only and may change.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Optional


class ReasonCode(str, enum.Enum):
    # Scan outcomes
    QR_NOT_FOUND        = "QR_NOT_FOUND"
    QR_EXPIRED          = "QR_EXPIRED"
    QR_ALREADY_USED     = "QR_ALREADY_USED"
    QR_INVALIDATED      = "QR_INVALIDATED"
    EVENT_MISMATCH      = "EVENT_MISMATCH"
    RATE_LIMITED        = "RATE_LIMITED"
    INVALID_HASH_FORMAT = "INVALID_HASH_FORMAT"
    # Issuance / lifecycle
    REGISTRATION_NOT_APPROVED = "REGISTRATION_NOT_APPROVED"
    CODE_ALREADY_EXISTS       = "CODE_ALREADY_EXISTS"
    INVALID_EXPIRY            = "INVALID_EXPIRY"
    ACTIVE_CODE_NOT_FOUND     = "ACTIVE_CODE_NOT_FOUND"
    CODE_NOT_FOUND            = "CODE_NOT_FOUND"
    INVALID_TRANSITION        = "INVALID_TRANSITION"
    INVALID_INPUT             = "INVALID_INPUT"
    # Infrastructure
    INTERNAL_ERROR = "INTERNAL_ERROR"


REASON_MESSAGES: dict[ReasonCode, str] = {
    ReasonCode.QR_NOT_FOUND:              "This QR code does not exist in the system.",
    ReasonCode.QR_EXPIRED:                "This QR code has expired.",
    ReasonCode.QR_ALREADY_USED:           "This QR code has already been used.",
    ReasonCode.QR_INVALIDATED:            "This QR code has been invalidated.",
    ReasonCode.EVENT_MISMATCH:            "This QR code belongs to a different event.",
    ReasonCode.RATE_LIMITED:              "Too many scans at this access point. Try again shortly.",
    ReasonCode.INVALID_HASH_FORMAT:       "Malformed QR token.",
    ReasonCode.REGISTRATION_NOT_APPROVED: "The registration is not approved.",
    ReasonCode.CODE_ALREADY_EXISTS:       "An active QR code already exists for this registration.",
    ReasonCode.INVALID_EXPIRY:            "The expiry time must be in the future.",
    ReasonCode.ACTIVE_CODE_NOT_FOUND:     "No active QR code exists for this registration.",
    ReasonCode.CODE_NOT_FOUND:            "QR code not found.",
    ReasonCode.INVALID_TRANSITION:        "The QR code is already in a final state.",
    ReasonCode.INVALID_INPUT:             "The request is missing or has malformed fields.",
    ReasonCode.INTERNAL_ERROR:            "Could not process the QR code. Please retry.",
}


@dataclass(frozen=True)
class Failure:
    """Business-rule rejection returned (not raised) by the lifecycle services."""
    reason:  ReasonCode
    message: str

    @classmethod
    def of(cls, reason: ReasonCode, message: Optional[str] = None) -> "Failure":
        return cls(reason=reason, message=message or REASON_MESSAGES[reason])

    def as_dict(self) -> dict[str, str]:
        return {"error": self.reason.value, "message": self.message}


@dataclass
class ValidationResult:
    """
    Outcome of one scan.

    ``retryable`` is only ever True for infrastructure failures: the caller
    could not get a definite answer and may scan again.
    """
    is_valid:        bool
    reason:          Optional[ReasonCode] = None
    message:         str                  = ""
    registration_id: Optional[int]        = None
    code_id:         Optional[str]        = None
    usage_count:     int                  = 0
    metadata:        dict[str, Any]       = field(default_factory=dict)
    retryable:       bool                 = False
    anchor_status:   Optional[str]        = None
    needs_review:    bool                 = False

    @classmethod
    def granted(cls, **kwargs: Any) -> "ValidationResult":
        return cls(is_valid=True, message="Access granted.", **kwargs)

    @classmethod
    def denied(cls, reason: ReasonCode, **kwargs: Any) -> "ValidationResult":
        return cls(is_valid=False, reason=reason, message=REASON_MESSAGES[reason], **kwargs)

    @classmethod
    def internal_error(cls) -> "ValidationResult":
        return cls(
            is_valid=False,
            reason=ReasonCode.INTERNAL_ERROR,
            message=REASON_MESSAGES[ReasonCode.INTERNAL_ERROR],
            retryable=True,
        )

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "isValid":   self.is_valid,
            "message":   self.message,
            "retryable": self.retryable,
        }
        if self.reason is not None:
            payload["reason"] = self.reason.value
        if self.registration_id is not None:
            payload["registrationId"] = self.registration_id
        if self.is_valid:
            payload["usageCount"] = self.usage_count
            payload["metadata"] = self.metadata
        if self.anchor_status is not None:
            payload["anchorStatus"] = self.anchor_status
            payload["needsReview"] = self.needs_review
        return payload


# ── Infrastructure errors ─────────────────────────────────────────────────────

class AccessInfrastructureError(Exception):
    """Storage or token-generation failure; never a statement about the code itself."""


class TokenCollisionError(AccessInfrastructureError):
    """Freshly generated token hash already exists, even after a retry."""

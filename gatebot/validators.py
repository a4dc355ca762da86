"""
Input validation for access-code requests — Pydantic v2 models.

Used to reject malformed operator/scanner input before anything touches the
database. Keeps validation logic out of handler code and makes it trivially
testable.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from gatebot.models.models import as_naive_utc
from gatebot.services.qr_service import normalize_token, validate_token_format

_MAX_REASON = 500


def _clean_reason(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("A reason is required")
    if len(v) > _MAX_REASON:
        raise ValueError(f"Reason must be at most {_MAX_REASON} characters")
    return v


class IssueRequest(BaseModel):
    """
    Attributes
    ----------
    registration_id : registration to issue a code for (positive int)
    expires_at      : optional explicit expiry, stored as naive UTC; the future
                      check happens at issuance
    metadata        : free-form attributes returned on a successful scan
    """

    registration_id: int = Field(gt=0)
    expires_at: Optional[datetime] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("expires_at")
    @classmethod
    def validate_expires_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_naive_utc(v)


class ScanRequest(BaseModel):
    """
    A token presented at an access point.

    The token is stripped and lower-cased; anything that is not 64 hex
    characters is rejected here.
    """

    token: str
    event_id: int = Field(gt=0)
    access_point: str = Field(min_length=1, max_length=100)
    device_info: Optional[dict[str, Any]] = None
    location: Optional[dict[str, Any]] = None

    @field_validator("token")
    @classmethod
    def validate_token(cls, v: str) -> str:
        v = normalize_token(v)
        if not validate_token_format(v):
            raise ValueError("Token must be 64 hexadecimal characters")
        return v

    @field_validator("access_point")
    @classmethod
    def validate_access_point(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Access point must not be blank")
        return v


class RegenerateRequest(BaseModel):
    registration_id: int = Field(gt=0)
    reason: str
    expires_at: Optional[datetime] = None

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        return _clean_reason(v)

    @field_validator("expires_at")
    @classmethod
    def validate_expires_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_naive_utc(v)


class InvalidateRequest(BaseModel):
    code_id: str = Field(min_length=1, max_length=36)
    reason: str

    @field_validator("code_id", mode="before")
    @classmethod
    def validate_code_id(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        return _clean_reason(v)

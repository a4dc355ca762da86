"""
Unit tests — Input validation (validators.py).

Tests Pydantic v2 models for robustness against malformed operator input:
  - ScanRequest: token normalisation and format, access point
  - IssueRequest: registration id, offset-aware expiry
  - RegenerateRequest / InvalidateRequest: mandatory reason

All tests are synchronous; no database session required.
"""
from __future__ import annotations

from datetime import datetime

import pytest
from pydantic import ValidationError

from gatebot.validators import InvalidateRequest, IssueRequest, RegenerateRequest, ScanRequest

TOKEN = "0123456789abcdef" * 4


# ─────────────────────────── ScanRequest ──────────────────────────────────────

class TestScanRequestValid:

    def test_plain_token(self) -> None:
        r = ScanRequest(token=TOKEN, event_id=1, access_point="gate-a")
        assert r.token == TOKEN

    def test_uppercase_and_whitespace_normalised(self) -> None:
        r = ScanRequest(token=f"  {TOKEN.upper()}\n", event_id=1, access_point="gate-a")
        assert r.token == TOKEN

    def test_access_point_stripped(self) -> None:
        r = ScanRequest(token=TOKEN, event_id=1, access_point="  hall 2  ")
        assert r.access_point == "hall 2"

    def test_optional_context(self) -> None:
        r = ScanRequest(
            token=TOKEN, event_id=1, access_point="gate-a",
            device_info={"model": "Zebra TC52"}, location={"lat": 52.52, "lon": 13.40},
        )
        assert r.device_info["model"] == "Zebra TC52"


class TestScanRequestInvalid:

    @pytest.mark.parametrize("token", [
        "",
        TOKEN[:-1],
        TOKEN + "0",
        "z" * 64,
        "a1b2c3d4-e5f6-4abc-8def-1234567890ab",
    ])
    def test_bad_tokens(self, token) -> None:
        with pytest.raises(ValidationError):
            ScanRequest(token=token, event_id=1, access_point="gate-a")

    def test_blank_access_point(self) -> None:
        with pytest.raises(ValidationError):
            ScanRequest(token=TOKEN, event_id=1, access_point="   ")

    def test_event_id_positive(self) -> None:
        with pytest.raises(ValidationError):
            ScanRequest(token=TOKEN, event_id=0, access_point="gate-a")


# ─────────────────────────── Lifecycle requests ───────────────────────────────

class TestIssueRequest:

    def test_defaults(self) -> None:
        r = IssueRequest(registration_id=5)
        assert r.expires_at is None
        assert r.metadata == {}

    def test_negative_registration(self) -> None:
        with pytest.raises(ValidationError):
            IssueRequest(registration_id=-1)

    def test_utc_suffix_becomes_naive_utc(self) -> None:
        r = IssueRequest(registration_id=5, expires_at="2026-05-14T11:00:00Z")
        assert r.expires_at == datetime(2026, 5, 14, 11, 0, 0)
        assert r.expires_at.tzinfo is None

    def test_offset_converted_to_utc(self) -> None:
        r = IssueRequest(registration_id=5, expires_at="2026-05-14T13:00:00+02:00")
        assert r.expires_at == datetime(2026, 5, 14, 11, 0, 0)

    def test_naive_expiry_kept(self) -> None:
        r = IssueRequest(registration_id=5, expires_at="2026-05-14T11:00:00")
        assert r.expires_at == datetime(2026, 5, 14, 11, 0, 0)


class TestReasonRequired:

    def test_regenerate_reason_stripped(self) -> None:
        r = RegenerateRequest(registration_id=1, reason="  lost phone ")
        assert r.reason == "lost phone"

    def test_regenerate_expiry_naive_utc(self) -> None:
        r = RegenerateRequest(registration_id=1, reason="lost", expires_at="2026-05-14T06:00:00-05:00")
        assert r.expires_at == datetime(2026, 5, 14, 11, 0, 0)

    @pytest.mark.parametrize("reason", ["", "   ", "x" * 501])
    def test_regenerate_bad_reason(self, reason) -> None:
        with pytest.raises(ValidationError):
            RegenerateRequest(registration_id=1, reason=reason)

    def test_invalidate(self) -> None:
        r = InvalidateRequest(code_id=" 3f1c0e5a-0000-4000-8000-000000000001 ", reason="fraud")
        assert r.code_id == "3f1c0e5a-0000-4000-8000-000000000001"

    def test_invalidate_blank_reason(self) -> None:
        with pytest.raises(ValidationError):
            InvalidateRequest(code_id="abc", reason=" ")

"""
Integration tests — regeneration and invalidation (regeneration.py via the facade).
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select

from gatebot.models.models import AccessCode, CodeStatus, ScanAttempt
from gatebot.services.outcomes import ReasonCode
from gatebot.validators import IssueRequest


async def _code(session_factory, code_id: str) -> AccessCode:
    async with session_factory() as session:
        return await session.get(AccessCode, code_id)


class TestRegenerate:

    async def test_compromised_code_replaced(self, access, seed, session_factory) -> None:
        event_id, reg_id = await seed()
        old = await access.issue(reg_id, metadata={"badge": "press"}, issued_by=5)

        payload = await access.regenerate(reg_id, "compromised", regenerated_by=5)

        assert payload["oldCode"]["codeId"] == old["codeId"]
        assert payload["oldCode"]["status"] == CodeStatus.INVALIDATED.value
        assert payload["oldCode"]["invalidationReason"] == "compromised"
        new = payload["newCode"]
        assert new["status"] == CodeStatus.ACTIVE.value
        assert new["token"] != old["token"]
        assert new["codeId"] != old["codeId"]

        stored_old = await _code(session_factory, old["codeId"])
        assert stored_old.invalidated_at is not None
        assert stored_old.invalidated_by == 5
        stored_new = await _code(session_factory, new["codeId"])
        assert stored_new.replaces_id == old["codeId"]
        assert stored_new.meta == {"badge": "press"}

    async def test_old_code_denied_new_code_granted(self, access, seed) -> None:
        event_id, reg_id = await seed()
        old = await access.issue(reg_id)
        new = (await access.regenerate(reg_id, "lost phone"))["newCode"]

        denied = await access.validate(old["token"], event_id, "north-gate")
        assert denied["reason"] == ReasonCode.QR_INVALIDATED.value
        granted = await access.validate(new["token"], event_id, "north-gate")
        assert granted["isValid"] is True

    async def test_one_active_code_after_regeneration(self, access, seed, session_factory) -> None:
        _, reg_id = await seed()
        await access.issue(reg_id)
        await access.regenerate(reg_id, "first")
        await access.regenerate(reg_id, "second")

        async with session_factory() as session:
            rows = (await session.execute(
                select(AccessCode.status, func.count())
                .where(AccessCode.registration_id == reg_id)
                .group_by(AccessCode.status)
            )).all()
        assert dict(rows) == {"active": 1, "invalidated": 2}

    async def test_no_active_code(self, access, seed) -> None:
        _, reg_id = await seed()
        payload = await access.regenerate(reg_id, "lost phone")
        assert payload["error"] == ReasonCode.ACTIVE_CODE_NOT_FOUND.value

    async def test_used_code_cannot_be_regenerated(self, access, seed) -> None:
        event_id, reg_id = await seed()
        issued = await access.issue(reg_id)
        await access.validate(issued["token"], event_id, "north-gate")

        payload = await access.regenerate(reg_id, "second entry")
        assert payload["error"] == ReasonCode.ACTIVE_CODE_NOT_FOUND.value

    async def test_expired_but_stored_active_is_regenerated(self, access, seed, clock, session_factory) -> None:
        _, reg_id = await seed()
        old = await access.issue(reg_id, expires_at=clock.now + timedelta(minutes=1))
        clock.advance(hours=1)

        payload = await access.regenerate(reg_id, "arrived late")

        assert "error" not in payload
        assert (await _code(session_factory, old["codeId"])).status == CodeStatus.INVALIDATED.value

    async def test_bad_expiry_changes_nothing(self, access, seed, clock, session_factory) -> None:
        _, reg_id = await seed()
        old = await access.issue(reg_id)

        payload = await access.regenerate(reg_id, "x", expires_at=clock.now - timedelta(minutes=1))

        assert payload["error"] == ReasonCode.INVALID_EXPIRY.value
        assert (await _code(session_factory, old["codeId"])).status == CodeStatus.ACTIVE.value


class TestInvalidate:

    async def test_invalidate_active(self, access, seed, session_factory) -> None:
        _, reg_id = await seed()
        issued = await access.issue(reg_id)

        payload = await access.invalidate(issued["codeId"], "duplicate badge", invalidated_by=9)

        assert payload == {"codeId": issued["codeId"], "status": "invalidated"}
        code = await _code(session_factory, issued["codeId"])
        assert code.invalidation_reason == "duplicate badge"
        assert code.invalidated_by == 9

    async def test_invalidate_twice(self, access, seed) -> None:
        _, reg_id = await seed()
        issued = await access.issue(reg_id)
        await access.invalidate(issued["codeId"], "first")

        payload = await access.invalidate(issued["codeId"], "second")
        assert payload["error"] == ReasonCode.INVALID_TRANSITION.value

    async def test_invalidate_unknown(self, access) -> None:
        payload = await access.invalidate("00000000-0000-4000-8000-000000000000", "x")
        assert payload["error"] == ReasonCode.CODE_NOT_FOUND.value

    async def test_registration_can_get_new_code_after_invalidation(self, access, seed) -> None:
        _, reg_id = await seed()
        issued = await access.issue(reg_id)
        await access.invalidate(issued["codeId"], "revoked")

        again = await access.issue(reg_id)
        assert "error" not in again


class TestHistory:

    async def test_newest_first(self, access, seed, clock) -> None:
        _, reg_id = await seed()
        first = await access.issue(reg_id)
        clock.advance(minutes=1)
        second = (await access.regenerate(reg_id, "rotated"))["newCode"]

        history = await access.codes_for_registration(reg_id)

        assert [c["codeId"] for c in history] == [second["codeId"], first["codeId"]]
        assert history[0]["replacesId"] == first["codeId"]
        assert "token" not in history[0]


class TestFacadeInput:

    async def test_issue_with_utc_suffix(self, access, seed) -> None:
        _, reg_id = await seed()
        request = IssueRequest(registration_id=reg_id, expires_at="2026-05-14T11:00:00Z")

        payload = await access.issue(request.registration_id, expires_at=request.expires_at)

        assert payload["expiresAt"] == "2026-05-14T11:00:00"

    async def test_issue_with_aware_datetime(self, access, seed) -> None:
        _, reg_id = await seed()
        until = datetime(2026, 5, 14, 13, 0, tzinfo=timezone(timedelta(hours=2)))
        payload = await access.issue(reg_id, expires_at=until)
        assert payload["expiresAt"] == "2026-05-14T11:00:00"

    async def test_regenerate_with_aware_datetime(self, access, seed) -> None:
        _, reg_id = await seed()
        await access.issue(reg_id)
        until = datetime(2026, 5, 14, 15, 0, tzinfo=timezone.utc)

        payload = await access.regenerate(reg_id, "lost phone", expires_at=until)

        assert payload["newCode"]["expiresAt"] == "2026-05-14T15:00:00"

    async def test_bad_registration_id(self, access) -> None:
        payload = await access.issue(0)
        assert payload["error"] == ReasonCode.INVALID_INPUT.value
        assert "registration_id" in payload["message"]

    async def test_blank_reason_changes_nothing(self, access, seed, session_factory) -> None:
        _, reg_id = await seed()
        old = await access.issue(reg_id)

        regen = await access.regenerate(reg_id, "   ")
        revoke = await access.invalidate(old["codeId"], "")

        assert regen["error"] == ReasonCode.INVALID_INPUT.value
        assert revoke["error"] == ReasonCode.INVALID_INPUT.value
        assert (await _code(session_factory, old["codeId"])).status == CodeStatus.ACTIVE.value

    async def test_blank_access_point_rejected_before_storage(self, access, seed, session_factory) -> None:
        event_id, reg_id = await seed()
        issued = await access.issue(reg_id)

        result = await access.validate(issued["token"], event_id, "   ")

        assert result["isValid"] is False
        assert result["reason"] == ReasonCode.INVALID_INPUT.value
        assert result["retryable"] is False
        async with session_factory() as session:
            attempts = (await session.execute(select(func.count()).select_from(ScanAttempt))).scalar_one()
        assert attempts == 0
        assert (await _code(session_factory, issued["codeId"])).status == CodeStatus.ACTIVE.value

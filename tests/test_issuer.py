"""
Integration tests — code issuance (issuer.py).

Each test gets a fresh SQLite database through the fixtures in conftest.py.

Coverage:
  - happy path: token shown once, only the keyed hash stored
  - approval gate, explicit and default expiry
  - single active code per registration (service check + unique index)
  - lazily expired code replaced on re-issue
  - token-hash collision retry
  - distinct stored hashes across many issued codes
  - offset-aware expiry stored as naive UTC
"""
from __future__ import annotations

from datetime import timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from gatebot.models.models import AccessCode, CodeStatus, RegistrationStatus
from gatebot.services.outcomes import ReasonCode, TokenCollisionError
from gatebot.services.qr_service import hash_token, validate_token_format


async def _active_count(session, registration_id: int) -> int:
    result = await session.execute(
        select(func.count()).select_from(AccessCode).where(
            AccessCode.registration_id == registration_id,
            AccessCode.status == CodeStatus.ACTIVE.value,
        )
    )
    return result.scalar_one()


class TestIssueHappyPath:

    async def test_issue_returns_token_once(self, issuer, async_session, seed) -> None:
        event_id, reg_id = await seed()
        issued, err = await issuer.issue(async_session, reg_id, metadata={"tier": "VIP"})
        await async_session.commit()

        assert err is None
        assert validate_token_format(issued.token)
        code = issued.code
        assert code.status == CodeStatus.ACTIVE.value
        assert code.usage_count == 0
        assert code.event_id == event_id
        assert code.meta == {"tier": "VIP"}
        # Only the keyed hash is persisted
        assert code.token_hash == hash_token(issued.token)
        assert code.token_hash != issued.token

    async def test_payload_shape(self, issuer, async_session, seed) -> None:
        _, reg_id = await seed()
        issued, _ = await issuer.issue(async_session, reg_id)
        payload = issued.as_dict()
        assert set(payload) == {"codeId", "token", "expiresAt", "status"}
        assert payload["status"] == "active"

    async def test_explicit_expiry(self, issuer, async_session, seed, clock) -> None:
        _, reg_id = await seed()
        until = clock.now + timedelta(hours=2)
        issued, err = await issuer.issue(async_session, reg_id, expires_at=until)
        assert err is None
        assert issued.code.expires_at == until

    async def test_aware_expiry_stored_as_naive_utc(self, issuer, async_session, seed, clock) -> None:
        _, reg_id = await seed()
        plus_two = timezone(timedelta(hours=2))
        until = (clock.now + timedelta(hours=2)).replace(tzinfo=timezone.utc).astimezone(plus_two)

        issued, err = await issuer.issue(async_session, reg_id, expires_at=until)

        assert err is None
        assert issued.code.expires_at == clock.now + timedelta(hours=2)
        assert issued.code.expires_at.tzinfo is None

    async def test_default_expiry_is_event_end_when_later(self, issuer, async_session, seed, clock) -> None:
        end = clock.now + timedelta(days=3)
        _, reg_id = await seed(event_end=end)
        issued, _ = await issuer.issue(async_session, reg_id)
        assert issued.code.expires_at == end

    async def test_default_expiry_floor(self, issuer, async_session, seed, clock) -> None:
        _, reg_id = await seed(event_end=clock.now + timedelta(hours=1))
        issued, _ = await issuer.issue(async_session, reg_id)
        assert issued.code.expires_at == clock.now + timedelta(hours=24)


class TestIssueRejections:

    async def test_not_approved(self, issuer, async_session, seed) -> None:
        _, reg_id = await seed(status=RegistrationStatus.PENDING)
        issued, err = await issuer.issue(async_session, reg_id)
        assert issued is None
        assert err.reason is ReasonCode.REGISTRATION_NOT_APPROVED

    async def test_unknown_registration(self, issuer, async_session) -> None:
        issued, err = await issuer.issue(async_session, 99999)
        assert issued is None
        assert err.reason is ReasonCode.REGISTRATION_NOT_APPROVED

    @pytest.mark.parametrize("offset", [timedelta(0), timedelta(minutes=-5)])
    async def test_expiry_not_in_future(self, issuer, async_session, seed, clock, offset) -> None:
        _, reg_id = await seed()
        issued, err = await issuer.issue(async_session, reg_id, expires_at=clock.now + offset)
        assert issued is None
        assert err.reason is ReasonCode.INVALID_EXPIRY
        assert err.as_dict()["error"] == "INVALID_EXPIRY"

    async def test_second_active_code_refused(self, issuer, async_session, seed) -> None:
        _, reg_id = await seed()
        await issuer.issue(async_session, reg_id)
        await async_session.commit()

        issued, err = await issuer.issue(async_session, reg_id)
        assert issued is None
        assert err.reason is ReasonCode.CODE_ALREADY_EXISTS
        assert await _active_count(async_session, reg_id) == 1


class TestSingleActiveInvariant:

    async def test_unique_index_backstops_concurrent_issue(self, issuer, session_factory, seed) -> None:
        """Two sessions that both passed the pre-check: the database keeps one."""
        _, reg_id = await seed()
        async with session_factory() as first:
            issued, err = await issuer.issue(first, reg_id)
            assert err is None
            await first.commit()

        async with session_factory() as second:
            # Bypass the service pre-check to hit the storage constraint directly
            second.add(AccessCode(
                registration_id=reg_id,
                event_id=issued.code.event_id,
                token_hash="f" * 64,
                status=CodeStatus.ACTIVE.value,
                expires_at=issued.code.expires_at,
            ))
            with pytest.raises(IntegrityError):
                await second.flush()

    async def test_expired_code_replaced(self, issuer, async_session, seed, clock) -> None:
        _, reg_id = await seed()
        first, _ = await issuer.issue(async_session, reg_id, expires_at=clock.now + timedelta(minutes=5))
        await async_session.commit()

        clock.advance(minutes=10)
        second, err = await issuer.issue(async_session, reg_id)
        await async_session.commit()

        assert err is None
        await async_session.refresh(first.code)
        assert first.code.status == CodeStatus.EXPIRED.value
        assert second.code.id != first.code.id
        assert await _active_count(async_session, reg_id) == 1


class TestTokenUniqueness:

    async def test_every_code_gets_its_own_hash(self, issuer, session_factory, seed) -> None:
        event_id, _ = await seed()
        tokens = []
        for i in range(25):
            _, reg_id = await seed(event_id=event_id, name=f"Attendee {i}")
            async with session_factory() as session:
                issued, err = await issuer.issue(session, reg_id)
                assert err is None
                await session.commit()
            tokens.append(issued.token)

        async with session_factory() as session:
            hashes = (await session.execute(select(AccessCode.token_hash))).scalars().all()

        assert len(hashes) == 25
        assert len(set(hashes)) == 25
        assert len(set(tokens)) == 25
        assert set(hashes) == {hash_token(t) for t in tokens}


class TestTokenCollision:

    async def test_retry_once_on_collision(self, issuer, async_session, seed, monkeypatch) -> None:
        _, reg_a = await seed()
        _, reg_b = await seed(name="Grace Hopper")
        taken, _ = await issuer.issue(async_session, reg_a)
        await async_session.commit()

        fresh = "e" * 64
        tokens = iter([taken.token, fresh])
        monkeypatch.setattr("gatebot.services.issuer.make_qr_token", lambda _rid: next(tokens))

        issued, err = await issuer.issue(async_session, reg_b)
        assert err is None
        assert issued.token == fresh

    async def test_persistent_collision_raises(self, issuer, async_session, seed, monkeypatch) -> None:
        _, reg_a = await seed()
        _, reg_b = await seed(name="Grace Hopper")
        taken, _ = await issuer.issue(async_session, reg_a)
        await async_session.commit()

        monkeypatch.setattr("gatebot.services.issuer.make_qr_token", lambda _rid: taken.token)
        with pytest.raises(TokenCollisionError):
            await issuer.issue(async_session, reg_b)

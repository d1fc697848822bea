"""Identity service tests — resolve-or-create against a real database.

Learn: Tests cover:
1. First sign-in creates a Traveler with created_at == last_login_at
2. Repeat sign-in only moves last_login_at forward
3. Missing claims are rejected before any database access
4. Concurrent first sign-ins: one insert wins, the other gets PersistenceError
5. Store faults surface as PersistenceError after a rollback
"""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from locasso.auth.claims import IdentityClaims, IdentitySource
from locasso.db.models import User, UserRole
from locasso.errors import MissingClaimsError, PersistenceError
from locasso.services.identity_service import AuthenticationResult, IdentityService

T0 = datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc)


class StepClock:
    """Deterministic clock: T0, T0+1m, T0+2m, ..."""

    def __init__(self, start: datetime = T0):
        self.now = start - timedelta(minutes=1)

    def __call__(self) -> datetime:
        self.now += timedelta(minutes=1)
        return self.now


def claims(**overrides) -> IdentityClaims:
    values = {
        "external_id": "abc123",
        "email": "a@x.com",
        "provider": "google",
        "source": IdentitySource.IDENTITY_TOKEN,
    }
    values.update(overrides)
    return IdentityClaims(**values)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes for timezone-aware columns."""
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


async def count_users(session: AsyncSession, **filters) -> int:
    q = select(func.count()).select_from(User).filter_by(**filters)
    return (await session.execute(q)).scalar_one()


# ═══════════════════════════════════════════════════════════
# Create / update
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_first_signin_creates_traveler(db_session):
    """Unseen identity creates exactly one Traveler."""
    service = IdentityService(db_session, clock=StepClock())

    result = await service.resolve(claims())

    assert result.is_new_user is True
    assert result.role is UserRole.TRAVELER
    assert result.email == "a@x.com"
    assert result.name == ""
    assert result.photo_url == ""
    assert isinstance(result.user_id, uuid.UUID)

    user = await db_session.get(User, result.user_id)
    assert as_utc(user.created_at) == T0
    assert as_utc(user.last_login_at) == T0
    assert await count_users(db_session) == 1


@pytest.mark.asyncio
async def test_repeat_signin_returns_same_user(db_session):
    """Same identity again is an existing user with a later login."""
    service = IdentityService(db_session, clock=StepClock())

    first = await service.resolve(claims())
    second = await service.resolve(claims())

    assert second.is_new_user is False
    assert second.user_id == first.user_id

    user = await db_session.get(User, first.user_id)
    assert as_utc(user.created_at) == T0
    assert as_utc(user.last_login_at) == T0 + timedelta(minutes=1)
    assert user.last_login_at > user.created_at
    assert await count_users(db_session) == 1


@pytest.mark.asyncio
async def test_repeat_signin_keeps_profile_and_role(db_session):
    """Only last_login_at changes, even if the claims carry new profile data."""
    existing = User(
        external_id="guide-7",
        email="guide@example.com",
        name="Original Name",
        photo_url="https://img.example/orig.png",
        role=UserRole.GUIDE,
        provider="apple",
        created_at=T0,
        last_login_at=T0,
    )
    db_session.add(existing)
    await db_session.commit()

    service = IdentityService(db_session, clock=lambda: T0 + timedelta(days=3))
    result = await service.resolve(
        claims(
            external_id="guide-7",
            provider="apple",
            email="changed@example.com",
            name="New Name",
            photo_url="https://img.example/new.png",
        )
    )

    assert result.is_new_user is False
    assert result.role is UserRole.GUIDE
    assert result.email == "guide@example.com"
    assert result.name == "Original Name"
    assert result.photo_url == "https://img.example/orig.png"
    assert existing.last_login_at == T0 + timedelta(days=3)
    assert existing.created_at == T0


@pytest.mark.asyncio
async def test_profile_fields_copied_on_create(db_session):
    result = await IdentityService(db_session).resolve(
        claims(name="Ana Viajera", photo_url="https://img.example/ana.png")
    )
    assert result.name == "Ana Viajera"
    assert result.photo_url == "https://img.example/ana.png"


@pytest.mark.asyncio
async def test_lookup_is_idempotent(db_session):
    service = IdentityService(db_session)
    ids = {(await service.resolve(claims())).user_id for _ in range(4)}
    assert len(ids) == 1


@pytest.mark.asyncio
async def test_same_external_id_different_provider_is_a_different_user(db_session):
    service = IdentityService(db_session)
    google = await service.resolve(claims(provider="google"))
    apple = await service.resolve(claims(provider="apple"))

    assert apple.is_new_user is True
    assert apple.user_id != google.user_id
    assert await count_users(db_session, external_id="abc123") == 2


@pytest.mark.asyncio
async def test_external_id_match_is_case_sensitive(db_session):
    service = IdentityService(db_session)
    lower = await service.resolve(claims(external_id="abc123"))
    upper = await service.resolve(claims(external_id="ABC123"))

    assert upper.is_new_user is True
    assert upper.user_id != lower.user_id


# ═══════════════════════════════════════════════════════════
# Missing claims
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides,missing",
    [
        ({"external_id": ""}, ["external_id"]),
        ({"email": ""}, ["email"]),
        ({"provider": ""}, ["provider"]),
        ({"external_id": "", "email": ""}, ["external_id", "email"]),
    ],
)
async def test_missing_claims_rejected_without_store_access(overrides, missing):
    """Nothing is read or written."""
    db = MagicMock(spec=AsyncSession)

    with pytest.raises(MissingClaimsError) as exc_info:
        await IdentityService(db).resolve(claims(**overrides))

    assert exc_info.value.details == {"missing": missing}
    assert exc_info.value.status_code == 400
    db.execute.assert_not_called()
    db.add.assert_not_called()
    db.commit.assert_not_called()


# ═══════════════════════════════════════════════════════════
# Uniqueness under races
# ═══════════════════════════════════════════════════════════


class GatedIdentityService(IdentityService):
    """Holds every caller after its lookup until all callers have looked up.

    Forces the worst-case interleaving: both lookups miss, both insert.
    """

    def __init__(self, db, barrier: asyncio.Barrier):
        super().__init__(db)
        self.barrier = barrier

    async def _find_user(self, external_id, provider):
        user = await super()._find_user(external_id, provider)
        await self.barrier.wait()
        return user


@pytest.mark.asyncio
async def test_concurrent_first_signins_create_one_user(session_factory):
    """Exactly one create succeeds; the loser gets PersistenceError."""
    barrier = asyncio.Barrier(2)

    async def attempt():
        async with session_factory() as session:
            return await GatedIdentityService(session, barrier).resolve(claims())

    outcomes = await asyncio.gather(attempt(), attempt(), return_exceptions=True)

    created = [o for o in outcomes if isinstance(o, AuthenticationResult)]
    failed = [o for o in outcomes if isinstance(o, PersistenceError)]
    assert len(created) == 1
    assert len(failed) == 1
    assert created[0].is_new_user is True
    assert isinstance(failed[0].__cause__, IntegrityError)

    async with session_factory() as session:
        assert await count_users(session, external_id="abc123", provider="google") == 1

    # The loser's retry resolves to the winner's row
    async with session_factory() as session:
        retry = await IdentityService(session).resolve(claims())
    assert retry.is_new_user is False
    assert retry.user_id == created[0].user_id


@pytest.mark.asyncio
async def test_database_rejects_duplicate_identity(db_session):
    for _ in range(2):
        db_session.add(
            User(external_id="dup", email="d@example.com", provider="apple")
        )
    with pytest.raises(IntegrityError):
        await db_session.commit()


# ═══════════════════════════════════════════════════════════
# Store failures
# ═══════════════════════════════════════════════════════════


def _session_with_no_user() -> MagicMock:
    db = MagicMock(spec=AsyncSession)
    # execute() is awaited; its result is a plain Result, not a coroutine
    result = MagicMock()
    result.scalars.return_value.first.return_value = None
    db.execute.return_value = result
    return db


@pytest.mark.asyncio
async def test_commit_failure_rolls_back_and_raises():
    db = _session_with_no_user()
    db.commit.side_effect = OperationalError("COMMIT", {}, Exception("connection reset"))

    with pytest.raises(PersistenceError) as exc_info:
        await IdentityService(db).resolve(claims())

    assert exc_info.value.code == "persistence_failure"
    assert exc_info.value.details == {"reason": "OperationalError"}
    db.rollback.assert_awaited_once()


@pytest.mark.asyncio
async def test_failed_rollback_still_raises_persistence_error():
    db = _session_with_no_user()
    db.commit.side_effect = OperationalError("COMMIT", {}, Exception("connection reset"))
    db.rollback.side_effect = OperationalError("ROLLBACK", {}, Exception("connection closed"))

    with pytest.raises(PersistenceError) as exc_info:
        await IdentityService(db).resolve(claims())

    assert exc_info.value.details == {"reason": "OperationalError"}
    assert "COMMIT" in str(exc_info.value.__cause__)
    db.rollback.assert_awaited_once()


@pytest.mark.asyncio
async def test_lookup_failure_raises_persistence_error():
    db = MagicMock(spec=AsyncSession)
    db.execute.side_effect = OperationalError("SELECT", {}, Exception("db down"))

    with pytest.raises(PersistenceError):
        await IdentityService(db).resolve(claims())

    db.add.assert_not_called()
    db.commit.assert_not_called()


@pytest.mark.asyncio
async def test_cancelled_before_commit_leaves_no_user(session_factory):
    entered = asyncio.Event()

    class SlowCommitService(IdentityService):
        async def _commit(self, log):
            entered.set()
            await asyncio.sleep(3600)

    async def attempt():
        async with session_factory() as session:
            await SlowCommitService(session).resolve(claims())

    task = asyncio.create_task(attempt())
    await entered.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    async with session_factory() as session:
        assert await count_users(session) == 0

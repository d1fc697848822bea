"""Identity service — resolve-or-create a user for a normalized identity.

Learn: One call = one read + one write, strictly in that order:
1. Look up the user by (external_id, provider) — exact, case-sensitive
2. Missing → create with role Traveler; present → bump last_login_at only
3. Commit, or roll back and raise PersistenceError

There is no locking here. Two first-time sign-ins for the same identity
can both miss the lookup; the uq_users_external_id_provider constraint
makes exactly one insert win and the loser gets PersistenceError.

Cancellation before commit leaves nothing behind (the session rolls back
on close); once commit returns, the change is durable.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from locasso.auth.claims import IdentityClaims
from locasso.auth.masking import mask_value
from locasso.db.models import User, UserRole, new_uuid, utcnow
from locasso.errors import MissingClaimsError, PersistenceError

logger = structlog.get_logger()


@dataclass(frozen=True)
class AuthenticationResult:
    is_new_user: bool
    user_id: uuid.UUID
    email: str
    name: str
    photo_url: str
    role: UserRole


class IdentityService:
    """Business logic for signing users in."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.clock = clock

    async def resolve(self, claims: IdentityClaims) -> AuthenticationResult:
        """Find or create the user for these claims and record the login.

        Raises MissingClaimsError before touching the database if the
        external id, email or provider is empty; PersistenceError if the
        store rejects or fails the change.
        """
        self._require_claims(claims)

        log = logger.bind(
            provider=claims.provider,
            external_id=mask_value(claims.external_id),
        )
        log.info("auth.resolve_started")

        user = await self._find_user(claims.external_id, claims.provider)
        now = self.clock()

        if user is None:
            user = User(
                id=new_uuid(),
                external_id=claims.external_id,
                email=claims.email,
                name=claims.name or "",
                photo_url=claims.photo_url or "",
                role=UserRole.TRAVELER,
                provider=claims.provider,
                created_at=now,
                last_login_at=now,
            )
            self.db.add(user)
            is_new_user = True
        else:
            user.last_login_at = now
            is_new_user = False

        await self._commit(log)

        log.info(
            "auth.resolve_completed",
            user_id=str(user.id),
            is_new_user=is_new_user,
            role=user.role.value,
        )
        return AuthenticationResult(
            is_new_user=is_new_user,
            user_id=user.id,
            email=user.email,
            name=user.name,
            photo_url=user.photo_url,
            role=user.role,
        )

    def _require_claims(self, claims: IdentityClaims) -> None:
        missing = [
            f
            for f in ("external_id", "email", "provider")
            if not getattr(claims, f)
        ]
        if missing:
            logger.warning(
                "auth.claims_missing", missing=missing, source=claims.source.value
            )
            raise MissingClaimsError(details={"missing": missing})

    async def _find_user(self, external_id: str, provider: str) -> Optional[User]:
        q = select(User).where(
            User.external_id == external_id,
            User.provider == provider,
        )
        try:
            result = await self.db.execute(q)
        except SQLAlchemyError as e:
            logger.error("auth.user_lookup_failed", error=str(e))
            raise PersistenceError("User lookup failed") from e
        return result.scalars().first()

    async def _commit(self, log) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            log.error("auth.user_save_failed", error=str(e), exc_info=True)
            try:
                await self.db.rollback()
            except SQLAlchemyError as rollback_error:
                # Connection is gone; the session discards its state on close
                log.error("auth.user_rollback_failed", error=str(rollback_error))
            raise PersistenceError(
                "Failed to save user",
                details={"reason": type(e).__name__},
            ) from e

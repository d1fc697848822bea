"""Auth API — sign-in against already-verified identity evidence.

Learn: Routes for the identity slice:
- POST /auth/signin     → extract claims → resolve-or-create user
- GET  /auth/me         → echo the caller's claims (no database access)
- GET  /auth/diagnostic → masked claims dump, disabled in production

Error mapping for sign-in:
- MissingClaimsError → 400
- PersistenceError   → 500 (detail stays in the logs)
- anything else      → 500, generic message
"""

import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from locasso.auth.claims import (
    PRINCIPAL_HEADER,
    IdentityClaims,
    evidence_from_request,
    extract_identity,
)
from locasso.auth.masking import mask_claim
from locasso.config import settings
from locasso.db.engine import get_db
from locasso.db.models import UserRole
from locasso.errors import MissingClaimsError, PersistenceError
from locasso.services.identity_service import IdentityService

logger = structlog.get_logger()

router = APIRouter(prefix="/auth")


# ─── Schemas ─────────────────────────────────────────────


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SignInResponse(CamelModel):
    is_new_user: bool
    user_id: uuid.UUID
    email: str
    name: Optional[str] = None
    photo_url: Optional[str] = None
    role: UserRole


class MeResponse(BaseModel):
    id: str
    email: str
    name: str
    provider: str


class MaskedClaim(BaseModel):
    type: str
    value: str


class DiagnosticResponse(CamelModel):
    is_authenticated: bool
    source: str
    claims: list[MaskedClaim]
    has_identity_token_header: bool
    has_proxy_principal_header: bool


# ─── Helpers ─────────────────────────────────────────────


async def get_identity_claims(request: Request) -> IdentityClaims:
    """FastAPI dependency — the caller's normalized claims."""
    evidence = await evidence_from_request(request)
    return extract_identity(
        evidence,
        token_header=settings.identity_token_header,
        dev_mode_allowed=settings.dev_mode_allowed,
    )


# ─── Sign in ─────────────────────────────────────────────


@router.post(
    "/signin",
    response_model=SignInResponse,
    response_model_by_alias=True,
)
async def sign_in(
    claims: IdentityClaims = Depends(get_identity_claims),
    db: AsyncSession = Depends(get_db),
):
    """Resolve the caller to a user record, creating it on first sign-in."""
    log = logger.bind(source=claims.source.value, provider=claims.provider)

    try:
        result = await IdentityService(db).resolve(claims)
    except MissingClaimsError as e:
        log.warning("auth.signin_missing_claims", **e.details)
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except PersistenceError as e:
        log.error("auth.signin_failed", **e.to_log())
        raise HTTPException(status_code=500, detail="Authentication failed.")
    except Exception:
        log.exception("auth.signin_unexpected_error")
        raise HTTPException(status_code=500, detail="Authentication failed.")

    log.info(
        "auth.signin_succeeded",
        is_new_user=result.is_new_user,
        role=result.role.value,
    )
    return SignInResponse(
        is_new_user=result.is_new_user,
        user_id=result.user_id,
        email=result.email,
        name=result.name,
        photo_url=result.photo_url,
        role=result.role,
    )


# ─── Current identity ────────────────────────────────────


@router.get("/me", response_model=MeResponse)
async def get_me(claims: IdentityClaims = Depends(get_identity_claims)):
    """Claims the caller already carries. Never reads the database."""
    if not (claims.external_id or claims.email):
        raise HTTPException(status_code=401, detail="Authentication required")

    return MeResponse(
        id=claims.external_id or "Unknown",
        email=claims.email or "Unknown",
        name=claims.name or "Unknown",
        provider=claims.provider or "Unknown",
    )


# ─── Diagnostics ─────────────────────────────────────────


@router.get(
    "/diagnostic",
    response_model=DiagnosticResponse,
    response_model_by_alias=True,
)
async def get_auth_diagnostic(
    request: Request,
    claims: IdentityClaims = Depends(get_identity_claims),
):
    """Masked view of what the server received. 404 in production."""
    if settings.is_production:
        raise HTTPException(status_code=404, detail="Not Found")

    fields = {
        "sub": claims.external_id,
        "email": claims.email,
        "name": claims.name,
        "picture": claims.photo_url,
        "idp": claims.provider,
    }
    return DiagnosticResponse(
        is_authenticated=claims.is_complete,
        source=claims.source.value,
        claims=[
            MaskedClaim(type=typ, value=mask_claim(typ, val))
            for typ, val in fields.items()
        ],
        has_identity_token_header=settings.identity_token_header in request.headers,
        has_proxy_principal_header=PRINCIPAL_HEADER in request.headers,
    )

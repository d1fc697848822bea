"""Claims extraction — turn whatever identity evidence a request carries
into one normalized IdentityClaims tuple.

Learn: Four mutually exclusive sources, tried in a fixed priority order.
The first source that *applies* wins, even if it turns out incomplete:

1. Platform proxy headers (X-MS-CLIENT-PRINCIPAL-*), injected by the
   App Service authentication layer in front of us
2. An identity token (JWT) in a dedicated header — decoded, NOT verified;
   the issuer already verified it upstream
3. Developer-mode parameters (?dev=true) — only when the server allows it
4. Claims an upstream middleware attached as request.state.principal

Extraction never raises. Anything missing or malformed degrades to "",
and the identity service turns an incomplete tuple into MissingClaimsError.
Nothing here touches the database.
"""

import base64
import binascii
import enum
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

import jwt
import structlog
from starlette.requests import Request

from locasso.auth.masking import mask_value

logger = structlog.get_logger()

# Proxy headers (Azure App Service "Easy Auth")
PRINCIPAL_ID_HEADER = "x-ms-client-principal-id"
PRINCIPAL_HEADER = "x-ms-client-principal"
PRINCIPAL_NAME_HEADER = "x-ms-client-principal-name"
PRINCIPAL_IDP_HEADER = "x-ms-client-principal-idp"

DEV_MODE_HEADER = "x-dev-mode"
DEV_MODE_PARAM = "dev"
DEV_PROVIDER = "dev"

# Standard claim type URIs, as emitted by WS-Federation style issuers
CLAIM_NAME_IDENTIFIER = (
    "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/nameidentifier"
)
CLAIM_EMAIL = "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/emailaddress"
CLAIM_NAME = "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/name"

_TRUTHY = {"1", "true", "yes", "on"}


class IdentitySource(str, enum.Enum):
    PROXY_HEADERS = "proxy_headers"
    IDENTITY_TOKEN = "identity_token"
    DEV_MODE = "dev_mode"
    PRINCIPAL = "principal"
    NONE = "none"


@dataclass(frozen=True)
class IdentityClaims:
    """Normalized identity, independent of where it came from."""

    external_id: str = ""
    email: str = ""
    name: str = ""
    photo_url: str = ""
    provider: str = ""
    source: IdentitySource = IdentitySource.NONE

    @property
    def is_complete(self) -> bool:
        return bool(self.external_id and self.email)

    def masked(self) -> dict[str, str]:
        """Log-safe view of the claims."""
        return {
            "source": self.source.value,
            "provider": self.provider,
            "external_id": mask_value(self.external_id),
            "email": mask_value(self.email),
            "name": mask_value(self.name),
        }


@dataclass(frozen=True)
class ClaimsPrincipal:
    """Claims attached to a request by an upstream authentication layer."""

    claims: tuple[tuple[str, str], ...] = ()
    authentication_type: str = ""

    @classmethod
    def from_mapping(
        cls, claims: Mapping[str, str], authentication_type: str = ""
    ) -> "ClaimsPrincipal":
        return cls(tuple(claims.items()), authentication_type)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.claims)

    def find_first(self, *claim_types: str) -> str:
        """Value of the first claim matching any type, in argument order."""
        for claim_type in claim_types:
            for typ, val in self.claims:
                if typ == claim_type and val:
                    return val
        return ""


@dataclass
class IdentityEvidence:
    """Everything on a request that may identify the caller."""

    headers: Mapping[str, str] = field(default_factory=dict)
    query: Mapping[str, str] = field(default_factory=dict)
    body: Mapping[str, Any] = field(default_factory=dict)
    principal: Optional[ClaimsPrincipal] = None

    def __post_init__(self):
        # Header names are case-insensitive
        self.headers = {k.lower(): v for k, v in self.headers.items()}

    def header(self, name: str) -> str:
        return (self.headers.get(name.lower()) or "").strip()


# ─── Source: proxy headers ──────────────────────────────


def decode_client_principal(blob: str) -> dict[str, Any]:
    """Decode the base64 JSON X-MS-CLIENT-PRINCIPAL blob. {} if malformed."""
    try:
        padded = blob + "=" * (-len(blob) % 4)
        data = json.loads(base64.b64decode(padded).decode("utf-8"))
    except (binascii.Error, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def _principal_blob_claims(data: Mapping[str, Any]) -> dict[str, str]:
    raw = data.get("claims")
    if not isinstance(raw, list):
        return {}
    claims: dict[str, str] = {}
    for item in raw:
        if not isinstance(item, dict):
            continue
        typ, val = item.get("typ"), item.get("val")
        if isinstance(typ, str) and isinstance(val, str):
            claims.setdefault(typ, val)
    return claims


def _from_proxy_headers(
    evidence: IdentityEvidence, **_: Any
) -> Optional[IdentityClaims]:
    external_id = evidence.header(PRINCIPAL_ID_HEADER)
    blob = evidence.header(PRINCIPAL_HEADER)
    if not external_id or not blob:
        return None

    data = decode_client_principal(blob)
    claims = _principal_blob_claims(data)
    display_name = evidence.header(PRINCIPAL_NAME_HEADER)

    email = claims.get("email") or claims.get(CLAIM_EMAIL, "")
    if not email and "@" in display_name:
        email = display_name

    name = claims.get("name") or claims.get(CLAIM_NAME) or display_name
    provider = evidence.header(PRINCIPAL_IDP_HEADER) or _str(data.get("auth_typ"))

    return IdentityClaims(
        external_id=external_id,
        email=email,
        name=name,
        photo_url=claims.get("picture", ""),
        provider=(provider or "unknown").lower(),
        source=IdentitySource.PROXY_HEADERS,
    )


# ─── Source: identity token ─────────────────────────────


def provider_from_issuer(issuer: str) -> str:
    issuer = issuer.lower()
    if "apple" in issuer:
        return "apple"
    if "google" in issuer:
        return "google"
    return "unknown"


def decode_identity_token(token: str) -> Optional[dict[str, Any]]:
    """Decode a JWT without verifying it. None if it isn't a JWT."""
    if token.lower().startswith("bearer "):
        token = token[7:].strip()
    if not token:
        return None
    try:
        return jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError as e:
        logger.warning("auth.identity_token_malformed", error=str(e))
        return None


def _from_identity_token(
    evidence: IdentityEvidence, *, token_header: str, **_: Any
) -> Optional[IdentityClaims]:
    raw = evidence.header(token_header)
    if not raw:
        return None
    payload = decode_identity_token(raw)
    if payload is None:
        return None

    return IdentityClaims(
        external_id=_str(payload.get("sub")),
        email=_str(payload.get("email")),
        name=_str(payload.get("name")),
        photo_url=_str(payload.get("picture")),
        provider=provider_from_issuer(_str(payload.get("iss"))),
        source=IdentitySource.IDENTITY_TOKEN,
    )


# ─── Source: developer mode ─────────────────────────────


def dev_mode_requested(evidence: IdentityEvidence) -> bool:
    flag = evidence.query.get(DEV_MODE_PARAM) or evidence.header(DEV_MODE_HEADER)
    return _str(flag).strip().lower() in _TRUTHY


def _from_dev_mode(
    evidence: IdentityEvidence, *, dev_mode_allowed: bool, **_: Any
) -> Optional[IdentityClaims]:
    if not dev_mode_requested(evidence):
        return None
    if not dev_mode_allowed:
        logger.warning("auth.dev_mode_rejected")
        return None

    def field_value(*names: str) -> str:
        for source in (evidence.query, evidence.body):
            for n in names:
                value = _str(source.get(n)).strip()
                if value:
                    return value
        return ""

    return IdentityClaims(
        external_id=field_value("id"),
        email=field_value("email"),
        name=field_value("name"),
        photo_url=field_value("photo_url", "photoUrl"),
        provider=field_value("provider") or DEV_PROVIDER,
        source=IdentitySource.DEV_MODE,
    )


# ─── Source: upstream principal ─────────────────────────


def provider_from_principal(principal: ClaimsPrincipal) -> str:
    idp = principal.find_first("idp")
    if idp:
        return idp.lower()
    auth_type = principal.authentication_type.lower()
    if "google" in auth_type:
        return "google"
    # indeterminate
    return "apple"


def _from_principal(
    evidence: IdentityEvidence, **_: Any
) -> Optional[IdentityClaims]:
    principal = evidence.principal
    if principal is None or not principal.is_authenticated:
        return None

    return IdentityClaims(
        external_id=principal.find_first(CLAIM_NAME_IDENTIFIER, "sub"),
        email=principal.find_first(CLAIM_EMAIL, "email"),
        name=principal.find_first(CLAIM_NAME, "name"),
        photo_url=principal.find_first("picture"),
        provider=provider_from_principal(principal),
        source=IdentitySource.PRINCIPAL,
    )


# Priority order — first applicable source wins
SOURCES: tuple[Callable[..., Optional[IdentityClaims]], ...] = (
    _from_proxy_headers,
    _from_identity_token,
    _from_dev_mode,
    _from_principal,
)


def extract_identity(
    evidence: IdentityEvidence,
    *,
    token_header: str = "X-ID-Token",
    dev_mode_allowed: bool = False,
) -> IdentityClaims:
    """Return the normalized identity for a request. Never raises."""
    claims = IdentityClaims()
    for source in SOURCES:
        found = source(
            evidence,
            token_header=token_header,
            dev_mode_allowed=dev_mode_allowed,
        )
        if found is not None:
            claims = found
            break

    if claims.is_complete:
        logger.info("auth.claims_extracted", **claims.masked())
    else:
        logger.warning("auth.claims_incomplete", **claims.masked())
    return claims


async def evidence_from_request(request: Request) -> IdentityEvidence:
    """Collect identity evidence from a Starlette request."""
    body: Mapping[str, Any] = {}
    content_type = request.headers.get("content-type", "")
    if request.method in ("POST", "PUT", "PATCH") and "json" in content_type:
        try:
            parsed = await request.json()
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            body = parsed

    principal = getattr(request.state, "principal", None)
    if not isinstance(principal, ClaimsPrincipal):
        principal = None

    return IdentityEvidence(
        headers=dict(request.headers),
        query=dict(request.query_params),
        body=body,
        principal=principal,
    )


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""

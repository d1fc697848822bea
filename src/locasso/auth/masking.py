"""Masking of sensitive claim values for logs and diagnostics.

Learn: Identity values (subject ids, emails, names) must never reach a
log line or a diagnostic response in full. Short values are fully
redacted; longer ones keep just enough (first 3, last 2) to correlate.
"""

from typing import Mapping, Optional

NULL_MARKER = "[NULL]"
REDACTED = "*****"

# Compared case-insensitively
SENSITIVE_CLAIM_TYPES = frozenset(
    {
        "email",
        "sub",
        "name",
        "external_id",
        "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/nameidentifier",
        "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/emailaddress",
        "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/name",
    }
)


def mask_value(value: Optional[str]) -> str:
    """Mask a single value: '[NULL]', '*****', or 'abc...yz'."""
    if not value:
        return NULL_MARKER
    if len(value) <= 5:
        return REDACTED
    return f"{value[:3]}...{value[-2:]}"


def is_sensitive(claim_type: str) -> bool:
    return claim_type.lower() in SENSITIVE_CLAIM_TYPES


def mask_claim(claim_type: str, value: Optional[str]) -> str:
    """Mask value only if the claim type is sensitive."""
    if not value:
        return NULL_MARKER
    if is_sensitive(claim_type):
        return mask_value(value)
    return value


def mask_claims(claims: Mapping[str, Optional[str]]) -> dict[str, str]:
    """Mask a claims mapping for structured log context."""
    return {key: mask_claim(key, value) for key, value in claims.items()}

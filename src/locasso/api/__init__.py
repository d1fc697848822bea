"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Nothing here is guarded by an auth dependency — the auth router
*is* the entry point, and it trusts the upstream proxy / token issuer
for authentication.
"""

from fastapi import APIRouter

from locasso.api.auth import router as auth_router
from locasso.api.health import router as health_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])

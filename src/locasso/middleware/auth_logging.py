"""Auth failure logging middleware.

Learn: 401s and 403s are otherwise silent on the server side. This logs
them with enough context to debug a broken proxy/token setup — path,
method, and the *names* of the request headers. Header values are never
logged, and Authorization-like headers are left out entirely.
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()

# Header names containing any of these are omitted from the log
_HIDDEN_HEADER_MARKERS = ("authorization", "token", "cookie")


def loggable_header_names(request: Request) -> list[str]:
    return sorted(
        name
        for name in request.headers.keys()
        if not any(marker in name for marker in _HIDDEN_HEADER_MARKERS)
    )


class AuthLoggingMiddleware(BaseHTTPMiddleware):
    """Warn on authentication/authorization failures."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response: Response = await call_next(request)

        if response.status_code == 401:
            logger.warning(
                "auth.authentication_failed",
                status_code=401,
                path=request.url.path,
                method=request.method,
                headers=loggable_header_names(request),
            )
        elif response.status_code == 403:
            logger.warning(
                "auth.authorization_failed",
                status_code=403,
                path=request.url.path,
                method=request.method,
            )
        return response

"""Error taxonomy for the sign-in flow.

Learn: Services raise these domain errors; the API layer maps them to
HTTP status codes and strips internal detail from the response body.

- MissingClaimsError → 400 (caller can fix it by sending identity evidence)
- PersistenceError   → 500 (constraint conflict or database fault, not retried)
- anything else      → 500 (unexpected fault, logged with traceback)
"""

from typing import Any, Optional


class LocassoError(Exception):
    """Base exception for the identity backend."""

    code = "locasso_error"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_log(self) -> dict[str, Any]:
        return {"error_code": self.code, "error": self.message, **self.details}


class MissingClaimsError(LocassoError):
    """External id or email could not be resolved from any source."""

    code = "missing_claims"
    status_code = 400

    def __init__(
        self,
        message: str = "Missing required user claims.",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, details)


class PersistenceError(LocassoError):
    """The user store rejected or failed to commit the change."""

    code = "persistence_failure"
    status_code = 500

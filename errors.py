"""Error taxonomy for the storefront.

Every error carries a user-facing ``message`` and a short ``code``. Routes
translate them into HTTP responses; nothing here should reach the user as a
stack trace.
"""

from typing import Optional

__all__ = [
    "MarketplaceError",
    "ValidationError",
    "CapabilityError",
    "NotFoundError",
    "PermissionDeniedError",
    "AuthError",
    "WriteThroughError",
]


class MarketplaceError(Exception):
    code = "error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ValidationError(MarketplaceError):
    """Bad input, detected before anything is written."""

    code = "invalid-argument"


class CapabilityError(MarketplaceError):
    """The document store, local cache or session failed."""

    code = "unavailable"


class NotFoundError(CapabilityError):
    code = "not-found"


class PermissionDeniedError(CapabilityError):
    code = "permission-denied"


class AuthError(CapabilityError):
    code = "auth/invalid-credential"


class WriteThroughError(CapabilityError):
    """A mutation was applied in memory but could not be persisted.

    The visible state is left as is; the next load reconciles it.
    """

    code = "write-through-failed"

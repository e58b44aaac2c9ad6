"""Error taxonomy shared by the core and its adapters."""

from __future__ import annotations


class RealtimeError(Exception):
    """Base error with a stable code that can be shown to clients."""

    code = "error"


class NotFoundError(RealtimeError):
    code = "not_found"


class InvalidInputError(RealtimeError):
    code = "invalid_input"


class PersistenceError(RealtimeError):
    """Raised by persistence adapters when the backing store fails."""

    code = "persistence_failure"


class IdentityError(RealtimeError):
    """Raised by identity adapters when a token cannot be trusted."""

    code = "unauthorized"


class TokenExpiredError(IdentityError):
    code = "jwt_expired"

from __future__ import annotations


class DomainError(Exception):
    """Base error for everything the client surfaces to the user."""


class ValidationError(DomainError):
    pass


class BackendError(DomainError):
    """A remote call failed."""


class AuthError(BackendError):
    pass


class QueryError(BackendError):
    """Read (select / read-only procedure) failed."""


class WriteError(BackendError):
    """Insert, update, delete or mutating procedure failed."""


class NotFoundError(BackendError):
    pass


class PermissionDenied(WriteError):
    pass


class ConflictError(WriteError):
    pass


class TransientBackendError(BackendError):
    """Connection drop, timeout or 5xx; safe to retry for idempotent reads."""


class SubscriptionError(BackendError):
    pass


def alert_title(exc: BaseException, fallback: str = "Error") -> str:
    if isinstance(exc, AuthError):
        return "Auth error"
    if isinstance(exc, ValidationError):
        return "Invalid input"
    if isinstance(exc, ConflictError):
        return "Conflict"
    if isinstance(exc, PermissionDenied):
        return "Not allowed"
    return fallback

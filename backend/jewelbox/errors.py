# Overview: Typed failures surfaced by the allocator, the credential migrator and the store.

"""
Error taxonomy shared by services and routes.

Services never swallow these; routes map them to HTTP status codes:

- NotFoundError          404  unknown branch / category / item / credential
- ValidationError        400  malformed input (e.g. non-positive count)
- ConflictError          409  concurrent allocation could not be serialized; retry the whole call
- StoreUnavailableError  503  persistence call failed; propagated, not retried
- AuthenticationFailed   401  wrong credential; deliberately carries no detail
"""


class JewelboxError(Exception):
    """Base class for every typed failure in the package."""

    status_code = 500


class NotFoundError(JewelboxError, LookupError):
    status_code = 404


class ValidationError(JewelboxError, ValueError):
    """400-level input problem."""

    status_code = 400


class ConflictError(JewelboxError):
    """409-level concurrency conflict; the caller must retry the whole operation."""

    status_code = 409


class StoreUnavailableError(JewelboxError):
    status_code = 503


class AuthenticationFailed(JewelboxError):
    """Raised for every failed login, whatever the cause."""

    status_code = 401

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message)

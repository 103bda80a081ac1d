"""
Service-layer exceptions shared by all taskboard services.

Each error carries the HTTP status an outer transport layer would map it
to; the services themselves never deal with HTTP.
"""


class ServiceError(Exception):
    """Base exception for taskboard service errors."""
    status_code = 500


class NotFoundError(ServiceError):
    """Raised when a resource is absent or the caller is not a project member."""
    status_code = 404


class ForbiddenError(ServiceError):
    """Raised when the caller is a member but their role is insufficient."""
    status_code = 403


class BadRequestError(ServiceError):
    """Raised for malformed or inconsistent input."""
    status_code = 400


class InvalidPositionError(BadRequestError):
    """Raised when a requested position falls outside the valid range."""
    pass


class ConflictError(ServiceError):
    """Raised when a change would violate a uniqueness or ownership invariant."""
    status_code = 409

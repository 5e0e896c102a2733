"""Typed service-layer errors.

Every error carries the HTTP status it should surface as. The global
exception handler in ``bountyboard.middleware.error_handler`` maps them to
responses, so services never import FastAPI.
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base class for expected business failures."""

    status_code: int = 400

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class BusinessRuleError(ServiceError):
    """A request was well-formed but breaks a domain rule."""

    status_code = 400


class DuplicateIdentityError(ServiceError):
    """Username or email already taken at registration."""

    status_code = 400


class ConflictError(ServiceError):
    """Unique value collision on update."""

    status_code = 409


class CapacityExceededError(ServiceError):
    """Team license has no free seats."""

    status_code = 400


class AuthenticationError(ServiceError):
    """No usable credential."""

    status_code = 401


class InvalidCredentialsError(AuthenticationError):
    """Unknown user or wrong password. Both cases share one message."""

    def __init__(self, message: str = "Invalid credentials") -> None:
        super().__init__(message)


class ForbiddenError(ServiceError):
    """Credential is valid but not allowed to do this."""

    status_code = 403


class AccountDisabledError(ForbiddenError):
    def __init__(self, message: str = "Account is disabled") -> None:
        super().__init__(message)


class LicenseInvalidError(ForbiddenError):
    """Team license missing, revoked or expired."""


class NotFoundError(ServiceError):
    status_code = 404


class UserNotFoundError(NotFoundError):
    def __init__(self, message: str = "User not found") -> None:
        super().__init__(message)


class TeamNotFoundError(NotFoundError):
    def __init__(self, message: str = "Team not found") -> None:
        super().__init__(message)


class TaskNotFoundError(NotFoundError):
    def __init__(self, message: str = "Task not found") -> None:
        super().__init__(message)

"""Error taxonomy shared by the membership engine and the route handlers."""

from typing import Optional

from fastapi import status


class FestivoError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    detail: str = "Request failed"

    def __init__(self, detail: Optional[str] = None) -> None:
        super().__init__(detail or self.detail)
        if detail:
            self.detail = detail


class NotFoundError(FestivoError):
    """A referenced user, committee, event or registration does not exist."""

    status_code = status.HTTP_404_NOT_FOUND
    detail = "Not found"


class InvalidArgumentError(FestivoError):
    """Malformed or policy-violating input."""

    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Invalid argument"


class ConflictError(FestivoError):
    """Duplicate of something that must be unique."""

    status_code = status.HTTP_409_CONFLICT
    detail = "Conflict"


class PermissionDeniedError(FestivoError):
    """Caller lacks the required role or committee relationship."""

    status_code = status.HTTP_403_FORBIDDEN
    detail = "Insufficient permissions"


class AuthenticationError(FestivoError):
    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "Token is not valid"


class InternalError(FestivoError):
    """Persistence failure; partial writes have been compensated where possible."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail = "Server error"

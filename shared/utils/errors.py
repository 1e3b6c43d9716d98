"""
shared/utils/errors.py
Typed domain errors raised by the ledger, the booking state machine and routers.
main.py maps every AppError to its status code with a {"detail": message} body.
"""

from fastapi import status


class AppError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "An internal server error occurred"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class ConflictError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Conflicting request"


class ConflictingPendingBookingError(ConflictError):
    default_message = "You already have a pending booking. Please wait for it to be processed."


class DuplicateEmailError(ConflictError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "An account with this email already exists"


class InsufficientBalanceError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "No barrels remaining. Please request an extra cylinder."


class NoAgencySelectedError(ValidationError):
    default_message = "No agency selected and no default agency found for user"


class InvalidStateTransitionError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid booking status for this operation"


class ForbiddenError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Not authorized"


class AuthenticationError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid email or password"


class InternalError(AppError):
    pass

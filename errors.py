"""
Application errors.

Everything raised below the HTTP layer derives from AppError so a single
exception handler can turn it into the JSON envelope {"message", "data"}.
"""


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AppError):
    """Malformed identifier, password policy violation or bad input value."""
    status_code = 400


class NotFound(AppError):
    status_code = 404


class InvalidQuantity(AppError):
    """Requested cart quantity is non-positive or above available stock."""
    status_code = 400


class UpstreamFailure(AppError):
    """The exchange-rate service could not be reached or answered badly."""
    status_code = 502


class Unauthorized(AppError):
    status_code = 401


class Forbidden(AppError):
    status_code = 403


class InsufficientFunds(AppError):
    """Wallet balance does not cover a booking."""
    status_code = 400

"""
Error taxonomy for the API.

Handlers raise these; the exception handlers in main.py turn them into
``{"error": message}`` JSON responses with the matching status code.
"""

from pydantic import BaseModel


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AppError):
    """Missing or invalid request input."""
    status_code = 400


class ConflictError(AppError):
    """A uniqueness invariant would be violated."""
    status_code = 400


class UnauthorizedError(AppError):
    status_code = 401


class ForbiddenError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class ServerError(AppError):
    """Any other failure, including an unreachable database."""
    status_code = 500


class ErrorResponse(BaseModel):
    error: str

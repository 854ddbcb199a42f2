"""
Error taxonomy shared by every layer.

Each error is an HTTPException so routers, services and rule functions can
raise it directly; the handlers in ``marketplace.main`` turn any of them into
``{"success": false, "message": ...}``.
"""

from fastapi import HTTPException, status


class AppError(HTTPException):
    """Base error carrying a human readable message and a status code."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR):
        super().__init__(status_code=status_code, detail=message)
        self.message = message


class NotFoundError(AppError):
    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class ValidationError(AppError):
    def __init__(self, message: str):
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class InvalidTransitionError(ValidationError):
    def __init__(self, current: str, requested: str):
        super().__init__(f"Invalid status transition from {current} to {requested}")
        self.current = current
        self.requested = requested


class ForbiddenError(AppError):
    def __init__(self, message: str = "You are not allowed to access this resource"):
        super().__init__(message, status.HTTP_403_FORBIDDEN)


class UnauthorizedError(AppError):
    def __init__(self, message: str, status_code: int = status.HTTP_401_UNAUTHORIZED):
        super().__init__(message, status_code)

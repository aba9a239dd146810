"""
Error taxonomy for the messaging core.

Each error carries a machine-readable code, a human-readable message and the
HTTP status the API renders it with. Domain code raises these; the app
installs a single handler that turns them into JSON responses.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse


class MessagingError(Exception):
    """Base exception for all messaging errors."""

    code = "MESSAGING_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code, **self.details}


class ValidationError(MessagingError):
    code = "VALIDATION_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST


class NotFound(MessagingError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class PermissionDenied(MessagingError):
    code = "PERMISSION_DENIED"
    status_code = status.HTTP_403_FORBIDDEN


class NotARecipient(PermissionDenied):
    code = "NOT_A_RECIPIENT"


class HasReplies(MessagingError):
    code = "HAS_REPLIES"
    status_code = status.HTTP_409_CONFLICT


class StorageUnavailable(MessagingError):
    code = "STORAGE_UNAVAILABLE"
    status_code = status.HTTP_502_BAD_GATEWAY


class PersistenceError(MessagingError):
    code = "PERSISTENCE_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class RateLimited(MessagingError):
    code = "RATE_LIMITED"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS


async def messaging_error_handler(request: Request, exc: MessagingError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import HTTPException


class ErrorType(str, Enum):
    VALIDATION = "VALIDATION"
    AUTHENTICATION = "AUTHENTICATION"
    AUTHORIZATION = "AUTHORIZATION"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMIT = "RATE_LIMIT"
    EXTERNAL_API = "EXTERNAL_API"
    INTERNAL = "INTERNAL"


class StudioError(HTTPException):
    status_code = 500
    error_type = ErrorType.INTERNAL

    def __init__(self, message: str, details: Any = None, retry_after: Optional[int] = None):
        super().__init__(self.status_code, message)
        self.message = message
        self.details = details
        self.retry_after = retry_after

    def body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "type": self.error_type.value}
        if self.details is not None:
            body["details"] = self.details
        if self.retry_after is not None:
            body["retryAfter"] = self.retry_after
        body["timestamp"] = now_iso()
        return body


class ValidationFailed(StudioError):
    status_code = 400
    error_type = ErrorType.VALIDATION


class AuthenticationRequired(StudioError):
    status_code = 401
    error_type = ErrorType.AUTHENTICATION


class Forbidden(StudioError):
    status_code = 403
    error_type = ErrorType.AUTHORIZATION


class NotFound(StudioError):
    status_code = 404
    error_type = ErrorType.NOT_FOUND


class Conflict(StudioError):
    status_code = 409
    error_type = ErrorType.VALIDATION


class RateLimited(StudioError):
    status_code = 429
    error_type = ErrorType.RATE_LIMIT

    def __init__(self, message: str, retry_after: int = 60, details: Any = None):
        super().__init__(message, details=details, retry_after=retry_after)


class ExternalServiceError(StudioError):
    status_code = 502
    error_type = ErrorType.EXTERNAL_API


class StoreError(StudioError):
    """Database or storage failure. The message is logged, never returned."""


class WorkflowGenerationError(StudioError):
    def __init__(self, message: str, step: int, code: str = "GENERATION_FAILED", details: Any = None):
        super().__init__(message, details=details)
        self.step = step
        self.code = code

    def body(self) -> Dict[str, Any]:
        body = super().body()
        body["code"] = self.code
        body["step"] = self.step
        return body


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

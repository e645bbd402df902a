"""Error taxonomy shared by the cache store, remote adapters and scheduler."""
from __future__ import annotations

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Mapping, Optional


class PhotoMirrorError(Exception):
    """Base exception for application errors."""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class TransientNetworkError(PhotoMirrorError):
    """Connectivity, timeout or server-side failure worth retrying."""

    status_code = 503


class ThrottledError(TransientNetworkError):
    """Remote rate limiting."""

    status_code = 429

    def __init__(self, message: str, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(message)


class AuthError(PhotoMirrorError):
    """Token missing, invalid or expired."""

    status_code = 401


class StorageError(PhotoMirrorError):
    """Persistence engine failure; the offending transaction was rolled back."""

    status_code = 500


class ValidationError(PhotoMirrorError):
    """Caller supplied invalid input."""

    status_code = 422


class NotFoundError(ValidationError):
    status_code = 404


class ConstraintViolationError(ValidationError):
    """A referenced album or item does not exist."""

    status_code = 409


class RemoteRequestError(PhotoMirrorError):
    """Non-retryable rejection from the remote service (4xx other than 401/429)."""

    status_code = 502


class ErrorCode(str, Enum):
    AUTH = "auth"
    NETWORK = "network"
    STORAGE = "storage"
    VALIDATION = "validation"
    OTHER = "other"


def error_code(error: BaseException) -> ErrorCode:
    if isinstance(error, AuthError):
        return ErrorCode.AUTH
    if isinstance(error, (TransientNetworkError, TimeoutError, RemoteRequestError)):
        return ErrorCode.NETWORK
    if isinstance(error, StorageError):
        return ErrorCode.STORAGE
    if isinstance(error, ValidationError):
        return ErrorCode.VALIDATION
    return ErrorCode.OTHER


def get_retry_after(headers: Mapping[str, str]) -> Optional[float]:
    """
    Extract a Retry-After value from response headers.

    Args:
        headers: Response headers

    Returns:
        Seconds to wait before retry, or None if absent or unparseable
    """
    retry_after = headers.get("Retry-After")
    if not retry_after:
        return None

    try:
        return max(0.0, float(retry_after))
    except ValueError:
        pass

    try:
        retry_date = parsedate_to_datetime(retry_after)
    except (TypeError, ValueError):
        return None
    if retry_date.tzinfo is None:
        retry_date = retry_date.replace(tzinfo=timezone.utc)
    return max(0.0, (retry_date - datetime.now(timezone.utc)).total_seconds())

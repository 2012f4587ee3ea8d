"""Classification of remote dispatch failures."""

from enum import Enum
from typing import Optional

import httpx

from ..config.settings import settings
from ..utils.logging import get_logger

logger = get_logger(__name__)


class DispatchError(Exception):
    """Base class for failures reported by a remote store."""


class RetryableDispatchError(DispatchError):
    """Transient failure; the same operation may succeed later."""


class NonRetryableDispatchError(DispatchError):
    """The remote store will never accept this operation."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ErrorType(Enum):
    """Classification of error types for appropriate handling."""
    RATE_LIMIT = "rate_limit"      # 429 - try again later
    NETWORK = "network"            # Connection, timeout - transient
    SERVER = "server"              # 5xx - transient
    REJECTED = "rejected"          # Remote refused the operation - drop
    ENCODING = "encoding"          # Payload could not be built or parsed - drop
    UNKNOWN = "unknown"            # Unclassified - retry a few times, then drop


RETRYABLE_TYPES = frozenset({ErrorType.RATE_LIMIT, ErrorType.NETWORK, ErrorType.SERVER})
TERMINAL_TYPES = frozenset({ErrorType.REJECTED, ErrorType.ENCODING})


class ErrorHandler:
    """
    Decide what the write queue does with a failed operation.

    Example:
        >>> handler = ErrorHandler()
        >>> error_type = handler.classify_error(exception)
        >>> if handler.should_retry(error_type, attempt=op.attempts):
        ...     pass  # leave at head, wait for the next flush trigger
    """

    def __init__(self, max_unknown_attempts: Optional[int] = None):
        self.max_unknown_attempts = (
            settings.write_queue_max_unknown_attempts
            if max_unknown_attempts is None
            else max_unknown_attempts
        )

    def classify_error(self, error: BaseException) -> ErrorType:
        """
        Classify error type for appropriate handling.

        Args:
            error: Exception raised by the remote store

        Returns:
            ErrorType enum value
        """
        if isinstance(error, RetryableDispatchError):
            return ErrorType.NETWORK
        if isinstance(error, NonRetryableDispatchError):
            return ErrorType.REJECTED

        # HTTP status errors
        if isinstance(error, httpx.HTTPStatusError):
            status = error.response.status_code
            if status == 429:
                return ErrorType.RATE_LIMIT
            if status >= 500:
                return ErrorType.SERVER
            return ErrorType.REJECTED

        # Network errors - transient, always retry
        if isinstance(error, httpx.TransportError):
            return ErrorType.NETWORK

        # Encoding errors - the payload will never get better
        if isinstance(error, (ValueError, TypeError, KeyError)):
            return ErrorType.ENCODING

        return ErrorType.UNKNOWN

    def should_retry(self, error_type: ErrorType, attempt: int) -> bool:
        """
        Determine if the failed operation should stay at the queue head.

        Args:
            error_type: Type of error that occurred
            attempt: Number of attempts made so far (1-indexed)

        Returns:
            True to keep the operation, False to drop it
        """
        if error_type in RETRYABLE_TYPES:
            return True
        if error_type in TERMINAL_TYPES:
            return False
        # Unknown errors: bounded retries, then drop
        return attempt < self.max_unknown_attempts

    @staticmethod
    def describe(error: BaseException) -> str:
        if isinstance(error, NonRetryableDispatchError):
            return error.reason
        return f"{type(error).__name__}: {error}"

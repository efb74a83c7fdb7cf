# ============================================================================
# src/medical_processing/core/retry.py
# ============================================================================
"""
Error classification and retry policy.

classify_error() maps any exception raised during a processing attempt to an
ErrorCategory; RetryPolicy decides whether and how long to wait before the
next attempt. The controller drives the loop itself.
"""

import asyncio
import errno
from dataclasses import dataclass
from typing import Tuple

import aiohttp
import botocore.exceptions
import openai

from .context.enums import ErrorCategory, RETRYABLE_CATEGORIES
from ..utils.exceptions import MedicalProcessingError


# Message fragments -> category, checked in order (lowercased)
_MESSAGE_PATTERNS = (
    (("already processing",), ErrorCategory.ALREADY_PROCESSING),
    (("timeout", "timed out", "cpu time exceeded"), ErrorCategory.TIMEOUT),
    (("rate limit", "too many requests", "throttl", "429"), ErrorCategory.RATE_LIMIT),
    (("network", "connection reset", "connection refused", "econnreset"), ErrorCategory.NETWORK),
    (("api error", "500", "502", "503", "504", "service unavailable", "bad gateway"),
     ErrorCategory.SERVICE_UNAVAILABLE),
    (("unauthorized", "invalid api key", "credentials", "forbidden", "401", "403"),
     ErrorCategory.AUTHENTICATION),
    (("unsupported file", "unsupported type"), ErrorCategory.UNSUPPORTED_FILE),
    (("could not read", "cannot read", "no text"), ErrorCategory.UNREADABLE_DOCUMENT),
)

_THROTTLING_CODES = {
    "ThrottlingException", "TooManyRequestsException",
    "ProvisionedThroughputExceededException", "LimitExceededException",
}
_SERVICE_DOWN_CODES = {
    "ServiceUnavailable", "ServiceUnavailableException",
    "InternalServerError", "InternalServerException", "InternalFailure",
}
_AUTH_CODES = {
    "AccessDeniedException", "UnrecognizedClientException",
    "InvalidSignatureException", "ExpiredTokenException",
}
_BAD_DOCUMENT_CODES = {
    "UnsupportedDocumentException", "BadDocumentException",
    "DocumentTooLargeException", "InvalidEncodingException",
    "TextSizeLimitExceededException",
}


# Socket-level OSErrors that are not ConnectionError subclasses. Any other
# OSError, such as a permission error, is a local and permanent failure.
_NETWORK_ERRNOS = {
    errno.ENETUNREACH, errno.ENETDOWN, errno.EHOSTUNREACH, errno.EHOSTDOWN,
}


def _status_category(status: int) -> ErrorCategory:
    if status == 429:
        return ErrorCategory.RATE_LIMIT
    if status >= 500:
        return ErrorCategory.SERVICE_UNAVAILABLE
    if status in (401, 403):
        return ErrorCategory.AUTHENTICATION
    if status == 404:
        return ErrorCategory.NOT_FOUND
    return ErrorCategory.MALFORMED_REQUEST


def _categorize(exc: BaseException) -> ErrorCategory:
    if isinstance(exc, MedicalProcessingError):
        return exc.category

    if isinstance(exc, asyncio.TimeoutError):
        return ErrorCategory.TIMEOUT

    # openai SDK (check timeout before connection: it subclasses it)
    if isinstance(exc, openai.APITimeoutError):
        return ErrorCategory.TIMEOUT
    if isinstance(exc, openai.APIConnectionError):
        return ErrorCategory.NETWORK
    if isinstance(exc, openai.RateLimitError):
        return ErrorCategory.RATE_LIMIT
    if isinstance(exc, openai.AuthenticationError):
        return ErrorCategory.AUTHENTICATION
    if isinstance(exc, openai.APIStatusError):
        return _status_category(exc.status_code)

    # aiohttp
    if isinstance(exc, aiohttp.ClientResponseError):
        return _status_category(exc.status)
    if isinstance(exc, aiohttp.ClientError):
        return ErrorCategory.NETWORK

    # boto3 / botocore
    if isinstance(exc, botocore.exceptions.NoCredentialsError):
        return ErrorCategory.AUTHENTICATION
    if isinstance(exc, (
        botocore.exceptions.EndpointConnectionError,
        botocore.exceptions.ConnectionClosedError,
    )):
        return ErrorCategory.NETWORK
    if isinstance(exc, (
        botocore.exceptions.ReadTimeoutError,
        botocore.exceptions.ConnectTimeoutError,
    )):
        return ErrorCategory.TIMEOUT
    if isinstance(exc, botocore.exceptions.ClientError):
        code = exc.response.get("Error", {}).get("Code", "")
        if code in _THROTTLING_CODES:
            return ErrorCategory.RATE_LIMIT
        if code in _SERVICE_DOWN_CODES:
            return ErrorCategory.SERVICE_UNAVAILABLE
        if code in _AUTH_CODES:
            return ErrorCategory.AUTHENTICATION
        if code in _BAD_DOCUMENT_CODES:
            return ErrorCategory.UNREADABLE_DOCUMENT
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if status:
            return _status_category(status)

    if isinstance(exc, TimeoutError):
        return ErrorCategory.TIMEOUT
    if isinstance(exc, ConnectionError):
        return ErrorCategory.NETWORK
    if isinstance(exc, FileNotFoundError):
        return ErrorCategory.NOT_FOUND
    if isinstance(exc, OSError) and exc.errno in _NETWORK_ERRNOS:
        return ErrorCategory.NETWORK

    message = str(exc).lower()
    for fragments, category in _MESSAGE_PATTERNS:
        if any(fragment in message for fragment in fragments):
            return category

    return ErrorCategory.UNKNOWN


def classify_error(exc: BaseException) -> Tuple[ErrorCategory, bool]:
    """
    Classify an exception.

    Returns:
        (category, retryable)
    """
    category = _categorize(exc)
    return category, category in RETRYABLE_CATEGORIES


@dataclass
class RetryPolicy:
    """
    Bounded exponential backoff.

    A job that keeps failing with retryable errors is attempted
    max_retries + 1 times in total.
    """
    max_retries: int = 3
    base_delay: float = 3.0
    max_delay: float = 10.0

    @classmethod
    def from_config(cls, config: dict) -> "RetryPolicy":
        return cls(
            max_retries=config.get("max_retries", 3),
            base_delay=config.get("retry_base_delay_seconds", 3.0),
            max_delay=config.get("retry_max_delay_seconds", 10.0),
        )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def backoff(self, retry_number: int) -> float:
        """Delay before retry `retry_number` (1-based): 3s, 6s, 10s, 10s..."""
        if retry_number < 1:
            return 0.0
        return min(self.base_delay * (2 ** (retry_number - 1)), self.max_delay)

    def should_retry(self, retryable: bool, retries_done: int) -> bool:
        return retryable and retries_done < self.max_retries

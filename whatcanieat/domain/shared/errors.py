"""
Domain exceptions.

Typed exceptions for the analysis pipeline. Every exception carries a
structured ErrorCode so callers and the retry policy can classify
failures without inspecting message text.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Structured failure categories surfaced on failed responses."""

    CONFIGURATION = "CONFIGURATION"
    TRANSPORT = "TRANSPORT"
    TIMEOUT = "TIMEOUT"
    AUTHORIZATION = "AUTHORIZATION"
    RATE_LIMITED = "RATE_LIMITED"
    INVALID_REQUEST = "INVALID_REQUEST"
    PARSE = "PARSE"
    OFFLINE = "OFFLINE"
    TRIAL_LIMIT = "TRIAL_LIMIT"
    CACHE = "CACHE"
    UNKNOWN = "UNKNOWN"


NON_RETRYABLE_CODES = frozenset(
    {
        ErrorCode.AUTHORIZATION,
        ErrorCode.RATE_LIMITED,
        ErrorCode.INVALID_REQUEST,
        ErrorCode.CONFIGURATION,
        ErrorCode.PARSE,
    }
)


# ═══════════════════════════════════════════════════════════
# BASE EXCEPTION
# ═══════════════════════════════════════════════════════════


class DomainError(Exception):
    """
    Base exception for all domain errors.

    All domain-specific exceptions inherit from this.
    Allows catching all domain errors with single except clause.
    """

    code: ErrorCode = ErrorCode.UNKNOWN

    def __init__(self, message: str, code: Optional[ErrorCode] = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


# ═══════════════════════════════════════════════════════════
# CONFIGURATION
# ═══════════════════════════════════════════════════════════


class ConfigurationError(DomainError):
    """
    Missing or invalid provider configuration.

    Raised synchronously when an orchestrator or adapter is built,
    or when a provider switch is requested. Never retried.

    Example:
        >>> raise ConfigurationError("GEMINI_API_KEY is required")
    """

    code = ErrorCode.CONFIGURATION


# ═══════════════════════════════════════════════════════════
# TRANSPORT EXCEPTIONS
# ═══════════════════════════════════════════════════════════


class TransportError(DomainError):
    """
    A network call to a provider failed.

    Retryable unless its code says otherwise.
    """

    code = ErrorCode.TRANSPORT

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        status: Optional[int] = None,
    ) -> None:
        super().__init__(message, code)
        self.status = status


class RequestTimeoutError(TransportError):
    """
    A single attempt exceeded the configured timeout.

    Example:
        >>> raise RequestTimeoutError("Request timeout after 30000ms")
    """

    code = ErrorCode.TIMEOUT


class NonRetryableAPIError(TransportError):
    """
    Provider rejected the call in a way retrying cannot fix.

    Raised when:
    - API key missing, invalid or lacking permission
    - Quota exhausted or rate limited
    - Request malformed

    Example:
        >>> raise NonRetryableAPIError("Invalid API key", code=ErrorCode.AUTHORIZATION)
    """

    code = ErrorCode.INVALID_REQUEST


# ═══════════════════════════════════════════════════════════
# ANALYSIS EXCEPTIONS
# ═══════════════════════════════════════════════════════════


class ParseError(DomainError):
    """
    Model output could not be turned into a structured result.

    Example:
        >>> raise ParseError("No JSON object found in the response.")
    """

    code = ErrorCode.PARSE


class OfflineError(DomainError):
    """No connectivity and no cached result for the request."""

    code = ErrorCode.OFFLINE


class TrialLimitError(DomainError):
    """Trial allowance exhausted; an account is required."""

    code = ErrorCode.TRIAL_LIMIT


# ═══════════════════════════════════════════════════════════
# INFRASTRUCTURE EXCEPTIONS
# ═══════════════════════════════════════════════════════════


class CacheError(DomainError):
    """
    Cache store operation failed.

    The result cache logs these and degrades to a miss.
    """

    code = ErrorCode.CACHE

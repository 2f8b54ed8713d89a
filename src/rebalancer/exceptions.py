"""Error taxonomy for the rebalancer.

Every failure that leaves the calculator, the backtester or a data provider
is one of the classes below. Each carries a stable ``code``, a ``severity``,
and two flags: ``recoverable`` (the caller can succeed by changing inputs)
and ``retryable`` (the same call may succeed if repeated unchanged).
Mapping raw provider failures onto these classes lives in
``rebalancer.classifier``.
"""

from enum import Enum
from typing import Any


class ErrorSeverity(str, Enum):
    """How loudly an error should be surfaced."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RebalancerError(Exception):
    """Base exception for all rebalancer errors."""

    code: str = "REBALANCER_ERROR"
    severity: ErrorSeverity = ErrorSeverity.MEDIUM
    recoverable: bool = True
    retryable: bool = False
    default_user_message: str = "An unexpected error occurred. Please try again."

    def __init__(
        self,
        message: str,
        *,
        user_message: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.user_message = user_message or self.default_user_message
        self.context: dict[str, Any] = context or {}

    def to_dict(self) -> dict:
        """Serialize for API error payloads."""
        return {
            "code": self.code,
            "message": self.message,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "recoverable": self.recoverable,
            "retryable": self.retryable,
            "context": {k: str(v) for k, v in self.context.items()},
        }


class NetworkError(RebalancerError):
    """Transport failure reaching the data provider."""

    code = "NETWORK_ERROR"
    retryable = True
    default_user_message = (
        "Unable to connect to the data source. Check your connection and try again."
    )


class RateLimitedError(RebalancerError):
    """Provider signalled throttling, optionally with a retry-after hint."""

    code = "RATE_LIMITED"
    severity = ErrorSeverity.LOW
    retryable = True
    default_user_message = "Too many requests. Please wait a moment and try again."

    def __init__(
        self,
        message: str,
        *,
        retry_after: float | None = None,
        user_message: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, user_message=user_message, context=context)
        self.retry_after = retry_after


class DataNotFoundError(RebalancerError):
    """No historical series exists for a requested symbol."""

    code = "DATA_NOT_FOUND"
    default_user_message = (
        "Historical data is not available for one of the requested coins. "
        "Try different coins or a different period."
    )


class ServerError(RebalancerError):
    """Provider-side 5xx failure."""

    code = "SERVER_ERROR"
    retryable = True
    default_user_message = (
        "The data service is temporarily unavailable. Please try again in a few minutes."
    )


class ValidationError(RebalancerError):
    """Malformed input to the core; nothing was computed."""

    code = "VALIDATION_ERROR"
    severity = ErrorSeverity.LOW
    default_user_message = "Please check your input parameters and try again."


class InsufficientDataError(RebalancerError):
    """Fewer than two usable snapshots could be constructed."""

    code = "INSUFFICIENT_DATA"
    default_user_message = (
        "Not enough historical data is available for the selected period. "
        "Choose a different date range or different coins."
    )


class CalculationError(RebalancerError):
    """Division by zero or NaN during metrics computation."""

    code = "CALCULATION_ERROR"
    default_user_message = (
        "A calculation error occurred. This may be due to invalid price data."
    )

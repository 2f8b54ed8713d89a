"""Maps low-level provider failures onto the rebalancer error taxonomy.

Handles the three shapes of failure the providers can raise:

- ccxt exceptions (exchange price provider),
- urllib ``HTTPError`` / ``URLError`` (CoinGecko provider),
- anything exposing an HTTP ``status`` / ``status_code`` attribute.

Also owns the retry policy the backtest loader applies to its fetch phase:
``should_retry`` decides whether another attempt is allowed and
``retry_delay`` how long to wait before it.
"""

import urllib.error
from typing import Any

import ccxt

from rebalancer.exceptions import (
    CalculationError,
    DataNotFoundError,
    NetworkError,
    RateLimitedError,
    RebalancerError,
    ServerError,
    ValidationError,
)

# Only transport-level kinds are retried automatically.
AUTO_RETRY_CODES = frozenset(
    {NetworkError.code, RateLimitedError.code, ServerError.code}
)


def _for_symbol(symbol: str | None) -> str:
    return f" for {symbol}" if symbol else ""


def parse_retry_after(value: Any) -> float | None:
    """Parse a Retry-After header value given in seconds.

    HTTP-date values and garbage return None so the caller falls back to
    exponential backoff.
    """
    if value is None:
        return None
    try:
        seconds = float(str(value).strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def _from_status(
    status: int,
    exc: BaseException,
    symbol: str | None,
    headers: Any = None,
) -> RebalancerError:
    context: dict[str, Any] = {"symbol": symbol, "status": status}
    if status == 404:
        return DataNotFoundError(
            f"Historical data not available{_for_symbol(symbol)}",
            context=context,
        )
    if status == 429:
        retry_after = None
        if headers is not None:
            retry_after = parse_retry_after(headers.get("Retry-After"))
        return RateLimitedError(
            f"Rate limit exceeded while fetching data{_for_symbol(symbol)}",
            retry_after=retry_after,
            context={**context, "retry_after": retry_after},
        )
    if status >= 500:
        return ServerError(
            f"Server error while fetching data{_for_symbol(symbol)}",
            context=context,
        )
    if status == 0:
        return NetworkError(
            f"Network error while fetching data{_for_symbol(symbol)}",
            context=context,
        )
    return ValidationError(
        f"Provider rejected the request{_for_symbol(symbol)}: {exc}",
        context=context,
    )


def _from_ccxt(exc: ccxt.BaseError, symbol: str | None) -> RebalancerError | None:
    context: dict[str, Any] = {"symbol": symbol, "error": str(exc)}
    # Subclasses first: RateLimitExceeded < DDoSProtection < NetworkError.
    if isinstance(exc, (ccxt.RateLimitExceeded, ccxt.DDoSProtection)):
        return RateLimitedError(
            f"Exchange throttled the request{_for_symbol(symbol)}",
            context=context,
        )
    if isinstance(exc, ccxt.ExchangeNotAvailable):
        return ServerError(
            f"Exchange unavailable{_for_symbol(symbol)}",
            context=context,
        )
    if isinstance(exc, ccxt.NetworkError):
        return NetworkError(
            f"Network error reaching exchange{_for_symbol(symbol)}",
            context=context,
        )
    if isinstance(exc, ccxt.BadSymbol):
        return DataNotFoundError(
            f"Exchange does not list{_for_symbol(symbol) or ' the symbol'}",
            context=context,
        )
    return None


def classify_error(exc: BaseException, symbol: str | None = None) -> RebalancerError:
    """Return the taxonomy error for ``exc``.

    Already-classified errors are returned unchanged. Anything unrecognised is
    treated as a transport failure (NetworkError), the only retryable fallback.

    Args:
        exc: The raw exception raised by a provider or the core.
        symbol: Symbol being fetched when the failure happened, if any.

    Returns:
        A RebalancerError subclass instance. The caller should raise it
        ``from exc`` to keep the original traceback.
    """
    if isinstance(exc, RebalancerError):
        return exc

    if isinstance(exc, ccxt.BaseError):
        classified = _from_ccxt(exc, symbol)
        if classified is not None:
            return classified

    # HTTPError is a URLError subclass, so it must be checked first.
    if isinstance(exc, urllib.error.HTTPError):
        return _from_status(exc.code, exc, symbol, headers=exc.headers)

    status = getattr(exc, "status", None)
    if status is None:
        status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return _from_status(status, exc, symbol, headers=getattr(exc, "headers", None))

    if isinstance(exc, (urllib.error.URLError, TimeoutError, ConnectionError)):
        return NetworkError(
            f"Network error while fetching data{_for_symbol(symbol)}",
            context={"symbol": symbol, "error": str(exc)},
        )

    # decimal.DivisionByZero and InvalidOperation are ArithmeticErrors too.
    if isinstance(exc, ArithmeticError):
        return CalculationError(
            f"Invalid calculation: {exc!r}",
            context={"symbol": symbol},
        )

    if isinstance(exc, ValueError):
        return ValidationError(str(exc), context={"symbol": symbol})

    return NetworkError(
        f"Unknown error fetching data{_for_symbol(symbol)}: {exc}",
        context={"symbol": symbol, "error": str(exc)},
    )


def should_retry(error: RebalancerError, attempt: int, max_attempts: int = 3) -> bool:
    """Whether a failed attempt (0-based ``attempt``) should be repeated."""
    if not error.retryable or attempt + 1 >= max_attempts:
        return False
    return error.code in AUTO_RETRY_CODES


def retry_delay(
    error: RebalancerError,
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    rate_limit_max_delay: float = 30.0,
) -> float:
    """Seconds to wait before retrying after the given 0-based attempt.

    Rate limits honour the provider's retry-after hint when present and
    otherwise back off exponentially up to ``rate_limit_max_delay``.
    Network and server errors back off exponentially up to ``max_delay``.
    """
    if isinstance(error, RateLimitedError):
        if error.retry_after is not None:
            return error.retry_after
        return min(base_delay * (2**attempt), rate_limit_max_delay)
    if isinstance(error, (NetworkError, ServerError)):
        return min(base_delay * (2**attempt), max_delay)
    return base_delay * attempt

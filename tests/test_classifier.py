"""Tests for error classification and the retry policy."""

import decimal
import urllib.error

import ccxt
import pytest

from rebalancer.classifier import classify_error, parse_retry_after, retry_delay, should_retry
from rebalancer.exceptions import (
    CalculationError,
    DataNotFoundError,
    ErrorSeverity,
    InsufficientDataError,
    NetworkError,
    RateLimitedError,
    ServerError,
    ValidationError,
)


def _http_error(code: int, headers: dict | None = None) -> urllib.error.HTTPError:
    return urllib.error.HTTPError(
        "https://api.example/coins", code, "error", headers or {}, None
    )


class _StatusError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


# ---------------------------------------------------------------------------
# classify_error
# ---------------------------------------------------------------------------


class TestClassifyHttp:
    def test_not_found(self):
        error = classify_error(_http_error(404), symbol="BTC")
        assert isinstance(error, DataNotFoundError)
        assert "BTC" in error.message
        assert error.context["status"] == 404

    def test_rate_limited_with_retry_after(self):
        error = classify_error(_http_error(429, {"Retry-After": "12"}))
        assert isinstance(error, RateLimitedError)
        assert error.retry_after == 12.0

    def test_rate_limited_without_hint(self):
        error = classify_error(_http_error(429))
        assert isinstance(error, RateLimitedError)
        assert error.retry_after is None

    @pytest.mark.parametrize("code", [500, 502, 503])
    def test_server_errors(self, code):
        assert isinstance(classify_error(_http_error(code)), ServerError)

    def test_other_client_error_is_validation(self):
        assert isinstance(classify_error(_http_error(400)), ValidationError)

    def test_status_code_attribute(self):
        assert isinstance(classify_error(_StatusError(502)), ServerError)
        assert isinstance(classify_error(_StatusError(0)), NetworkError)


class TestClassifyCcxt:
    @pytest.mark.parametrize(
        "exc, expected",
        [
            (ccxt.RateLimitExceeded("slow"), RateLimitedError),
            (ccxt.DDoSProtection("blocked"), RateLimitedError),
            (ccxt.ExchangeNotAvailable("maintenance"), ServerError),
            (ccxt.RequestTimeout("timeout"), NetworkError),
            (ccxt.NetworkError("reset"), NetworkError),
            (ccxt.BadSymbol("no such market"), DataNotFoundError),
        ],
    )
    def test_mapping(self, exc, expected):
        assert type(classify_error(exc, symbol="BTC")) is expected


class TestClassifyBuiltins:
    @pytest.mark.parametrize(
        "exc",
        [urllib.error.URLError("dns"), TimeoutError(), ConnectionResetError()],
    )
    def test_transport_failures(self, exc):
        error = classify_error(exc)
        assert isinstance(error, NetworkError)
        assert error.retryable

    @pytest.mark.parametrize("exc", [ZeroDivisionError(), decimal.InvalidOperation()])
    def test_arithmetic_is_calculation(self, exc):
        assert isinstance(classify_error(exc), CalculationError)

    def test_value_error_is_validation(self):
        assert isinstance(classify_error(ValueError("bad date")), ValidationError)

    def test_unknown_falls_back_to_network(self):
        error = classify_error(RuntimeError("???"))
        assert isinstance(error, NetworkError)
        assert "Unknown error" in error.message

    def test_classified_error_returned_unchanged(self):
        original = InsufficientDataError("not enough")
        assert classify_error(original) is original


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------


class TestShouldRetry:
    @pytest.mark.parametrize(
        "error",
        [NetworkError("x"), RateLimitedError("x"), ServerError("x")],
    )
    def test_transport_kinds_retry(self, error):
        assert should_retry(error, attempt=0)
        assert should_retry(error, attempt=1)
        assert not should_retry(error, attempt=2)

    @pytest.mark.parametrize(
        "error",
        [
            DataNotFoundError("x"),
            ValidationError("x"),
            InsufficientDataError("x"),
            CalculationError("x"),
        ],
    )
    def test_other_kinds_never_retry(self, error):
        assert not should_retry(error, attempt=0)


class TestRetryDelay:
    def test_retry_after_wins(self):
        assert retry_delay(RateLimitedError("x", retry_after=12.0), attempt=0) == 12.0

    def test_rate_limit_backoff_capped_at_30(self):
        error = RateLimitedError("x")
        delays = [retry_delay(error, attempt=n) for n in range(7)]
        assert delays == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0]

    def test_network_backoff_capped_at_10(self):
        error = NetworkError("x")
        delays = [retry_delay(error, attempt=n) for n in range(5)]
        assert delays == [1.0, 2.0, 4.0, 8.0, 10.0]

    def test_server_uses_network_schedule(self):
        assert retry_delay(ServerError("x"), attempt=3, base_delay=0.5) == 4.0


class TestParseRetryAfter:
    @pytest.mark.parametrize(
        "value, expected",
        [(" 5 ", 5.0), ("0", 0.0), (3, 3.0), (None, None), ("-1", None), ("Wed, 21 Oct", None)],
    )
    def test_values(self, value, expected):
        assert parse_retry_after(value) == expected


# ---------------------------------------------------------------------------
# Exception payloads
# ---------------------------------------------------------------------------


class TestErrorPayload:
    def test_to_dict(self):
        error = RateLimitedError("throttled", context={"symbol": "BTC"})
        payload = error.to_dict()

        assert payload["code"] == "RATE_LIMITED"
        assert payload["severity"] == ErrorSeverity.LOW.value
        assert payload["retryable"] is True
        assert payload["recoverable"] is True
        assert payload["context"] == {"symbol": "BTC"}
        assert payload["user_message"].startswith("Too many requests")

    def test_custom_user_message(self):
        error = ValidationError("bad", user_message="Pick an end date after the start date.")
        assert error.user_message == "Pick an end date after the start date."
        assert str(error) == "bad"

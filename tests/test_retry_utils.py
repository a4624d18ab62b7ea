"""Tests for retry utilities with exponential backoff."""

import asyncio
import unittest
from unittest.mock import AsyncMock, patch

import httpx

from linkhive.utils.retry_utils import (
    calculate_backoff_delay,
    is_transient_error,
    retry_with_backoff,
)


class TestIsTransientError(unittest.TestCase):
    """Test suite for transient error detection."""

    def test_timeout_error_is_transient(self):
        """Test that timeout errors are detected as transient."""
        assert is_transient_error(TimeoutError("Connection timeout"))

    def test_connection_error_in_message(self):
        """Test that connection errors in message are transient."""
        assert is_transient_error(Exception("Connection reset by peer"))

    def test_rate_limit_error_is_transient(self):
        """Test that rate limit errors are transient."""
        assert is_transient_error(Exception("Rate limit exceeded, try again later"))

    def test_gateway_errors_are_transient(self):
        """Test that gateway errors are transient."""
        assert is_transient_error(Exception("502 Bad Gateway"))
        assert is_transient_error(Exception("504 Gateway Timeout"))

    def test_offline_message_is_transient(self):
        assert is_transient_error(Exception("The device is offline"))

    def test_httpx_transport_errors_are_transient(self):
        """Test that httpx transport failures are recognised by type name."""
        assert is_transient_error(httpx.ConnectError("refused"))
        assert is_transient_error(httpx.ReadTimeout("slow"))

    def test_validation_error_is_not_transient(self):
        """Test that a rejected payload is not treated as transient."""
        assert not is_transient_error(ValueError("url is required"))

    def test_permission_error_is_not_transient(self):
        assert not is_transient_error(Exception("permission denied for table links"))


class TestCalculateBackoffDelay(unittest.TestCase):
    def test_delay_grows_exponentially(self):
        with patch("linkhive.utils.retry_utils.random.random", return_value=0.0):
            delays = [calculate_backoff_delay(attempt, 0.5, 100.0) for attempt in range(4)]
        assert delays == [0.5, 1.0, 2.0, 4.0]

    def test_delay_is_capped(self):
        with patch("linkhive.utils.retry_utils.random.random", return_value=0.0):
            assert calculate_backoff_delay(10, 0.5, 8.0) == 8.0

    def test_jitter_is_proportional(self):
        with patch("linkhive.utils.retry_utils.random.random", return_value=1.0):
            assert calculate_backoff_delay(0, 1.0, 8.0, jitter=0.1) == 1.1


class TestRetryWithBackoff(unittest.TestCase):
    """Test suite for retry_with_backoff function."""

    def test_successful_operation_no_retry(self):
        """Test that successful operations don't retry."""
        func = AsyncMock(return_value="success")

        result = asyncio.run(retry_with_backoff(func, should_retry=lambda exc: True))

        assert result == "success"
        assert func.call_count == 1

    def test_retries_accepted_failures(self):
        """Test that failures accepted by should_retry are retried."""
        func = AsyncMock(side_effect=[ConnectionError("reset"), ConnectionError("reset"), "ok"])

        result = asyncio.run(
            retry_with_backoff(
                func,
                should_retry=lambda exc: isinstance(exc, ConnectionError),
                max_retries=2,
                base_delay=0.001,
                max_delay=0.01,
            )
        )

        assert result == "ok"
        assert func.call_count == 3

    def test_non_retryable_failure_raises_immediately(self):
        """Test that failures rejected by should_retry are re-raised unchanged."""
        func = AsyncMock(side_effect=ValueError("bad payload"))

        with self.assertRaises(ValueError):
            asyncio.run(retry_with_backoff(func, should_retry=lambda exc: False, max_retries=3))

        assert func.call_count == 1

    def test_last_failure_is_raised_after_exhaustion(self):
        """Test that the final failure propagates once retries are exhausted."""
        func = AsyncMock(side_effect=ConnectionError("still down"))

        with self.assertRaises(ConnectionError) as ctx:
            asyncio.run(
                retry_with_backoff(
                    func,
                    should_retry=lambda exc: True,
                    max_retries=2,
                    base_delay=0.001,
                    max_delay=0.01,
                )
            )

        assert "still down" in str(ctx.exception)
        assert func.call_count == 3

    def test_zero_retries_calls_once(self):
        func = AsyncMock(side_effect=ConnectionError("down"))

        with self.assertRaises(ConnectionError):
            asyncio.run(retry_with_backoff(func, should_retry=lambda exc: True, max_retries=0))

        assert func.call_count == 1


if __name__ == "__main__":
    unittest.main()

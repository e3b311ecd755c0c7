"""
Tests for the shared retry policy.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from azure.core.exceptions import ClientAuthenticationError, HttpResponseError, ServiceRequestError

from azure_resource_auditor.utils.retry import MAX_DELAY_SECONDS, RetryPolicy, is_transient_error


def http_error(status_code):
    error = HttpResponseError(message=f"status {status_code}")
    error.status_code = status_code
    return error


class TestTransientErrors:
    """Tests for transient error classification."""

    @pytest.mark.parametrize("status_code", [408, 429, 500, 503])
    def test_throttling_and_server_errors(self, status_code):
        """Throttling and 5xx responses are retried."""
        assert is_transient_error(http_error(status_code))

    @pytest.mark.parametrize("status_code", [400, 403, 404])
    def test_client_errors(self, status_code):
        """Client errors are permanent."""
        assert not is_transient_error(http_error(status_code))

    def test_connection_errors(self):
        """Network failures are transient; authentication failures are not."""
        assert is_transient_error(ServiceRequestError("connection reset"))
        assert is_transient_error(TimeoutError())
        assert not is_transient_error(ClientAuthenticationError("expired token"))
        assert not is_transient_error(ValueError("bad"))


class TestRetryPolicy:
    """Tests for RetryPolicy.call."""

    def test_retries_then_succeeds(self):
        """Transient failures are retried up to the attempt limit."""
        func = MagicMock(side_effect=[http_error(429), http_error(503), "ok"])
        policy = RetryPolicy(attempts=3, delay_seconds=0)

        assert policy.call(func, "scope", top=1) == "ok"
        assert func.call_count == 3
        func.assert_called_with("scope", top=1)

    def test_reraises_last_error(self):
        """The final transient error propagates unchanged."""
        func = MagicMock(side_effect=http_error(503))
        policy = RetryPolicy(attempts=2, delay_seconds=0)

        with pytest.raises(HttpResponseError):
            policy.call(func)
        assert func.call_count == 2

    def test_permanent_error_not_retried(self):
        """Permanent errors fail on the first attempt."""
        func = MagicMock(side_effect=http_error(404))

        with pytest.raises(HttpResponseError):
            RetryPolicy(attempts=5, delay_seconds=0).call(func)
        assert func.call_count == 1

    def test_attempts_floor(self):
        """At least one attempt is always made."""
        policy = RetryPolicy(attempts=0, delay_seconds=-1)
        assert policy.attempts == 1
        assert policy.delay_seconds == 0.0

    def test_backoff_doubles_up_to_cap(self):
        """Waits start at the configured delay and double until the cap."""
        wait = RetryPolicy(attempts=5, delay_seconds=2)._retrying().wait

        waits = [wait(SimpleNamespace(attempt_number=n)) for n in (1, 2, 3, 10)]

        assert waits == [2, 4, 8, MAX_DELAY_SECONDS]

"""Tests for error types and retryable-error classification."""

import asyncio
import errno

import httpx
import pytest

from ronin_onvif.exceptions import (
    DiscoveryError,
    InvalidResponseError,
    NoActiveSubscriptionError,
    SOAPFaultError,
    is_retryable_error,
)


class TestIsRetryableError:
    """Tests for is_retryable_error."""

    @pytest.mark.parametrize(
        "error",
        [
            httpx.ConnectError("Connection refused"),
            httpx.ConnectTimeout("timed out"),
            httpx.ReadTimeout("timed out"),
            httpx.ReadError("Connection reset by peer"),
            ConnectionRefusedError(errno.ECONNREFUSED, "refused"),
            ConnectionResetError(errno.ECONNRESET, "reset"),
            asyncio.TimeoutError(),
            OSError(errno.ENETUNREACH, "Network is unreachable"),
            OSError(errno.EHOSTUNREACH, "No route to host"),
            OSError(errno.ETIMEDOUT, "Timed out"),
        ],
    )
    def test_network_failures_are_retryable(self, error: Exception) -> None:
        assert is_retryable_error(error)

    @pytest.mark.parametrize(
        "error",
        [
            SOAPFaultError("HTTP error! status: 500", status_code=500),
            InvalidResponseError("PullMessages"),
            NoActiveSubscriptionError(),
            ValueError("bad"),
            OSError(errno.EACCES, "Permission denied"),
        ],
    )
    def test_other_failures_are_not(self, error: Exception) -> None:
        assert not is_retryable_error(error)

    def test_wrapped_cause(self) -> None:
        """A network failure in the cause chain is still retryable."""
        try:
            try:
                raise ConnectionRefusedError(errno.ECONNREFUSED, "refused")
            except ConnectionRefusedError as e:
                raise RuntimeError("request failed") from e
        except RuntimeError as wrapped:
            assert is_retryable_error(wrapped)


class TestErrorMessages:
    """Tests for error construction."""

    def test_invalid_response(self) -> None:
        assert str(InvalidResponseError("Renew")) == "Invalid Renew response"
        error = InvalidResponseError("CreatePullPointSubscription", "no subscription address")
        assert error.operation == "CreatePullPointSubscription"
        assert str(error).endswith(": no subscription address")

    def test_soap_fault_unauthorized(self) -> None:
        assert SOAPFaultError("x", status_code=401).is_unauthorized
        assert SOAPFaultError("x", fault_code="ter:NotAuthorized").is_unauthorized
        assert SOAPFaultError("x", raw="Sender not authorized").is_unauthorized
        assert not SOAPFaultError("x", status_code=500, reason="Action failed").is_unauthorized

    def test_discovery_error(self) -> None:
        error = DiscoveryError([ValueError("a"), ValueError("b")])
        assert len(error.errors) == 2
        assert "2 error(s)" in str(error)

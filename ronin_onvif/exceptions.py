"""Exception types raised by the ONVIF client and event subscriber."""

import asyncio
import errno
from typing import Optional

import httpx

# errno values treated as transient network conditions
RETRYABLE_ERRNOS = frozenset(
    {
        errno.ECONNREFUSED,
        errno.ECONNRESET,
        errno.ETIMEDOUT,
        errno.ENETUNREACH,
        errno.EHOSTUNREACH,
    }
)


class ONVIFError(Exception):
    """Base class for all ONVIF client errors."""


class InvalidResponseError(ONVIFError):
    """The device reply lacks an expected top-level field."""

    def __init__(self, operation: str, detail: Optional[str] = None):
        self.operation = operation
        message = f"Invalid {operation} response"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class NotConnectedError(ONVIFError):
    """A device, media or PTZ call was made before ``connect`` succeeded."""

    def __init__(self, host: str):
        super().__init__(f"ONVIF client for {host} is not connected")


class NoActiveSubscriptionError(ONVIFError):
    """A subscription follow-up call was made before any subscription exists."""

    def __init__(self, message: str = "No active subscription. Call create_subscription first."):
        super().__init__(message)


class SOAPFaultError(ONVIFError):
    """The device answered with an HTTP error status or a SOAP Fault."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        fault_code: Optional[str] = None,
        reason: Optional[str] = None,
        raw: str = "",
    ):
        super().__init__(message)
        self.status_code = status_code
        self.fault_code = fault_code
        self.reason = reason
        self.raw = raw

    @property
    def is_unauthorized(self) -> bool:
        """True when the fault indicates rejected credentials."""
        if self.status_code in (401, 403):
            return True
        text = " ".join(filter(None, [self.fault_code, self.reason, self.raw])).lower()
        return "notauthorized" in text or "not authorized" in text


class DiscoveryError(ONVIFError):
    """One or more discovery responses could not be processed."""

    def __init__(self, errors: list[Exception]):
        self.errors = errors
        super().__init__(f"{len(errors)} error(s) occurred during discovery")


def _iter_causes(exc: BaseException):
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def is_retryable_error(exc: BaseException) -> bool:
    """Check whether a failure is a transient network condition.

    Retryable failures are connection refused/reset, timeouts and
    network/host unreachable. Protocol faults, malformed responses and
    anything else are not retryable.
    """
    for cause in _iter_causes(exc):
        if isinstance(cause, ONVIFError):
            continue
        if isinstance(cause, (httpx.TimeoutException, httpx.ConnectError)):
            return True
        if isinstance(cause, (httpx.ReadError, httpx.WriteError)):
            return True
        if isinstance(
            cause,
            (TimeoutError, asyncio.TimeoutError, ConnectionRefusedError, ConnectionResetError),
        ):
            return True
        if isinstance(cause, OSError) and cause.errno in RETRYABLE_ERRNOS:
            return True
    return False

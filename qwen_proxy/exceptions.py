"""
Exception types raised by the OAuth client, the credential store and the
upstream forwarder.
"""

from typing import Optional


class QwenProxyError(Exception):
    """Base class for all qwen-proxy errors."""


class AuthError(QwenProxyError):
    """Raised when an OAuth exchange with the provider fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DeviceFlowCancelledError(AuthError):
    """Raised when the caller cancels a device authorization flow."""

    def __init__(self):
        super().__init__("Device authorization cancelled")


class SlowDownError(QwenProxyError):
    """
    Raised when the provider answers a token poll with slow_down (RFC 8628).

    This is a signal to poll less often, not a failure.
    """

    def __init__(self):
        super().__init__("slow_down: server requested increased polling interval")


class DeviceFlowTimeoutError(QwenProxyError, TimeoutError):
    """Raised when the user does not authorize the device in time."""

    def __init__(self, timeout: float):
        super().__init__(f"Device authorization timed out after {timeout:g}s")
        self.timeout = timeout


class AccountError(QwenProxyError):
    """Base class for account-state errors from the credential store."""


class AccountNotFoundError(AccountError):
    def __init__(self, ref: str):
        super().__init__(f"Account not found: {ref}")
        self.ref = ref


class AccountDisabledError(AccountError):
    def __init__(self, name: str):
        super().__init__(f"Account is disabled: {name}")
        self.name = name


class CredentialsExpiredError(AccountError):
    def __init__(self, name: str):
        super().__init__(
            f"Token expired for account {name} and no refresh token available."
        )
        self.name = name


class UpstreamError(QwenProxyError):
    """
    Raised when the upstream API answers with a non-2xx status.

    Attributes:
        status_code: Upstream HTTP status
        body: Raw upstream response body
        content_type: Upstream Content-Type header, if any
    """

    def __init__(
        self, status_code: int, body: bytes, content_type: Optional[str] = None
    ):
        super().__init__(f"Upstream API error: HTTP {status_code}")
        self.status_code = status_code
        self.body = body
        self.content_type = content_type


class NetworkError(QwenProxyError):
    """Raised when the upstream API cannot be reached."""

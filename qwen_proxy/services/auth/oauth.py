"""
OAuth module for the Qwen device authorization flow (RFC 8628) with PKCE
(RFC 7636), plus refresh-token exchange.
"""

import asyncio
import base64
import hashlib
import json
import logging
import secrets
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import httpx

from ...config import (
    CLIENT_ID,
    DEVICE_CODE_ENDPOINT,
    DEVICE_FLOW_TIMEOUT,
    DEVICE_GRANT_TYPE,
    DEVICE_POLL_INTERVAL,
    DEVICE_POLL_MAX_INTERVAL,
    OAUTH_TIMEOUT,
    SCOPE,
    SLOW_DOWN_MULTIPLIER,
    TOKEN_ENDPOINT,
)
from ...exceptions import (
    AuthError,
    DeviceFlowCancelledError,
    DeviceFlowTimeoutError,
    SlowDownError,
)
from ...utils import create_http_client
from .credentials import Credentials

logger = logging.getLogger(__name__)

_FORM_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded",
    "Accept": "application/json",
}


@dataclass
class PKCEPair:
    verifier: str
    challenge: str


@dataclass
class DeviceAuthorization:
    """Response of the device-code endpoint."""

    device_code: str
    user_code: str
    verification_uri: Optional[str] = None
    verification_uri_complete: Optional[str] = None
    expires_in: Optional[int] = None
    interval: Optional[float] = None


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def generate_pkce() -> PKCEPair:
    """
    Generate a PKCE code verifier and its S256 challenge.

    Returns:
        PKCEPair with a base64url verifier built from 32 random bytes and
        the base64url SHA-256 digest of that verifier
    """
    verifier = _b64url(secrets.token_bytes(32))
    challenge = _b64url(hashlib.sha256(verifier.encode("ascii")).digest())
    return PKCEPair(verifier=verifier, challenge=challenge)


def _error_message(response: httpx.Response) -> str:
    """Extract the provider's error message from a failed response."""
    try:
        data = response.json()
    except (json.JSONDecodeError, ValueError):
        return response.text or f"HTTP {response.status_code}"
    if isinstance(data, dict):
        return str(
            data.get("error_description")
            or data.get("error")
            or response.text
        )
    return response.text


async def request_device_authorization(code_challenge: str) -> DeviceAuthorization:
    """
    Request a device code and user code from the Qwen OAuth server.

    Args:
        code_challenge: PKCE S256 challenge

    Returns:
        DeviceAuthorization with the codes and verification URL

    Raises:
        AuthError: If the request fails or the response lacks the codes
    """
    form = {
        "client_id": CLIENT_ID,
        "scope": SCOPE,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    headers = {**_FORM_HEADERS, "x-request-id": str(uuid.uuid4())}

    async with create_http_client(OAUTH_TIMEOUT) as client:
        try:
            response = await client.post(
                DEVICE_CODE_ENDPOINT, data=form, headers=headers
            )
        except httpx.RequestError as e:
            raise AuthError(f"Device auth request failed: {e}") from e

    if not response.is_success:
        logger.error(
            f"Device code request failed with status {response.status_code}: "
            f"{response.text}"
        )
        raise AuthError(
            f"Device auth failed: HTTP {response.status_code}: {response.text}",
            response.status_code,
        )

    try:
        data = response.json()
    except (json.JSONDecodeError, ValueError) as e:
        raise AuthError("Invalid device authorization response") from e

    if (
        not isinstance(data, dict)
        or not data.get("device_code")
        or not data.get("user_code")
        or not (data.get("verification_uri_complete") or data.get("verification_uri"))
    ):
        raise AuthError("Invalid device authorization response")

    return DeviceAuthorization(
        device_code=data["device_code"],
        user_code=data["user_code"],
        verification_uri=data.get("verification_uri"),
        verification_uri_complete=(
            data.get("verification_uri_complete") or data.get("verification_uri")
        ),
        expires_in=data.get("expires_in"),
        interval=data.get("interval"),
    )


async def poll_device_token(
    device_code: str, code_verifier: str
) -> Optional[Dict[str, Any]]:
    """
    Poll the token endpoint once for a device authorization.

    Args:
        device_code: Device code from request_device_authorization
        code_verifier: PKCE verifier matching the challenge sent earlier

    Returns:
        Token response dict, or None while authorization is still pending

    Raises:
        SlowDownError: If the server asks to poll less often
        AuthError: For any other failure
    """
    form = {
        "grant_type": DEVICE_GRANT_TYPE,
        "client_id": CLIENT_ID,
        "device_code": device_code,
        "code_verifier": code_verifier,
    }

    async with create_http_client(OAUTH_TIMEOUT) as client:
        try:
            response = await client.post(
                TOKEN_ENDPOINT, data=form, headers=_FORM_HEADERS
            )
        except httpx.RequestError as e:
            raise AuthError(f"Token poll request failed: {e}") from e

    if response.is_success:
        try:
            return response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise AuthError("Token poll returned an invalid response") from e

    try:
        error_data = response.json()
    except (json.JSONDecodeError, ValueError):
        raise AuthError(
            f"Token poll failed: HTTP {response.status_code} {response.reason_phrase}",
            response.status_code,
        )

    error_type = error_data.get("error") if isinstance(error_data, dict) else None
    if response.status_code == 400 and error_type == "authorization_pending":
        return None
    if response.status_code == 429 and error_type == "slow_down":
        raise SlowDownError()

    raise AuthError(
        f"Token poll failed: {_error_message(response)}", response.status_code
    )


async def _wait(seconds: float, cancel_event: Optional[asyncio.Event]) -> None:
    """Sleep between polls; returns early and raises if cancel_event is set."""
    if cancel_event is None:
        await asyncio.sleep(seconds)
        return
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return
    raise DeviceFlowCancelledError()


async def perform_device_auth_flow(
    on_verification_url: Callable[[str, str], None],
    poll_interval: float = DEVICE_POLL_INTERVAL,
    timeout: float = DEVICE_FLOW_TIMEOUT,
    cancel_event: Optional[asyncio.Event] = None,
) -> Credentials:
    """
    Run the full device authorization flow.

    The caller is notified once, synchronously, with the verification URL
    and user code; then the token endpoint is polled until the user
    authorizes, the server rejects the request, or the timeout elapses.

    Args:
        on_verification_url: Called with (verification_url, user_code)
        poll_interval: Initial seconds between polls
        timeout: Wall-clock seconds to wait for authorization
        cancel_event: Optional event that aborts the flow when set

    Returns:
        Credentials for the authorized account

    Raises:
        AuthError: If the provider rejects the flow
        DeviceFlowCancelledError: If cancel_event is set while waiting
        DeviceFlowTimeoutError: If no token arrives within timeout
    """
    pkce = generate_pkce()
    device_auth = await request_device_authorization(pkce.challenge)

    on_verification_url(device_auth.verification_uri_complete, device_auth.user_code)

    start = time.monotonic()
    interval = poll_interval

    while time.monotonic() - start < timeout:
        await _wait(interval, cancel_event)

        try:
            token_data = await poll_device_token(device_auth.device_code, pkce.verifier)
        except SlowDownError:
            interval = min(interval * SLOW_DOWN_MULTIPLIER, DEVICE_POLL_MAX_INTERVAL)
            logger.debug(f"Server requested slow_down, polling every {interval:.1f}s")
            continue

        if token_data is None:
            logger.debug("Authorization pending")
            continue

        logger.info("Device authorization succeeded")
        return Credentials.from_token_response(token_data)

    raise DeviceFlowTimeoutError(timeout)


async def refresh_access_token(refresh_token: str) -> Credentials:
    """
    Exchange a refresh token for new credentials.

    Args:
        refresh_token: Current refresh token

    Returns:
        New Credentials; the given refresh token is kept when the server
        does not rotate it

    Raises:
        AuthError: If the token endpoint rejects the refresh
    """
    form = {
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
        "client_id": CLIENT_ID,
    }

    async with create_http_client(OAUTH_TIMEOUT) as client:
        try:
            response = await client.post(
                TOKEN_ENDPOINT, data=form, headers=_FORM_HEADERS
            )
        except httpx.RequestError as e:
            raise AuthError(f"Token refresh request failed: {e}") from e

    if not response.is_success:
        logger.error(f"Token refresh failed with status {response.status_code}")
        raise AuthError(
            f"Token refresh failed: HTTP {response.status_code}: "
            f"{_error_message(response)}",
            response.status_code,
        )

    try:
        token_data = response.json()
    except (json.JSONDecodeError, ValueError) as e:
        raise AuthError("Token refresh returned an invalid response") from e

    credentials = Credentials.from_token_response(token_data)
    if not credentials.access_token:
        raise AuthError("Token refresh response did not include an access token")
    if not credentials.refresh_token:
        credentials.refresh_token = refresh_token
    return credentials

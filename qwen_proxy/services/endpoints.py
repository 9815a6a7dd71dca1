"""
Endpoint resolution: maps an account's resource URL to an upstream API base
URL and builds the provider-specific request headers.
"""

from typing import Any, Dict

from ..config import (
    DASHSCOPE_AUTH_TYPE,
    DASHSCOPE_BASE_URL,
    DASHSCOPE_INTL_BASE_URL,
    DASHSCOPE_USER_AGENT,
    PORTAL_BASE_URL,
)
from .auth.credentials import Credentials


def resolve_base_url(resource_url: Any) -> str:
    """
    Resolve the upstream base URL for a resource URL granted by OAuth.

    Never raises: anything unrecognized resolves to the DashScope endpoint.

    Args:
        resource_url: Provider-issued resource URL (may be None or malformed)

    Returns:
        Base URL without a trailing slash
    """
    if not isinstance(resource_url, str):
        return DASHSCOPE_BASE_URL

    trimmed = resource_url.strip().rstrip("/")
    normalized = trimmed.lower()
    if not normalized:
        return DASHSCOPE_BASE_URL

    if "portal.qwen.ai" in normalized:
        return PORTAL_BASE_URL
    if "dashscope-intl" in normalized:
        return DASHSCOPE_INTL_BASE_URL
    if "dashscope" in normalized:
        return DASHSCOPE_BASE_URL

    if normalized.startswith(("http://", "https://")):
        return trimmed if normalized.endswith("/v1") else f"{trimmed}/v1"

    return DASHSCOPE_BASE_URL


def build_headers(credentials: Credentials) -> Dict[str, str]:
    """
    Build upstream request headers for a set of credentials.

    DashScope needs its vendor headers to attribute OAuth traffic correctly.

    Args:
        credentials: Valid credentials for the selected account

    Returns:
        Header dict for the upstream request
    """
    headers = {
        "Authorization": f"{credentials.token_type or 'Bearer'} {credentials.access_token}",
        "Content-Type": "application/json",
    }

    if resolve_base_url(credentials.resource_url) == DASHSCOPE_BASE_URL:
        headers["X-DashScope-CacheControl"] = "enable"
        headers["X-DashScope-UserAgent"] = DASHSCOPE_USER_AGENT
        headers["X-DashScope-AuthType"] = DASHSCOPE_AUTH_TYPE

    return headers

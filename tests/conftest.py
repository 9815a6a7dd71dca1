"""Shared fixtures for qwen-proxy tests."""

from typing import Callable

import httpx
import pytest

from qwen_proxy.services.auth import (
    Credentials,
    CredentialStore,
    set_account_router,
    set_credential_store,
)
from qwen_proxy.utils import now_ms

HOUR_MS = 60 * 60 * 1000


def make_credentials(
    access_token: str = "access-token",
    refresh_token: str = "refresh-token",
    expires_in_ms: int = HOUR_MS,
    resource_url: str = "portal.qwen.ai",
) -> Credentials:
    """Build credentials expiring relative to the current time."""
    return Credentials(
        access_token=access_token,
        refresh_token=refresh_token,
        resource_url=resource_url,
        expiry_date=now_ms() + expires_in_ms,
    )


def mock_client_factory(handler: Callable[[httpx.Request], httpx.Response]):
    """Stand-in for create_http_client that routes requests to handler."""

    def factory(*args, **kwargs) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return factory


@pytest.fixture
def store(tmp_path):
    """A credential store backed by a temporary accounts file."""
    return CredentialStore(path=str(tmp_path / "accounts.json"))


@pytest.fixture(autouse=True)
def reset_singletons():
    """Each test starts without process-wide store or router."""
    set_credential_store(None)
    set_account_router(None)
    yield
    set_credential_store(None)
    set_account_router(None)

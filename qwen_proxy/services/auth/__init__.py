"""
Authentication module for qwen-proxy.
Handles the Qwen OAuth device flow and multi-account credential storage.
Supports multiple accounts with default or least-recently-used routing.

This module is split into focused submodules:
- oauth: device authorization flow and token refresh
- credentials: account data model and expiry checks
- credential_store: persisted account store and credential validation
- account_router: per-request account selection
"""

from .account_router import (
    AccountRouter,
    RoutingStrategy,
    get_account_router,
    set_account_router,
)

from .credential_store import (
    AccountSummary,
    CredentialStore,
    get_credential_store,
    resolve_account,
    set_credential_store,
)

from .credentials import (
    Account,
    AccountStore,
    Credentials,
    get_time_until_expiry,
    is_expired,
)

from .oauth import (
    DeviceAuthorization,
    PKCEPair,
    generate_pkce,
    perform_device_auth_flow,
    poll_device_token,
    refresh_access_token,
    request_device_authorization,
)

__all__ = [
    # Routing
    "AccountRouter",
    "RoutingStrategy",
    "get_account_router",
    "set_account_router",
    # Store
    "AccountSummary",
    "CredentialStore",
    "get_credential_store",
    "resolve_account",
    "set_credential_store",
    # Data model
    "Account",
    "AccountStore",
    "Credentials",
    "get_time_until_expiry",
    "is_expired",
    # OAuth
    "DeviceAuthorization",
    "PKCEPair",
    "generate_pkce",
    "perform_device_auth_flow",
    "poll_device_token",
    "refresh_access_token",
    "request_device_authorization",
]

"""
Credentials module: the account data model and its JSON representation.

The persisted document keeps the camelCase keys used by earlier releases of
qwen-proxy so existing accounts.json files load unchanged.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ...config import TOKEN_REFRESH_BUFFER_MS
from ...utils import generate_account_id, now_ms

logger = logging.getLogger(__name__)


def _optional_int(value: Any) -> Optional[int]:
    """Coerce a persisted timestamp to int, or None if it is not numeric."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class Credentials:
    """OAuth credentials for a single Qwen account."""

    access_token: Optional[str]
    token_type: str = "Bearer"
    refresh_token: Optional[str] = None
    resource_url: Optional[str] = None
    expiry_date: Optional[int] = None  # epoch milliseconds
    scope: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Credentials":
        """Build credentials from the persisted camelCase form."""
        expiry = data.get("expiryDate")
        return cls(
            access_token=data.get("accessToken"),
            token_type=data.get("tokenType") or "Bearer",
            refresh_token=data.get("refreshToken"),
            resource_url=data.get("resourceUrl"),
            expiry_date=int(expiry) if expiry is not None else None,
            scope=data.get("scope"),
        )

    @classmethod
    def from_token_response(
        cls, token_data: Dict[str, Any], issued_at_ms: Optional[int] = None
    ) -> "Credentials":
        """
        Build credentials from an OAuth token endpoint response.

        Args:
            token_data: Parsed token JSON (snake_case, as sent by the provider)
            issued_at_ms: Reference time for expires_in (defaults to now)

        Returns:
            Credentials with expiry_date = issued_at + expires_in * 1000
        """
        issued_at_ms = now_ms() if issued_at_ms is None else issued_at_ms
        expires_in = token_data.get("expires_in")
        return cls(
            access_token=token_data.get("access_token"),
            token_type=token_data.get("token_type") or "Bearer",
            refresh_token=token_data.get("refresh_token"),
            resource_url=token_data.get("resource_url"),
            expiry_date=(
                issued_at_ms + int(float(expires_in) * 1000)
                if expires_in is not None
                else None
            ),
            scope=token_data.get("scope"),
        )

    @classmethod
    def from_qwen_code(cls, data: Dict[str, Any]) -> "Credentials":
        """Build credentials from a qwen-code CLI oauth_creds.json document."""
        expiry = data.get("expiry_date")
        return cls(
            access_token=data.get("access_token"),
            token_type=data.get("token_type") or "Bearer",
            refresh_token=data.get("refresh_token"),
            resource_url=data.get("resource_url"),
            expiry_date=int(expiry) if expiry is not None else None,
            scope=data.get("scope"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accessToken": self.access_token,
            "tokenType": self.token_type,
            "refreshToken": self.refresh_token,
            "resourceUrl": self.resource_url,
            "expiryDate": self.expiry_date,
            "scope": self.scope,
        }


@dataclass
class Account:
    """A named, persisted set of credentials plus usage statistics."""

    id: str
    name: str
    credentials: Credentials
    enabled: bool = True
    created_at: int = field(default_factory=now_ms)
    last_used: Optional[int] = None
    request_count: int = 0

    @classmethod
    def create(cls, name: str, credentials: Credentials) -> "Account":
        return cls(id=generate_account_id(), name=name, credentials=credentials)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Account":
        """
        Build an account from its persisted form.

        Raises:
            TypeError: If the entry or its credentials are not JSON objects
        """
        if not isinstance(data, dict):
            raise TypeError("account entry is not an object")
        if not isinstance(data["id"], str):
            raise TypeError("account id is not a string")
        credentials = data.get("credentials") or {}
        if not isinstance(credentials, dict):
            raise TypeError("credentials are not an object")
        return cls(
            id=data["id"],
            name=data.get("name") or data["id"],
            credentials=Credentials.from_dict(credentials),
            enabled=bool(data.get("enabled", True)),
            created_at=_optional_int(data.get("createdAt")) or 0,
            last_used=_optional_int(data.get("lastUsed")),
            request_count=int(data.get("requestCount") or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "credentials": self.credentials.to_dict(),
            "createdAt": self.created_at,
            "lastUsed": self.last_used,
            "requestCount": self.request_count,
            "enabled": self.enabled,
        }


@dataclass
class AccountStore:
    """Root of the persisted accounts document."""

    accounts: Dict[str, Account] = field(default_factory=dict)
    default_account_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccountStore":
        """
        Build a store from the persisted document.

        Entries that cannot be parsed are skipped with a warning so that one
        damaged account does not make the others unusable.
        """
        accounts: Dict[str, Account] = {}
        raw_accounts = data.get("accounts") or {}
        if not isinstance(raw_accounts, dict):
            logger.warning("Ignoring malformed 'accounts' section in account store")
            raw_accounts = {}

        for key, raw in raw_accounts.items():
            try:
                account = Account.from_dict({"id": key, **raw})
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed account entry {key!r}: {e}")
                continue
            accounts[account.id] = account

        default_id = data.get("defaultAccountId")
        if default_id is not None and not isinstance(default_id, str):
            logger.warning(f"Ignoring malformed defaultAccountId {default_id!r}")
            default_id = next(iter(accounts), None)
        elif default_id is not None and default_id not in accounts:
            logger.warning(f"Default account {default_id} no longer exists")
            default_id = next(iter(accounts), None)

        return cls(accounts=accounts, default_account_id=default_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accounts": {
                account_id: account.to_dict()
                for account_id, account in self.accounts.items()
            },
            "defaultAccountId": self.default_account_id,
        }

    def enabled_accounts(self):
        return [a for a in self.accounts.values() if a.enabled]


def is_expired(
    credentials: Credentials, buffer_ms: int = TOKEN_REFRESH_BUFFER_MS
) -> bool:
    """
    Check whether credentials are expired or about to expire.

    Credentials without an expiry date or access token count as expired.

    Args:
        credentials: Credentials to check
        buffer_ms: Safety margin subtracted from the expiry date

    Returns:
        True if now > expiry_date - buffer_ms
    """
    if not credentials.access_token or credentials.expiry_date is None:
        return True
    return now_ms() > credentials.expiry_date - buffer_ms


def get_time_until_expiry(credentials: Credentials) -> int:
    """Seconds until the access token expires, floored at 0."""
    if credentials.expiry_date is None:
        return 0
    return max(0, (credentials.expiry_date - now_ms()) // 1000)

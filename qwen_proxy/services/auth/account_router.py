"""
Account routing: picks which stored account serves a request.
"""

import logging
from enum import Enum
from typing import List, Optional

from ...config import DEFAULT_ROUTING_STRATEGY
from .credential_store import CredentialStore, get_credential_store
from .credentials import Account, AccountStore

logger = logging.getLogger(__name__)

_account_router: Optional["AccountRouter"] = None


class RoutingStrategy(str, Enum):
    DEFAULT = "default"
    ROUND_ROBIN = "round-robin"

    @classmethod
    def parse(cls, value: Optional[str]) -> "RoutingStrategy":
        """Parse a strategy name; 'load-balance' is an alias of round-robin."""
        normalized = (value or "").strip().lower()
        if normalized in ("round-robin", "load-balance"):
            return cls.ROUND_ROBIN
        if normalized and normalized != cls.DEFAULT.value:
            logger.warning(f"Unknown routing strategy '{value}', using default")
        return cls.DEFAULT


def _lru_key(account: Account):
    # never-used accounts first, then oldest lastUsed
    return (account.last_used is not None, account.last_used or 0)


class AccountRouter:
    """
    Selects an account per request.

    Both strategies are stateless: round-robin approximates rotation by
    always choosing the least recently used account, so no cursor is kept.
    """

    def __init__(
        self,
        store: Optional[CredentialStore] = None,
        strategy: RoutingStrategy = RoutingStrategy.DEFAULT,
    ):
        self.store = store or get_credential_store()
        self.strategy = RoutingStrategy.parse(strategy)

    async def select_account(self) -> Optional[Account]:
        """
        Pick the account for the next request.

        Returns:
            The selected account, or None if no enabled account exists
        """
        data = await self.store.load()
        if self.strategy == RoutingStrategy.ROUND_ROBIN:
            account = self._select_least_recently_used(data)
        else:
            account = self._select_default(data)

        if account is not None:
            logger.debug(f"Routing request to account {account.name} ({self.strategy.value})")
        return account

    def _select_default(self, data: AccountStore) -> Optional[Account]:
        if data.default_account_id:
            account = data.accounts.get(data.default_account_id)
            if account is not None and account.enabled:
                return account

        enabled = data.enabled_accounts()
        if enabled:
            logger.warning(
                f"Default account unavailable, falling back to {enabled[0].name}"
            )
            return enabled[0]
        return None

    def _select_least_recently_used(self, data: AccountStore) -> Optional[Account]:
        enabled = data.enabled_accounts()
        valid: List[Account] = [
            a for a in enabled if not self.store.is_expired(a.credentials)
        ]
        if valid:
            return min(valid, key=_lru_key)

        # nothing valid right now; pick one that can at least be refreshed
        refreshable = [a for a in enabled if a.credentials.refresh_token]
        if refreshable:
            return min(refreshable, key=_lru_key)
        return None


def get_account_router() -> AccountRouter:
    """Get or create the process-wide account router."""
    global _account_router

    if _account_router is None:
        _account_router = AccountRouter(strategy=DEFAULT_ROUTING_STRATEGY)
    return _account_router


def set_account_router(router: Optional[AccountRouter]) -> None:
    """Set the global account router instance (None to reset)."""
    global _account_router
    _account_router = router

"""
Credential Store module for managing multiple Qwen OAuth accounts.

The whole accounts document is the unit of update: every mutation is a
read-modify-write transaction serialized by an in-process lock and, where
the platform supports it, an advisory file lock shared with the CLI.
"""

import asyncio
import json
import logging
import os
import tempfile
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional

from ...config import ACCOUNTS_FILE, QWEN_CODE_CREDENTIAL_FILE, TOKEN_REFRESH_BUFFER_MS
from ...exceptions import (
    AccountDisabledError,
    AccountNotFoundError,
    CredentialsExpiredError,
)
from ...utils import now_ms
from . import oauth
from .credentials import Account, AccountStore, Credentials, is_expired

try:
    import fcntl
except ImportError:  # Windows
    fcntl = None

logger = logging.getLogger(__name__)

_credential_store: Optional["CredentialStore"] = None


@dataclass
class AccountSummary:
    """Account view without tokens, used by listings and /status."""

    id: str
    name: str
    enabled: bool
    resource_url: Optional[str]
    expiry_date: Optional[int]
    is_valid: bool
    request_count: int
    last_used: Optional[int]
    is_default: bool

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "enabled": self.enabled,
            "resourceUrl": self.resource_url,
            "expiryDate": self.expiry_date,
            "isValid": self.is_valid,
            "requestCount": self.request_count,
            "lastUsed": self.last_used,
            "isDefault": self.is_default,
        }


def resolve_account(store: AccountStore, ref: str) -> Account:
    """
    Find an account by id, falling back to name.

    Args:
        store: Loaded account store
        ref: Account id or name

    Returns:
        The matching account (exact id match wins over a name match)

    Raises:
        AccountNotFoundError: If neither an id nor a name matches
    """
    account = store.accounts.get(ref)
    if account is not None:
        return account
    for account in store.accounts.values():
        if account.name == ref:
            return account
    raise AccountNotFoundError(ref)


class CredentialStore:
    """
    Persists Qwen accounts and hands out valid credentials.

    get_valid_credentials() is the single place where stale tokens are
    refreshed; concurrent callers for the same account share one refresh.
    """

    def __init__(
        self,
        path: str = ACCOUNTS_FILE,
        refresh_buffer_ms: int = TOKEN_REFRESH_BUFFER_MS,
    ):
        self.path = path
        self.refresh_buffer_ms = refresh_buffer_ms
        self._lock = asyncio.Lock()
        self._inflight_refreshes: Dict[str, asyncio.Future] = {}

    # --- Persistence ---

    def _read(self) -> AccountStore:
        if not os.path.exists(self.path):
            return AccountStore()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (IOError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read account store {self.path}: {e}")
            return AccountStore()
        if not isinstance(data, dict):
            logger.error(f"Account store {self.path} is not a JSON object")
            return AccountStore()
        return AccountStore.from_dict(data)

    def _write(self, store: AccountStore) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, mode=0o700, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp_", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(store.to_dict(), f, indent=2)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _acquire_file_lock(self) -> Optional[int]:
        if fcntl is None:
            return None
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, mode=0o700, exist_ok=True)
        fd = os.open(f"{self.path}.lock", os.O_RDWR | os.O_CREAT, 0o600)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
        except OSError:
            os.close(fd)
            raise
        return fd

    @staticmethod
    def _release_file_lock(fd: Optional[int]) -> None:
        if fd is None:
            return
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AccountStore]:
        """
        Load the store, yield it for mutation, then save it.

        Nothing is written if the body raises.
        """
        async with self._lock:
            fd = await asyncio.to_thread(self._acquire_file_lock)
            try:
                store = await asyncio.to_thread(self._read)
                yield store
                await asyncio.to_thread(self._write, store)
            finally:
                await asyncio.to_thread(self._release_file_lock, fd)

    async def load(self) -> AccountStore:
        """Return the persisted store, or an empty one if absent or corrupt."""
        return await asyncio.to_thread(self._read)

    async def save(self, store: AccountStore) -> None:
        """Overwrite the persisted store atomically with owner-only permissions."""
        async with self._lock:
            fd = await asyncio.to_thread(self._acquire_file_lock)
            try:
                await asyncio.to_thread(self._write, store)
            finally:
                await asyncio.to_thread(self._release_file_lock, fd)

    # --- Validity ---

    def is_expired(
        self, credentials: Credentials, buffer_ms: Optional[int] = None
    ) -> bool:
        return is_expired(
            credentials,
            self.refresh_buffer_ms if buffer_ms is None else buffer_ms,
        )

    async def get_valid_credentials(self, account_id: str) -> Credentials:
        """
        Get credentials for an account, refreshing them if they are stale.

        Args:
            account_id: Account id

        Returns:
            Credentials that are valid for at least the refresh buffer

        Raises:
            AccountNotFoundError: If the account does not exist
            AccountDisabledError: If the account is disabled
            CredentialsExpiredError: If the token expired and cannot be refreshed
            AuthError: If the refresh request fails
        """
        store = await self.load()
        account = store.accounts.get(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        if not account.enabled:
            raise AccountDisabledError(account.name)

        credentials = account.credentials
        if not self.is_expired(credentials):
            return credentials

        if not credentials.refresh_token:
            raise CredentialsExpiredError(account.name)

        return await self._refresh_single_flight(account)

    async def _refresh_single_flight(
        self, account: Account, force: bool = False
    ) -> Credentials:
        inflight = self._inflight_refreshes.get(account.id)
        if inflight is None:
            inflight = asyncio.ensure_future(
                self._refresh_and_persist(
                    account.id, account.name, account.credentials, force
                )
            )
            self._inflight_refreshes[account.id] = inflight

            def _forget(future: asyncio.Future, account_id: str = account.id) -> None:
                if self._inflight_refreshes.get(account_id) is future:
                    del self._inflight_refreshes[account_id]
                if not future.cancelled():
                    future.exception()  # mark retrieved

            inflight.add_done_callback(_forget)
        else:
            logger.debug(f"Joining in-flight token refresh for account {account.name}")

        return await asyncio.shield(inflight)

    async def _refresh_and_persist(
        self,
        account_id: str,
        account_name: str,
        current: Credentials,
        force: bool = False,
    ) -> Credentials:
        # The caller's snapshot may predate a refresh that already rotated the
        # refresh token, so work from the stored credentials.
        async with self._lock:
            latest = await asyncio.to_thread(self._read)
        stored = latest.accounts.get(account_id)
        if stored is None:
            raise AccountNotFoundError(account_id)
        rotated = stored.credentials.refresh_token != current.refresh_token
        if (rotated or not force) and not self.is_expired(stored.credentials):
            logger.debug(f"Using credentials already refreshed for {account_name}")
            return stored.credentials
        current = stored.credentials
        if not current.refresh_token:
            raise CredentialsExpiredError(account_name)

        logger.info(f"Refreshing token for account: {account_name}")
        fresh = await oauth.refresh_access_token(current.refresh_token)
        if not fresh.resource_url:
            fresh.resource_url = current.resource_url

        async with self.transaction() as store:
            account = store.accounts.get(account_id)
            if account is None:
                raise AccountNotFoundError(account_id)
            account.credentials = fresh

        logger.info(f"Token refreshed for account: {account_name}")
        return fresh

    async def refresh_account(self, ref: str) -> Account:
        """
        Force a token refresh for an account regardless of expiry.

        Raises:
            AccountNotFoundError: If the account does not exist
            CredentialsExpiredError: If the account has no refresh token
            AuthError: If the refresh request fails
        """
        store = await self.load()
        account = resolve_account(store, ref)
        if not account.credentials.refresh_token:
            raise CredentialsExpiredError(account.name)
        account.credentials = await self._refresh_single_flight(account, force=True)
        return account

    async def record_usage(self, account_id: str) -> None:
        """Bump request statistics for an account. Failures are only logged."""
        try:
            async with self.transaction() as store:
                account = store.accounts.get(account_id)
                if account is None:
                    return
                account.last_used = now_ms()
                account.request_count += 1
        except OSError as e:
            logger.warning(f"Failed to record usage for account {account_id}: {e}")

    # --- Queries ---

    async def get_account(self, ref: str) -> Account:
        store = await self.load()
        return resolve_account(store, ref)

    async def get_default_account(self) -> Optional[Account]:
        store = await self.load()
        if store.default_account_id is None:
            return None
        return store.accounts.get(store.default_account_id)

    async def list_accounts(self) -> List[AccountSummary]:
        store = await self.load()
        return [self.summarize(account, store) for account in store.accounts.values()]

    def summarize(self, account: Account, store: AccountStore) -> AccountSummary:
        return AccountSummary(
            id=account.id,
            name=account.name,
            enabled=account.enabled,
            resource_url=account.credentials.resource_url,
            expiry_date=account.credentials.expiry_date,
            is_valid=not self.is_expired(account.credentials),
            request_count=account.request_count,
            last_used=account.last_used,
            is_default=account.id == store.default_account_id,
        )

    # --- Mutations ---

    async def add_account(
        self, credentials: Credentials, name: Optional[str] = None
    ) -> Account:
        """
        Add a new account; the first account becomes the default.

        Args:
            credentials: OAuth credentials for the account
            name: Human label (defaults to account-N)

        Returns:
            The created account
        """
        async with self.transaction() as store:
            account = Account.create(
                name or f"account-{len(store.accounts) + 1}", credentials
            )
            store.accounts[account.id] = account
            if not store.default_account_id:
                store.default_account_id = account.id
        logger.info(f"Added account {account.name} ({account.id})")
        return account

    async def remove_account(self, ref: str) -> Account:
        """Remove an account, reassigning the default if it was removed."""
        async with self.transaction() as store:
            account = resolve_account(store, ref)
            del store.accounts[account.id]
            if store.default_account_id == account.id:
                store.default_account_id = next(iter(store.accounts), None)
        logger.info(f"Removed account {account.name} ({account.id})")
        return account

    async def set_enabled(self, ref: str, enabled: bool) -> Account:
        async with self.transaction() as store:
            account = resolve_account(store, ref)
            account.enabled = enabled
        logger.info(
            f"Account {account.name} {'enabled' if enabled else 'disabled'}"
        )
        return account

    async def enable_account(self, ref: str) -> Account:
        return await self.set_enabled(ref, True)

    async def disable_account(self, ref: str) -> Account:
        return await self.set_enabled(ref, False)

    async def rename_account(self, ref: str, new_name: str) -> Account:
        async with self.transaction() as store:
            account = resolve_account(store, ref)
            account.name = new_name
        return account

    async def set_default_account(self, ref: str) -> Account:
        async with self.transaction() as store:
            account = resolve_account(store, ref)
            store.default_account_id = account.id
        return account

    async def update_credentials(
        self, account_id: str, credentials: Credentials
    ) -> Account:
        async with self.transaction() as store:
            account = resolve_account(store, account_id)
            account.credentials = credentials
        return account

    async def import_qwen_code_credentials(
        self, path: str = QWEN_CODE_CREDENTIAL_FILE, name: str = "default"
    ) -> Optional[Account]:
        """
        Import the qwen-code CLI's oauth_creds.json as a new account.

        Returns:
            The imported account, or None if the file is missing or unusable
        """
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (IOError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read qwen-code credentials {path}: {e}")
            return None

        if not isinstance(raw, dict) or not raw.get("access_token"):
            logger.warning(f"No access_token in qwen-code credentials {path}")
            return None

        account = await self.add_account(Credentials.from_qwen_code(raw), name)
        logger.info(f"Imported credentials from {path}")
        return account


def get_credential_store() -> CredentialStore:
    """
    Get or create the process-wide credential store.

    Returns:
        The global CredentialStore instance
    """
    global _credential_store

    if _credential_store is None:
        _credential_store = CredentialStore()
    return _credential_store


def set_credential_store(store: Optional[CredentialStore]) -> None:
    """
    Set the global credential store instance.

    Args:
        store: CredentialStore instance or None to reset
    """
    global _credential_store
    _credential_store = store

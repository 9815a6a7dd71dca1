"""Tests for per-request account selection."""

from unittest.mock import patch

import pytest

from qwen_proxy.services.auth import AccountRouter, RoutingStrategy

from conftest import HOUR_MS, make_credentials


class TestRoutingStrategyParse:
    """Tests for RoutingStrategy.parse."""

    def test_known_names(self):
        assert RoutingStrategy.parse("default") is RoutingStrategy.DEFAULT
        assert RoutingStrategy.parse("round-robin") is RoutingStrategy.ROUND_ROBIN

    def test_load_balance_alias(self):
        assert RoutingStrategy.parse("load-balance") is RoutingStrategy.ROUND_ROBIN

    def test_unknown_falls_back_to_default(self):
        assert RoutingStrategy.parse("random") is RoutingStrategy.DEFAULT
        assert RoutingStrategy.parse(None) is RoutingStrategy.DEFAULT


class TestDefaultStrategy:
    """Tests for the default routing strategy."""

    @pytest.mark.asyncio
    async def test_no_accounts(self, store):
        router = AccountRouter(store, RoutingStrategy.DEFAULT)
        assert await router.select_account() is None

    @pytest.mark.asyncio
    async def test_uses_default_account(self, store):
        await store.add_account(make_credentials(), "one")
        second = await store.add_account(make_credentials(), "two")
        await store.set_default_account("two")

        router = AccountRouter(store, RoutingStrategy.DEFAULT)
        assert (await router.select_account()).id == second.id

    @pytest.mark.asyncio
    async def test_disabled_default_falls_back_to_first_enabled(self, store):
        first = await store.add_account(make_credentials(), "one")
        await store.add_account(make_credentials(), "two")
        await store.add_account(make_credentials(), "three")
        await store.disable_account("one")

        router = AccountRouter(store, RoutingStrategy.DEFAULT)
        selected = await router.select_account()
        assert selected.name == "two"
        assert selected.id != first.id

    @pytest.mark.asyncio
    async def test_all_disabled(self, store):
        await store.add_account(make_credentials(), "one")
        await store.disable_account("one")

        router = AccountRouter(store, RoutingStrategy.DEFAULT)
        assert await router.select_account() is None


class TestRoundRobinStrategy:
    """Tests for least-recently-used rotation."""

    @pytest.mark.asyncio
    async def test_rotates_through_three_accounts(self, store):
        """With usage recorded after each request, 3 accounts are each picked once."""
        for name in ("a", "b", "c"):
            await store.add_account(make_credentials(), name)
        router = AccountRouter(store, "round-robin")

        picked = []
        for tick in (1000, 2000, 3000, 4000):
            account = await router.select_account()
            picked.append(account.name)
            with patch(
                "qwen_proxy.services.auth.credential_store.now_ms", return_value=tick
            ):
                await store.record_usage(account.id)

        assert sorted(picked[:3]) == ["a", "b", "c"]
        assert picked[3] == picked[0]

    @pytest.mark.asyncio
    async def test_never_used_first(self, store):
        used = await store.add_account(make_credentials(), "used")
        await store.add_account(make_credentials(), "fresh")
        await store.record_usage(used.id)

        router = AccountRouter(store, RoutingStrategy.ROUND_ROBIN)
        assert (await router.select_account()).name == "fresh"

    @pytest.mark.asyncio
    async def test_skips_expired_when_valid_exists(self, store):
        await store.add_account(make_credentials(expires_in_ms=-HOUR_MS), "stale")
        await store.add_account(make_credentials(), "valid")

        router = AccountRouter(store, RoutingStrategy.ROUND_ROBIN)
        assert (await router.select_account()).name == "valid"

    @pytest.mark.asyncio
    async def test_refreshable_fallback(self, store):
        """With no valid token, an account that can still refresh is chosen."""
        await store.add_account(
            make_credentials(refresh_token=None, expires_in_ms=-HOUR_MS), "dead"
        )
        await store.add_account(make_credentials(expires_in_ms=-HOUR_MS), "stale")

        router = AccountRouter(store, RoutingStrategy.ROUND_ROBIN)
        assert (await router.select_account()).name == "stale"

    @pytest.mark.asyncio
    async def test_nothing_usable(self, store):
        await store.add_account(
            make_credentials(refresh_token=None, expires_in_ms=-HOUR_MS), "dead"
        )
        router = AccountRouter(store, RoutingStrategy.ROUND_ROBIN)
        assert await router.select_account() is None

    @pytest.mark.asyncio
    async def test_disabled_accounts_never_selected(self, store):
        await store.add_account(make_credentials(), "off")
        await store.add_account(make_credentials(), "on")
        await store.disable_account("off")

        router = AccountRouter(store, RoutingStrategy.ROUND_ROBIN)
        for _ in range(3):
            account = await router.select_account()
            assert account.name == "on"
            await store.record_usage(account.id)

"""Tests for the qwen-proxy command-line interface."""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest
from rich.console import Console

from qwen_proxy.cli import build_parser, main
from qwen_proxy.services.auth import set_credential_store

from conftest import make_credentials


@pytest.fixture
def cli_store(store):
    set_credential_store(store)
    return store


def _add(store, name):
    return asyncio.run(store.add_account(make_credentials(), name))


class TestParser:
    """Tests for argument parsing."""

    def test_account_commands_take_ref(self):
        args = build_parser().parse_args(["account", "disable", "work"])
        assert args.ref == "work"

    def test_login_options(self):
        args = build_parser().parse_args(
            ["account", "login", "--name", "home", "--no-browser"]
        )
        assert args.name == "home"
        assert args.no_browser is True

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestAccountCommands:
    """Tests for account management commands."""

    def test_list_empty(self, cli_store, capsys):
        assert main(["account", "list"]) == 0
        assert "No accounts configured" in capsys.readouterr().out

    def test_list_shows_accounts(self, cli_store, capsys):
        _add(cli_store, "work")
        with patch("qwen_proxy.cli.console", Console(width=200)):
            assert main(["account", "list"]) == 0
        assert "work" in capsys.readouterr().out

    def test_disable_and_enable(self, cli_store):
        account = _add(cli_store, "work")

        assert main(["account", "disable", "work"]) == 0
        assert not asyncio.run(cli_store.get_account(account.id)).enabled

        assert main(["account", "enable", account.id]) == 0
        assert asyncio.run(cli_store.get_account(account.id)).enabled

    def test_rename_default_logout(self, cli_store):
        _add(cli_store, "one")
        second = _add(cli_store, "two")

        assert main(["account", "rename", "two", "backup"]) == 0
        assert main(["account", "default", "backup"]) == 0
        assert asyncio.run(cli_store.load()).default_account_id == second.id

        assert main(["account", "logout", "backup"]) == 0
        assert second.id not in asyncio.run(cli_store.load()).accounts

    def test_unknown_account_fails(self, cli_store, capsys):
        assert main(["account", "logout", "ghost"]) == 1
        assert "Account not found: ghost" in capsys.readouterr().out

    def test_login_adds_account(self, cli_store):
        async def fake_flow(on_verification_url):
            on_verification_url("https://chat.qwen.ai/authorize?user_code=X", "X")
            return make_credentials(access_token="from-login")

        with patch("qwen_proxy.cli.perform_device_auth_flow", side_effect=fake_flow), patch(
            "qwen_proxy.cli.webbrowser.open"
        ) as browser:
            assert main(["account", "login", "--name", "laptop", "--no-browser"]) == 0

        browser.assert_not_called()
        accounts = asyncio.run(cli_store.load()).accounts
        (account,) = accounts.values()
        assert account.name == "laptop"
        assert account.credentials.access_token == "from-login"

    def test_import(self, cli_store, tmp_path):
        path = tmp_path / "oauth_creds.json"
        path.write_text(json.dumps({"access_token": "legacy", "expiry_date": 1}))

        assert main(["account", "import", "--path", str(path), "--name", "old"]) == 0
        (account,) = asyncio.run(cli_store.load()).accounts.values()
        assert account.name == "old"

    def test_import_missing_file(self, cli_store, tmp_path):
        assert main(["account", "import", "--path", str(tmp_path / "none.json")]) == 1

    def test_refresh(self, cli_store):
        account = _add(cli_store, "work")
        with patch(
            "qwen_proxy.services.auth.oauth.refresh_access_token",
            new_callable=AsyncMock,
            return_value=make_credentials(access_token="refreshed"),
        ):
            assert main(["account", "refresh", "work"]) == 0

        stored = asyncio.run(cli_store.get_account(account.id))
        assert stored.credentials.access_token == "refreshed"


class TestConfigCommands:
    """Tests for config show/set."""

    def test_set_then_show(self, tmp_path, capsys):
        path = str(tmp_path / "config.json")
        with patch("qwen_proxy.config.CONFIG_FILE", path):
            assert main(["config", "set", "--port", "4000", "--strategy", "load-balance"]) == 0
            assert main(["config", "show"]) == 0

        with open(path, encoding="utf-8") as f:
            saved = json.load(f)
        assert saved["port"] == 4000
        assert saved["routingStrategy"] == "round-robin"
        assert "4000" in capsys.readouterr().out

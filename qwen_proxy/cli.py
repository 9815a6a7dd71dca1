"""
Command-line interface for qwen-proxy: run the server and manage accounts.
"""

import argparse
import asyncio
import logging
import sys
import webbrowser
from datetime import datetime
from typing import List, Optional

from rich.console import Console
from rich.markup import escape as rich_escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .config import (
    APP_VERSION,
    CONFIG_FILE,
    QWEN_CODE_CREDENTIAL_FILE,
    load_proxy_config,
    save_proxy_config,
)
from .exceptions import QwenProxyError
from .services.auth import (
    AccountStore,
    RoutingStrategy,
    get_credential_store,
    get_time_until_expiry,
    perform_device_auth_flow,
)

logger = logging.getLogger(__name__)
console = Console()


def _format_ms(value: Optional[int]) -> str:
    if not value:
        return "-"
    return datetime.fromtimestamp(value / 1000).strftime("%Y-%m-%d %H:%M:%S")


def _format_remaining(seconds: int) -> str:
    if seconds <= 0:
        return "expired"
    hours, rest = divmod(seconds, 3600)
    minutes = rest // 60
    return f"{hours}h {minutes}m" if hours else f"{minutes}m"


def _render_accounts(data: AccountStore) -> Table:
    store = get_credential_store()
    table = Table(title="Qwen accounts")
    table.add_column("", width=1)
    table.add_column("Name", style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Status")
    table.add_column("Expires in")
    table.add_column("Requests", justify="right")
    table.add_column("Last used")

    for account in data.accounts.values():
        summary = store.summarize(account, data)
        if not summary.enabled:
            status = "[yellow]disabled[/yellow]"
        elif summary.is_valid:
            status = "[green]valid[/green]"
        else:
            status = "[red]expired[/red]"
        remaining = get_time_until_expiry(account.credentials)
        table.add_row(
            "*" if summary.is_default else "",
            rich_escape(summary.name),
            summary.id,
            status,
            _format_remaining(remaining),
            str(summary.request_count),
            _format_ms(summary.last_used),
        )
    return table


# --- account commands ---


async def _account_list(args: argparse.Namespace) -> int:
    data = await get_credential_store().load()
    if not data.accounts:
        console.print(
            '[yellow]No accounts configured. Use "qwen-proxy account login" to add one.[/yellow]'
        )
        return 0
    console.print(_render_accounts(data))
    return 0


async def _account_login(args: argparse.Namespace) -> int:
    def show_verification(url: str, user_code: str) -> None:
        console.print(
            Panel(
                Text.from_markup(
                    "1. Visit the URL below to sign in.\n"
                    f"2. Confirm the code [bold yellow]{rich_escape(user_code)}[/bold yellow] "
                    "and authorize the application."
                ),
                title="Qwen OAuth Login",
                style="bold blue",
            )
        )
        console.print(f"[bold]URL:[/bold] [link={url}]{rich_escape(url)}[/link]\n")
        if not args.no_browser:
            try:
                webbrowser.open(url)
            except webbrowser.Error as e:
                logger.warning(f"Failed to open browser: {e}. Open the URL manually.")

    with console.status(
        "[bold green]Waiting for authorization in the browser...[/bold green]",
        spinner="dots",
    ):
        credentials = await perform_device_auth_flow(show_verification)

    account = await get_credential_store().add_account(credentials, args.name)
    console.print(
        f"[bold green]Logged in.[/bold green] Added account "
        f"[bold]{rich_escape(account.name)}[/bold] ({account.id})"
    )
    return 0


async def _account_logout(args: argparse.Namespace) -> int:
    account = await get_credential_store().remove_account(args.ref)
    console.print(f"Removed account [bold]{rich_escape(account.name)}[/bold]")
    return 0


async def _account_default(args: argparse.Namespace) -> int:
    account = await get_credential_store().set_default_account(args.ref)
    console.print(f"Default account is now [bold]{rich_escape(account.name)}[/bold]")
    return 0


async def _account_enable(args: argparse.Namespace) -> int:
    account = await get_credential_store().enable_account(args.ref)
    console.print(f"Enabled account [bold]{rich_escape(account.name)}[/bold]")
    return 0


async def _account_disable(args: argparse.Namespace) -> int:
    account = await get_credential_store().disable_account(args.ref)
    console.print(f"Disabled account [bold]{rich_escape(account.name)}[/bold]")
    return 0


async def _account_rename(args: argparse.Namespace) -> int:
    account = await get_credential_store().rename_account(args.ref, args.new_name)
    console.print(f"Renamed account {account.id} to [bold]{rich_escape(account.name)}[/bold]")
    return 0


async def _account_refresh(args: argparse.Namespace) -> int:
    account = await get_credential_store().refresh_account(args.ref)
    console.print(
        f"Refreshed [bold]{rich_escape(account.name)}[/bold], valid until "
        f"{_format_ms(account.credentials.expiry_date)}"
    )
    return 0


async def _account_import(args: argparse.Namespace) -> int:
    account = await get_credential_store().import_qwen_code_credentials(
        args.path, args.name
    )
    if account is None:
        console.print(f"[red]No usable credentials found in {rich_escape(args.path)}[/red]")
        return 1
    console.print(
        f"Imported [bold]{rich_escape(account.name)}[/bold] ({account.id}) from {rich_escape(args.path)}"
    )
    return 0


# --- config and server commands ---


def _config_show(args: argparse.Namespace) -> int:
    config = load_proxy_config(apply_env=False)
    table = Table(title=f"Configuration ({rich_escape(CONFIG_FILE)})")
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key, value in config.to_dict().items():
        table.add_row(key, str(value))
    console.print(table)
    return 0


def _config_set(args: argparse.Namespace) -> int:
    config = load_proxy_config(apply_env=False)
    if args.host is not None:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.strategy is not None:
        config.routing_strategy = RoutingStrategy.parse(args.strategy).value
    save_proxy_config(config)
    console.print("[green]Configuration saved.[/green]")
    return 0


def _serve(args: argparse.Namespace) -> int:
    from .main import run

    config = load_proxy_config()
    run(
        host=args.host or config.host,
        port=args.port or config.port,
        routing_strategy=args.strategy or config.routing_strategy,
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="qwen-proxy",
        description="OpenAI-compatible proxy for Qwen OAuth accounts",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {APP_VERSION}")
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the proxy server")
    serve.add_argument("--host", help="Interface to bind")
    serve.add_argument("--port", type=int, help="Port to listen on")
    serve.add_argument("--strategy", help="Routing strategy: default or round-robin")
    serve.set_defaults(handler=_serve)

    account = commands.add_parser("account", help="Manage Qwen accounts")
    account_commands = account.add_subparsers(dest="account_command", required=True)

    account_commands.add_parser("list", help="List accounts").set_defaults(
        handler=_account_list
    )

    login = account_commands.add_parser("login", help="Add an account via device login")
    login.add_argument("--name", help="Account name (default: account-N)")
    login.add_argument(
        "--no-browser", action="store_true", help="Do not open a browser"
    )
    login.set_defaults(handler=_account_login)

    for name, help_text, handler in (
        ("logout", "Remove an account", _account_logout),
        ("default", "Set the default account", _account_default),
        ("enable", "Enable an account", _account_enable),
        ("disable", "Disable an account", _account_disable),
        ("refresh", "Force a token refresh", _account_refresh),
    ):
        sub = account_commands.add_parser(name, help=help_text)
        sub.add_argument("ref", help="Account id or name")
        sub.set_defaults(handler=handler)

    rename = account_commands.add_parser("rename", help="Rename an account")
    rename.add_argument("ref", help="Account id or name")
    rename.add_argument("new_name", help="New account name")
    rename.set_defaults(handler=_account_rename)

    import_cmd = account_commands.add_parser(
        "import", help="Import qwen-code CLI credentials"
    )
    import_cmd.add_argument("--path", default=QWEN_CODE_CREDENTIAL_FILE)
    import_cmd.add_argument("--name", default="default")
    import_cmd.set_defaults(handler=_account_import)

    config = commands.add_parser("config", help="Show or change server settings")
    config_commands = config.add_subparsers(dest="config_command", required=True)
    config_commands.add_parser("show", help="Show settings").set_defaults(
        handler=_config_show
    )
    config_set = config_commands.add_parser("set", help="Change settings")
    config_set.add_argument("--host")
    config_set.add_argument("--port", type=int)
    config_set.add_argument("--strategy")
    config_set.set_defaults(handler=_config_set)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Console script entry point."""
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    args = build_parser().parse_args(argv)

    try:
        result = args.handler(args)
        if asyncio.iscoroutine(result):
            result = asyncio.run(result)
    except QwenProxyError as e:
        console.print(f"[bold red]Error:[/bold red] {rich_escape(str(e))}")
        return 1
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        return 130
    return result


if __name__ == "__main__":
    sys.exit(main())

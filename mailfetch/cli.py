"""Command line entry point: one-shot fetch, or run the HTTP service."""

import argparse
import asyncio
import json
import os
import sys
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table
from rich.text import Text

from mailfetch import __version__
from mailfetch.utils.config_manager import get_config_manager
from mailfetch.utils.errors import MailfetchError
from mailfetch.utils.logging import async_log_call, get_logger, init_logging

logger = get_logger(__name__)


## Argument Adding Utilities


def add_server_arguments(parser: argparse.ArgumentParser) -> None:
    """Add IMAP server and credential arguments."""

    server_group = parser.add_argument_group("server", "IMAP server and login")

    server_group.add_argument("--host", required=True, help="IMAP server host name")
    server_group.add_argument(
        "--port",
        type=int,
        default=993,
        help="IMAP server port; 993 and 465 use TLS (default: 993)",
    )
    server_group.add_argument("--user", required=True, help="Login user name")
    server_group.add_argument(
        "--password",
        help="Login password (default: $MAILFETCH_PASSWORD, else prompt)",
    )


def add_output_arguments(parser: argparse.ArgumentParser) -> None:
    """Add output format arguments."""

    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the raw JSON response instead of a table",
    )


## Command Setup Functions


def setup_fetch_command(subparsers) -> None:
    fetch_parser = subparsers.add_parser(
        "fetch",
        help="Fetch recent inbox messages once",
        description="Connect, fetch the recent inbox batch and print it",
    )
    add_server_arguments(fetch_parser)
    add_output_arguments(fetch_parser)
    fetch_parser.add_argument(
        "--strict",
        action="store_true",
        help="Report retrieval errors instead of printing sample messages",
    )


def setup_serve_command(subparsers) -> None:
    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the HTTP service",
        description="Serve POST /fetch-emails and POST /fetch-body",
    )
    serve_parser.add_argument("--host", help="Bind address (default: from config)")
    serve_parser.add_argument("--port", type=int, help="Bind port (default: from config)")


def setup_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mailfetch",
        description="Fetch recent inbox messages over IMAP as JSON records.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)
    setup_fetch_command(subparsers)
    setup_serve_command(subparsers)
    return parser


## Output


def display_emails(emails: List[Dict[str, Any]], console: Console) -> None:
    """Print a batch as a table.

    Header values come from the server and are never parsed as markup.
    """
    if not emails:
        console.print("[yellow]No emails to display[/yellow]")
        return

    table = Table(title="Inbox")
    table.add_column("ID", style="dim")
    table.add_column("Date")
    table.add_column("From", style="cyan")
    table.add_column("Subject", style="bold")
    table.add_column("Flags", justify="center")

    for email in emails:
        flags = ("" if email["read"] else "●") + ("★" if email["starred"] else "")
        if email.get("hasAttachments"):
            flags += "📎"
        table.add_row(
            email["id"],
            email["date"][:19],
            Text(email["from"]),
            Text(email["subject"]),
            flags,
        )

    console.print(table)


## Commands


def _resolve_password(args) -> Optional[str]:
    if args.password:
        return args.password
    return os.environ.get("MAILFETCH_PASSWORD") or Prompt.ask("Password", password=True)


@async_log_call
async def run_fetch(args, console: Console) -> int:
    """Run one fetch and print the result.

    Returns:
        Exit code (0 = success, 1 = error)
    """
    from mailfetch.api.handler import FetchEmailsService

    settings = get_config_manager().config.imap.model_copy()
    if args.strict:
        settings.strict_mode = True

    payload = {
        "imap_config": {
            "host": args.host,
            "port": args.port,
            "user": args.user,
            "pass": _resolve_password(args),
        }
    }

    result = await FetchEmailsService(settings=settings).fetch(payload)

    if args.json:
        console.print_json(json.dumps(result.body))
    elif result.body.get("success"):
        display_emails(result.body["emails"], console)
    else:
        console.print(Text(f"Error: {result.body.get('error')}", style="red"))

    return 0 if result.status_code == 200 else 1


def run_serve(args, console: Console) -> int:
    import uvicorn

    from mailfetch.api.app import create_app

    config = get_config_manager().config
    host = args.host or config.server.host
    port = args.port or config.server.port

    console.print(f"[bold cyan]Serving on http://{host}:{port}[/]")
    uvicorn.run(create_app(config), host=host, port=port, log_level="warning")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point.

    Returns:
        Exit code
    """
    console = Console()

    try:
        parser = setup_argument_parser()
        args = parser.parse_args(argv)

        try:
            config = get_config_manager().config
        except MailfetchError as e:
            logger.error(f"Configuration error: {e}")
            console.print(Text(f"Configuration error: {e}", style="red"))
            return 1

        init_logging().set_level(config.logging.log_level)
        init_logging().set_console_level(config.logging.console_level)

        if args.command == "fetch":
            return asyncio.run(run_fetch(args, console))
        return run_serve(args, console)

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        return 130  # Standard SIGINT exit code


if __name__ == "__main__":
    sys.exit(main())

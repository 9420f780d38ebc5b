"""Casebook entry point.

Changes:
  - 2026-03-04: Added ``token`` subcommands for managing API tokens offline.
  - 2026-03-02: ``serve`` starts the authorization server.
"""

import argparse
import logging
import sys

from rich.console import Console
from rich.table import Table

from casebook import __version__
from casebook.config import get_settings
from casebook.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _cmd_serve(args: argparse.Namespace) -> int:
    from casebook.api.serve import run_api_server

    settings = get_settings()
    run_api_server(
        host=args.host or settings.host,
        port=args.port or settings.port,
        dev=args.dev,
    )
    return 0


def _cmd_token_create(args: argparse.Namespace) -> int:
    from casebook.api.api_tokens import get_api_token_manager

    try:
        record, plaintext = get_api_token_manager().create(
            name=args.name,
            organization_id=args.org,
            user_id=args.user,
            permissions=args.permissions,
            expires_in_days=args.expires_in_days,
        )
    except ValueError as exc:
        logger.error("%s", exc)
        return 2

    console = Console()
    console.print(f"Created API token [bold]{record.id}[/bold] ({record.permissions})")
    console.print("Store it now, it will not be shown again:")
    console.print(plaintext, markup=False, highlight=False)
    return 0


def _cmd_token_list(args: argparse.Namespace) -> int:
    from casebook.api.api_tokens import get_api_token_manager

    records = get_api_token_manager().list_tokens(args.org)
    table = Table(title=f"API tokens for {args.org}")
    for column in ("ID", "Name", "Permissions", "User", "Created", "Expires", "Status"):
        table.add_column(column)
    for rec in records:
        if rec.revoked:
            status = "revoked"
        elif rec.is_expired():
            status = "expired"
        else:
            status = "active"
        table.add_row(
            rec.id,
            rec.name,
            rec.permissions,
            rec.user_id,
            rec.created_at.strftime("%Y-%m-%d"),
            rec.expires_at.strftime("%Y-%m-%d") if rec.expires_at else "never",
            status,
        )
    Console().print(table)
    return 0


def _cmd_token_revoke(args: argparse.Namespace) -> int:
    from casebook.api.api_tokens import get_api_token_manager

    if not get_api_token_manager().revoke(args.token_id, args.org):
        logger.error("No active token %s in organization %s", args.token_id, args.org)
        return 1
    Console().print(f"Revoked {args.token_id}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="casebook",
        description="Casebook - OAuth 2.0 authorization server for MCP clients",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  casebook serve                                  Start the server
  casebook serve --dev                            Start with auto-reload
  casebook token create --org O --user U --name ci --permissions write
  casebook token list --org O
  casebook token revoke st_0123456789abcdef --org O
""",
    )
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Start the HTTP server")
    serve.add_argument("--host", default=None, help="Host to bind to (default: CASEBOOK_HOST)")
    serve.add_argument("--port", type=int, default=None, help="Port (default: CASEBOOK_PORT)")
    serve.add_argument("--dev", action="store_true", help="Auto-reload on source changes")
    serve.set_defaults(func=_cmd_serve)

    token = sub.add_parser("token", help="Manage API tokens")
    token_sub = token.add_subparsers(dest="token_command", required=True)

    create = token_sub.add_parser("create", help="Create an API token")
    create.add_argument("--org", required=True, help="Organization ID")
    create.add_argument("--user", required=True, help="User ID that owns the token")
    create.add_argument("--name", required=True, help="Display name")
    create.add_argument(
        "--permissions", choices=("read", "write", "admin"), default="read"
    )
    create.add_argument("--expires-in-days", type=int, default=None)
    create.set_defaults(func=_cmd_token_create)

    list_cmd = token_sub.add_parser("list", help="List an organization's API tokens")
    list_cmd.add_argument("--org", required=True, help="Organization ID")
    list_cmd.set_defaults(func=_cmd_token_list)

    revoke = token_sub.add_parser("revoke", help="Revoke an API token")
    revoke.add_argument("token_id")
    revoke.add_argument("--org", required=True, help="Organization ID")
    revoke.set_defaults(func=_cmd_token_revoke)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(level=get_settings().log_level)

    if not getattr(args, "func", None):
        parser.print_help()
        return 1
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())

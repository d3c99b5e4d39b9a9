"""MCPHub auth core entry point.

Subcommands:
  serve           start the HTTP server (default)
  add-client      register an OAuth client directly in the store
  add-user        record a user (admin flag used by OAuth principals)
  session-token   mint a session JWT for a user
"""

import argparse
import asyncio
import logging
import secrets
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

from mcphub.config import Settings
from mcphub.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _package_version() -> str:
    try:
        return get_version("mcphub-auth")
    except PackageNotFoundError:
        from mcphub import __version__

        return __version__


async def _add_client(args: argparse.Namespace) -> None:
    from mcphub.api.oauth2.models import OAuthClient
    from mcphub.api.oauth2.storage import get_oauth_storage

    client = OAuthClient(
        client_id=args.client_id or secrets.token_hex(16),
        name=args.name,
        redirect_uris=args.redirect_uri,
        client_secret=secrets.token_hex(32) if args.confidential else None,
        scopes=args.scope.split(),
    )
    await get_oauth_storage().create_client(client)
    print(f"client_id:     {client.client_id}")
    if client.client_secret:
        print(f"client_secret: {client.client_secret}")


async def _add_user(args: argparse.Namespace) -> None:
    from mcphub.api.oauth2.models import UserRecord
    from mcphub.api.oauth2.storage import get_oauth_storage

    await get_oauth_storage().save_user(UserRecord(username=args.username, is_admin=args.admin))
    print(f"user saved: {args.username}")


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="mcphub",
        description="MCPHub OAuth 2.0 authorization server and request authentication",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {_package_version()}")
    parser.add_argument("--log-level", default=None, help="Log level (default: from settings)")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Start the HTTP server")
    serve.add_argument("--host", default=None, help="Host to bind (default: from settings)")
    serve.add_argument("--port", type=int, default=None, help="Port (default: from settings)")
    serve.add_argument("--dev", action="store_true", help="Auto-reload on code changes")

    client = sub.add_parser("add-client", help="Create an OAuth client")
    client.add_argument("name")
    client.add_argument("--redirect-uri", action="append", required=True)
    client.add_argument("--client-id", default=None)
    client.add_argument("--scope", default="read write")
    client.add_argument("--confidential", action="store_true", help="Issue a client secret")

    user = sub.add_parser("add-user", help="Create or update a user record")
    user.add_argument("username")
    user.add_argument("--admin", action="store_true")

    token = sub.add_parser("session-token", help="Mint a session token")
    token.add_argument("username")
    token.add_argument("--admin", action="store_true")

    args = parser.parse_args()
    settings = Settings.load()
    setup_logging(level=args.log_level or settings.log_level)

    try:
        if args.command == "add-client":
            asyncio.run(_add_client(args))
        elif args.command == "add-user":
            asyncio.run(_add_user(args))
        elif args.command == "session-token":
            from mcphub.config import get_jwt_secret
            from mcphub.security.session_tokens import create_session_token

            print(
                create_session_token(
                    args.username,
                    get_jwt_secret(),
                    is_admin=args.admin,
                    ttl_hours=settings.session_token_ttl_hours,
                )
            )
        else:
            from mcphub.api.serve import run_api_server

            run_api_server(
                host=getattr(args, "host", None) or settings.host,
                port=getattr(args, "port", None) or settings.port,
                dev=getattr(args, "dev", False),
            )
    except KeyboardInterrupt:
        logger.info("MCPHub auth server stopped.")


if __name__ == "__main__":
    main()

"""CLI for running and maintaining the Pocket-ID dashboard."""

import argparse
import asyncio
import secrets
import sys

from pydantic import ValidationError

from pocketid_dashboard.config import get_settings
from pocketid_dashboard.logging_utils import configure_logging


def serve(host: str | None, port: int | None, reload: bool) -> bool:
    """Run the application under uvicorn."""
    import uvicorn

    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Invalid configuration, refusing to start:\n{e}", file=sys.stderr)
        return False

    uvicorn.run(
        "pocketid_dashboard.main:create_app",
        factory=True,
        host=host or settings.server_host,
        port=port or settings.server_port,
        reload=reload,
    )
    return True


def generate_secret(num_bytes: int = 64) -> str:
    """Random hex string suitable for SESSION_SECRET."""
    return secrets.token_hex(num_bytes)


async def cleanup_sessions() -> int:
    """Sweep expired sessions once against the configured backend."""
    from pocketid_dashboard.auth.cleanup import SessionCleanup
    from pocketid_dashboard.auth.session import create_session_store

    settings = get_settings()
    configure_logging(settings.log_level)

    store = create_session_store(settings)
    await store.initialize()
    try:
        return await SessionCleanup(store).run_once()
    finally:
        await store.close()


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Pocket-ID dashboard CLI",
        prog="pocketid-dashboard",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the dashboard server")
    serve_parser.add_argument("--host", default=None, help="Bind address (default: SERVER_HOST)")
    serve_parser.add_argument("--port", type=int, default=None, help="Port (default: SERVER_PORT)")
    serve_parser.add_argument("--reload", action="store_true", help="Reload on code changes")

    # Secret generation command
    secret_parser = subparsers.add_parser(
        "generate-secret", help="Print a random value for SESSION_SECRET"
    )
    secret_parser.add_argument(
        "--bytes",
        type=int,
        default=64,
        dest="num_bytes",
        help="Random bytes before hex encoding (default: 64)",
    )

    # Cleanup command
    subparsers.add_parser("cleanup-sessions", help="Delete expired sessions once")

    args = parser.parse_args()

    if args.command == "serve":
        success = serve(args.host, args.port, args.reload)
        sys.exit(0 if success else 1)

    elif args.command == "generate-secret":
        if args.num_bytes < 16:
            parser.error("--bytes must be at least 16")
        print(generate_secret(args.num_bytes))
        sys.exit(0)

    elif args.command == "cleanup-sessions":
        try:
            removed = asyncio.run(cleanup_sessions())
        except ValidationError as e:
            print(f"Invalid configuration:\n{e}", file=sys.stderr)
            sys.exit(1)
        print(f"Removed {removed} expired sessions")
        sys.exit(0)

    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()

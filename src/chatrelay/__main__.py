"""
=============================================================================
CHAT SERVER CLI ENTRY POINT
=============================================================================

    # Run with defaults (localhost:8080)
    python -m chatrelay

    # Listen on all interfaces, another port
    python -m chatrelay --host 0.0.0.0 --port 9000

    # Disconnect clients that stay silent for 10 minutes
    python -m chatrelay --idle-timeout 600

Options not given on the command line fall back to the CHAT_* environment
variables (see ServerConfig.from_env), then to the built-in defaults.

=============================================================================
"""

import argparse
import sys

from . import __version__
from .server import ChatServer
from .config import ServerConfig


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatrelay",
        description="Multi-client line chat relay over TCP",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m chatrelay                       # Run with defaults
  python -m chatrelay --port 9000           # Custom port
  python -m chatrelay --host 0.0.0.0        # Listen on all interfaces
  python -m chatrelay --idle-timeout 600    # Drop silent clients
        """
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--host", "-H",
        default=None,
        help="Host to bind to (default: 127.0.0.1, use 0.0.0.0 for containers)"
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=None,
        help="Port to listen on (default: 8080)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # SERVER ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--workers", "-w",
        type=int,
        default=None,
        help="Worker threads started up front; more are added per client (default: 4)"
    )

    parser.add_argument(
        "--idle-timeout",
        type=float,
        default=None,
        help="Disconnect clients idle for this many seconds (default: never)"
    )

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: INFO)"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"chatrelay {__version__}"
    )

    return parser


def config_from_args(args: argparse.Namespace) -> ServerConfig:
    """Environment-based config, overridden by any flags that were given."""
    config = ServerConfig.from_env()

    if args.host is not None:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.workers is not None:
        config.min_workers = args.workers
    if args.idle_timeout is not None:
        config.idle_timeout = args.idle_timeout
    if args.log_level is not None:
        config.log_level = args.log_level

    return config


def main(argv=None):
    args = build_parser().parse_args(argv)

    try:
        config = config_from_args(args)
        server = ChatServer(config)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    print(f"{config.server_name} on {config.host}:{config.port} - press Ctrl+C to stop")

    try:
        server.run()
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()

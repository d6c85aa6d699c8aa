#!/usr/bin/env python3
"""Tournament sync application entry point.

This module provides a unified entry point for all interfaces:
- CLI: Command-line interface
- Web: Document server over HTTP

Usage:
    python -m tournament_sync.main cli sync status          # Show sync status
    python -m tournament_sync.main cli scope set ORG TOURN  # Select scope
    python -m tournament_sync.main cli sync upload          # Send changes
    python -m tournament_sync.main web [--port 8080]        # Start document server
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, NoReturn, Optional

from tournament_sync.cli import add_cli_subparser
from tournament_sync.web import add_web_subparser

logger = logging.getLogger(__name__)


def configure_logging(debug: bool = False) -> None:
    """Configure root logging for the application."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the unified argument parser.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        description="Tournament sync - offline-first sync for tournament operations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m tournament_sync.main cli remote set http://localhost:5000
  python -m tournament_sync.main cli scope set org-1 tournament-1
  python -m tournament_sync.main cli sync pending
  python -m tournament_sync.main cli --format json sync conflicts
  python -m tournament_sync.main web --port 8080
""",
    )

    parser.add_argument(
        "-d", "--config-dir",
        type=Path,
        default=None,
        help="Custom configuration directory (default: ~/.config/tournament-sync/)"
    )

    parser.add_argument(
        "--debug",
        dest="log_debug",
        action="store_true",
        help="Enable debug logging"
    )

    # Create subparsers for each interface
    subparsers = parser.add_subparsers(dest="interface", help="Interface to use")

    add_cli_subparser(subparsers)
    add_web_subparser(subparsers)

    return parser


def main(argv: Optional[List[str]] = None) -> NoReturn:
    """Main entry point for tournament sync.

    Parses arguments and dispatches to the appropriate interface.
    """
    parser = create_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_debug)

    if args.interface == "cli":
        from tournament_sync.cli import run as run_cli
        exit_code = run_cli(args.config_dir, args)
    elif args.interface == "web":
        from tournament_sync.web import run as run_web
        exit_code = run_web(args.config_dir, args)
    else:
        parser.print_help()
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()

# src/main.py — v2
"""CLI entry point: inspect and purge the persisted summary cache.

Usage:
    quicksight inspect [--backend json|sqlite] [--root DIR]
    quicksight purge [--backend json|sqlite] [--root DIR]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path

from quicksight.version import __version__

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    _setup_logging(args.verbose)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="quicksight",
        description=f"quicksight v{__version__}: summary prefetch cache tools",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- inspect ---
    p_inspect = subparsers.add_parser(
        "inspect", help="List persisted summary entries",
    )
    _add_store_arguments(p_inspect)
    p_inspect.set_defaults(func=_cmd_inspect)

    # --- purge ---
    p_purge = subparsers.add_parser(
        "purge", help="Remove expired persisted entries",
    )
    _add_store_arguments(p_purge)
    p_purge.set_defaults(func=_cmd_purge)

    return parser


def _add_store_arguments(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--backend", choices=["json", "sqlite"], default=None,
        help="Persistence backend (default: PERSISTENCE_BACKEND setting)",
    )
    p.add_argument(
        "--root", type=Path, default=None,
        help="Persistence root directory (default: PERSISTENCE_ROOT setting)",
    )


def _open_store(args: argparse.Namespace):
    from quicksight.cache.cache_factory import create_persistence_store
    from quicksight.config.settings import load_settings

    overrides: dict[str, object] = {}
    if args.backend:
        overrides["persistence_backend"] = args.backend
    if args.root:
        overrides["persistence_root"] = args.root
    settings = load_settings(**overrides)
    return create_persistence_store(settings)


async def _cmd_inspect(args: argparse.Namespace) -> int:
    """Print one line per persisted entry."""
    store = _open_store(args)
    if store is None:
        logger.error("No persistence backend configured")
        return 1

    try:
        entries = await store.list_entries()
    finally:
        store.close()

    now = time.time()
    print(f"\n{len(entries)} persisted entries:")
    for entry in entries:
        age_s = now - entry.created_at
        state = "expired" if entry.is_expired(now) else "fresh"
        print(f"  {entry.key:<24} age={age_s:>8.0f}s ttl={entry.ttl_s:>8.0f}s {state}")
    return 0


async def _cmd_purge(args: argparse.Namespace) -> int:
    """Remove expired entries and report the count."""
    store = _open_store(args)
    if store is None:
        logger.error("No persistence backend configured")
        return 1

    try:
        removed = await store.purge_expired(time.time())
    finally:
        store.close()

    print(f"Removed {removed} expired entries")
    return 0


def _setup_logging(verbose: bool) -> None:
    """Configure logging for CLI usage."""
    from quicksight.logging.logger import setup_logging

    setup_logging(level="DEBUG" if verbose else "INFO", log_format="text")


if __name__ == "__main__":
    sys.exit(main())

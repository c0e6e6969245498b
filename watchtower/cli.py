"""
Cache administration.

Usage:
    python -m watchtower.cli stats
    python -m watchtower.cli clear                         # every engine key
    python -m watchtower.cli clear --section sales_overview
    python -m watchtower.cli warm
"""
import argparse
import asyncio
import json
import sys
from typing import List, Optional

from watchtower.config import config, validate_config
from watchtower.engine import AnalyticsEngine
from watchtower.exceptions import ConfigurationError
from watchtower.observability import correlation_context, get_logger, setup_logging

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="watchtower", description="Analytics cache administration")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("stats", help="Show cache statistics")

    clear = subparsers.add_parser("clear", help="Delete cached results")
    clear.add_argument("--section", default=None, help="Namespace prefix to clear (default: all)")

    subparsers.add_parser("warm", help="Pre-populate common caches")
    return parser


async def run(args: argparse.Namespace, engine: Optional[AnalyticsEngine] = None) -> dict:
    """Execute one command under its own correlation ID."""
    engine = engine or AnalyticsEngine()
    with correlation_context():
        logger.info(f"Running {args.command}", extra={"command": args.command})
        await engine.connect(cache_only=args.command != "warm")
        try:
            if args.command == "stats":
                return await engine.cache_stats()
            if args.command == "clear":
                deleted = await engine.clear_cache(args.section)
                return {"section": args.section or "all", "deleted": deleted}
            warmed = await engine.warm_common_caches()
            return {"warmed": warmed}
        finally:
            await engine.disconnect()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(config.logging.level, config.logging.json_format)

    try:
        validate_config()
    except ConfigurationError as e:
        logger.error(str(e))
        return 2

    result = asyncio.run(run(args))
    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())

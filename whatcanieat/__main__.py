"""
Command line entry point.

Usage:
    python -m whatcanieat analyze --diet vegan --item "Garden Salad: greens, vinaigrette"
    python -m whatcanieat analyze --diet custom --restrictions "no nuts" --text-file menu.txt
    python -m whatcanieat analyze --diet vegetarian --url https://example.com/menu
    python -m whatcanieat test-connection
    python -m whatcanieat providers
    python -m whatcanieat clear-cache
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

import structlog

from whatcanieat.application.analysis.menu_analysis_service import (
    MenuAnalysisService,
    create_menu_analysis_service,
)
from whatcanieat.domain.analysis.models import DietaryPreferences, DietaryType
from whatcanieat.domain.shared.errors import ConfigurationError
from whatcanieat.infrastructure.config import load_environment
from whatcanieat.infrastructure.logging_config import configure_logging

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="whatcanieat", description="Menu dietary analysis")
    parser.add_argument("--env-file", help="Path to .env file")
    parser.add_argument("--log-level", default=None)
    parser.add_argument("--signed-in", action="store_true", help="Skip the trial gate")

    sub = parser.add_subparsers(dest="command", required=True)

    analyze = sub.add_parser("analyze", help="Analyze menu items")
    analyze.add_argument("--diet", choices=[d.value for d in DietaryType], required=True)
    analyze.add_argument("--restrictions", help="Custom restriction text")
    analyze.add_argument("--context", help="Extra instructions for the model")
    source = analyze.add_mutually_exclusive_group(required=True)
    source.add_argument("--item", action="append", help="Menu line (repeatable)")
    source.add_argument("--text-file", type=Path, help="File with one menu item per line")
    source.add_argument("--url", help="Menu web page")

    sub.add_parser("test-connection", help="Test the active provider")
    sub.add_parser("providers", help="Show configured providers")
    sub.add_parser("clear-cache", help="Remove cached analyses")
    return parser


async def run(args: argparse.Namespace, service: MenuAnalysisService) -> int:
    if args.command == "analyze":
        preferences = DietaryPreferences(
            dietary_type=DietaryType(args.diet),
            custom_restrictions=args.restrictions,
        )
        if args.url:
            response = await service.analyze_menu_url(args.url, preferences, args.context)
        else:
            text = args.text_file.read_text(encoding="utf-8") if args.text_file else "\n".join(args.item)
            response = await service.analyze_menu_text(text, preferences, args.context)
        print(json.dumps(response.to_wire(), indent=2, ensure_ascii=False))
        return 0 if response.success else 1

    if args.command == "test-connection":
        result = await service.orchestrator.test_connection()
        print(result.message)
        return 0 if result.success else 1

    if args.command == "providers":
        orchestrator = service.orchestrator
        print(json.dumps(orchestrator.get_config(), indent=2))
        print("available:", ", ".join(p.value for p in orchestrator.get_available_providers()) or "none")
        return 0

    removed = await service.clear_cache()
    print(f"Removed {removed} cached analyses")
    return 0


async def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    load_environment(args.env_file)
    configure_logging(args.log_level)

    try:
        service = create_menu_analysis_service(signed_in=args.signed_in)
    except ConfigurationError as e:
        logger.error("Invalid configuration", error=str(e))
        return 2

    try:
        return await run(args, service)
    finally:
        await service.aclose()


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()

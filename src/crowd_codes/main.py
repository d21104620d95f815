"""Main entry point for the Crowd Codes pipeline jobs."""

import argparse
import asyncio
import sys
from typing import Protocol

from pydantic import ValidationError

from crowd_codes.core.config import Settings, get_settings
from crowd_codes.core.errors import ConfigurationError
from crowd_codes.core.logger import get_logger, setup_logging
from crowd_codes.services.exporter import run_export
from crowd_codes.services.pipeline import run_parser
from crowd_codes.services.preview import DEFAULT_LIMIT, run_preview
from crowd_codes.services.schema import initialize_database
from crowd_codes.services.scraper import run_scraper


logger = get_logger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2


class StageResult(Protocol):
    success: bool
    error_code: str | None


def exit_code_for(result: StageResult) -> int:
    """Map a stage result to a process exit code."""
    if result.success:
        return EXIT_SUCCESS
    if result.error_code == "CONFIG_ERROR":
        return EXIT_CONFIG_ERROR
    return EXIT_FAILURE


async def run_full_pipeline(settings: Settings) -> int:
    """Run init-db, scrape, parse and export in order.

    Stops at the first configuration error; a runtime failure in one stage
    does not prevent later stages from working on what is already stored.

    Returns:
        Exit code (worst outcome across stages).
    """
    stages = (
        ("init-db", initialize_database),
        ("scrape", run_scraper),
        ("parse", run_parser),
        ("export", run_export),
    )
    worst = EXIT_SUCCESS
    for name, stage in stages:
        logger.info("[MAIN] Running stage %s", name)
        code = exit_code_for(await stage(settings))
        if code == EXIT_CONFIG_ERROR:
            logger.error(
                "[MAIN] Stopping after configuration error in %s",
                name,
                extra={"error_code": "CONFIG_ERROR", "stage": name},
            )
            return code
        worst = max(worst, code)
    return worst


async def run_command(args: argparse.Namespace, settings: Settings) -> int:
    """Run one CLI command.

    Args:
        args: Parsed command-line arguments.
        settings: Application settings.

    Returns:
        Exit code (0 success, 1 runtime error, 2 configuration error).
    """
    try:
        if args.command == "init-db":
            return exit_code_for(await initialize_database(settings))
        if args.command == "scrape":
            return exit_code_for(await run_scraper(settings))
        if args.command == "parse":
            return exit_code_for(
                await run_parser(settings, skip_llm=args.skip_llm)
            )
        if args.command == "export":
            return exit_code_for(await run_export(settings, args.output))
        if args.command == "preview":
            report = await run_preview(
                settings, limit=args.limit, skip_llm=args.skip_llm
            )
            sys.stdout.write(report.model_dump_json(indent=2) + "\n")
            return EXIT_SUCCESS
        return await run_full_pipeline(settings)

    except ConfigurationError as error:
        logger.error("[MAIN] %s", error.message, extra=error.log_extra())
        return EXIT_CONFIG_ERROR
    except Exception:
        logger.exception(
            "[MAIN] Job failed with error",
            extra={"error_code": "UNEXPECTED_ERROR"},
        )
        return EXIT_FAILURE


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crowd-codes",
        description="Collect French YouTube promo codes into a JSON snapshot.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create the store schema")
    subparsers.add_parser("scrape", help="Fetch recent videos")

    parse_cmd = subparsers.add_parser("parse", help="Extract codes")
    parse_cmd.add_argument(
        "--skip-llm", action="store_true", help="Never call the LLM"
    )

    export_cmd = subparsers.add_parser("export", help="Write the snapshot")
    export_cmd.add_argument(
        "--output", default=None, help="Override the output path"
    )

    preview_cmd = subparsers.add_parser(
        "preview", help="Dry run on a small sample, printed as JSON"
    )
    preview_cmd.add_argument("--limit", type=int, default=DEFAULT_LIMIT)
    preview_cmd.add_argument("--skip-llm", action="store_true")

    subparsers.add_parser("run", help="init-db, scrape, parse, then export")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the CLI and Cloud Run Jobs."""
    setup_logging()
    args = build_parser().parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as error:
        logger.error(
            "[MAIN] Invalid configuration: %s",
            error,
            extra={"error_code": "CONFIG_ERROR"},
        )
        sys.exit(EXIT_CONFIG_ERROR)

    logger.info("[MAIN] Starting crowd-codes %s", args.command)
    exit_code = asyncio.run(run_command(args, settings))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()

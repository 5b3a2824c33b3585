"""CLI entry point for the user export.

Usage:
    python -m privy_export
    python -m privy_export --fetch-new-only
    python -m privy_export --config export.yaml --output ./exports/users.csv
    python -m privy_export --status
    python -m privy_export --reset

Credentials come from PRIVY_APP_ID / PRIVY_APP_SECRET, read from the
environment or a .env file in the working directory.
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx

from privy_export import __version__
from privy_export.lib.config import ExportConfig, load_config
from privy_export.lib.dedup import DedupIndex
from privy_export.lib.driver import ExportContext, ExportDriver, ExportResult
from privy_export.lib.env import load_env_file
from privy_export.lib.errors import ConfigurationError, ExportError
from privy_export.lib.logging import logging_options_from_env, setup_logging
from privy_export.lib.state import CursorStore, PassStartStore, WatermarkStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130


def run_export(
    config: ExportConfig,
    *,
    transport: Optional[httpx.BaseTransport] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.time,
) -> ExportResult:
    """Run one export invocation with file-backed state."""
    context = ExportContext.from_config(config, transport=transport, sleep=sleep, clock=clock)
    try:
        return ExportDriver(context).run()
    finally:
        context.client.close()


def _format_age(seconds: float) -> str:
    seconds = max(0, int(seconds))
    if seconds < 60:
        return f"{seconds}s ago"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    if seconds < 86400:
        return f"{seconds // 3600}h ago"
    return f"{seconds // 86400}d ago"


def _format_timestamp(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def show_status(config: ExportConfig, *, now: Optional[float] = None) -> Dict[str, Any]:
    """Print the persisted run state and return it as a dict."""
    now = time.time() if now is None else now
    store = config.state_store()
    cursor = CursorStore(store).load()
    pass_start = PassStartStore(store).load()
    watermark = WatermarkStore(store).load()
    output = Path(config.output_file)
    exported = len(DedupIndex.from_sink(output)) if output.exists() else None

    print("Export status:")
    print()
    if exported is None:
        print(f"  Output file:   {output} (not created yet)")
    else:
        print(f"  Output file:   {output} ({exported} users)")
    if cursor:
        print(f"  Cursor:        {cursor} (pass in progress, next run resumes)")
    else:
        print("  Cursor:        none (next run starts a new pass)")
    if pass_start:
        print(f"  Pass started:  {_format_timestamp(pass_start)}")
    if watermark:
        print(
            f"  Watermark:     {_format_timestamp(watermark)} "
            f"({_format_age(now - watermark)})"
        )
    else:
        print("  Watermark:     none")
    print(f"  Incremental:   {'on' if config.fetch_new_only else 'off'}")

    return {
        "output_file": str(output),
        "exported": exported,
        "cursor": cursor,
        "pass_start": pass_start,
        "watermark": watermark,
    }


def reset_state(config: ExportConfig) -> List[str]:
    """Delete the cursor, pass start and watermark. Returns what was removed."""
    store = config.state_store()
    removed: List[str] = []
    for state in (CursorStore(store), PassStartStore(store), WatermarkStore(store)):
        if state.clear():
            removed.append(state.location)
    for location in removed:
        logger.info("Deleted %s", location)
    if not removed:
        logger.info("No saved export state to delete")
    return removed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="privy-export",
        description="Export Privy users to a CSV file, resumably",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Full export (resumes automatically after an interruption)
    python -m privy_export

    # Only users created since the last complete export
    python -m privy_export --fetch-new-only

    # Inspect or discard the saved cursor and watermark
    python -m privy_export --status
    python -m privy_export --reset
        """,
    )
    parser.add_argument("--config", help="YAML file with export settings")
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Environment file to load before reading settings (default: .env)",
    )
    parser.add_argument("--output", dest="output_file", help="Output CSV path")
    parser.add_argument(
        "--fetch-new-only",
        action="store_true",
        default=None,
        help="Only fetch users created after the last complete export",
    )
    parser.add_argument(
        "--unique-files",
        action="store_true",
        default=None,
        help="Write to a new timestamped output file",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument(
        "--json-log",
        action="store_true",
        help="Output logs in JSON format (for log aggregation systems)",
    )
    parser.add_argument("--log-file", help="Write logs to a file in addition to console")
    parser.add_argument(
        "--status",
        action="store_true",
        help="Show saved cursor and watermark, then exit",
    )
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Delete saved cursor, pass start and watermark, then exit",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    args = build_parser().parse_args(argv)

    load_env_file(args.env_file)

    log_options = logging_options_from_env()
    setup_logging(
        verbose=args.verbose or log_options["verbose"],
        json_format=args.json_log or log_options["json_format"],
        log_file=args.log_file,
    )

    state_only = args.status or args.reset
    try:
        config = load_config(
            args.config,
            overrides={
                "output_file": args.output_file,
                "fetch_new_only": args.fetch_new_only,
                "unique_files": args.unique_files,
            },
            check_credentials=not state_only,
        )
    except ConfigurationError as e:
        logger.error("Error: %s", e)
        return EXIT_CONFIG

    try:
        if args.status:
            show_status(config)
            return EXIT_OK
        if args.reset:
            reset_state(config)
            return EXIT_OK

        if config.unique_files:
            config = config.with_unique_output()
            logger.info("Using unique filename: %s", config.output_file)

        run_export(config)
    except ExportError as e:
        logger.error("Error: %s", e.message)
        if e.__cause__ is not None:
            logger.error("Cause: %s", e.__cause__)
        return EXIT_ERROR
    except KeyboardInterrupt:
        logger.warning("Interrupted. Run the export again to resume from the saved cursor.")
        return EXIT_INTERRUPTED
    except Exception as e:
        logger.exception("Unexpected error: %s", e)
        return EXIT_ERROR

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())

"""
History Engine - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface for the price history engine.

- Provides argparse-based CLI
- Loads configuration from environment (and optional YAML)
- Entry point for backfill, refresh, reporting and the loop

============================================================
USAGE
============================================================
python -m history_engine.cli backfill
python -m history_engine.cli backfill --symbol BTC --days 30
python -m history_engine.cli refresh --days 7
python -m history_engine.cli status
python -m history_engine.cli export --format json
python -m history_engine.cli clear --symbol ETH
python -m history_engine.cli loop

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from history_engine.config import HistoryConfig, set_config
from history_engine.exceptions import HistoryEngineError
from history_engine.orchestrator import HistoryOrchestrator, create_orchestrator
from history_engine.refresh_loop import HistoryRefreshLoop
from history_engine.reports import EXPORT_FORMATS, build_status, export_history


logger = logging.getLogger("history_engine.cli")


# ============================================================
# LOGGING
# ============================================================

def setup_logging(level: str = "INFO", log_format: str = "text") -> logging.Logger:
    """
    Set up logging on stderr, leaving stdout to command output.

    Args:
        level: Log level
        log_format: Output format (json or text)

    Returns:
        Configured logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
            })
        )
    else:
        formatter = logging.Formatter("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s")

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("history_engine")


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

COMMANDS = ("backfill", "refresh", "status", "export", "clear", "loop")


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="history-engine",
        description="Historical price-series fusion and storage engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  backfill  - Build history (all symbols, or --symbol); --days fills gaps
  refresh   - Overwrite the trailing --days window from the primary source
  status    - Print per-symbol storage status as JSON
  export    - Print every stored point as CSV or JSON
  clear     - Delete stored history (all symbols, or --symbol)
  loop      - Run the scheduled refresh loop until interrupted

Examples:
  %(prog)s backfill --symbol BTC
  %(prog)s refresh --days 7
  %(prog)s export --format csv > history.csv
        """
    )

    parser.add_argument(
        "command",
        choices=COMMANDS,
        help="Command to run",
    )

    # --------------------------------------------------------
    # Target Options
    # --------------------------------------------------------
    target_group = parser.add_argument_group("Target Options")

    target_group.add_argument(
        "--symbol", "-s",
        type=str,
        help="Single symbol (default: all configured symbols)",
    )

    target_group.add_argument(
        "--days", "-d",
        type=int,
        help="Trailing window in days (refresh default: config refresh_days)",
    )

    target_group.add_argument(
        "--force",
        action="store_true",
        help="Rebuild/rewrite even when stored data is unchanged",
    )

    target_group.add_argument(
        "--format",
        type=str,
        choices=EXPORT_FORMATS,
        default="csv",
        help="Export format (default: csv)",
    )

    # --------------------------------------------------------
    # Configuration Options
    # --------------------------------------------------------
    config_group = parser.add_argument_group("Configuration Options")

    config_group.add_argument(
        "--config",
        type=str,
        metavar="PATH",
        help="YAML config file (default: environment variables)",
    )

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Logging level (default: INFO)",
    )

    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        default="text",
        help="Logging format (default: text)",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version="%(prog)s 1.0.0",
    )

    return parser


def validate_args(args: argparse.Namespace) -> List[str]:
    """Return a list of argument errors."""
    errors = []
    if args.days is not None and args.days < 1:
        errors.append("--days must be at least 1")
    return errors


def build_config(args: argparse.Namespace) -> HistoryConfig:
    if args.config:
        return HistoryConfig.from_yaml(Path(args.config))
    return HistoryConfig.from_env()


# ============================================================
# COMMANDS
# ============================================================

async def run_command(orchestrator: HistoryOrchestrator, args: argparse.Namespace) -> int:
    """
    Execute one CLI command against an orchestrator.

    Returns:
        Exit code (0 on success, 1 if any symbol failed)
    """
    command = args.command

    if command == "backfill":
        if args.symbol:
            series = await orchestrator.backfill_symbol(args.symbol, days=args.days, force=args.force)
            print(json.dumps({
                "symbol": series.symbol,
                "points": len(series.points),
                "confidence": series.confidence,
                "sources_used": series.sources_used,
            }))
            return 0
        results = await orchestrator.backfill_all(days=args.days, force=args.force)
        print(json.dumps([r.to_dict() for r in results], indent=2))
        return 0 if all(r.ok for r in results) else 1

    if command == "refresh":
        days = args.days or orchestrator.config.refresh_days
        if args.symbol:
            result = await orchestrator.refresh_history(args.symbol, days, force=args.force)
            print(json.dumps(result.to_dict()))
            return 0
        results = await orchestrator.refresh_all(days)
        print(json.dumps([r.to_dict() for r in results], indent=2))
        return 0 if all(r.ok for r in results) else 1

    if command == "status":
        print(json.dumps(await build_status(orchestrator), indent=2))
        return 0

    if command == "export":
        sys.stdout.write(await export_history(orchestrator, fmt=args.format))
        return 0

    if command == "clear":
        if args.symbol:
            deleted = {args.symbol.upper(): await orchestrator.clear_symbol(args.symbol)}
        else:
            deleted = await orchestrator.clear_all()
        print(json.dumps(deleted, indent=2))
        return 0

    if command == "loop":
        loop = HistoryRefreshLoop(
            orchestrator,
            interval_seconds=orchestrator.config.refresh_interval_seconds,
            days=args.days or orchestrator.config.refresh_days,
        )
        await loop.start()
        try:
            while loop.is_running:
                await asyncio.sleep(1)
        finally:
            await loop.stop()
        return 0

    raise ValueError(f"Unknown command: {command}")


# ============================================================
# MAIN ENTRY POINT
# ============================================================

async def async_main(args: argparse.Namespace) -> int:
    """
    Async main entry point.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    config = build_config(args)
    set_config(config)

    orchestrator = create_orchestrator(config)

    try:
        return await run_command(orchestrator, args)
    except HistoryEngineError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1
    finally:
        await orchestrator.close()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    setup_logging(args.log_level, args.log_format)

    return asyncio.run(async_main(args))


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())

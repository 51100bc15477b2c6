"""
Job Processor - Main Entry Point

Command-line interface for the data processor. It moves unprocessed job
postings from the raw crawler database into the clean database, one batch per
enabled platform and cycle.

Usage:
    python -m jobcrawler.processor.main [OPTIONS]
    jobcrawler-processor [OPTIONS]

Options:
    --once                Run a single cycle and exit (default, or RUN_MODE=once)
    --interval            Run a cycle every PROCESS_INTERVAL_SECONDS (RUN_MODE=interval)
    --interval-seconds N  Override the interval length
    --source KEY          Only process this platform key (e.g. 'linkedin')
    --batch-size N        Records per platform and cycle
    --config-dir PATH     Directory holding global.yml and sources/
    --dry-run             Transform without writing to either database
    --verbose             Enable debug logging
    --help                Show this message and exit

Examples:
    # Process one batch of every enabled platform:
    python -m jobcrawler.processor.main --once

    # Keep processing every 5 minutes:
    RUN_MODE=interval PROCESS_INTERVAL_SECONDS=300 python -m jobcrawler.processor.main

    # See what LinkedIn records would produce, without writing:
    python -m jobcrawler.processor.main --source linkedin --dry-run --verbose

Exit Codes:
    0: Success
    1: Some records failed
    2: Fatal error (configuration, database connection, aborted cycle)
    130: Interrupted
"""

import argparse
import logging
import os
import sys
import time
from datetime import date
from typing import Callable, Optional

from dotenv import load_dotenv

from .ai_client import AIBudget, AIClient
from .config_loader import ConfigError, load_all_configs
from .db_operations import DatabaseError, ProcessorDB
from .orchestrator import CycleResult, Orchestrator
from .sources import build_processors

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 300


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        description='Process raw job postings into the clean job database',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        '--once',
        action='store_const',
        const='once',
        dest='mode',
        help='Run a single processing cycle and exit'
    )
    mode.add_argument(
        '--interval',
        action='store_const',
        const='interval',
        dest='mode',
        help='Run processing cycles on a fixed interval'
    )

    parser.add_argument(
        '--interval-seconds',
        type=int,
        default=None,
        dest='interval_seconds',
        help='Seconds between cycles in interval mode'
    )

    parser.add_argument(
        '--source',
        type=str,
        default=None,
        help='Only process this platform key (e.g. "linkedin")'
    )

    parser.add_argument(
        '--batch-size',
        type=int,
        default=None,
        dest='batch_size',
        help='Records fetched per platform and cycle'
    )

    parser.add_argument(
        '--config-dir',
        type=str,
        default=None,
        dest='config_dir',
        help='Configuration directory (default: PROCESSOR_CONFIG_DIR or ./config)'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        dest='dry_run',
        help='Transform records without writing to either database'
    )

    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable debug logging'
    )

    return parser.parse_args(argv)


def resolve_batch_size(cli_value: Optional[int], config_value: int) -> int:
    """CLI flag, then BATCH_SIZE, then settings.batch_size."""
    if cli_value:
        return cli_value

    env_value = os.getenv('BATCH_SIZE')
    if env_value:
        try:
            parsed = int(env_value)
        except ValueError:
            logger.warning(f"Ignoring invalid BATCH_SIZE: {env_value}")
        else:
            if parsed > 0:
                return parsed

    return config_value


def exit_code_for(result: Optional[CycleResult]) -> int:
    if result is None:
        return 0
    if result.aborted:
        return 2
    if result.total_failed > 0:
        logger.warning(f"Completed with errors: {result.total_failed} failed")
        return 1
    return 0


def run_interval(
    orchestrator: Orchestrator,
    interval_seconds: int,
    max_cycles: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
    today: Callable[[], date] = date.today,
) -> Optional[CycleResult]:
    """
    Run cycles forever (or max_cycles times), resetting the AI budget daily.

    The first cycle starts immediately. Returns the last cycle's result.
    """
    current_day = today()
    last_result = None
    cycles = 0

    logger.info(f"Running in interval mode: every {interval_seconds} seconds")

    while max_cycles is None or cycles < max_cycles:
        if today() != current_day:
            current_day = today()
            orchestrator.reset_ai_budget()

        result = orchestrator.run_one_cycle()
        if result is not None:
            last_result = result
        cycles += 1

        if max_cycles is None or cycles < max_cycles:
            sleep(interval_seconds)

    return last_result


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the processor.

    Returns:
        Exit code (0 = success, 1 = partial failure, 2 = fatal error)
    """
    args = parse_args(argv)

    # Set logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Debug logging enabled")

    try:
        global_config, source_configs = load_all_configs(args.config_dir)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 2

    raw_url = os.getenv('RAW_DATABASE_URL')
    clean_url = os.getenv('CLEAN_DATABASE_URL')
    if not raw_url or not clean_url:
        logger.error("RAW_DATABASE_URL and CLEAN_DATABASE_URL environment variables must be set")
        return 2

    mode = args.mode or os.getenv('RUN_MODE', 'once').lower()
    if mode not in ('once', 'interval'):
        logger.error(f"Unknown RUN_MODE: {mode} (expected 'once' or 'interval')")
        return 2

    try:
        daily_limit = int(os.getenv('AI_DAILY_LIMIT') or global_config.settings.ai_daily_limit)
        budget = AIBudget(daily_limit)
        ai = AIClient(budget)

        processors = build_processors(global_config, source_configs, ai=ai)
        if args.source:
            if args.source not in processors:
                logger.error(
                    f"Unknown or disabled source: {args.source}",
                    extra={'available_sources': sorted(processors)}
                )
                return 2
            processors = {args.source: processors[args.source]}

        logger.info("Connecting to databases")
        db = ProcessorDB(raw_url, clean_url)

        orchestrator = Orchestrator(
            db=db,
            global_config=global_config,
            processors=processors,
            ai_budget=budget,
            batch_size=resolve_batch_size(args.batch_size, global_config.settings.batch_size),
            dry_run=args.dry_run,
        )

        logger.info(
            "Job processor started",
            extra={'mode': mode, 'sources': orchestrator.source_order, 'ai_enabled': ai.available}
        )

        if mode == 'once':
            return exit_code_for(orchestrator.run_one_cycle())

        interval = args.interval_seconds or int(
            os.getenv('PROCESS_INTERVAL_SECONDS', DEFAULT_INTERVAL_SECONDS)
        )
        return exit_code_for(run_interval(orchestrator, interval))

    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 2

    except DatabaseError as e:
        logger.error(f"Database error: {e}")
        return 2

    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130

    except Exception as e:
        logger.error(
            "Unexpected fatal error",
            extra={
                'error': str(e),
                'error_type': type(e).__name__,
            },
            exc_info=True
        )
        return 2


if __name__ == '__main__':
    sys.exit(main())

"""
Print the processing status of the raw and clean databases.

Shows raw totals (processed / unprocessed, latest crawl), the per-platform
backlog, and clean totals (companies, job posts, latest processed crawl).

Usage:
    python scripts/check_status.py [--verbose]
"""

import argparse
import logging
import os
import sys

from dotenv import load_dotenv

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

# Import after path modification
from jobcrawler.processor.db_operations import DatabaseError, ProcessorDB  # noqa: E402

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Show raw and clean database processing status",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args()


def format_status(stats: dict) -> str:
    """Render get_processing_stats() output as a plain-text report."""
    raw = stats["raw"]
    clean = stats["clean"]

    lines = [
        "=" * 60,
        "DATA PROCESSOR STATUS",
        "=" * 60,
        "RAW DATABASE",
        f"  Total jobs:   {raw['total_jobs']}",
        f"  Processed:    {raw['processed']}",
        f"  Unprocessed:  {raw['unprocessed']}",
        f"  Latest crawl: {raw['latest_crawl']}",
        "",
        "RAW JOBS BY PLATFORM",
    ]
    for row in stats["raw_by_platform"]:
        lines.append(f"  {row['platform']:<15} total={row['total']:<8} unprocessed={row['unprocessed']}")

    lines += [
        "",
        "CLEAN DATABASE",
        f"  Companies:        {clean['companies']}",
        f"  Job posts:        {clean['job_posts']}",
        f"  Latest processed: {clean['latest_processed']}",
        "=" * 60,
    ]
    return "\n".join(lines)


def main() -> int:
    args = parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    raw_url = os.getenv("RAW_DATABASE_URL")
    clean_url = os.getenv("CLEAN_DATABASE_URL")
    if not raw_url or not clean_url:
        logger.error("RAW_DATABASE_URL and CLEAN_DATABASE_URL environment variables must be set")
        return 2

    try:
        db = ProcessorDB(raw_url, clean_url)
        print(format_status(db.get_processing_stats()))
        return 0

    except DatabaseError as e:
        logger.error(f"Database error: {e}")
        return 2

    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())

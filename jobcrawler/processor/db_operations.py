"""
Database Operations for the Job Processor

This module handles all database interactions for the processor:
- Reading unprocessed raw job postings (raw.job_posting joined with raw.company)
- Marking raw postings processed, or resetting them for reprocessing
- Resolving companies and inserting job posts in the clean database

Key Features:
- Two connection strings: the raw store and the clean store are separate databases
- Duplicate-safe writes: company merge by name/domain, job posts deduped by URL
  and by (company, title, platform)
- Savepoints around inserts so a unique violation from a concurrent writer
  resolves to the existing row instead of failing the transaction
- Replaying a batch converges to the same clean store contents
"""

import logging
from contextlib import contextmanager
from typing import Any, Generator, Iterable, Optional

import psycopg2
import psycopg2.errors
import psycopg2.extras
from psycopg2 import sql

from .transform import NormalizedJob

logger = logging.getLogger(__name__)


class DatabaseError(Exception):
    """Raised when a database operation fails."""
    pass


class RecordRejectedError(DatabaseError):
    """
    Raised when the clean database rejects one record's data.

    Covers value errors (numeric overflow, over-long text) and constraint
    violations other than a duplicate key. Retrying the same record fails
    the same way.
    """
    pass


class ProcessorDB:
    """
    Database interface for the processor.

    This class provides methods to:
    - Fetch unprocessed raw job postings per platform, oldest first
    - Mark raw postings processed in one batched update
    - Upsert companies and insert job posts without duplicates
    - Report processing statistics

    Every public method opens its own connection and transaction.
    """

    def __init__(self, raw_connection_string: str, clean_connection_string: str):
        """
        Initialize database access.

        Args:
            raw_connection_string: PostgreSQL URL of the raw (crawler) database
            clean_connection_string: PostgreSQL URL of the clean database

        Raises:
            DatabaseError: If either database is unreachable
        """
        self.raw_url = raw_connection_string
        self.clean_url = clean_connection_string

        try:
            self._test_connection(self.raw_url)
            self._test_connection(self.clean_url)
            logger.info("Database connections validated successfully")
        except Exception as e:
            raise DatabaseError(f"Failed to connect to database: {e}")

    def _test_connection(self, url: str) -> None:
        with self._get_connection(url) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")

    @contextmanager
    def _get_connection(self, url: str) -> Generator[psycopg2.extensions.connection, None, None]:
        """
        Context manager for database connections.

        Commits on success, rolls back on any exception and always closes.
        """
        conn = None
        try:
            conn = psycopg2.connect(url)
            yield conn
            conn.commit()
        except Exception as e:
            if conn:
                conn.rollback()
            logger.error(
                "Database operation failed, rolled back transaction",
                extra={'error': str(e), 'error_type': type(e).__name__}
            )
            raise
        finally:
            if conn:
                conn.close()

    # ------------------------------------------------------------------
    # Raw store
    # ------------------------------------------------------------------

    def fetch_unprocessed_batch(self, platform: str, limit: int) -> list[dict[str, Any]]:
        """
        Fetch unprocessed raw postings of one platform, oldest crawl first.

        Each row carries the raw posting columns plus ``company_name``,
        ``company_location`` and ``company_url`` from the raw company table.

        Raises:
            DatabaseError: If the query fails
        """
        try:
            with self._get_connection(self.raw_url) as conn:
                with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                    cur.execute(
                        """
                        SELECT
                            jp.*,
                            c.company_name,
                            c.location AS company_location,
                            c.url AS company_url
                        FROM job_posting jp
                        LEFT JOIN company c ON jp.company_id = c.company_id
                        WHERE jp.processed = FALSE
                          AND jp.platform = %s
                        ORDER BY jp.crawled_time ASC
                        LIMIT %s
                        """,
                        (platform, limit),
                    )
                    rows = [dict(row) for row in cur.fetchall()]

                    logger.info(
                        "Fetched unprocessed raw jobs",
                        extra={'count': len(rows), 'platform': platform, 'limit': limit}
                    )
                    return rows

        except psycopg2.Error as e:
            logger.error(
                "Failed to fetch unprocessed jobs",
                extra={'error': str(e), 'pgcode': e.pgcode, 'platform': platform}
            )
            raise DatabaseError(f"Failed to fetch unprocessed jobs: {e}")

    def mark_processed(self, job_ids: Iterable[Any]) -> int:
        """
        Mark raw postings processed in one update.

        Raw ids are UUIDs; they are sent as text and cast to uuid[].

        Returns:
            Number of rows updated (0 for an empty id list)
        """
        ids = [str(job_id) for job_id in job_ids if job_id is not None]
        if not ids:
            return 0

        try:
            with self._get_connection(self.raw_url) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        UPDATE job_posting
                        SET processed = TRUE, processed_at = NOW()
                        WHERE job_id = ANY(%s::uuid[])
                        """,
                        (ids,),
                    )
                    updated = cur.rowcount

                    logger.debug("Marked raw jobs processed", extra={'count': updated})
                    return updated

        except psycopg2.Error as e:
            logger.error(
                "Failed to mark jobs processed",
                extra={'error': str(e), 'pgcode': e.pgcode, 'job_count': len(ids)}
            )
            raise DatabaseError(f"Failed to mark jobs processed: {e}")

    def reset_processed(
        self,
        platform: Optional[str] = None,
        job_ids: Optional[list[Any]] = None,
    ) -> int:
        """
        Flag raw postings unprocessed again so the next cycle reprocesses them.

        Args:
            platform: Only reset this platform (None for all platforms)
            job_ids: Only reset these raw ids (None for all matching rows)

        Returns:
            Number of rows reset
        """
        try:
            with self._get_connection(self.raw_url) as conn:
                with conn.cursor() as cur:
                    query = sql.SQL("""
                        UPDATE job_posting
                        SET processed = FALSE, processed_at = NULL
                        WHERE processed = TRUE
                        {platform_filter}
                        {id_filter}
                    """).format(
                        platform_filter=sql.SQL("AND platform = %s") if platform else sql.SQL(""),
                        id_filter=sql.SQL("AND job_id = ANY(%s::uuid[])") if job_ids else sql.SQL(""),
                    )

                    params: list[Any] = []
                    if platform:
                        params.append(platform)
                    if job_ids:
                        params.append([str(job_id) for job_id in job_ids])

                    cur.execute(query, params)
                    reset = cur.rowcount

                    logger.info(
                        "Reset raw jobs for reprocessing",
                        extra={'count': reset, 'platform_filter': platform}
                    )
                    return reset

        except psycopg2.Error as e:
            logger.error("Failed to reset processed flags", extra={'error': str(e), 'pgcode': e.pgcode})
            raise DatabaseError(f"Failed to reset processed jobs: {e}")

    # ------------------------------------------------------------------
    # Clean store
    # ------------------------------------------------------------------

    def upsert_company(
        self,
        name: str,
        domain: Optional[str] = None,
        location: Optional[str] = None,
    ) -> Any:
        """
        Resolve a company to its clean-store id, creating it when needed.

        Names compare case- and whitespace-insensitively; the domain takes
        part in the match only when given. When several rows match, the
        earliest created wins. A found company gets its location refreshed
        (when one is provided) and its UpdatedAt bumped.

        Raises:
            DatabaseError: If the company cannot be resolved
            RecordRejectedError: If the database rejects the company's values
        """
        try:
            with self._get_connection(self.clean_url) as conn:
                with conn.cursor() as cur:
                    company_id = find_company(cur, name, domain)
                    if company_id is not None:
                        touch_company(cur, company_id, location)
                        return company_id

                    cur.execute("SAVEPOINT company_insert")
                    try:
                        cur.execute(
                            """
                            INSERT INTO Company (Name, Location, Domain)
                            VALUES (%s, %s, %s)
                            RETURNING Id
                            """,
                            (name.strip(), location, domain),
                        )
                        company_id = cur.fetchone()[0]
                        cur.execute("RELEASE SAVEPOINT company_insert")
                    except psycopg2.errors.UniqueViolation:
                        cur.execute("ROLLBACK TO SAVEPOINT company_insert")
                        logger.debug("Company inserted concurrently, looking it up again", extra={'company': name})
                        company_id = find_company(cur, name, domain)
                        if company_id is None:
                            raise DatabaseError(f"Company '{name}' conflicted on insert but was not found")

                    logger.debug("Resolved company", extra={'company': name, 'company_id': str(company_id)})
                    return company_id

        except (psycopg2.DataError, psycopg2.IntegrityError) as e:
            logger.error(
                "Clean database rejected company",
                extra={'error': str(e), 'pgcode': e.pgcode, 'company': name}
            )
            raise RecordRejectedError(f"Company rejected: {e}")

        except psycopg2.Error as e:
            logger.error(
                "Failed to upsert company",
                extra={'error': str(e), 'pgcode': e.pgcode, 'company': name}
            )
            raise DatabaseError(f"Failed to upsert company: {e}")

    def insert_job_post(self, job: NormalizedJob, company_id: Any) -> tuple[Any, bool]:
        """
        Insert a job post unless it already exists.

        A job is a duplicate when its URL is known, or when the same company
        already has a post with the same trimmed, lower-cased title on the
        same platform.

        Returns:
            (job_post_id, created) where created is False for duplicates

        Raises:
            DatabaseError: If the insert fails
            RecordRejectedError: If the database rejects the job's values
        """
        try:
            with self._get_connection(self.clean_url) as conn:
                with conn.cursor() as cur:
                    existing = find_job_post(cur, job.post_url, company_id, job.title, job.platform_id)
                    if existing is not None:
                        logger.debug(
                            "Skipping duplicate job post",
                            extra={'raw_job_id': job.raw_job_id, 'job_post_id': str(existing)}
                        )
                        return existing, False

                    row = None
                    cur.execute("SAVEPOINT job_insert")
                    try:
                        cur.execute(INSERT_JOB_POST_SQL, job.to_db_params(company_id))
                        row = cur.fetchone()
                        cur.execute("RELEASE SAVEPOINT job_insert")
                    except psycopg2.errors.UniqueViolation:
                        cur.execute("ROLLBACK TO SAVEPOINT job_insert")

                    if row:
                        return row[0], True

                    existing = find_job_post_by_url(cur, job.post_url)
                    if existing is None:
                        raise DatabaseError(f"Job post for raw job {job.raw_job_id} was neither inserted nor found")
                    return existing, False

        except (psycopg2.DataError, psycopg2.IntegrityError) as e:
            logger.error(
                "Clean database rejected job post",
                extra={'error': str(e), 'pgcode': e.pgcode, 'raw_job_id': job.raw_job_id}
            )
            raise RecordRejectedError(f"Job post rejected: {e}")

        except psycopg2.Error as e:
            logger.error(
                "Failed to insert job post",
                extra={'error': str(e), 'pgcode': e.pgcode, 'raw_job_id': job.raw_job_id}
            )
            raise DatabaseError(f"Failed to insert job post: {e}")

    def get_processing_stats(self) -> dict[str, Any]:
        """
        Statistics about both stores, for monitoring and the status script.

        Returns:
            Dictionary with raw totals, raw counts per platform and clean totals
        """
        try:
            with self._get_connection(self.raw_url) as conn:
                with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                    cur.execute("""
                        SELECT
                            COUNT(*) AS total_jobs,
                            COUNT(*) FILTER (WHERE processed = FALSE) AS unprocessed,
                            COUNT(*) FILTER (WHERE processed = TRUE) AS processed,
                            MAX(crawled_time) AS latest_crawl
                        FROM job_posting
                    """)
                    raw_overall = dict(cur.fetchone())

                    cur.execute("""
                        SELECT
                            platform,
                            COUNT(*) AS total,
                            COUNT(*) FILTER (WHERE processed = FALSE) AS unprocessed
                        FROM job_posting
                        GROUP BY platform
                        ORDER BY total DESC
                    """)
                    raw_by_platform = [dict(row) for row in cur.fetchall()]

            with self._get_connection(self.clean_url) as conn:
                with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                    cur.execute("""
                        SELECT
                            (SELECT COUNT(*) FROM Company) AS companies,
                            (SELECT COUNT(*) FROM JobPost) AS job_posts,
                            (SELECT MAX(CrawledTime) FROM JobPost) AS latest_processed
                    """)
                    clean_overall = dict(cur.fetchone())

            return {
                'raw': raw_overall,
                'raw_by_platform': raw_by_platform,
                'clean': clean_overall,
            }

        except psycopg2.Error as e:
            logger.error("Failed to get processing stats", extra={'error': str(e)})
            raise DatabaseError(f"Failed to get stats: {e}")


INSERT_JOB_POST_SQL = """
    INSERT INTO JobPost (
        CompanyId, Title, Description, SalaryPerMonth, CurrencyId,
        ExperienceLevelId, Location, CountryCode, ApplicantCount,
        PostedDate, PlatformId, PostUrl, CrawledTime
    ) VALUES (
        %(company_id)s, %(title)s, %(description)s, %(salary_per_month)s, %(currency_id)s,
        %(experience_level_id)s, %(location)s, %(country_code)s, %(applicant_count)s,
        %(posted_date)s, %(platform_id)s, %(post_url)s, %(crawled_time)s
    )
    ON CONFLICT (PostUrl) DO NOTHING
    RETURNING Id
"""


def find_company(cur, name: str, domain: Optional[str] = None) -> Optional[Any]:
    """Earliest-created company matching the name (and domain, when given)."""
    if domain:
        cur.execute(
            """
            SELECT Id FROM Company
            WHERE LOWER(TRIM(Name)) = LOWER(TRIM(%s))
              AND LOWER(Domain) = LOWER(%s)
            ORDER BY CreatedAt ASC
            LIMIT 1
            """,
            (name, domain),
        )
    else:
        cur.execute(
            """
            SELECT Id FROM Company
            WHERE LOWER(TRIM(Name)) = LOWER(TRIM(%s))
            ORDER BY CreatedAt ASC
            LIMIT 1
            """,
            (name,),
        )
    row = cur.fetchone()
    return row[0] if row else None


def touch_company(cur, company_id: Any, location: Optional[str] = None) -> None:
    if location:
        cur.execute(
            "UPDATE Company SET Location = %s, UpdatedAt = NOW() WHERE Id = %s",
            (location, company_id),
        )
    else:
        cur.execute("UPDATE Company SET UpdatedAt = NOW() WHERE Id = %s", (company_id,))


def find_job_post_by_url(cur, post_url: Optional[str]) -> Optional[Any]:
    if not post_url:
        return None
    cur.execute("SELECT Id FROM JobPost WHERE PostUrl = %s", (post_url,))
    row = cur.fetchone()
    return row[0] if row else None


def find_job_post(
    cur,
    post_url: Optional[str],
    company_id: Any,
    title: Optional[str],
    platform_id: Optional[int],
) -> Optional[Any]:
    """Existing job post by URL, else by (company, normalized title, platform)."""
    existing = find_job_post_by_url(cur, post_url)
    if existing is not None or not title:
        return existing

    cur.execute(
        """
        SELECT Id FROM JobPost
        WHERE CompanyId IS NOT DISTINCT FROM %s
          AND LOWER(TRIM(Title)) = LOWER(TRIM(%s))
          AND PlatformId IS NOT DISTINCT FROM %s
        ORDER BY CreatedAt ASC
        LIMIT 1
        """,
        (company_id, title, platform_id),
    )
    row = cur.fetchone()
    return row[0] if row else None

"""
Processing Orchestrator

Runs processing cycles: for every enabled platform, in priority order, fetch a
batch of unprocessed raw postings, transform it with the platform's
SourceProcessor, commit the candidates to the clean store and mark the raw
postings processed.

Key Responsibilities:
- One cycle at a time (a second request while busy is dropped)
- Per-record commit: company resolution, then duplicate-safe job insert
- Batched processed-marking; raw ids whose insert failed transiently stay
  unprocessed, records the clean database rejects are marked like invalid ones
- Abort the rest of a cycle when a whole-batch store call fails
- Cooperative cancellation between records
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Optional

from .ai_client import AIBudget
from .config_loader import GlobalConfig
from .db_operations import DatabaseError, RecordRejectedError
from .sources import SourceProcessor
from .transform import NormalizedJob, ProcessorStats

logger = logging.getLogger(__name__)


@dataclass
class CycleResult:
    """Totals of one processing cycle."""

    total_processed: int = 0
    total_succeeded: int = 0
    total_failed: int = 0
    duplicates: int = 0
    duration_ms: int = 0
    aborted: bool = False
    error: Optional[str] = None


class Orchestrator:
    """
    Drives the enabled source processors against the store.

    Args:
        db: Store implementing fetch_unprocessed_batch, mark_processed,
            upsert_company and insert_job_post (normally ProcessorDB)
        global_config: Loaded global configuration
        processors: SourceProcessor per platform key (see build_processors)
        ai_budget: Daily AI budget shared by the processors' AI client
        batch_size: Records fetched per platform and cycle
            (defaults to settings.batch_size)
        dry_run: Transform only; nothing is written or marked
    """

    def __init__(
        self,
        db: Any,
        global_config: GlobalConfig,
        processors: dict[str, SourceProcessor],
        ai_budget: Optional[AIBudget] = None,
        batch_size: Optional[int] = None,
        dry_run: bool = False,
    ):
        self.db = db
        self.global_config = global_config
        self.processors = processors
        self.ai_budget = ai_budget
        self.batch_size = batch_size or global_config.settings.batch_size
        self.dry_run = dry_run

        self._lock = threading.Lock()
        self._stop = threading.Event()

        # Execution order: ascending priority, ties in declaration order
        self._order = [
            entry.key for entry in global_config.enabled_platforms() if entry.key in processors
        ]

    @property
    def source_order(self) -> list[str]:
        return list(self._order)

    def run_one_cycle(self) -> Optional[CycleResult]:
        """
        Process one batch per enabled platform.

        Returns:
            CycleResult, or None when a cycle is already running
        """
        if not self._lock.acquire(blocking=False):
            logger.warning("Processing cycle already running; skipping this trigger")
            return None

        try:
            self._stop.clear()
            return self._run_cycle()
        finally:
            self._lock.release()

    def _run_cycle(self) -> CycleResult:
        result = CycleResult()
        start = time.monotonic()
        self.reset_source_stats()

        logger.info(
            "Starting processing cycle",
            extra={'sources': self._order, 'batch_size': self.batch_size, 'dry_run': self.dry_run},
        )

        try:
            for key in self._order:
                if self._stop.is_set():
                    logger.warning("Cycle cancelled before processing source", extra={'source': key})
                    break
                self._process_source(key, self.processors[key], result)
        except DatabaseError as e:
            result.aborted = True
            result.error = str(e)
            logger.error("Processing cycle aborted by database error", extra={'error': str(e)})
        finally:
            result.duration_ms = int((time.monotonic() - start) * 1000)
            self._log_summary(result)

        return result

    def _process_source(self, key: str, processor: SourceProcessor, result: CycleResult) -> None:
        platform = processor.platform_name
        raw_records = self.db.fetch_unprocessed_batch(platform, self.batch_size)

        if not raw_records:
            logger.info(f"No unprocessed jobs for {platform}")
            return

        batch = processor.process_batch(raw_records, self.global_config, should_stop=self._stop.is_set)
        result.total_processed += len(batch.attempted_ids)
        result.total_failed += len(batch.attempted_ids) - len(batch.jobs)

        if self.dry_run:
            result.total_succeeded += len(batch.jobs)
            logger.info(
                f"DRY RUN: Would commit {len(batch.jobs)} jobs and mark "
                f"{len(batch.attempted_ids)} raw jobs processed for {platform}"
            )
            return

        retry_ids = set()
        rejected = 0
        for job in batch.jobs:
            try:
                created = self._commit(job)
            except RecordRejectedError as e:
                rejected += 1
                processor.record_commit_failure(job, str(e))
                result.total_failed += 1
                logger.error(
                    "Clean database rejected job; raw job marked processed",
                    extra={'raw_job_id': job.raw_job_id, 'platform': platform, 'error': str(e)},
                )
                continue
            except DatabaseError as e:
                retry_ids.add(job.raw_job_id)
                processor.record_commit_failure(job, str(e))
                result.total_failed += 1
                logger.error(
                    "Failed to store job; raw job left for retry",
                    extra={'raw_job_id': job.raw_job_id, 'platform': platform, 'error': str(e)},
                )
                continue

            processor.record_commit_result(created)
            result.total_succeeded += 1
            if not created:
                result.duplicates += 1

        mark_ids = [job_id for job_id in batch.attempted_ids if job_id not in retry_ids]
        self.db.mark_processed(mark_ids)

        logger.info(
            f"Finished batch for {platform}",
            extra={
                'attempted': len(batch.attempted_ids),
                'committed': len(batch.jobs) - len(retry_ids) - rejected,
                'rejected': rejected,
                'left_for_retry': len(retry_ids),
            },
        )

    def _commit(self, job: NormalizedJob) -> bool:
        company_id = None
        if job.company.name:
            company_id = self.db.upsert_company(job.company.name, job.company.domain, job.company.location)

        _, created = self.db.insert_job_post(job, company_id)
        return created

    def _log_summary(self, result: CycleResult) -> None:
        logger.info(
            "Processing cycle completed",
            extra={
                'duration_ms': result.duration_ms,
                'processed': result.total_processed,
                'succeeded': result.total_succeeded,
                'failed': result.total_failed,
                'duplicates': result.duplicates,
                'aborted': result.aborted,
            },
        )

        max_errors = self.global_config.settings.max_logged_errors
        for key in self._order:
            stats = self.processors[key].stats
            if stats.errors:
                logger.warning(
                    f"{self.processors[key].platform_name}: {len(stats.errors)} errors",
                    extra={'errors': stats.errors[:max_errors]},
                )

    def get_source_stats(self) -> dict[str, ProcessorStats]:
        """Counters of the last (or running) cycle per processor, keyed by platform name."""
        return {processor.platform_name: processor.get_stats() for processor in self.processors.values()}

    def reset_source_stats(self) -> None:
        for processor in self.processors.values():
            processor.reset_stats()

    def cancel(self) -> None:
        """Ask the running cycle to stop after the current record."""
        self._stop.set()

    def reset_ai_budget(self) -> None:
        if self.ai_budget is not None:
            self.ai_budget.reset()
            logger.info("AI daily budget reset")

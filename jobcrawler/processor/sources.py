"""
Per-Platform Source Processors.

Every platform runs the same base transform (see ``transform.py``) followed
by an optional correction hook. Hooks are plain functions registered in
``SOURCE_HOOKS`` under the ``processor`` name used in ``config/global.yml``;
``build_processors`` composes one SourceProcessor per enabled platform.

Adding a platform:
    def mysite_hook(job, raw, global_config):
        # adjust the candidate record
        return job

    SOURCE_HOOKS['mysite'] = mysite_hook
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Callable, Optional

from .ai_client import AIClient
from .config_loader import ConfigError, GlobalConfig, SourceConfig
from .transform import NormalizedJob, ProcessorStats, ValidationError, transform_job, validate_job

logger = logging.getLogger(__name__)

SourceHook = Callable[[NormalizedJob, dict[str, Any], GlobalConfig], NormalizedJob]

# Multipliers converting a salary quoted per pay period into a monthly amount
PAY_PERIOD_TO_MONTHLY = {
    'hourly': 160.0,
    'hour': 160.0,
    'daily': 22.0,
    'day': 22.0,
    'weekly': 52.0 / 12.0,
    'week': 52.0 / 12.0,
    'monthly': 1.0,
    'month': 1.0,
    'yearly': 1.0 / 12.0,
    'year': 1.0 / 12.0,
    'annual': 1.0 / 12.0,
    'annually': 1.0 / 12.0,
}


def passthrough(job: NormalizedJob, raw: dict[str, Any], global_config: GlobalConfig) -> NormalizedJob:
    """Default hook: no platform-specific corrections."""
    return job


def linkedin_hook(job: NormalizedJob, raw: dict[str, Any], global_config: GlobalConfig) -> NormalizedJob:
    """
    LinkedIn quotes salaries per pay period and carries a currency column.

    The salary is converted to a monthly amount using ``pay_period`` and the
    raw ``currency`` hint replaces the parsed currency when it is a known code.
    """
    if job.salary_per_month is None:
        return job

    salary_per_month = job.salary_per_month
    period = str(raw.get('pay_period') or '').strip().lower()
    factor = PAY_PERIOD_TO_MONTHLY.get(period)
    if factor is not None:
        salary_per_month = round(salary_per_month * factor, 2)
    elif period:
        logger.debug("Unknown LinkedIn pay period", extra={'pay_period': period, 'raw_job_id': job.raw_job_id})

    currency_id = job.currency_id
    hint = str(raw.get('currency') or '').strip().upper()
    if hint in global_config.currencies:
        currency_id = global_config.currencies[hint]

    return replace(job, salary_per_month=salary_per_month, currency_id=currency_id)


SOURCE_HOOKS: dict[str, SourceHook] = {
    'linkedin': linkedin_hook,
    'topcv': passthrough,
    'careerviet': passthrough,
    'itviec': passthrough,
    'vietnamworks': passthrough,
}


@dataclass
class BatchResult:
    """Outcome of transforming one batch."""

    jobs: list[NormalizedJob] = field(default_factory=list)
    attempted_ids: list[Any] = field(default_factory=list)


class SourceProcessor:
    """
    Transforms raw records of one platform into validated candidate jobs.

    Counters accumulate across calls until ``reset_stats()``; the orchestrator
    resets them at the start of every cycle, so between cycles they describe
    the last one.
    """

    def __init__(
        self,
        key: str,
        config: SourceConfig,
        hook: SourceHook = passthrough,
        ai: Optional[AIClient] = None,
    ):
        self.key = key
        self.config = config
        self.hook = hook
        self.ai = ai
        self.stats = ProcessorStats()

    @property
    def platform_name(self) -> str:
        return self.config.platform_name

    def transform(
        self,
        raw: dict[str, Any],
        global_config: GlobalConfig,
        today: Optional[date] = None,
    ) -> NormalizedJob:
        """
        Base transform, platform hook, then validation.

        Raises:
            ValidationError: If the finished record fails the quality checks
        """
        job = transform_job(raw, self.config, global_config, ai=self.ai, today=today)
        job = self.hook(job, raw, global_config)
        validate_job(job, self.config)
        return job

    def process_batch(
        self,
        raw_records: list[dict[str, Any]],
        global_config: GlobalConfig,
        should_stop: Optional[Callable[[], bool]] = None,
        today: Optional[date] = None,
    ) -> BatchResult:
        """
        Transform a batch record by record.

        A record that fails (validation or unexpected error) is counted as
        failed but still listed in ``attempted_ids`` so it is not retried
        forever. ``should_stop`` is checked before each record; when it
        returns True the remaining records are left untouched.
        """
        logger.info(f"Processing {len(raw_records)} jobs from {self.platform_name}")
        result = BatchResult()

        for raw in raw_records:
            if should_stop and should_stop():
                logger.warning(
                    "Cancellation requested; stopping batch early",
                    extra={'platform': self.platform_name, 'attempted': len(result.attempted_ids)},
                )
                break

            raw_job_id = raw.get('job_id')
            self.stats.processed += 1
            result.attempted_ids.append(raw_job_id)

            try:
                job = self.transform(raw, global_config, today=today)
            except ValidationError as e:
                self.stats.failed += 1
                self.stats.record_error(raw_job_id, raw.get('job_title'), str(e))
                logger.warning(
                    "Job failed validation",
                    extra={'raw_job_id': raw_job_id, 'platform': self.platform_name, 'error': str(e)},
                )
                continue
            except Exception as e:
                self.stats.failed += 1
                self.stats.record_error(raw_job_id, raw.get('job_title'), str(e))
                logger.error(
                    "Unexpected error transforming job",
                    extra={
                        'raw_job_id': raw_job_id,
                        'platform': self.platform_name,
                        'error': str(e),
                        'error_type': type(e).__name__,
                    },
                )
                continue

            result.jobs.append(job)
            self.stats.succeeded += 1

        return result

    def record_commit_result(self, created: bool) -> None:
        if created:
            self.stats.inserted += 1
        else:
            self.stats.duplicates += 1

    def record_commit_failure(self, job: NormalizedJob, error: str) -> None:
        """A transformed job could not be written; move it from succeeded to failed."""
        self.stats.succeeded -= 1
        self.stats.failed += 1
        self.stats.record_error(job.raw_job_id, job.title, error)

    def get_stats(self) -> ProcessorStats:
        return self.stats.copy()

    def reset_stats(self) -> None:
        self.stats = ProcessorStats()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(key='{self.key}', platform='{self.platform_name}')"


def build_processors(
    global_config: GlobalConfig,
    source_configs: dict[str, SourceConfig],
    ai: Optional[AIClient] = None,
) -> dict[str, SourceProcessor]:
    """
    Compose a SourceProcessor for every enabled platform.

    Raises:
        ConfigError: If a platform names an unknown processor or has no source config
    """
    processors: dict[str, SourceProcessor] = {}

    for entry in global_config.enabled_platforms():
        hook = SOURCE_HOOKS.get(entry.processor)
        if hook is None:
            raise ConfigError(f"Platform '{entry.key}' uses unknown processor '{entry.processor}'")

        config = source_configs.get(entry.key)
        if config is None:
            raise ConfigError(f"Platform '{entry.key}' has no source configuration loaded")

        processors[entry.key] = SourceProcessor(entry.key, config, hook=hook, ai=ai)
        logger.info(f"Initialized {entry.name} processor", extra={'processor': entry.processor})

    return processors

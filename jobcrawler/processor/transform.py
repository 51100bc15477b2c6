"""
Job Posting Transformation Logic

This module turns one raw job posting (a row of the raw store joined with its
raw company) into a candidate record for the clean database.

Key Responsibilities:
- Run the salary, experience, location and date normalizers
- Clean the description (HTML stripping or AI cleanup)
- Resolve reference ids (currency, experience level, platform)
- Validate the candidate against the platform's quality checks

Each field is isolated: if one normalizer raises, that field degrades to its
null/default value and the rest of the record is still built.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Optional, TypeVar

from jobcrawler.common.text import extract_domain, strip_html

from .ai_client import AIClient
from .config_loader import GlobalConfig, SourceConfig
from .date_parser import parse_date
from .experience_mapper import get_experience_level_id, map_experience
from .location_normalizer import LocationInfo, normalize_location
from .salary_parser import SalaryInfo, parse_salary

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Keep at most this many error entries per source and cycle
MAX_STORED_ERRORS = 50

DEFAULT_DESCRIPTION_PROMPT = "Clean this job description, remove HTML, keep only relevant info: {text}"


class ValidationError(Exception):
    """Raised when a transformed job fails the platform's quality checks."""


@dataclass
class CompanyInfo:
    name: Optional[str]
    location: Optional[str] = None
    domain: Optional[str] = None


@dataclass
class NormalizedJob:
    """Candidate row for the clean JobPost table."""

    raw_job_id: Any
    company: CompanyInfo
    title: Optional[str]
    description: Optional[str]
    salary: Optional[SalaryInfo]
    salary_per_month: Optional[float]
    currency_id: Optional[int]
    experience_level: str
    experience_level_id: int
    location: Optional[str]
    country_code: Optional[str]
    is_remote: bool
    is_hybrid: bool
    applicant_count: Optional[int]
    posted_date: date
    platform_id: Optional[int]
    post_url: Optional[str]
    crawled_time: Any = None

    def field_value(self, name: str) -> Any:
        """Value of a field as named in ``quality_checks.required_fields``."""
        if name.startswith('company_'):
            return getattr(self.company, name[len('company_'):], None)
        return getattr(self, name, None)

    def to_db_params(self, company_id: Any) -> dict[str, Any]:
        """Named parameters for the JobPost insert."""
        return {
            'company_id': company_id,
            'title': self.title,
            'description': self.description,
            'salary_per_month': self.salary_per_month,
            'currency_id': self.currency_id,
            'experience_level_id': self.experience_level_id,
            'location': self.location,
            'country_code': self.country_code,
            'applicant_count': self.applicant_count,
            'posted_date': self.posted_date,
            'platform_id': self.platform_id,
            'post_url': self.post_url,
            'crawled_time': self.crawled_time,
        }


@dataclass
class ProcessorStats:
    """Per-source counters for one processing cycle."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    inserted: int = 0
    duplicates: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def record_error(self, raw_job_id: Any, job_title: Optional[str], error: str) -> None:
        if len(self.errors) < MAX_STORED_ERRORS:
            self.errors.append({'job_id': raw_job_id, 'job_title': job_title, 'error': error})

    def copy(self) -> "ProcessorStats":
        return ProcessorStats(
            processed=self.processed,
            succeeded=self.succeeded,
            failed=self.failed,
            inserted=self.inserted,
            duplicates=self.duplicates,
            errors=list(self.errors),
        )


def transform_job(
    raw: dict[str, Any],
    config: SourceConfig,
    global_config: GlobalConfig,
    ai: Optional[AIClient] = None,
    today: Optional[date] = None,
) -> NormalizedJob:
    """
    Build a candidate normalized job from a raw record.

    Args:
        raw: Raw job row (job_posting joined with company)
        config: Platform configuration
        global_config: Global configuration (reference tables, defaults)
        ai: Optional AI client for the fallbacks
        today: Processing date (defaults to today)

    Returns:
        NormalizedJob; the posted date falls back to the processing date
    """
    today = today or date.today()
    default_level = config.experience_level.default or global_config.settings.default_experience_level

    salary = _safe_field(
        'salary', raw, lambda: parse_salary(raw.get('salary'), config, ai), None
    )
    experience_level = _safe_field(
        'experience_level',
        raw,
        lambda: map_experience(
            raw.get('experience_level'), config, ai, default=global_config.settings.default_experience_level
        ),
        default_level,
    )
    location = _safe_field(
        'location',
        raw,
        lambda: normalize_location(raw.get('location'), config, ai),
        LocationInfo(city=None, country_code=config.location.default_country),
    )
    posted = _safe_field(
        'posted_date', raw, lambda: parse_date(raw.get('listed_time'), config, ai, today=today), None
    )
    description = _safe_field(
        'description', raw, lambda: clean_description(raw.get('description'), config, ai), None
    )

    salary_per_month = salary.average if salary else None

    return NormalizedJob(
        raw_job_id=raw.get('job_id'),
        company=CompanyInfo(
            name=_clean_string(raw.get('company_name')),
            location=_clean_string(raw.get('company_location')),
            domain=extract_domain(raw.get('company_url')),
        ),
        title=raw.get('job_title'),
        description=description,
        salary=salary,
        salary_per_month=salary_per_month,
        currency_id=global_config.currency_id(salary.currency) if salary else None,
        experience_level=experience_level,
        experience_level_id=get_experience_level_id(experience_level, global_config.experience_levels),
        location=location.city,
        country_code=location.country_code,
        is_remote=location.is_remote,
        is_hybrid=location.is_hybrid,
        applicant_count=parse_applicant_count(raw.get('applies')),
        posted_date=date.fromisoformat(posted) if posted else today,
        platform_id=global_config.platform_ids.get(config.platform_name, config.platform_id),
        post_url=_clean_string(raw.get('url')),
        crawled_time=raw.get('crawled_time'),
    )


def clean_description(text: Optional[str], config: SourceConfig, ai: Optional[AIClient] = None) -> Optional[str]:
    """
    Clean a job description.

    With ``description.method: ai`` and AI processing enabled, the AI's
    cleaned text is used (a ``cleaned_description`` key or plain text);
    otherwise, or when the AI returns nothing, HTML is stripped locally and
    the result capped at ``max_length`` characters.
    """
    if not text:
        return None

    rules = config.description

    if rules.method == 'ai' and rules.ai_processing.enabled and ai is not None:
        result = ai.complete(rules.ai_processing.prompt or DEFAULT_DESCRIPTION_PROMPT, text)
        if isinstance(result, dict) and isinstance(result.get('cleaned_description'), str):
            return result['cleaned_description'][:rules.max_length]
        if isinstance(result, str) and result.strip():
            return result.strip()[:rules.max_length]
        logger.warning("AI description processing failed, using local cleanup")

    return strip_html(text, max_length=rules.max_length)


def parse_applicant_count(value: Any) -> Optional[int]:
    """
    Parse the applicant count: a number, or the first number in a text.

    Examples:
        >>> parse_applicant_count(42)
        42
        >>> parse_applicant_count("Over 200 applicants")
        200
        >>> parse_applicant_count("n/a") is None
        True
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, int):
        return value if value >= 0 else None

    if isinstance(value, float):
        return int(value) if value >= 0 else None

    match = re.search(r'\d[\d,]*', str(value))
    return int(match.group().replace(',', '')) if match else None


def validate_job(job: NormalizedJob, config: SourceConfig) -> None:
    """
    Apply the platform's quality checks.

    Raises:
        ValidationError: If a required field is empty or the title is too long
    """
    checks = config.quality_checks

    for field_name in checks.required_fields:
        if not job.field_value(field_name):
            raise ValidationError(f"Missing required field: {field_name}")

    if job.title and len(job.title) > checks.max_title_length:
        raise ValidationError(
            f"Title too long: {len(job.title)} characters (max {checks.max_title_length})"
        )


def _safe_field(name: str, raw: dict[str, Any], compute: Callable[[], T], default: T) -> T:
    try:
        return compute()
    except Exception as e:
        logger.warning(
            "Failed to normalize field, using default",
            extra={
                'field': name,
                'raw_job_id': raw.get('job_id'),
                'error': str(e),
                'error_type': type(e).__name__,
            },
        )
        return default


def _clean_string(value: Any) -> Optional[str]:
    if value is None:
        return None

    stripped = str(value).strip()
    return stripped if stripped else None

"""
Posted Date Parsing

Resolves the listed/posted time of a job into an ISO date (YYYY-MM-DD).

Supports:
- datetime/date values (the raw column is usually a TIMESTAMP)
- relative phrases via configured patterns ("3 days ago", "2 tuần trước")
- absolute dates via configured strptime formats, then ISO 8601
- an AI fallback whose answer must be a strict YYYY-MM-DD date

When nothing works the parser returns None and the processor substitutes the
processing date.
"""

import calendar
import logging
import re
from datetime import date, datetime, timedelta
from typing import Any, Optional

from .ai_client import AIClient
from .config_loader import DateRules, SourceConfig

logger = logging.getLogger(__name__)

ISO_DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')


def parse_date(
    value: Any,
    config: SourceConfig,
    ai: Optional[AIClient] = None,
    today: Optional[date] = None,
) -> Optional[str]:
    """
    Parse a posted date.

    Args:
        value: Raw listed time (datetime, date or text)
        config: Platform configuration
        ai: Optional AI client used when the fallback is enabled
        today: Processing date used for relative dates (defaults to today)

    Returns:
        ISO date string, or None if the value cannot be parsed
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    text = str(value).strip()
    if not text:
        return None

    today = today or date.today()
    rules = config.date

    if rules.method in ('manual', 'ai'):
        result = parse_manual(text, rules, today)
        if result:
            return result

    if rules.ai_fallback.enabled and ai is not None:
        return parse_with_ai(text, rules, ai, today)

    logger.debug(
        "Posted date not parsed",
        extra={'platform': config.platform_name, 'date_text': text},
    )
    return None


def parse_manual(text: str, rules: DateRules, today: date) -> Optional[str]:
    """Relative patterns first, then configured formats, then ISO 8601."""
    for pattern in rules.relative:
        match = pattern.regex.search(text)
        if not match:
            continue
        try:
            amount = int(match.group(1))
        except (TypeError, ValueError):
            continue
        return subtract(today, amount, pattern.unit).isoformat()

    for fmt in rules.formats:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue

    try:
        return datetime.fromisoformat(text.replace('Z', '+00:00')).date().isoformat()
    except ValueError:
        return None


def subtract(day: date, amount: int, unit: str) -> date:
    """
    Move a date back by amount units.

    Month arithmetic clamps to the last day of the target month
    (March 31 minus one month is February 28/29).
    """
    if unit == 'days':
        return day - timedelta(days=amount)
    if unit == 'weeks':
        return day - timedelta(weeks=amount)
    if unit == 'months':
        month_index = day.year * 12 + (day.month - 1) - amount
        year, month = divmod(month_index, 12)
        month += 1
        last_day = calendar.monthrange(year, month)[1]
        return day.replace(year=year, month=month, day=min(day.day, last_day))
    raise ValueError(f"Unsupported date unit: {unit}")


def parse_with_ai(text: str, rules: DateRules, ai: AIClient, today: date) -> Optional[str]:
    prompt = rules.ai_fallback.prompt.replace('{current_date}', today.isoformat())
    result = ai.complete(prompt, text)

    if isinstance(result, str) and ISO_DATE_PATTERN.match(result.strip()):
        candidate = result.strip()
        try:
            date.fromisoformat(candidate)
        except ValueError:
            logger.warning("AI returned an invalid calendar date", extra={'ai_result': candidate})
            return None
        return candidate

    if result is not None:
        logger.warning(
            "AI date response was not YYYY-MM-DD",
            extra={'date_text': text, 'ai_result': str(result)[:100]},
        )
    return None

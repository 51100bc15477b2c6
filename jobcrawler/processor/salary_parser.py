"""
Salary Parsing

Turns free-text salary strings ("15 Mil - 25 Mil VND", "Up to $2,000",
"Negotiable") into structured amounts using a platform's ordered pattern list.

The first pattern whose regex matches and whose numbers parse wins; pattern
order in the configuration is the priority. When no pattern matches and the
platform enables it, the AI fallback is asked for a JSON answer. A None
result means "salary unknown" and is never an error.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from .ai_client import AIClient
from .config_loader import SalaryPattern, SalaryRules, SourceConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SalaryInfo:
    """Structured salary; amounts are already multiplied out."""

    min: Optional[float]
    max: Optional[float]
    average: Optional[float]
    currency: Optional[str]
    kind: str


def parse_salary(text: Optional[str], config: SourceConfig, ai: Optional[AIClient] = None) -> Optional[SalaryInfo]:
    """
    Parse a salary string with the platform's rules.

    Args:
        text: Raw salary text from the raw store
        config: Platform configuration
        ai: Optional AI client used when the fallback is enabled

    Returns:
        SalaryInfo, or None when the salary cannot be determined

    Examples:
        "15 Mil - 25 Mil VND" with a range pattern and multiplier 1,000,000
        → SalaryInfo(min=15000000.0, max=25000000.0, average=20000000.0,
                     currency='VND', kind='range')
    """
    if not text or not text.strip():
        return None

    rules = config.salary

    if rules.method in ('manual', 'ai'):
        result = parse_manual(text, rules)
        if result:
            return result

    if rules.ai_fallback.enabled and ai is not None:
        return parse_with_ai(text, rules, ai)

    logger.debug(
        "No salary pattern matched",
        extra={'platform': config.platform_name, 'salary_text': text},
    )
    return None


def parse_manual(text: str, rules: SalaryRules) -> Optional[SalaryInfo]:
    """Try every configured pattern in order; first successful extraction wins."""
    for pattern in rules.patterns:
        match = pattern.regex.search(text)
        if not match:
            continue

        result = _extract(match, pattern, rules)
        if result:
            return result

        logger.debug(
            "Salary pattern matched but amounts did not parse; trying next pattern",
            extra={'regex': pattern.regex.pattern, 'salary_text': text},
        )

    return None


def clean_number(value: Optional[str], thousands_separator: str = ',') -> Optional[float]:
    """
    Convert a captured amount to a float.

    Thousands separators and whitespace are stripped first.

    Examples:
        >>> clean_number("1,500")
        1500.0
        >>> clean_number(" 2 000 ")
        2000.0
        >>> clean_number("abc") is None
        True
    """
    if value is None:
        return None

    cleaned = re.sub(r'\s', '', str(value))
    if thousands_separator:
        cleaned = cleaned.replace(thousands_separator, '')

    if not cleaned:
        return None

    try:
        return float(cleaned)
    except ValueError:
        return None


def _extract(match: re.Match, pattern: SalaryPattern, rules: SalaryRules) -> Optional[SalaryInfo]:
    if pattern.kind == 'negotiable':
        return SalaryInfo(min=None, max=None, average=None, currency=rules.default_currency, kind='negotiable')

    currency = _currency(match, pattern, rules)

    if pattern.kind == 'range':
        low = _amount(match, pattern.min_group, pattern, rules)
        high = _amount(match, pattern.max_group, pattern, rules)
        if low is None or high is None:
            return None
        return SalaryInfo(min=low, max=high, average=(low + high) / 2, currency=currency, kind='range')

    value = _amount(match, pattern.value_group, pattern, rules)
    if value is None:
        return None

    if pattern.kind == 'min':
        return SalaryInfo(min=value, max=None, average=value, currency=currency, kind='min')
    if pattern.kind == 'max':
        return SalaryInfo(min=None, max=value, average=value, currency=currency, kind='max')
    return SalaryInfo(min=value, max=value, average=value, currency=currency, kind='exact')


def _amount(match: re.Match, group: Optional[int], pattern: SalaryPattern, rules: SalaryRules) -> Optional[float]:
    if group is None:
        return None
    number = clean_number(match.group(group), rules.thousands_separator)
    if number is None:
        return None
    return number * pattern.multiplier


def _currency(match: re.Match, pattern: SalaryPattern, rules: SalaryRules) -> str:
    if pattern.currency:
        return pattern.currency
    if pattern.currency_group is not None:
        captured = match.group(pattern.currency_group)
        if captured and captured.strip():
            return captured.strip().upper()
    return rules.default_currency


def parse_with_ai(text: str, rules: SalaryRules, ai: AIClient) -> Optional[SalaryInfo]:
    """
    Ask the AI fallback for {min, max, currency, type} and coerce the answer.

    Returns None if the reply is not a JSON object or carries no usable
    amount (unless the model reports the salary as negotiable).
    """
    result = ai.complete(rules.ai_fallback.prompt, text)
    if not isinstance(result, dict):
        if result is not None:
            logger.warning("AI salary response was not a JSON object", extra={'salary_text': text})
        return None

    low = _coerce(result.get('min'))
    high = _coerce(result.get('max'))
    kind = str(result.get('type') or 'unknown')

    if low is None and high is None and kind != 'negotiable':
        return None

    if low is not None and high is not None:
        average = (low + high) / 2
    else:
        average = low if low is not None else high

    currency = result.get('currency')
    return SalaryInfo(
        min=low,
        max=high,
        average=average,
        currency=str(currency).upper() if currency else rules.default_currency,
        kind=kind,
    )


def _coerce(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        return clean_number(value)
    return None

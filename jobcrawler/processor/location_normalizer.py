"""
Location Normalization

Turns a scraped location string into a city, an ISO country code and
remote/hybrid flags using the platform's keyword lists, city mapping table
and country patterns.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .ai_client import AIClient
from .config_loader import LocationRules, SourceConfig

logger = logging.getLogger(__name__)

REMOTE_CITY = 'Remote'


@dataclass(frozen=True)
class LocationInfo:
    city: Optional[str]
    country_code: Optional[str]
    is_remote: bool = False
    is_hybrid: bool = False


def normalize_location(
    text: Optional[str],
    config: SourceConfig,
    ai: Optional[AIClient] = None,
) -> LocationInfo:
    """
    Normalize a location string.

    Manual rules always produce a result, so the AI fallback is only
    consulted when the platform's method is ``ai_only``.

    Args:
        text: Raw location text
        config: Platform configuration
        ai: Optional AI client

    Returns:
        LocationInfo (city is None only for empty input)
    """
    rules = config.location

    if not text or not text.strip():
        return LocationInfo(city=None, country_code=rules.default_country)

    if rules.method in ('manual', 'ai'):
        return normalize_manual(text, rules)

    if rules.ai_fallback.enabled and ai is not None:
        result = normalize_with_ai(text, rules, ai)
        if result:
            return result

    return LocationInfo(city=text.strip(), country_code=rules.default_country)


def normalize_manual(text: str, rules: LocationRules) -> LocationInfo:
    """
    Apply keyword, city and country rules.

    A remote keyword forces the city to "Remote" whatever the city mappings
    say. Hybrid keywords set the flag but leave city mapping untouched. City
    keys are matched as case-sensitive substrings in table order; country
    patterns are tried in order and the first match wins.
    """
    lowered = text.lower()

    is_remote = any(keyword.lower() in lowered for keyword in rules.remote_keywords)
    is_hybrid = any(keyword.lower() in lowered for keyword in rules.hybrid_keywords)

    city = text.strip()
    for key, mapped in rules.city_mappings:
        if key in text:
            city = mapped
            break

    country_code = rules.default_country
    for pattern in rules.country_patterns:
        if pattern.regex.search(text):
            country_code = pattern.code
            break

    return LocationInfo(
        city=REMOTE_CITY if is_remote else city,
        country_code=country_code,
        is_remote=is_remote,
        is_hybrid=is_hybrid,
    )


def normalize_with_ai(text: str, rules: LocationRules, ai: AIClient) -> Optional[LocationInfo]:
    result = ai.complete(rules.ai_fallback.prompt, text)
    if not isinstance(result, dict):
        if result is not None:
            logger.warning("AI location response was not a JSON object", extra={'location_text': text})
        return None

    is_remote = result.get('is_remote') is True
    return LocationInfo(
        city=REMOTE_CITY if is_remote else (result.get('city') or text.strip()),
        country_code=result.get('country_code') or rules.default_country,
        is_remote=is_remote,
        is_hybrid=result.get('is_hybrid') is True,
    )

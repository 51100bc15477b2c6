"""
Experience Level Mapping

Maps the free-text experience level scraped from a job board ("Nhân viên",
"Mid-Senior level", "Trưởng nhóm") to one of six canonical levels, and the
canonical level to its reference id in the clean database.

Resolution order:
1. Exact lookup in the platform's mapping table
2. Case-insensitive bidirectional substring match, in table order
3. AI fallback (only a canonical level is accepted)
4. Platform default, then the global default
"""

import logging
from typing import Mapping, Optional

from .ai_client import AIClient
from .config_loader import CANONICAL_EXPERIENCE_LEVELS, ExperienceRules, SourceConfig

logger = logging.getLogger(__name__)

# Default ids of the ExperienceLevel reference table
EXPERIENCE_LEVEL_IDS = {
    'Internship': 1,
    'Entry': 2,
    'Mid': 3,
    'Senior': 4,
    'Lead': 5,
    'Executive': 6,
}

DEFAULT_EXPERIENCE_LEVEL = 'Entry'


def map_experience(
    text: Optional[str],
    config: SourceConfig,
    ai: Optional[AIClient] = None,
    default: str = DEFAULT_EXPERIENCE_LEVEL,
) -> str:
    """
    Map raw experience text to a canonical level. Never returns None.

    Args:
        text: Raw experience level text
        config: Platform configuration
        ai: Optional AI client used when the fallback is enabled
        default: Global default used when the platform defines none

    Returns:
        One of Internship, Entry, Mid, Senior, Lead, Executive
    """
    rules = config.experience_level
    fallback = rules.default or default

    if not text or not text.strip():
        return fallback

    if rules.method in ('manual', 'ai'):
        result = map_manual(text, rules)
        if result:
            return result

    if rules.ai_fallback.enabled and ai is not None:
        result = map_with_ai(text, rules, ai)
        if result:
            return result

    logger.debug(
        "Experience level not mapped; using default",
        extra={'platform': config.platform_name, 'experience_text': text, 'default': fallback},
    )
    return fallback


def map_manual(text: str, rules: ExperienceRules) -> Optional[str]:
    """
    Look up the mapping table.

    Exact matches win; otherwise the first entry (in declaration order) whose
    key contains the text, or is contained in it, case-insensitively.
    """
    for key, level in rules.mappings:
        if key == text:
            return level

    lowered = text.strip().lower()
    for key, level in rules.mappings:
        key_lowered = key.lower()
        if key_lowered in lowered or lowered in key_lowered:
            return level

    return None


def map_with_ai(text: str, rules: ExperienceRules, ai: AIClient) -> Optional[str]:
    result = ai.complete(rules.ai_fallback.prompt, text)

    if isinstance(result, dict):
        result = result.get('level') or result.get('experience_level')

    if isinstance(result, str):
        candidate = result.strip().strip('."\'')
        if candidate in CANONICAL_EXPERIENCE_LEVELS:
            return candidate

    if result is not None:
        logger.warning(
            "AI returned a non-canonical experience level",
            extra={'experience_text': text, 'ai_result': str(result)[:100]},
        )
    return None


def get_experience_level_id(level: Optional[str], table: Optional[Mapping[str, int]] = None) -> int:
    """
    Reference id for a canonical level.

    ``table`` is the loaded reference_tables.experience_levels; levels it does
    not list fall back to the built-in ids, and unknown names map to Entry (2).
    """
    if table and level in table:
        return table[level]
    return EXPERIENCE_LEVEL_IDS.get(level or '', EXPERIENCE_LEVEL_IDS[DEFAULT_EXPERIENCE_LEVEL])

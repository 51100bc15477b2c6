"""
Configuration loader for the data processor.

This module reads and validates the processor's declarative configuration:

- ``config/global.yml``: every platform (display name, enabled flag, priority,
  processor strategy, per-source document) plus the reference tables mapping
  currency codes, experience levels and platform names to clean-database ids.
- ``config/sources/<platform>.yml``: the salary, experience, location, date,
  description and quality-check rules for one platform.

Regular expressions are compiled here, once, and any document that fails
validation is rejected as a whole. Configuration is immutable for the
lifetime of the process; a change requires a restart.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

# Must match the ExperienceLevel reference table in the clean database
CANONICAL_EXPERIENCE_LEVELS = ('Internship', 'Entry', 'Mid', 'Senior', 'Lead', 'Executive')

SALARY_TYPES = {'range', 'min', 'max', 'exact', 'negotiable'}
FIELD_METHODS = {'manual', 'ai', 'ai_only'}
DESCRIPTION_METHODS = {'manual', 'ai'}
DATE_UNITS = {'days', 'weeks', 'months'}

# Names accepted in quality_checks.required_fields (NormalizedJob fields and company_*)
QUALITY_CHECK_FIELDS = {
    'title', 'description', 'salary', 'salary_per_month', 'currency_id',
    'experience_level', 'experience_level_id', 'location', 'country_code',
    'applicant_count', 'posted_date', 'platform_id', 'post_url', 'crawled_time',
    'company_name', 'company_location', 'company_domain',
}

DEFAULT_PRIORITY = 999
DEFAULT_BATCH_SIZE = 100
DEFAULT_AI_DAILY_LIMIT = 10000
DEFAULT_MAX_TITLE_LENGTH = 500
DEFAULT_DESCRIPTION_LENGTH = 10000


class ConfigError(ValueError):
    """Raised when a configuration document is missing, malformed or invalid."""


@dataclass(frozen=True)
class AIFallbackConfig:
    """AI fallback switch and prompt template for one field."""

    enabled: bool = False
    prompt: Optional[str] = None


@dataclass(frozen=True)
class SalaryPattern:
    """One ordered salary extraction rule."""

    regex: re.Pattern
    kind: str
    min_group: Optional[int] = None
    max_group: Optional[int] = None
    value_group: Optional[int] = None
    currency_group: Optional[int] = None
    currency: Optional[str] = None
    multiplier: float = 1.0


@dataclass(frozen=True)
class SalaryRules:
    method: str = 'manual'
    default_currency: str = 'VND'
    thousands_separator: str = ','
    patterns: tuple[SalaryPattern, ...] = ()
    ai_fallback: AIFallbackConfig = field(default_factory=AIFallbackConfig)


@dataclass(frozen=True)
class ExperienceRules:
    method: str = 'manual'
    default: Optional[str] = None
    # Ordered (raw text, canonical level) pairs; declaration order is priority
    mappings: tuple[tuple[str, str], ...] = ()
    ai_fallback: AIFallbackConfig = field(default_factory=AIFallbackConfig)


@dataclass(frozen=True)
class CountryPattern:
    regex: re.Pattern
    code: str


@dataclass(frozen=True)
class LocationRules:
    method: str = 'manual'
    default_country: str = 'VNM'
    city_mappings: tuple[tuple[str, str], ...] = ()
    remote_keywords: tuple[str, ...] = ()
    hybrid_keywords: tuple[str, ...] = ()
    country_patterns: tuple[CountryPattern, ...] = ()
    ai_fallback: AIFallbackConfig = field(default_factory=AIFallbackConfig)


@dataclass(frozen=True)
class RelativeDatePattern:
    regex: re.Pattern
    unit: str


@dataclass(frozen=True)
class DateRules:
    method: str = 'manual'
    relative: tuple[RelativeDatePattern, ...] = ()
    formats: tuple[str, ...] = ()
    ai_fallback: AIFallbackConfig = field(default_factory=AIFallbackConfig)


@dataclass(frozen=True)
class DescriptionRules:
    method: str = 'manual'
    max_length: int = DEFAULT_DESCRIPTION_LENGTH
    ai_processing: AIFallbackConfig = field(default_factory=AIFallbackConfig)


@dataclass(frozen=True)
class QualityChecks:
    required_fields: tuple[str, ...] = ()
    max_title_length: int = DEFAULT_MAX_TITLE_LENGTH


@dataclass(frozen=True)
class SourceConfig:
    """Transformation rules for a single platform."""

    platform_name: str
    platform_id: Optional[int]
    salary: SalaryRules
    experience_level: ExperienceRules
    location: LocationRules
    date: DateRules
    description: DescriptionRules = field(default_factory=DescriptionRules)
    quality_checks: QualityChecks = field(default_factory=QualityChecks)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], default_name: Optional[str] = None) -> "SourceConfig":
        """
        Build and validate a SourceConfig from a parsed YAML document.

        Args:
            data: Parsed source document
            default_name: Platform name to use when the document omits
                ``platform_name`` (normally the global config display name)

        Raises:
            ConfigError: If any section is missing or invalid
        """
        if not isinstance(data, Mapping):
            raise ConfigError("Source configuration must be a mapping")

        name = data.get('platform_name') or default_name
        if not isinstance(name, str) or not name.strip():
            raise ConfigError("Source configuration must define `platform_name`")

        platform_id = data.get('platform_id')
        if platform_id is not None and not isinstance(platform_id, int):
            raise ConfigError(f"[{name}] `platform_id` must be an integer")

        return cls(
            platform_name=name,
            platform_id=platform_id,
            salary=_parse_salary(_section(data, 'salary', name), name),
            experience_level=_parse_experience(_section(data, 'experience_level', name), name),
            location=_parse_location(_section(data, 'location', name), name),
            date=_parse_date(_section(data, 'date', name), name),
            description=_parse_description(data.get('description') or {}, name),
            quality_checks=_parse_quality_checks(data.get('quality_checks') or {}, name),
        )


@dataclass(frozen=True)
class PlatformEntry:
    """One platform listed in the global configuration."""

    key: str
    name: str
    enabled: bool
    priority: int
    processor: str
    config_file: str
    order: int


@dataclass(frozen=True)
class GlobalSettings:
    batch_size: int = DEFAULT_BATCH_SIZE
    ai_daily_limit: int = DEFAULT_AI_DAILY_LIMIT
    default_currency: str = 'VND'
    default_experience_level: str = 'Entry'
    max_logged_errors: int = 5


@dataclass(frozen=True)
class GlobalConfig:
    """Platforms, processing settings and reference tables."""

    settings: GlobalSettings
    platforms: tuple[PlatformEntry, ...]
    currencies: dict[str, int] = field(default_factory=dict)
    experience_levels: dict[str, int] = field(default_factory=dict)
    platform_ids: dict[str, int] = field(default_factory=dict)

    def enabled_platforms(self) -> list[PlatformEntry]:
        """Enabled platforms by ascending priority; ties keep declaration order."""
        enabled = [entry for entry in self.platforms if entry.enabled]
        return sorted(enabled, key=lambda entry: (entry.priority, entry.order))

    def currency_id(self, code: Optional[str]) -> Optional[int]:
        """Reference id for a currency code, falling back to the default currency."""
        if code and code.upper() in self.currencies:
            return self.currencies[code.upper()]
        return self.currencies.get(self.settings.default_currency)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GlobalConfig":
        """
        Build and validate a GlobalConfig from the parsed global document.

        Raises:
            ConfigError: If the platforms or reference tables are missing or invalid
        """
        if not isinstance(data, Mapping):
            raise ConfigError("Global configuration must be a mapping")

        settings_dict = data.get('settings') or {}
        if not isinstance(settings_dict, Mapping):
            raise ConfigError("`settings` must be a mapping")

        settings = GlobalSettings(
            batch_size=_positive_int(settings_dict.get('batch_size', DEFAULT_BATCH_SIZE), 'settings.batch_size'),
            ai_daily_limit=_positive_int(
                settings_dict.get('ai_daily_limit', DEFAULT_AI_DAILY_LIMIT), 'settings.ai_daily_limit'
            ),
            default_currency=str(settings_dict.get('default_currency', 'VND')).upper(),
            default_experience_level=settings_dict.get('default_experience_level', 'Entry'),
            max_logged_errors=_positive_int(settings_dict.get('max_logged_errors', 5), 'settings.max_logged_errors'),
        )
        if settings.default_experience_level not in CANONICAL_EXPERIENCE_LEVELS:
            raise ConfigError(
                f"`settings.default_experience_level` must be one of {CANONICAL_EXPERIENCE_LEVELS}"
            )

        platforms_section = data.get('platforms')
        if not isinstance(platforms_section, Mapping) or not platforms_section:
            raise ConfigError("`platforms` section is missing or invalid in global configuration")

        platforms = []
        for order, (key, entry) in enumerate(platforms_section.items()):
            if not isinstance(entry, Mapping):
                raise ConfigError(f"Invalid platform configuration for '{key}'")

            name = entry.get('name')
            if not isinstance(name, str) or not name.strip():
                raise ConfigError(f"Platform '{key}' must define a non-empty `name`")

            priority = entry.get('priority', DEFAULT_PRIORITY)
            if not isinstance(priority, int):
                raise ConfigError(f"Platform '{key}' has a non-integer `priority`")

            platforms.append(PlatformEntry(
                key=str(key),
                name=name,
                enabled=bool(entry.get('enabled', True)),
                priority=priority,
                processor=str(entry.get('processor', key)),
                config_file=str(entry.get('config_file', f"{key}.yml")),
                order=order,
            ))

        tables = data.get('reference_tables')
        if not isinstance(tables, Mapping):
            raise ConfigError("`reference_tables` section is missing or invalid in global configuration")

        currencies = _id_table(tables.get('currencies'), 'reference_tables.currencies')
        if settings.default_currency not in {code.upper() for code in currencies}:
            raise ConfigError(
                f"Default currency '{settings.default_currency}' is missing from reference_tables.currencies"
            )

        return cls(
            settings=settings,
            platforms=tuple(platforms),
            currencies={code.upper(): value for code, value in currencies.items()},
            experience_levels=_id_table(tables.get('experience_levels', {}), 'reference_tables.experience_levels'),
            platform_ids=_id_table(tables.get('platforms', {}), 'reference_tables.platforms'),
        )


def _project_root() -> Path:
    """Return the project root path based on this file's location."""
    return Path(__file__).resolve().parent.parent.parent


def default_config_dir() -> Path:
    """Configuration directory: PROCESSOR_CONFIG_DIR or ``<project>/config``."""
    configured = os.getenv('PROCESSOR_CONFIG_DIR')
    return Path(configured) if configured else _project_root() / 'config'


def _read_yaml(path: Path) -> Any:
    if not path.exists():
        logger.error("Configuration file not found: %s", path)
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        with path.open('r', encoding='utf-8') as handle:
            document = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        logger.error("Failed to parse configuration %s: %s", path, exc)
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    if not document:
        raise ConfigError(f"Configuration file is empty: {path}")

    return document


def load_global_config(config_path: Optional[str] = None) -> GlobalConfig:
    """
    Load the global configuration document.

    Args:
        config_path: Optional override for the file path. When omitted the
            function reads ``global.yml`` from the configuration directory.

    Returns:
        Validated GlobalConfig

    Raises:
        ConfigError: If the file is missing, unparseable or invalid
    """
    path = Path(config_path) if config_path else default_config_dir() / 'global.yml'
    config = GlobalConfig.from_dict(_read_yaml(path))

    logger.info(
        "Loaded global configuration",
        extra={
            'platforms_count': len(config.platforms),
            'enabled_platforms': [entry.key for entry in config.enabled_platforms()],
            'batch_size': config.settings.batch_size,
        },
    )
    return config


def load_source_config(config_path: str, default_name: Optional[str] = None) -> SourceConfig:
    """
    Load one platform's transformation rules.

    Raises:
        ConfigError: If the file is missing, unparseable or invalid
    """
    path = Path(config_path)
    config = SourceConfig.from_dict(_read_yaml(path), default_name=default_name)

    logger.info(
        "Loaded source configuration for %s",
        config.platform_name,
        extra={
            'config_path': str(path),
            'salary_patterns': len(config.salary.patterns),
            'experience_mappings': len(config.experience_level.mappings),
        },
    )
    return config


def load_all_configs(
    config_dir: Optional[str] = None,
) -> tuple[GlobalConfig, dict[str, SourceConfig]]:
    """
    Load the global document and the source document of every enabled platform.

    Disabled platforms are not loaded. Every enabled platform must resolve to a
    platform id, either through ``reference_tables.platforms`` or through the
    source document's ``platform_id``.

    Returns:
        Tuple of (GlobalConfig, {platform key: SourceConfig})

    Raises:
        ConfigError: On the first invalid document
    """
    base = Path(config_dir) if config_dir else default_config_dir()
    global_config = load_global_config(str(base / 'global.yml'))

    sources: dict[str, SourceConfig] = {}
    for entry in global_config.enabled_platforms():
        source_path = base / 'sources' / entry.config_file
        source_config = load_source_config(str(source_path), default_name=entry.name)

        if (
            source_config.platform_name not in global_config.platform_ids
            and source_config.platform_id is None
        ):
            raise ConfigError(
                f"[{entry.key}] No platform id for '{source_config.platform_name}': "
                "add it to reference_tables.platforms or set `platform_id`"
            )
        sources[entry.key] = source_config

    return global_config, sources


# ---------------------------------------------------------------------------
# Section parsers
# ---------------------------------------------------------------------------

def _section(data: Mapping[str, Any], name: str, source: str) -> Mapping[str, Any]:
    section = data.get(name)
    if not isinstance(section, Mapping):
        raise ConfigError(f"[{source}] `{name}` section is missing or invalid")
    return section


def _positive_int(value: Any, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"`{label}` must be a positive integer, got {value!r}")
    return value


def _id_table(value: Any, label: str) -> dict[str, int]:
    if not isinstance(value, Mapping):
        raise ConfigError(f"`{label}` must be a mapping of name to id")

    table = {}
    for name, ref_id in value.items():
        if isinstance(ref_id, bool) or not isinstance(ref_id, int):
            raise ConfigError(f"`{label}.{name}` must be an integer id")
        table[str(name)] = ref_id
    return table


def _method(section: Mapping[str, Any], allowed: set[str], label: str) -> str:
    method = section.get('method', 'manual')
    if method not in allowed:
        raise ConfigError(f"{label}: method must be one of {sorted(allowed)}, got {method!r}")
    return method


def _compile(pattern: Any, label: str) -> re.Pattern:
    if not isinstance(pattern, str) or not pattern:
        raise ConfigError(f"{label}: `regex` must be a non-empty string")
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as exc:
        raise ConfigError(f"{label}: invalid regex {pattern!r}: {exc}") from exc


def _ai_fallback(value: Any, label: str) -> AIFallbackConfig:
    if value is None:
        return AIFallbackConfig()
    if not isinstance(value, Mapping):
        raise ConfigError(f"{label} must be a mapping")

    enabled = bool(value.get('enabled', False))
    prompt = value.get('prompt')
    if enabled and (not isinstance(prompt, str) or '{text}' not in prompt):
        raise ConfigError(f"{label}: an enabled AI fallback needs a prompt containing {{text}}")
    return AIFallbackConfig(enabled=enabled, prompt=prompt)


def _ordered_pairs(value: Any, label: str) -> tuple[tuple[str, str], ...]:
    if value is None:
        return ()
    if not isinstance(value, Mapping):
        raise ConfigError(f"{label} must be a mapping")
    return tuple((str(key), str(mapped)) for key, mapped in value.items())


def _string_list(value: Any, label: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list):
        raise ConfigError(f"{label} must be a list")
    return tuple(str(item) for item in value)


def _group(pattern: Mapping[str, Any], key: str, regex: re.Pattern, label: str) -> Optional[int]:
    group = pattern.get(key)
    if group is None:
        return None
    if isinstance(group, bool) or not isinstance(group, int) or group < 0 or group > regex.groups:
        raise ConfigError(f"{label}: `{key}` {group!r} does not name a capture group of {regex.pattern!r}")
    return group


def _parse_salary(section: Mapping[str, Any], source: str) -> SalaryRules:
    label = f"[{source}] salary"
    default_currency = str(section.get('default_currency', 'VND')).upper()

    raw_patterns = section.get('patterns') or []
    if not isinstance(raw_patterns, list):
        raise ConfigError(f"{label}.patterns must be a list")

    patterns = []
    for index, raw in enumerate(raw_patterns):
        pattern_label = f"{label}.patterns[{index}]"
        if not isinstance(raw, Mapping):
            raise ConfigError(f"{pattern_label} must be a mapping")

        regex = _compile(raw.get('regex'), pattern_label)
        kind = raw.get('type')
        if kind not in SALARY_TYPES:
            raise ConfigError(f"{pattern_label}: type must be one of {sorted(SALARY_TYPES)}, got {kind!r}")

        min_group = _group(raw, 'min_group', regex, pattern_label)
        max_group = _group(raw, 'max_group', regex, pattern_label)
        value_group = _group(raw, 'value_group', regex, pattern_label)

        if kind == 'range' and (min_group is None or max_group is None):
            raise ConfigError(f"{pattern_label}: range patterns need `min_group` and `max_group`")
        if kind in ('min', 'max', 'exact') and value_group is None:
            raise ConfigError(f"{pattern_label}: {kind} patterns need `value_group`")

        multiplier = raw.get('multiplier', 1)
        if isinstance(multiplier, bool) or not isinstance(multiplier, (int, float)) or multiplier <= 0:
            raise ConfigError(f"{pattern_label}: multiplier must be a positive number")

        currency = raw.get('currency')
        patterns.append(SalaryPattern(
            regex=regex,
            kind=kind,
            min_group=min_group,
            max_group=max_group,
            value_group=value_group,
            currency_group=_group(raw, 'currency_group', regex, pattern_label),
            currency=str(currency).upper() if currency else None,
            multiplier=float(multiplier),
        ))

    return SalaryRules(
        method=_method(section, FIELD_METHODS, label),
        default_currency=default_currency,
        thousands_separator=str(section.get('thousands_separator', ',')),
        patterns=tuple(patterns),
        ai_fallback=_ai_fallback(section.get('ai_fallback'), f"{label}.ai_fallback"),
    )


def _parse_experience(section: Mapping[str, Any], source: str) -> ExperienceRules:
    label = f"[{source}] experience_level"
    mappings = _ordered_pairs(section.get('mappings'), f"{label}.mappings")

    for raw_text, level in mappings:
        if level not in CANONICAL_EXPERIENCE_LEVELS:
            raise ConfigError(f"{label}.mappings: '{raw_text}' maps to unknown level '{level}'")

    default = section.get('default')
    if default is not None and default not in CANONICAL_EXPERIENCE_LEVELS:
        raise ConfigError(f"{label}.default must be one of {CANONICAL_EXPERIENCE_LEVELS}")

    return ExperienceRules(
        method=_method(section, FIELD_METHODS, label),
        default=default,
        mappings=mappings,
        ai_fallback=_ai_fallback(section.get('ai_fallback'), f"{label}.ai_fallback"),
    )


def _parse_location(section: Mapping[str, Any], source: str) -> LocationRules:
    label = f"[{source}] location"

    raw_patterns = section.get('country_patterns') or []
    if not isinstance(raw_patterns, list):
        raise ConfigError(f"{label}.country_patterns must be a list")

    country_patterns = []
    for index, raw in enumerate(raw_patterns):
        pattern_label = f"{label}.country_patterns[{index}]"
        if not isinstance(raw, Mapping) or not raw.get('code'):
            raise ConfigError(f"{pattern_label} must define `regex` and `code`")
        country_patterns.append(
            CountryPattern(regex=_compile(raw.get('regex'), pattern_label), code=str(raw['code']))
        )

    return LocationRules(
        method=_method(section, FIELD_METHODS, label),
        default_country=str(section.get('default_country', 'VNM')),
        city_mappings=_ordered_pairs(section.get('city_mappings'), f"{label}.city_mappings"),
        remote_keywords=_string_list(section.get('remote_keywords'), f"{label}.remote_keywords"),
        hybrid_keywords=_string_list(section.get('hybrid_keywords'), f"{label}.hybrid_keywords"),
        country_patterns=tuple(country_patterns),
        ai_fallback=_ai_fallback(section.get('ai_fallback'), f"{label}.ai_fallback"),
    )


def _parse_date(section: Mapping[str, Any], source: str) -> DateRules:
    label = f"[{source}] date"

    raw_relative = section.get('relative') or []
    if not isinstance(raw_relative, list):
        raise ConfigError(f"{label}.relative must be a list")

    relative = []
    for index, raw in enumerate(raw_relative):
        pattern_label = f"{label}.relative[{index}]"
        if not isinstance(raw, Mapping):
            raise ConfigError(f"{pattern_label} must be a mapping")

        regex = _compile(raw.get('regex'), pattern_label)
        if regex.groups < 1:
            raise ConfigError(f"{pattern_label}: regex needs a capture group for the amount")

        unit = raw.get('unit')
        if unit not in DATE_UNITS:
            raise ConfigError(f"{pattern_label}: unit must be one of {sorted(DATE_UNITS)}, got {unit!r}")
        relative.append(RelativeDatePattern(regex=regex, unit=unit))

    return DateRules(
        method=_method(section, FIELD_METHODS, label),
        relative=tuple(relative),
        formats=_string_list(section.get('formats'), f"{label}.formats"),
        ai_fallback=_ai_fallback(section.get('ai_fallback'), f"{label}.ai_fallback"),
    )


def _parse_description(section: Mapping[str, Any], source: str) -> DescriptionRules:
    label = f"[{source}] description"
    if not isinstance(section, Mapping):
        raise ConfigError(f"{label} must be a mapping")

    return DescriptionRules(
        method=_method(section, DESCRIPTION_METHODS, label),
        max_length=_positive_int(section.get('max_length', DEFAULT_DESCRIPTION_LENGTH), f"{label}.max_length"),
        ai_processing=_ai_fallback(section.get('ai_processing'), f"{label}.ai_processing"),
    )


def _parse_quality_checks(section: Mapping[str, Any], source: str) -> QualityChecks:
    label = f"[{source}] quality_checks"
    if not isinstance(section, Mapping):
        raise ConfigError(f"{label} must be a mapping")

    required_fields = _string_list(section.get('required_fields'), f"{label}.required_fields")
    unknown = [name for name in required_fields if name not in QUALITY_CHECK_FIELDS]
    if unknown:
        raise ConfigError(
            f"{label}.required_fields: unknown field(s) {unknown}; expected names from {sorted(QUALITY_CHECK_FIELDS)}"
        )

    return QualityChecks(
        required_fields=required_fields,
        max_title_length=_positive_int(
            section.get('max_title_length', DEFAULT_MAX_TITLE_LENGTH), f"{label}.max_title_length"
        ),
    )


__all__ = [
    'CANONICAL_EXPERIENCE_LEVELS',
    'QUALITY_CHECK_FIELDS',
    'ConfigError',
    'GlobalConfig',
    'PlatformEntry',
    'SourceConfig',
    'load_all_configs',
    'load_global_config',
    'load_source_config',
]

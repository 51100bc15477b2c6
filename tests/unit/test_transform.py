"""
Unit Tests for the Base Job Transformation

These tests run the full field pipeline (salary, experience, location, date,
description) on raw rows shaped like the raw store's joined query.
"""

from dataclasses import fields
from datetime import date
from unittest.mock import patch

import pytest

from jobcrawler.processor.config_loader import QUALITY_CHECK_FIELDS, GlobalConfig, SourceConfig
from jobcrawler.processor.transform import (
    MAX_STORED_ERRORS,
    CompanyInfo,
    NormalizedJob,
    ProcessorStats,
    ValidationError,
    clean_description,
    parse_applicant_count,
    transform_job,
    validate_job,
)

TODAY = date(2025, 1, 20)


class TestTransformJob:
    """Tests for transform_job"""

    def test_full_record(self, make_raw_job, source_config, global_config):
        raw = make_raw_job(job_id=42)

        job = transform_job(raw, source_config, global_config, today=TODAY)

        assert job.raw_job_id == 42
        assert job.title == "Backend Developer (Python)"
        assert job.description == "Build APIs with Python & PostgreSQL"
        assert job.salary_per_month == 20000000.0
        assert job.currency_id == 1
        assert job.experience_level == "Entry"
        assert job.experience_level_id == 2
        assert job.location == "Ho Chi Minh City"
        assert job.country_code == "VNM"
        assert job.applicant_count == 12
        assert job.posted_date == date(2025, 1, 17)
        assert job.platform_id == 4
        assert job.post_url == "https://www.topcv.vn/viec-lam/42"
        assert job.company.name == "Acme Software"
        assert job.company.domain == "acme.vn"
        assert job.company.location == "Hồ Chí Minh"

    def test_usd_salary_currency_id(self, make_raw_job, source_config, global_config):
        job = transform_job(make_raw_job(salary="Up to $2,000"), source_config, global_config, today=TODAY)
        assert job.currency_id == 2
        assert job.salary_per_month == 2000.0

    def test_no_salary_has_no_currency(self, make_raw_job, source_config, global_config):
        job = transform_job(make_raw_job(salary=None), source_config, global_config, today=TODAY)

        assert job.salary is None
        assert job.salary_per_month is None
        assert job.currency_id is None

    def test_negotiable_salary_keeps_currency(self, make_raw_job, source_config, global_config):
        job = transform_job(make_raw_job(salary="Thỏa thuận"), source_config, global_config, today=TODAY)

        assert job.salary_per_month is None
        assert job.currency_id == 1

    def test_unparseable_date_falls_back_to_today(self, make_raw_job, source_config, global_config):
        job = transform_job(make_raw_job(listed_time="not a date"), source_config, global_config, today=TODAY)
        assert job.posted_date == TODAY

    def test_remote_flags(self, make_raw_job, source_config, global_config):
        job = transform_job(make_raw_job(location="Remote"), source_config, global_config, today=TODAY)

        assert job.is_remote is True
        assert job.location == "Remote"

    def test_platform_id_from_reference_table(self, make_raw_job, make_source_config, global_config):
        config = make_source_config("CareerViet")
        job = transform_job(make_raw_job(platform="CareerViet"), config, global_config, today=TODAY)
        assert job.platform_id == 3

    def test_field_failure_is_isolated(self, make_raw_job, source_config, global_config):
        with patch("jobcrawler.processor.transform.parse_salary", side_effect=RuntimeError("boom")):
            job = transform_job(make_raw_job(), source_config, global_config, today=TODAY)

        assert job.salary is None
        assert job.currency_id is None
        # Other fields are still normalized
        assert job.location == "Ho Chi Minh City"
        assert job.experience_level == "Entry"

    def test_location_failure_uses_default_country(self, make_raw_job, source_config, global_config):
        with patch("jobcrawler.processor.transform.normalize_location", side_effect=KeyError("x")):
            job = transform_job(make_raw_job(), source_config, global_config, today=TODAY)

        assert job.location is None
        assert job.country_code == "VNM"

    def test_blank_company_fields_become_none(self, make_raw_job, source_config, global_config):
        raw = make_raw_job(company_name="   ", company_url=None, company_location="")
        job = transform_job(raw, source_config, global_config, today=TODAY)

        assert job.company.name is None
        assert job.company.domain is None
        assert job.company.location is None

    def test_experience_id_from_reference_table(self, make_raw_job, source_config, global_config_dict):
        global_config_dict["reference_tables"]["experience_levels"]["Entry"] = 20
        config = GlobalConfig.from_dict(global_config_dict)

        job = transform_job(make_raw_job(), source_config, config, today=TODAY)

        assert job.experience_level == "Entry"
        assert job.experience_level_id == 20


class TestValidateJob:
    """Tests for quality checks"""

    def test_valid_job_passes(self, make_raw_job, source_config, global_config):
        job = transform_job(make_raw_job(), source_config, global_config, today=TODAY)
        validate_job(job, source_config)

    @pytest.mark.parametrize("field,override", [
        ("title", {"job_title": ""}),
        ("company_name", {"company_name": None}),
        ("post_url", {"url": None}),
    ])
    def test_missing_required_field(self, make_raw_job, source_config, global_config, field, override):
        job = transform_job(make_raw_job(**override), source_config, global_config, today=TODAY)

        with pytest.raises(ValidationError, match=field):
            validate_job(job, source_config)

    def test_title_too_long(self, make_raw_job, source_config, global_config):
        job = transform_job(make_raw_job(job_title="x" * 101), source_config, global_config, today=TODAY)

        with pytest.raises(ValidationError, match="Title too long"):
            validate_job(job, source_config)

    def test_accepted_field_names_exist_on_job(self):
        job_fields = {f.name for f in fields(NormalizedJob)}
        company_fields = {f"company_{f.name}" for f in fields(CompanyInfo)}

        assert QUALITY_CHECK_FIELDS <= job_fields | company_fields


class TestCleanDescription:
    """Tests for description cleanup"""

    def test_manual_cleanup_caps_length(self, source_config):
        assert len(clean_description("<p>" + "a" * 500 + "</p>", source_config)) == 200

    def test_empty_description(self, source_config):
        assert clean_description(None, source_config) is None

    @pytest.fixture
    def ai_config(self, source_config_dict) -> SourceConfig:
        source_config_dict["description"] = {
            "method": "ai",
            "max_length": 200,
            "ai_processing": {"enabled": True, "prompt": "Clean: {text}"},
        }
        return SourceConfig.from_dict(source_config_dict)

    @pytest.mark.parametrize("reply,expected", [
        ({"cleaned_description": "Build APIs"}, "Build APIs"),
        ("  Build APIs  ", "Build APIs"),
    ])
    def test_ai_cleanup(self, ai_config, fake_ai, reply, expected):
        assert clean_description("<p>Build APIs</p>", ai_config, fake_ai(reply)) == expected

    def test_ai_failure_falls_back_to_manual(self, ai_config, fake_ai):
        assert clean_description("<p>Build &amp; ship</p>", ai_config, fake_ai(None)) == "Build & ship"


class TestParseApplicantCount:
    """Tests for applicant counts"""

    @pytest.mark.parametrize("value,expected", [
        (42, 42),
        (3.0, 3),
        ("Over 200 applicants", 200),
        ("1,234", 1234),
        ("200 applicants in 3 days", 200),
        ("12.5k", 12),
        ("n/a", None),
        (None, None),
        (-1, None),
        (True, None),
    ])
    def test_parse(self, value, expected):
        assert parse_applicant_count(value) == expected


class TestProcessorStats:
    """Tests for per-source counters"""

    def test_errors_are_capped(self):
        stats = ProcessorStats()
        for i in range(MAX_STORED_ERRORS + 10):
            stats.record_error(i, "title", "error")
        assert len(stats.errors) == MAX_STORED_ERRORS

    def test_copy_is_independent(self):
        stats = ProcessorStats(processed=1)
        snapshot = stats.copy()
        stats.processed += 1
        stats.record_error(1, "t", "e")

        assert snapshot.processed == 1
        assert snapshot.errors == []

"""Unit tests for posted date parsing."""

from datetime import date, datetime

import pytest

from jobcrawler.processor.config_loader import SourceConfig
from jobcrawler.processor.date_parser import parse_date, subtract

TODAY = date(2025, 3, 31)


class TestManualParsing:
    """Tests for relative phrases, formats and ISO dates"""

    @pytest.mark.parametrize("text,expected", [
        ("3 ngày trước", "2025-03-28"),
        ("Posted 10 days ago", "2025-03-21"),
        ("1 day ago", "2025-03-30"),
        ("2 weeks ago", "2025-03-17"),
        ("1 month ago", "2025-02-28"),
        ("13 months ago", "2024-02-29"),
    ])
    def test_relative(self, source_config, text, expected):
        assert parse_date(text, source_config, today=TODAY) == expected

    def test_configured_format(self, source_config):
        assert parse_date("05/01/2025", source_config, today=TODAY) == "2025-01-05"

    @pytest.mark.parametrize("text,expected", [
        ("2025-01-20", "2025-01-20"),
        ("2025-01-20T09:15:00", "2025-01-20"),
        ("2025-01-20T09:15:00Z", "2025-01-20"),
    ])
    def test_iso_fallback(self, source_config, text, expected):
        assert parse_date(text, source_config, today=TODAY) == expected

    def test_datetime_values(self, source_config):
        assert parse_date(datetime(2025, 2, 3, 14, 0), source_config) == "2025-02-03"
        assert parse_date(date(2025, 2, 3), source_config) == "2025-02-03"

    @pytest.mark.parametrize("text", [None, "", "hôm qua", "31/02/2025"])
    def test_unparseable(self, source_config, text):
        assert parse_date(text, source_config, today=TODAY) is None


class TestSubtract:
    """Tests for date arithmetic"""

    def test_month_clamps_to_month_end(self):
        assert subtract(date(2025, 3, 31), 1, "months") == date(2025, 2, 28)
        assert subtract(date(2024, 3, 31), 1, "months") == date(2024, 2, 29)

    def test_month_crosses_year(self):
        assert subtract(date(2025, 1, 15), 2, "months") == date(2024, 11, 15)

    def test_unknown_unit(self):
        with pytest.raises(ValueError):
            subtract(TODAY, 1, "years")


class TestAIFallback:
    """The AI answer must be a strict, valid YYYY-MM-DD date"""

    @pytest.fixture
    def ai_config(self, source_config_dict) -> SourceConfig:
        source_config_dict["date"]["ai_fallback"] = {
            "enabled": True,
            "prompt": "Today is {current_date}. Convert to YYYY-MM-DD: {text}",
        }
        return SourceConfig.from_dict(source_config_dict)

    def test_valid_reply(self, ai_config, fake_ai):
        ai = fake_ai("2025-03-30")

        assert parse_date("hôm qua", ai_config, ai, today=TODAY) == "2025-03-30"
        prompt, text = ai.calls[0]
        assert "2025-03-31" in prompt
        assert text == "hôm qua"

    @pytest.mark.parametrize("reply", ["30/03/2025", "2025-02-30", "yesterday", None, {"date": "2025-03-30"}])
    def test_invalid_replies(self, ai_config, fake_ai, reply):
        assert parse_date("hôm qua", ai_config, fake_ai(reply), today=TODAY) is None

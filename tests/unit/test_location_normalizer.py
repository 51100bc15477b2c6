"""Unit tests for location normalization."""

import pytest

from jobcrawler.processor.config_loader import SourceConfig
from jobcrawler.processor.location_normalizer import REMOTE_CITY, LocationInfo, normalize_location


class TestManualRules:
    """Tests for keyword, city and country rules"""

    def test_city_mapping_and_country(self, source_config):
        result = normalize_location("Hồ Chí Minh, Việt Nam", source_config)

        assert result == LocationInfo(
            city="Ho Chi Minh City", country_code="VNM", is_remote=False, is_hybrid=False,
        )

    def test_unmapped_city_passes_through_trimmed(self, source_config):
        result = normalize_location("  Cần Thơ  ", source_config)

        assert result.city == "Cần Thơ"
        assert result.country_code == "VNM"

    def test_city_mapping_is_case_sensitive(self, source_config):
        assert normalize_location("hà nội", source_config).city == "hà nội"

    def test_first_city_key_wins(self, source_config):
        # Both keys occur; Hồ Chí Minh is declared before Hà Nội
        assert normalize_location("Hà Nội / Hồ Chí Minh", source_config).city == "Ho Chi Minh City"

    @pytest.mark.parametrize("text", ["Remote", "Hà Nội (REMOTE)", "Làm việc từ xa"])
    def test_remote_overrides_city(self, source_config, text):
        result = normalize_location(text, source_config)

        assert result.is_remote is True
        assert result.city == REMOTE_CITY

    def test_hybrid_keeps_city_mapping(self, source_config):
        result = normalize_location("Đà Nẵng (Hybrid)", source_config)

        assert result.is_hybrid is True
        assert result.is_remote is False
        assert result.city == "Da Nang"

    def test_first_country_pattern_wins(self, source_config):
        assert normalize_location("Singapore, near Vietnam office", source_config).country_code == "SGP"

    def test_country_pattern_is_case_insensitive(self, source_config):
        assert normalize_location("singapore", source_config).country_code == "SGP"

    @pytest.mark.parametrize("text", [None, "", "   "])
    def test_empty_text(self, source_config, text):
        result = normalize_location(text, source_config)

        assert result == LocationInfo(city=None, country_code="VNM", is_remote=False, is_hybrid=False)


class TestAIPath:
    """Tests for ai_only platforms"""

    @pytest.fixture
    def ai_only_config(self, source_config_dict) -> SourceConfig:
        source_config_dict["location"]["method"] = "ai_only"
        source_config_dict["location"]["ai_fallback"] = {
            "enabled": True,
            "prompt": "Normalize location as JSON: {text}",
        }
        return SourceConfig.from_dict(source_config_dict)

    def test_manual_method_never_calls_ai(self, source_config_dict, fake_ai):
        source_config_dict["location"]["ai_fallback"] = {"enabled": True, "prompt": "{text}"}
        config = SourceConfig.from_dict(source_config_dict)
        ai = fake_ai({"city": "Elsewhere"})

        result = normalize_location("Somewhere", config, ai)

        assert result.city == "Somewhere"
        assert ai.calls == []

    def test_ai_reply_used(self, ai_only_config, fake_ai):
        ai = fake_ai({"city": "Ho Chi Minh City", "country_code": "VNM"})

        result = normalize_location("Q1, TPHCM", ai_only_config, ai)

        assert result.city == "Ho Chi Minh City"
        assert result.country_code == "VNM"
        assert result.is_remote is False

    def test_ai_remote_reply(self, ai_only_config, fake_ai):
        ai = fake_ai({"city": "Hanoi", "country_code": "VNM", "is_remote": True})
        result = normalize_location("WFH", ai_only_config, ai)

        assert result.is_remote is True
        assert result.city == REMOTE_CITY

    def test_ai_failure_passes_through(self, ai_only_config, fake_ai):
        result = normalize_location(" Q1, TPHCM ", ai_only_config, fake_ai(None))

        assert result.city == "Q1, TPHCM"
        assert result.country_code == "VNM"

"""
Tests for YAML configuration and availability documents.
"""

from decimal import Decimal
from pathlib import Path

import pendulum
import pytest

from slotbooking.config import AppConfig, AvailabilityDocument
from slotbooking.domain.exceptions import ValidationError
from slotbooking.domain.models import TimeRange, Weekday

PROJECT_ROOT = Path(__file__).parent.parent


class TestAppConfig:
    """Tests for AppConfig."""

    def test_defaults(self):
        config = AppConfig()

        assert config.timezone == "UTC"
        assert config.scheduling.interval_minutes == 30
        assert config.scheduling.max_days == 365
        assert config.booking.confirmation_timeout_seconds == 120
        assert config.transfer.gateway_url is None

    def test_load_from_yaml(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "timezone: Europe/Berlin\n"
            "log_level: debug\n"
            "booking:\n"
            "  confirmation_timeout_seconds: 30\n"
            "storage:\n"
            "  data_file: data.json\n",
            encoding="utf-8",
        )

        config = AppConfig.load_from_yaml(config_file)

        assert config.timezone == "Europe/Berlin"
        assert config.log_level == "DEBUG"
        assert config.booking.confirmation_timeout_seconds == 30
        assert config.data_path(tmp_path) == tmp_path / "data.json"

    def test_example_config_is_valid(self):
        config = AppConfig.load_from_yaml(PROJECT_ROOT / "config.example.yaml")

        assert config.access.grace_minutes == 10

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="config.example.yaml"):
            AppConfig.load_from_yaml(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("timezone: [unclosed\n", encoding="utf-8")

        with pytest.raises(ValueError, match="Invalid YAML"):
            AppConfig.load_from_yaml(config_file)

    def test_root_must_be_mapping(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("- just\n- a list\n", encoding="utf-8")

        with pytest.raises(ValueError, match="mapping"):
            AppConfig.load_from_yaml(config_file)

    @pytest.mark.parametrize(
        "data",
        [
            {"timezone": "Mars/Base"},
            {"log_level": "chatty"},
            {"scheduling": {"interval_minutes": 0}},
            {"booking": {"confirmation_timeout_seconds": 0}},
            {"access": {"signing_secret": "  "}},
        ],
    )
    def test_invalid_values_rejected(self, data):
        with pytest.raises(ValueError):
            AppConfig(**data)


class TestAvailabilityDocument:
    """Tests for availability YAML files."""

    def test_example_document(self):
        document = AvailabilityDocument.load_from_yaml(PROJECT_ROOT / "availability.example.yaml")
        pattern, exclusions, settings = document.to_domain()

        assert settings.provider_id == "alice"
        assert settings.hourly_rate == Decimal("50.00")
        assert settings.window_start == pendulum.date(2025, 1, 6)
        assert pattern.enabled_days() == [Weekday.MONDAY, Weekday.WEDNESDAY, Weekday.FRIDAY]
        assert exclusions.contains("2025-02-12")
        assert exclusions.contains("2025-03-03")
        assert not exclusions.contains("2025-03-04")

    def test_unquoted_times_are_read_as_clock_times(self, tmp_path):
        """YAML 1.1 turns 10:30 into an integer; it must still mean 10:30."""
        path = tmp_path / "availability.yaml"
        path.write_text(
            "provider_id: bob\n"
            "days:\n"
            "  tuesday:\n"
            "    enabled: true\n"
            "    ranges:\n"
            "      - start: 10:30\n"
            "        end: 12:00\n",
            encoding="utf-8",
        )

        pattern, _, settings = AvailabilityDocument.load_from_yaml(path).to_domain()

        assert pattern.slots_for(Weekday.TUESDAY) == [TimeRange.parse("10:30", "12:00")]
        assert settings.window_end is None

    def test_unknown_weekday_rejected(self):
        with pytest.raises(ValueError, match="Unknown weekday"):
            AvailabilityDocument(provider_id="bob", days={"caturday": {"enabled": True}})

    def test_reversed_window_rejected(self):
        with pytest.raises(ValueError):
            AvailabilityDocument(provider_id="bob", window={"start": "2025-02-01", "end": "2025-01-01"})

    def test_reversed_time_range_rejected_on_conversion(self):
        document = AvailabilityDocument(
            provider_id="bob",
            days={"monday": {"enabled": True, "ranges": [{"start": "12:00", "end": "09:00"}]}},
        )

        with pytest.raises(ValidationError):
            document.to_domain()

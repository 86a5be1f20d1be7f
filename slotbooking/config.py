"""
Configuration management using Pydantic models loaded from YAML.
"""

from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .domain.availability_expander import validate_timezone
from .domain.date_range_set import DateRangeSet
from .domain.exceptions import ValidationError
from .domain.models import AvailabilitySettings, DateRange, Weekday, to_date
from .domain.weekly_pattern import WeeklyPattern

LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class SchedulingConfig(BaseModel):
    """Defaults for expanding availability into slots."""
    interval_minutes: int = 30
    max_days: int = 365
    default_window_days: int = 365

    @field_validator("interval_minutes")
    @classmethod
    def validate_interval(cls, value: int) -> int:
        """Ensure slot length is positive."""
        if value <= 0:
            raise ValueError("interval_minutes must be greater than zero")
        return value

    @field_validator("max_days", "default_window_days")
    @classmethod
    def validate_days(cls, value: int) -> int:
        if not 1 <= value <= 3650:
            raise ValueError(f"Day limits must be between 1 and 3650, got {value}")
        return value


class BookingConfig(BaseModel):
    """Timeouts and retries for the booking protocol."""
    confirmation_timeout_seconds: float = 120.0
    eligibility_retries: int = 3
    confirmation_retries: int = 3
    retry_delay_seconds: float = 1.0

    @field_validator("confirmation_timeout_seconds")
    @classmethod
    def validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("confirmation_timeout_seconds must be greater than zero")
        return value

    @field_validator("eligibility_retries", "confirmation_retries", "retry_delay_seconds")
    @classmethod
    def validate_non_negative(cls, value):
        if value < 0:
            raise ValueError("Retry settings must not be negative")
        return value


class AccessConfig(BaseModel):
    """Settings for join links issued by the access verifier."""
    grace_minutes: int = 10
    join_base_url: str = "https://meet.example.com/room"
    signing_secret: str = "change-me"

    @field_validator("grace_minutes")
    @classmethod
    def validate_grace(cls, value: int) -> int:
        if value < 0:
            raise ValueError("grace_minutes must not be negative")
        return value

    @field_validator("signing_secret")
    @classmethod
    def validate_secret(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("signing_secret must not be empty")
        return value


class TransferConfig(BaseModel):
    """Connection settings for the payment gateway."""
    gateway_url: Optional[str] = None
    api_key: Optional[str] = None
    request_timeout_seconds: int = 30


class StorageConfig(BaseModel):
    data_file: str = "slotbooking-data.json"


class AppConfig(BaseModel):
    """Application configuration."""
    timezone: str = "UTC"
    log_level: str = "INFO"
    scheduling: SchedulingConfig = Field(default_factory=SchedulingConfig)
    booking: BookingConfig = Field(default_factory=BookingConfig)
    access: AccessConfig = Field(default_factory=AccessConfig)
    transfer: TransferConfig = Field(default_factory=TransferConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @field_validator("timezone")
    @classmethod
    def validate_timezone_name(cls, value: str) -> str:
        return validate_timezone(value)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Unknown log level '{value}'")
        return level

    def data_path(self, base: Optional[Path] = None) -> Path:
        """Data file path, resolved against ``base`` when relative."""
        path = Path(self.storage.data_file)
        if base is not None and not path.is_absolute():
            return base / path
        return path

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        return cls(**_load_yaml_mapping(config_path, "config.example.yaml"))


class TimeRangeEntry(BaseModel):
    start: str
    end: str

    @field_validator("start", "end", mode="before")
    @classmethod
    def coerce_sexagesimal(cls, value):
        """YAML 1.1 reads unquoted 10:30 as the integer 630 (minutes)."""
        if isinstance(value, int) and not isinstance(value, bool):
            return f"{value // 60:02d}:{value % 60:02d}"
        return value


class DayEntry(BaseModel):
    enabled: bool = False
    ranges: List[TimeRangeEntry] = Field(default_factory=list)


class UnavailableEntry(BaseModel):
    """An unavailable period; a missing end means a single day."""
    start: date
    end: Optional[date] = None


class WindowEntry(BaseModel):
    """Booking window; a missing or null end means open-ended."""
    start: Optional[date] = None
    end: Optional[date] = None

    @model_validator(mode="after")
    def validate_order(self) -> "WindowEntry":
        if self.start and self.end and self.end < self.start:
            raise ValueError("window end must not be before window start")
        return self


class AvailabilityDocument(BaseModel):
    """A provider's availability as written in YAML."""
    provider_id: str
    timezone: str = "UTC"
    interval_minutes: int = 30
    hourly_rate: Decimal = Decimal("0")
    window: WindowEntry = Field(default_factory=WindowEntry)
    unavailable: List[UnavailableEntry] = Field(default_factory=list)
    days: Dict[str, DayEntry] = Field(default_factory=dict)

    @field_validator("provider_id")
    @classmethod
    def validate_provider(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("provider_id must not be empty")
        return value.strip()

    @field_validator("timezone")
    @classmethod
    def validate_timezone_name(cls, value: str) -> str:
        return validate_timezone(value)

    @field_validator("hourly_rate")
    @classmethod
    def validate_rate(cls, value: Decimal) -> Decimal:
        if value < 0:
            raise ValueError("hourly_rate must not be negative")
        return value

    @field_validator("days")
    @classmethod
    def validate_day_names(cls, value: Dict[str, DayEntry]) -> Dict[str, DayEntry]:
        unknown = [key for key in value if key.lower() not in {day.key for day in Weekday}]
        if unknown:
            raise ValueError(f"Unknown weekday name(s): {', '.join(unknown)}")
        return value

    def to_domain(self) -> Tuple[WeeklyPattern, DateRangeSet, AvailabilitySettings]:
        """
        Convert to domain objects.

        Raises:
            ValidationError: If ranges are reversed or overlapping
        """
        pattern = WeeklyPattern.from_dict(
            {
                name.lower(): {
                    "enabled": entry.enabled,
                    "ranges": [{"start": r.start, "end": r.end} for r in entry.ranges],
                }
                for name, entry in self.days.items()
            }
        )
        exclusions = DateRangeSet(
            DateRange(start=item.start, end=item.end or item.start)
            for item in self.unavailable
        )
        settings = AvailabilitySettings(
            provider_id=self.provider_id,
            timezone=self.timezone,
            interval_minutes=self.interval_minutes,
            hourly_rate=self.hourly_rate,
            window_start=to_date(self.window.start) if self.window.start else None,
            window_end=to_date(self.window.end) if self.window.end else None,
        )
        if settings.interval_minutes <= 0:
            raise ValidationError("interval_minutes must be greater than zero")
        return pattern, exclusions, settings

    @classmethod
    def load_from_yaml(cls, path: Path) -> "AvailabilityDocument":
        return cls(**_load_yaml_mapping(path, "availability.example.yaml"))


def _load_yaml_mapping(path: Path, example_name: str) -> dict:
    if not path.exists():
        raise FileNotFoundError(
            f"Config file not found: {path}\n"
            f"Please create it. See {example_name} for reference."
        )

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ValueError("Config file must contain a mapping at the root level.")

    return data


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path

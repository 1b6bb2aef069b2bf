# File: src/parking_system/infrastructure/config.py
"""
Application configuration

Configuration is read from an optional YAML file, then environment
overrides are applied, then everything is validated by pydantic:

    database_url: sqlite:///./parking.db
    log_level: INFO
    log_file: logs/parking_app.log
    seed_default_spots: true
    fare:
      car_rate_per_hour: 1.5
      bike_rate_per_hour: 1.0
      grace_period_minutes: 30
      frequent_user_reduction_rate: 0.95
      min_uses_for_frequent_user: 5
      frequent_user_window_days: 30

Environment overrides: PARKING_DATABASE_URL, PARKING_LOG_LEVEL.
"""

from typing import Optional, Dict, Any, Mapping
from decimal import Decimal
from pathlib import Path
import logging
import os

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..domain.fare import FareSettings
from ..domain.models import VehicleType


logger = logging.getLogger(__name__)

ENV_DATABASE_URL = "PARKING_DATABASE_URL"
ENV_LOG_LEVEL = "PARKING_LOG_LEVEL"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(Exception):
    """Raised when the configuration file cannot be read or is invalid"""
    pass


class FareConfig(BaseModel):
    """Tariff section of the configuration"""
    model_config = ConfigDict(extra="forbid")

    car_rate_per_hour: Decimal = Field(default=Decimal('1.5'), ge=0)
    bike_rate_per_hour: Decimal = Field(default=Decimal('1.0'), ge=0)
    grace_period_minutes: int = Field(default=30, ge=0)
    frequent_user_reduction_rate: Decimal = Field(default=Decimal('0.95'), ge=0, le=1)
    min_uses_for_frequent_user: int = Field(default=5, ge=1)
    frequent_user_window_days: int = Field(default=30, ge=1)

    def to_settings(self) -> FareSettings:
        return FareSettings(
            hourly_rates={
                VehicleType.CAR: self.car_rate_per_hour,
                VehicleType.BIKE: self.bike_rate_per_hour,
            },
            grace_period_minutes=self.grace_period_minutes,
            frequent_user_reduction_rate=self.frequent_user_reduction_rate,
            min_uses_for_frequent_user=self.min_uses_for_frequent_user,
            frequent_user_window_days=self.frequent_user_window_days
        )


class AppConfig(BaseModel):
    """Top-level application configuration"""
    model_config = ConfigDict(extra="forbid")

    database_url: str = Field(default="sqlite:///./parking.db")
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = Field(default=None)
    seed_default_spots: bool = Field(default=True)
    fare: FareConfig = Field(default_factory=FareConfig)

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Invalid log level: {v}. Valid levels: {', '.join(LOG_LEVELS)}")
        return level

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        if not v or "://" not in v:
            raise ValueError(f"Invalid database URL: {v!r}")
        return v


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at top level")
    return data


def load_config(
    path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None
) -> AppConfig:
    """
    Load configuration from YAML and environment
    Raises: ConfigError
    """
    environ = os.environ if environ is None else environ
    data: Dict[str, Any] = {}

    if path:
        data = _read_yaml(Path(path))
        logger.info(f"Loaded configuration from {path}")

    if environ.get(ENV_DATABASE_URL):
        data["database_url"] = environ[ENV_DATABASE_URL]
    if environ.get(ENV_LOG_LEVEL):
        data["log_level"] = environ[ENV_LOG_LEVEL]

    try:
        return AppConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

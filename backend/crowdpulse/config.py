"""Configuration management using Pydantic Settings."""

import logging
from functools import lru_cache
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from apscheduler.triggers.cron import CronTrigger
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class SchedulerConfig(BaseModel):
    """Prediction scheduler cadence and activation window."""

    enabled: bool = False
    # Standard 5-minute marks: :00, :05, ... :55
    cadence: str = "*/5 * * * *"
    timezone: str = "UTC"
    lead_time_minutes: int = Field(default=60, ge=0)
    max_concurrency: int | None = Field(default=None, ge=1)  # None = unbounded fan-out
    local_day_prefilter: bool = False
    dedup_bucket_seconds: int | None = Field(default=None, ge=1)  # None = always append

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v!r}") from e
        return v

    @field_validator("cadence")
    @classmethod
    def validate_cadence(cls, v: str) -> str:
        try:
            CronTrigger.from_crontab(v, timezone="UTC")
        except ValueError as e:
            raise ValueError(f"Invalid cadence expression {v!r}: {e}") from e
        return v

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


class ProviderConfig(BaseModel):
    """External prediction model endpoint."""

    endpoint: str = "http://localhost:8080/predict"
    timeout_seconds: float = Field(default=30.0, gt=0)
    health_timeout_seconds: float = Field(default=5.0, gt=0)
    forecast_minutes: int = 5
    source_tag: str = "external-model"
    default_image_url: str = ""
    max_connections: int = 20


class GateAliasConfig(BaseModel):
    """Provider gate naming convention."""

    prefix: str = "gate_"
    # Letters continue the numeric sequence: A -> gate_3, B -> gate_4, ...
    letter_offset: int = 3


class Settings(BaseSettings):
    """Main configuration class."""

    # Paths
    data_dir: Path = Path("data")

    # Observability
    logfire_token: str = ""
    environment: str = "development"

    # Nested configuration sections
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    gates: GateAliasConfig = Field(default_factory=GateAliasConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("data_dir", mode="after")
    @classmethod
    def resolve_data_dir(cls, v: Path) -> Path:
        """Resolve data directory to absolute path."""
        return v.resolve()

    def load_yaml_config(self) -> None:
        """Load and merge YAML configuration."""
        config_path = self.data_dir / "config.yaml"

        if not config_path.exists():
            logger.warning(
                f"Config file not found: {config_path}. "
                "Using defaults. Run 'python -m crowdpulse init' to create it."
            )
            return

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f)

            if not yaml_config:
                logger.warning(f"Empty config file: {config_path}")
                return

            for section_name in ["scheduler", "provider", "gates"]:
                if section_name in yaml_config:
                    section = getattr(self, section_name)
                    yaml_section = yaml_config[section_name]

                    section_dict = section.model_dump()
                    section_dict.update(yaml_section)

                    new_section = section.__class__(**section_dict)
                    setattr(self, section_name, new_section)

            logger.info(f"Loaded configuration from {config_path}")

        except yaml.YAMLError as e:
            logger.error(f"Failed to parse YAML config: {e}")
            raise
        except Exception as e:
            logger.error(f"Failed to load config: {e}")
            raise


@lru_cache()
def get_settings() -> Settings:
    """Get singleton Settings instance."""
    settings = Settings()
    settings.load_yaml_config()
    return settings

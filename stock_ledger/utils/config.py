"""Configuration management using pydantic-settings."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class APIConfig(BaseModel):
    """Remote ledger client settings."""
    timeout: int = 30
    max_retries: int = 3
    retry_delay: int = 1
    exponential_backoff: bool = True
    conflict_retries: int = 3


class DatabaseConfig(BaseModel):
    """Database engine settings."""
    echo: bool = False
    sqlite_busy_timeout: int = 30  # seconds
    pool_pre_ping: bool = True


class LedgerConfig(BaseModel):
    """Ledger behaviour settings."""
    list_batch_size: int = 100
    accept_legacy_type_names: bool = True
    top_products_limit: int = 5
    daily_series_days: int = 30
    daily_series_max_days: int = 366


class IdentityConfig(BaseModel):
    """Caller identity verification settings."""
    validate_signature: bool = True


class LoggingFilesConfig(BaseModel):
    """Log file paths."""
    ledger: str = "logs/ledger.log"
    audit: str = "logs/audit.log"
    api: str = "logs/api.log"
    error: str = "logs/error.log"


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    max_bytes: int = 10485760  # 10MB
    backup_count: int = 5
    files: LoggingFilesConfig = LoggingFilesConfig()


class SchedulerConfig(BaseModel):
    """Consistency audit scheduler configuration."""
    enabled: bool = True
    timezone: str = "UTC"
    max_instances: int = 1
    coalesce: bool = True
    misfire_grace_time: int = 300
    initial_delay_seconds: int = 15


class YAMLConfig(BaseModel):
    """Configuration loaded from YAML file."""
    api: APIConfig = APIConfig()
    database: DatabaseConfig = DatabaseConfig()
    ledger: LedgerConfig = LedgerConfig()
    identity: IdentityConfig = IdentityConfig()
    logging: LoggingConfig = LoggingConfig()
    scheduler: SchedulerConfig = SchedulerConfig()


class Settings(BaseSettings):
    """Application settings from environment variables."""

    # Persistence
    database_url: str = Field(default="sqlite:///stock_ledger.db", description="SQLAlchemy database URL")

    # Identity provider
    identity_secret: str = Field(..., description="Shared secret used to sign caller identities")

    # Application settings
    environment: str = Field(default="development", description="Environment (development/production)")
    log_level: Optional[str] = Field(default=None, description="Override log level")
    log_to_file: bool = Field(default=True, description="Write rotating log files next to stdout")
    audit_interval_minutes: int = Field(default=60, description="Consistency audit interval in minutes")
    port: int = Field(default=8000, description="Server port")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


class AppConfig:
    """Combined application configuration."""

    def __init__(self):
        self.env = Settings()

        # Load YAML config
        config_path = Path(__file__).parent.parent.parent / "config" / "config.yml"
        if config_path.exists():
            with open(config_path, "r") as f:
                yaml_data = yaml.safe_load(f) or {}
                self.yaml = YAMLConfig(**yaml_data)
        else:
            self.yaml = YAMLConfig()

        # Override log level if specified in env
        if self.env.log_level:
            self.yaml.logging.level = self.env.log_level

    @property
    def api(self) -> APIConfig:
        return self.yaml.api

    @property
    def database(self) -> DatabaseConfig:
        return self.yaml.database

    @property
    def ledger(self) -> LedgerConfig:
        return self.yaml.ledger

    @property
    def identity(self) -> IdentityConfig:
        return self.yaml.identity

    @property
    def logging(self) -> LoggingConfig:
        return self.yaml.logging

    @property
    def scheduler(self) -> SchedulerConfig:
        return self.yaml.scheduler

    @property
    def is_production(self) -> bool:
        return self.env.environment.lower() == "production"


@lru_cache()
def get_config() -> AppConfig:
    """Get cached configuration instance."""
    return AppConfig()

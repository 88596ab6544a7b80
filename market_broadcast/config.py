"""
Configuration loading for the market data broadcaster.

Settings come from config.yaml in the project root; secrets and deployment
overrides come from environment variables, optionally loaded from a .env file.

Environment overrides:
    MARKET_BROADCAST_DATABASE_URL: Replaces database.url
    MARKET_BROADCAST_LOG_LEVEL: Replaces logging.level
    BINANCE_API_KEY / BINANCE_API_SECRET: Optional Binance credentials
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, Field, ValidationError, model_validator

from market_broadcast.core.models import Timeframe


PROJECT_ROOT = Path(__file__).parent.parent
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config.yaml"


class ConfigError(Exception):
    """
    Raised when configuration is missing or invalid.

    This exception indicates a problem with config.yaml that must be
    resolved before the broadcaster can start.
    """
    pass


class BroadcastConfig(BaseModel):
    """Pacing of the self-rescheduling broadcast loop."""

    lane: str = Field(default="broadcasts", min_length=1)
    short_delay_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Delay after a cycle that completed"
    )
    long_delay_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Delay after a cycle that raised"
    )
    order_book_depth: int = Field(default=20, gt=0)
    kline_limit: int = Field(default=100, gt=0)

    @model_validator(mode="after")
    def validate_backoff(self) -> "BroadcastConfig":
        """A failed cycle must never be retried sooner than a healthy one."""
        if self.long_delay_seconds < self.short_delay_seconds:
            raise ValueError(
                f"long_delay_seconds ({self.long_delay_seconds}) must be >= "
                f"short_delay_seconds ({self.short_delay_seconds})"
            )
        return self


class BackfillConfig(BaseModel):
    """Throttling and failure handling of historical backfill runs."""

    lane: str = Field(default="market-data", min_length=1)
    pause_seconds: float = Field(
        default=0.3,
        ge=0,
        description="Minimum pause after every fetch"
    )
    timeframe: Timeframe = Timeframe.M1
    limit: int = Field(default=1, gt=0)
    concurrency: int = Field(default=1, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    retry_delay_seconds: float = Field(default=5.0, ge=0)


class DatabaseConfig(BaseModel):
    url: str = "sqlite+aiosqlite:///data/market_broadcast.db"
    echo: bool = False


class ExchangesConfig(BaseModel):
    use_testnet: bool = False
    ccxt_options: Dict[str, Dict[str, Any]] = Field(default_factory=dict)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: Optional[str] = "logs/market_broadcast.log"
    rotation: str = "10 MB"
    retention: str = "7 days"


class SeedPair(BaseModel):
    exchange: str = Field(min_length=1)
    symbol: str = Field(min_length=1)
    active: bool = True


class Settings(BaseModel):
    """Complete application configuration."""

    broadcast: BroadcastConfig = Field(default_factory=BroadcastConfig)
    backfill: BackfillConfig = Field(default_factory=BackfillConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    exchanges: ExchangesConfig = Field(default_factory=ExchangesConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    pairs: List[SeedPair] = Field(default_factory=list)


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        with open(path, "r") as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse configuration file: {e}")

    if config is None:
        raise ConfigError("Configuration file is empty")
    if not isinstance(config, dict):
        raise ConfigError(
            f"Configuration root must be a mapping, got {type(config).__name__}"
        )
    return config


def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    database_url = os.getenv("MARKET_BROADCAST_DATABASE_URL")
    if database_url:
        config.setdefault("database", {})["url"] = database_url

    log_level = os.getenv("MARKET_BROADCAST_LOG_LEVEL")
    if log_level:
        config.setdefault("logging", {})["level"] = log_level.upper()

    return config


def load_settings(
    config_path: Optional[Union[str, Path]] = None,
    env_file: Optional[Union[str, Path]] = None
) -> Settings:
    """
    Load and validate settings.

    Args:
        config_path: Path to config.yaml. Defaults to the project root file.
        env_file: Optional .env file loaded before reading overrides.
                  Defaults to .env in the project root when present.

    Raises:
        ConfigError: If the file is missing, empty, unparsable or invalid
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH

    env_path = Path(env_file) if env_file is not None else PROJECT_ROOT / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    config = _apply_env_overrides(_read_yaml(path))

    try:
        settings = Settings.model_validate(config)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e

    logger.debug(f"Loaded configuration from {path}")
    return settings

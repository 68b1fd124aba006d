"""
Configuration models for the position reconciliation engine.

Uses Pydantic for validation and type safety.
"""
from typing import Literal, Optional
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import os
import re
import yaml
from pathlib import Path

from position_recon import constants
from position_recon.config.dotenv_loader import load_dotenv_files
from position_recon.exceptions import ConfigurationError


class ReconciliationConfig(BaseSettings):
    """Scheduler, analyzer and classifier settings."""
    model_config = SettingsConfigDict(extra="ignore")

    reconcile_enabled: bool = Field(default=True, description="Allow reconciliation passes to run")

    # Scheduler
    throttle_seconds: float = Field(
        default=constants.DEFAULT_THROTTLE_SECONDS, ge=0, le=3600,
        description="Minimum seconds between the end of one pass and the start of the next (per wallet/mode)",
    )
    max_attempts: int = Field(
        default=constants.DEFAULT_MAX_ATTEMPTS, ge=1, le=100,
        description="Consecutive ghost-finding passes before a wallet is suppressed",
    )
    slow_pass_warning_seconds: float = Field(default=constants.DEFAULT_SLOW_PASS_WARNING_SECONDS, gt=0)

    # Analyzer
    old_position_hours: float = Field(default=constants.DEFAULT_OLD_POSITION_HOURS, gt=0)
    lookup_timeout_seconds: float = Field(default=constants.DEFAULT_LOOKUP_TIMEOUT_SECONDS, gt=0, le=60)
    order_history_slack_minutes: int = Field(
        default=constants.DEFAULT_ORDER_HISTORY_SLACK_MINUTES, ge=0, le=1440,
        description="Look this far before position creation when matching exchange orders",
    )

    # Classifier
    detection_threshold: float = Field(
        default=constants.DEFAULT_DETECTION_THRESHOLD, gt=0, le=1.0,
        description="Held/expected ratio below which a position counts as mismatched (0.95 absorbs fees/rounding)",
    )
    high_confidence_ratio: float = Field(
        default=constants.DEFAULT_HIGH_CONFIDENCE_RATIO, ge=0, lt=1.0,
        description="Held/expected ratio below which a position is a certain ghost",
    )
    max_unknown_factors: int = Field(
        default=constants.DEFAULT_MAX_UNKNOWN_FACTORS, ge=1, le=3,
        description="Unknown remote factors at which classification falls back to legitimate",
    )

    # Cleanup
    cleanup_action: Literal["delete", "mark_closed"] = Field(
        default="delete",
        description="Delete ghost records, or mark them closed with exit_reason=ghost_position_purge",
    )

    @model_validator(mode="after")
    def validate_thresholds(self):
        if self.high_confidence_ratio >= self.detection_threshold:
            raise ValueError("high_confidence_ratio must be below detection_threshold")
        return self


class ExchangeConfig(BaseSettings):
    """Exchange state client configuration."""
    model_config = SettingsConfigDict(extra="ignore")

    exchange_id: str = "binance"
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    use_testnet: bool = False

    quote_asset: str = constants.DEFAULT_QUOTE_ASSET
    holdings_cache_seconds: float = Field(default=constants.DEFAULT_HOLDINGS_CACHE_SECONDS, ge=0, le=300)
    request_timeout_ms: int = Field(default=constants.DEFAULT_API_TIMEOUT_MS, ge=1000, le=120000)


class StorageConfig(BaseSettings):
    """Local JSON storage locations."""
    model_config = SettingsConfigDict(extra="ignore")

    data_dir: Path = Path("data")
    positions_file: str = "positions.json"
    trades_file: str = "trades.json"
    audit_dir: Path = Path("data/audit")


class MonitoringConfig(BaseSettings):
    """Logging and notification configuration."""
    model_config = SettingsConfigDict(extra="ignore")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Optional[str] = None

    alert_on_cleanup: bool = Field(default=True, description="Send a webhook alert when ghosts are cleaned")
    notification_queue_size: int = Field(default=100, ge=1, le=10000)


class SystemConfig(BaseSettings):
    """System metadata."""
    model_config = SettingsConfigDict(extra="ignore")

    name: str = "Position Reconciliation Engine"
    version: str = "1.0.0"


class Config(BaseSettings):
    """Main configuration class."""
    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        extra="ignore",
    )

    system: SystemConfig = Field(default_factory=SystemConfig)
    reconciliation: ReconciliationConfig = Field(default_factory=ReconciliationConfig)
    exchange: ExchangeConfig = Field(default_factory=ExchangeConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    environment: Literal["dev", "paper", "prod"] = "prod"

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> "Config":
        """Load configuration from YAML file, expanding ${VAR} / $VAR references."""
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(yaml_path, "r") as f:
            raw_content = f.read()

        pattern = re.compile(r'\$\{([^}]+)\}|\$([a-zA-Z_][a-zA-Z0-9_]*)')

        def replace_match(match):
            var_name = match.group(1) or match.group(2)
            return os.environ.get(var_name, match.group(0))  # Leave unresolved references as-is

        expanded_content = pattern.sub(replace_match, raw_content)
        config_dict = yaml.safe_load(expanded_content) or {}

        if "ENVIRONMENT" in os.environ:
            config_dict["environment"] = os.environ["ENVIRONMENT"]

        return cls(**config_dict)

    def validate_config(self) -> None:
        """Cross-section checks that a single model validator cannot express."""
        if self.environment == "prod" and self.exchange.use_testnet:
            raise ConfigurationError("use_testnet must be false when environment=prod")
        if self.storage.data_dir == self.storage.audit_dir:
            raise ConfigurationError("audit_dir must differ from data_dir")


def load_config(config_path: str | Path | None = None) -> Config:
    """
    Load and validate configuration.

    Args:
        config_path: Path to config.yaml. If None, uses position_recon/config/config.yaml

    Returns:
        Validated Config object

    Raises:
        FileNotFoundError: If config file not found
        pydantic.ValidationError: If a field fails validation
        ConfigurationError: If cross-section checks fail
    """
    load_dotenv_files()

    if config_path is None:
        config_path = Path(__file__).parent / "config.yaml"

    config = Config.from_yaml(config_path)
    config.validate_config()

    return config

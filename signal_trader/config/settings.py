"""
Configuration management for the Signal Trader.
Loads settings from YAML config and environment variables.
"""

import os
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from signal_trader.exchange.exceptions import ConfigurationError


# Load environment variables
load_dotenv()


class ExchangeConfig(BaseModel):
    """Exchange REST API configuration."""
    api_url: str = "https://api.upbit.com"
    timeout_seconds: float = 10.0


class TradingConfig(BaseModel):
    """Trading parameters. Static for the lifetime of the process."""
    model_config = ConfigDict(frozen=True)

    symbol: str = "KRW-ETH"
    buy_percentage: float = Field(default=0.1, gt=0, le=1)
    min_order_amount: int = Field(default=5000, gt=0)
    duplicate_prevention_hours: float = Field(default=1.0, ge=0)
    retry_attempts: int = Field(default=3, ge=1)
    retry_delay: float = Field(default=1.0, ge=0)
    serialize_executions: bool = False


class ServerConfig(BaseModel):
    """Webhook server configuration."""
    host: str = "0.0.0.0"
    port: int = Field(default_factory=lambda: int(os.getenv("PORT", "8080")))


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: str = "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
    rotation: str = "1 day"
    retention: str = "30 days"
    log_dir: str = "logs"


class Settings(BaseModel):
    """Main settings class containing all configuration."""

    # Sub-configurations
    exchange: ExchangeConfig = Field(default_factory=ExchangeConfig)
    trading: TradingConfig = Field(default_factory=TradingConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    # API credentials from environment
    upbit_access_key: str = Field(default_factory=lambda: os.getenv("UPBIT_ACCESS_KEY", ""))
    upbit_secret_key: str = Field(default_factory=lambda: os.getenv("UPBIT_SECRET_KEY", ""))

    @classmethod
    def from_yaml(cls, config_path: str | Path) -> "Settings":
        """Load settings from a YAML configuration file."""
        config_path = Path(config_path)

        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path, "r") as f:
            config_dict = yaml.safe_load(f) or {}

        return cls(**config_dict)

    def require_credentials(self) -> tuple[str, str]:
        """
        Return the (access_key, secret_key) pair.

        Raises:
            ConfigurationError: If either key is missing
        """
        missing = [
            name for name, value in (
                ("UPBIT_ACCESS_KEY", self.upbit_access_key),
                ("UPBIT_SECRET_KEY", self.upbit_secret_key),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing exchange credentials: {', '.join(missing)}")

        return self.upbit_access_key, self.upbit_secret_key

    def get_project_root(self) -> Path:
        """Get the project root directory."""
        return Path(__file__).parent.parent.parent

    def get_log_dir(self) -> Path:
        """Get the logs directory path."""
        log_dir = self.get_project_root() / self.logging.log_dir
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir


# Global settings instance
_settings: Settings | None = None


def get_settings(config_path: str | Path | None = None) -> Settings:
    """
    Get the global settings instance.

    Args:
        config_path: Optional path to config file. If not provided,
                    looks for config/config.yaml in project root.

    Returns:
        Settings instance
    """
    global _settings

    if _settings is None:
        if config_path is None:
            # Default config path
            project_root = Path(__file__).parent.parent.parent
            config_path = project_root / "config" / "config.yaml"

        if Path(config_path).exists():
            _settings = Settings.from_yaml(config_path)
        else:
            # Use defaults if no config file
            _settings = Settings()

    return _settings


def reset_settings() -> None:
    """Reset the global settings instance (useful for testing)."""
    global _settings
    _settings = None

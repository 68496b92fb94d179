"""Configuration manager for persistent settings stored as JSON."""

import json
import os
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

from .errors import (
    CampMailError,
    ConfigurationError,
    FileSystemError,
    InvalidConfigError,
    MissingConfigError,
)
from .logging import get_logger, log_call
from .paths import CONFIG_PATH

logger = get_logger(__name__)

# Environment variables that override file values without being persisted
ENV_OVERRIDES = {
    "SMTP_HOST": "smtp.host",
    "SMTP_PORT": "smtp.port",
    "SMTP_USERNAME": "smtp.username",
    "SMTP_PASSWORD": "smtp.password",
    "SUPPORT_EMAIL": "smtp.support_email",
    "APP_URL": "app.app_url",
}


class SmtpConfig(BaseModel):
    """Pydantic model for outbound SMTP settings."""

    host: str = ""
    port: int = 587
    username: str = ""
    password: str = ""
    support_email: str = ""
    timeout: float = 30.0  # per reply, in seconds
    validate_all_replies: bool = False


class AppSection(BaseModel):
    """Pydantic model for application-level settings."""

    app_url: str = "http://localhost:3000"


class LoggingConfig(BaseModel):
    """Pydantic model for logging settings."""

    log_level: str = "INFO"
    log_to_file: bool = True


class AppConfig(BaseModel):
    """Pydantic model for overall application configuration."""

    version: str = "0.1.0"
    smtp: SmtpConfig = Field(default_factory=SmtpConfig)
    app: AppSection = Field(default_factory=AppSection)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class ConfigManager:
    """Manages persistent application configuration."""

    _instance = None
    _initialized = False

    def __new__(cls, *args, **kwargs):
        if cls._instance is None:
            cls._instance = super(ConfigManager, cls).__new__(cls)
        return cls._instance

    def __init__(self, config_path: Optional[Path] = None):
        if not ConfigManager._initialized:
            self.path = config_path or CONFIG_PATH
            self._stored = self._load_or_create_config()
            self.config = self._apply_env_overrides(self._stored)
            logger.info(f"Configuration loaded from {self.path}")
            ConfigManager._initialized = True

    @classmethod
    def reset_instance(cls) -> None:
        """Forget the shared instance so the next call reloads from disk."""
        cls._instance = None
        cls._initialized = False

    def _load_or_create_config(self) -> AppConfig:
        """Load configuration from file or create default if not present."""

        if not self.path.exists():
            logger.info("No config file found, creating default configuration.")
            config = AppConfig()
            self._save_config(config)
            return config

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            config = AppConfig(**data)
            logger.debug("Configuration successfully loaded and validated.")
            return config

        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse config file: {e}")
            raise InvalidConfigError(f"Configuration file is not valid JSON: {str(e)}") from e
        except ValidationError as e:
            logger.error(f"Failed to validate config file: {e}")
            raise InvalidConfigError(f"Configuration data does not match expected schema: {str(e)}") from e
        except OSError as e:
            raise FileSystemError(f"Failed to read configuration file {self.path}: {str(e)}") from e

    def _apply_env_overrides(self, stored: AppConfig) -> AppConfig:
        """Return a copy of the stored config with environment overrides applied."""

        data = stored.model_dump()
        for env_var, key_path in ENV_OVERRIDES.items():
            value = os.environ.get(env_var)
            if value is None:
                continue
            section, key = key_path.split(".")
            data[section][key] = value
            logger.debug(f"Config key '{key_path}' overridden from {env_var}")

        try:
            return AppConfig(**data)
        except ValidationError as e:
            raise InvalidConfigError(f"Environment override is invalid: {str(e)}") from e

    def _save_config(self, config: Optional[AppConfig] = None):
        """Save the stored configuration to file."""

        config = config or self._stored

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(
                    config.model_dump(),
                    f,
                    indent=2,
                    ensure_ascii=False
                )
            logger.debug("Configuration successfully saved.")
        except OSError as e:
            raise FileSystemError(f"Failed to write configuration file: {str(e)}") from e

    @log_call
    def get_config(self, key_path: str) -> Any:
        """Get a configuration value using dot-separated key path."""

        obj: Any = self.config
        for key in key_path.split("."):
            if not isinstance(obj, BaseModel) or key not in type(obj).model_fields:
                raise MissingConfigError(f"Configuration key '{key_path}' does not exist")
            obj = getattr(obj, key)

        return obj

    @log_call
    def set_config(self, key_path: str, value: Any, persist: bool = True):
        """Set a configuration value using dot-separated key path."""

        try:
            keys = key_path.split(".")
            data = self._stored.model_dump()
            obj = data

            for key in keys[:-1]:
                if not isinstance(obj.get(key), dict):
                    raise MissingConfigError(f"Configuration path '{key_path}' is invalid: '{key}' not found")
                obj = obj[key]

            if keys[-1] not in obj or isinstance(obj[keys[-1]], dict):
                raise MissingConfigError(f"Configuration key '{keys[-1]}' does not exist in path '{key_path}'")

            obj[keys[-1]] = value
            self._stored = AppConfig(**data)
            self.config = self._apply_env_overrides(self._stored)

            if persist:
                self._save_config()

            logger.info(f"Config key '{key_path}' updated.")

        except ValidationError as e:
            raise InvalidConfigError(f"Invalid value for '{key_path}': {str(e)}") from e
        except CampMailError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Failed to set configuration key '{key_path}': {str(e)}") from e

    @log_call
    def reset_to_defaults(self):
        """Reset configuration to default values."""

        logger.warning("Resetting configuration to default values.")
        self._stored = AppConfig()
        self.config = self._apply_env_overrides(self._stored)
        self._save_config()
        logger.info("Configuration reset to default values.")

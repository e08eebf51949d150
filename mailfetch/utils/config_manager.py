"""Configuration manager for service settings stored as JSON."""

import json
import os
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from mailfetch.core.email.constants import (
    DEFAULT_MAILBOX,
    SECURE_PORTS,
    MailboxLimits,
    Timeouts,
)

from .errors import ConfigurationError, InvalidConfigError, MailfetchError
from .logging import get_logger, log_call
from .paths import get_config_path

logger = get_logger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}


class IMAPSettings(BaseModel):
    """Pydantic model for mail retrieval settings."""

    model_config = ConfigDict(validate_assignment=True)

    connect_timeout: float = Field(default=Timeouts.IMAP_CONNECT, gt=0)
    command_timeout: float = Field(default=Timeouts.IMAP_COMMAND, gt=0)  # per command
    deadline: float = Field(default=Timeouts.INVOCATION_DEADLINE, gt=0)  # whole invocation
    mailbox: str = DEFAULT_MAILBOX
    recent_fallback_limit: int = Field(default=MailboxLimits.RECENT_FALLBACK, ge=1)
    max_messages: int = Field(default=MailboxLimits.MAX_MESSAGES, ge=1)
    secure_ports: list[int] = Field(default_factory=lambda: sorted(SECURE_PORTS))
    strict_mode: bool = False


class ServerSettings(BaseModel):
    """Pydantic model for the HTTP server."""

    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    cors_headers: list[str] = Field(
        default_factory=lambda: [
            "authorization",
            "x-client-info",
            "apikey",
            "content-type",
        ]
    )


class LoggingConfig(BaseModel):
    """Pydantic model for logging settings."""

    log_level: str = "INFO"
    console_level: str = "WARNING"


class AppConfig(BaseModel):
    """Pydantic model for overall application configuration."""

    version: str = "0.1.0"
    imap: IMAPSettings = Field(default_factory=IMAPSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class ConfigManager:
    """Loads application configuration once per process."""

    _instance = None
    _initialized = False

    def __new__(cls, *args, **kwargs):
        if cls._instance is None:
            cls._instance = super(ConfigManager, cls).__new__(cls)
        return cls._instance

    def __init__(self, config_path: Optional[Path] = None):
        if not ConfigManager._initialized:
            self.path = config_path or get_config_path()
            self.config = self._load_config()
            self._apply_env_overrides()
            logger.info(f"Configuration loaded from {self.path}")
            ConfigManager._initialized = True

    @classmethod
    def reset(cls) -> None:
        """Drop the cached instance so the next call reloads from disk."""
        cls._instance = None
        cls._initialized = False

    def _load_config(self) -> AppConfig:
        """Load configuration from file, or defaults if the file is absent."""

        if not self.path.exists():
            logger.debug("No config file found, using default configuration.")
            return AppConfig()

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            config = AppConfig(**data)
            logger.debug("Configuration successfully loaded and validated.")
            return config

        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse config file: {e}")
            raise InvalidConfigError(
                f"Configuration file is not valid JSON: {str(e)}"
            ) from e
        except ValidationError as e:
            logger.error(f"Failed to validate config file: {e}")
            raise InvalidConfigError(
                f"Configuration data does not match expected schema: {str(e)}"
            ) from e
        except OSError as e:
            raise ConfigurationError(f"Failed to read configuration: {str(e)}") from e

    def _apply_env_overrides(self) -> None:
        """Environment variables take precedence over the config file."""

        strict = os.environ.get("MAILFETCH_STRICT_MODE")
        if strict is not None:
            self.config.imap.strict_mode = strict.strip().lower() in _TRUTHY

        level = os.environ.get("MAILFETCH_LOG_LEVEL")
        if level:
            self.config.logging.log_level = level.strip().upper()

        deadline = os.environ.get("MAILFETCH_DEADLINE")
        if deadline:
            try:
                self.config.imap.deadline = float(deadline)
            except ValueError as e:
                raise InvalidConfigError(
                    f"MAILFETCH_DEADLINE must be a positive number, got {deadline!r}"
                ) from e

    @log_call
    def get_config(self, key_path: str, default: Any = None) -> Any:
        """Get a configuration value using a dot-separated key path."""

        obj: Any = self.config
        for key in key_path.split("."):
            if not hasattr(obj, key):
                return default
            obj = getattr(obj, key)
        return obj

    @log_call
    def set_config(self, key_path: str, value: Any) -> None:
        """Set a configuration value in memory using a dot-separated key path."""

        try:
            keys = key_path.split(".")
            obj = self.config

            for key in keys[:-1]:
                if not hasattr(obj, key):
                    raise InvalidConfigError(
                        f"Configuration path '{key_path}' is invalid: '{key}' not found"
                    )
                obj = getattr(obj, key)

            if not hasattr(obj, keys[-1]):
                raise InvalidConfigError(
                    f"Configuration key '{keys[-1]}' does not exist in path '{key_path}'"
                )

            setattr(obj, keys[-1], value)
            logger.info(f"Config key '{key_path}' updated.")

        except MailfetchError:
            raise
        except ValidationError as e:
            raise InvalidConfigError(
                f"Invalid value for configuration key '{key_path}': {str(e)}"
            ) from e
        except Exception as e:
            raise ConfigurationError(
                f"Failed to set configuration key '{key_path}': {str(e)}"
            ) from e


def get_config_manager() -> ConfigManager:
    """Get the process-wide ConfigManager."""
    return ConfigManager()

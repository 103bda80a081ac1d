"""Configuration models for taskboard.

Settings are loaded from a TOML file with fallback to defaults, then
environment variables take precedence over anything read from the file.
"""

import os
import sys
from pathlib import Path
from typing import Optional

# Use tomllib from stdlib in Python 3.11+, fallback to tomli for earlier versions
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from pydantic import BaseModel, Field, field_validator

from taskboard.logging_config import get_logger

logger = get_logger(__name__)

_CONFIG_DIR = Path.home() / ".taskboard"
DEFAULT_CONFIG_PATH = _CONFIG_DIR / "settings.toml"
DEFAULT_DATABASE_URL = f"sqlite+aiosqlite:///{_CONFIG_DIR / 'taskboard.db'}"

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class Settings(BaseModel):
    """Runtime settings for the taskboard service layer.

    Attributes:
        database_url: Async SQLAlchemy URL of the backing store.
        log_level: Root log level name.
        default_column_name: Name of the column every new project starts with.
        sql_echo: Whether SQLAlchemy should echo emitted SQL.
    """

    database_url: str = Field(default=DEFAULT_DATABASE_URL, min_length=1)
    log_level: str = Field(default="INFO")
    default_column_name: str = Field(default="To Do", min_length=1, max_length=100)
    sql_echo: bool = Field(default=False)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalise the log level and reject unknown names.

        Raises:
            ValueError: If the level is not a standard logging level.
        """
        level = v.upper()
        if level not in _VALID_LOG_LEVELS:
            raise ValueError(f"Unknown log level: '{v}'")
        return level

    @classmethod
    def from_toml_file(cls, path: Optional[Path] = None) -> "Settings":
        """Load settings from a TOML file with fallback to defaults.

        Reads the ``[taskboard]`` table of the file, then applies
        environment overrides:
        - TASKBOARD_DATABASE_URL
        - TASKBOARD_LOG_LEVEL
        - TASKBOARD_DEFAULT_COLUMN
        - TASKBOARD_SQL_ECHO

        Args:
            path: Path to the TOML file. Defaults to ~/.taskboard/settings.toml.

        Returns:
            Settings instance.
        """
        if path is None:
            path = DEFAULT_CONFIG_PATH

        data = {}
        if path.exists():
            with open(path, "rb") as f:
                data = dict(tomllib.load(f).get("taskboard", {}))
            logger.info(f"Loaded configuration from {path}")
        else:
            logger.debug(f"Config not found at {path}. Using defaults.")

        env_overrides = {
            "database_url": os.getenv("TASKBOARD_DATABASE_URL"),
            "log_level": os.getenv("TASKBOARD_LOG_LEVEL"),
            "default_column_name": os.getenv("TASKBOARD_DEFAULT_COLUMN"),
        }
        data.update({k: v for k, v in env_overrides.items() if v})

        echo_env = os.getenv("TASKBOARD_SQL_ECHO", "").lower()
        if echo_env:
            data["sql_echo"] = echo_env == "true"

        settings = cls(**data)
        logger.debug(
            f"Settings: log_level={settings.log_level}, "
            f"default_column_name='{settings.default_column_name}', "
            f"sql_echo={settings.sql_echo}"
        )
        return settings


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or load the process-wide settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.from_toml_file()
    return _settings


def reset_settings() -> None:
    """Forget cached settings so the next get_settings() reloads them."""
    global _settings
    _settings = None
    logger.debug("Settings cache cleared")

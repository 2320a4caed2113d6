"""
Runtime settings for Toolgate.

Settings are loaded from a YAML file the same way policy documents are:
parsed with yaml.safe_load, then validated once by a frozen Pydantic model.

Example toolgate.yaml:
    db_path: /var/lib/toolgate/toolgate.db
    timezone: Europe/Berlin
    fail_open: false
    strict_audit: true
    log_level: INFO
"""

import logging
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from rich.console import Console
from rich.logging import RichHandler

from toolgate.errors import ConfigError

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseModel):
    """
    Toolgate runtime settings.

    Attributes:
        db_path: SQLite database file shared by every component
        timezone: IANA zone used for time-window checks
        enforce_time_windows: Whether time windows are checked at all
        fail_open: Pass a check (with a warning) when its storage fails
        strict_audit: Raise from Engine.authorize when a decision can't be recorded
        strict_security_events: Raise when a security event can't be recorded
        busy_timeout_seconds: How long SQLite waits on a locked database
        log_level: Level for the toolgate loggers
        bootstrap_defaults: Install the built-in policies in memory at startup
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    db_path: str = Field(default="toolgate.db")
    timezone: str = Field(default="UTC")
    enforce_time_windows: bool = Field(default=True)
    fail_open: bool = Field(default=False)
    strict_audit: bool = Field(default=False)
    strict_security_events: bool = Field(default=False)
    busy_timeout_seconds: float = Field(default=5.0, gt=0)
    log_level: str = Field(default="WARNING")
    bootstrap_defaults: bool = Field(default=False)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Reject zone names zoneinfo doesn't know."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            msg = f"Unknown timezone: {v}"
            raise ValueError(msg) from e
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and check the log level name."""
        level = v.upper()
        if level not in LOG_LEVELS:
            msg = f"log_level must be one of {', '.join(LOG_LEVELS)}"
            raise ValueError(msg)
        return level

    @property
    def tz(self) -> ZoneInfo:
        """The configured timezone as a ZoneInfo."""
        return ZoneInfo(self.timezone)


def load_settings(path: Path | str) -> Settings:
    """
    Load settings from a YAML file.

    Raises:
        ConfigError: If the file is missing, unreadable or invalid
    """
    path = Path(path)
    try:
        with path.open() as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigError(
            path=str(path),
            message=f"Config file not found: {path}",
        ) from e
    except yaml.YAMLError as e:
        raise ConfigError(
            path=str(path),
            message=f"Config file is not valid YAML: {e}",
        ) from e

    return _validate(data, str(path))


def load_settings_from_string(content: str) -> Settings:
    """Load settings from a YAML string."""
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(path="<string>", message=f"Invalid YAML: {e}") from e
    return _validate(data, "<string>")


def _validate(data: object, source: str) -> Settings:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(path=source, message=f"Config must be a mapping: {source}")
    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(
            path=source,
            message=f"Invalid configuration in {source}: {e}",
            suggestion="Check setting names and value types",
        ) from e


def configure_logging(level: str = "WARNING", console: Console | None = None) -> None:
    """
    Route the toolgate loggers through Rich at the given level.

    Safe to call more than once; the previous handler is replaced.
    """
    logger = logging.getLogger("toolgate")
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(level.upper())

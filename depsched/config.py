"""Configuration models and YAML loader."""

from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigError


class SchedulingConfig(BaseModel):
    """Cascade behaviour."""

    conflict_policy: Literal["warn", "block"] = Field(
        default="warn",
        description="warn: collect mixed-bound conflicts; block: raise ConflictingDateBound",
    )
    max_cascade_retries: int = Field(
        default=3, ge=0, description="Retries after a stale snapshot abort"
    )


class CriticalPathConfig(BaseModel):
    """Critical path analysis settings."""

    project_start_offset: int = Field(default=0, description="Day offset of the project start")
    clamp_to_zero: bool = Field(
        default=True,
        description="Clamp early starts at the project start (leads cannot pull work earlier)",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    level: str = Field(default="INFO", description="Log level")
    log_file: Optional[Path] = Field(default=None, description="Optional log file")


class EngineConfig(BaseModel):
    """Main configuration model."""

    scheduling: SchedulingConfig = Field(default_factory=SchedulingConfig)
    critical_path: CriticalPathConfig = Field(default_factory=CriticalPathConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(config_path: Path) -> EngineConfig:
    """Load and validate configuration from YAML file.

    Args:
        config_path: Path to config YAML file

    Returns:
        Validated EngineConfig instance

    Raises:
        ConfigError: If config file missing or invalid
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}")

    if not data:
        raise ConfigError(f"Empty configuration file: {config_path}")
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration root must be a mapping: {config_path}")

    # Resolve log file relative to config file
    log_file = (data.get("logging") or {}).get("log_file")
    if log_file and not Path(log_file).is_absolute():
        data["logging"]["log_file"] = (config_path.parent / log_file).resolve()

    try:
        return EngineConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed: {e}")

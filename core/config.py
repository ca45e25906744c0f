"""
Configuration loading for the pipeline.

The YAML file mirrors the models below; ``${VAR}`` references are expanded
from the environment so secrets stay out of the file.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "pipeline.yml"

_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


class OrchestratorConfig(BaseModel):
    """Settings fixed once at startup."""
    monitor_interval_seconds: float = 30.0
    staleness_multiplier: float = 2.0
    no_data_window_seconds: float = 300.0
    shutdown_grace_seconds: float = 30.0
    intervals: Dict[str, float] = Field(default_factory=dict)

    @field_validator("monitor_interval_seconds", "staleness_multiplier", "no_data_window_seconds")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("intervals")
    @classmethod
    def _positive_intervals(cls, value: Dict[str, float]) -> Dict[str, float]:
        for name, seconds in value.items():
            if seconds <= 0:
                raise ValueError(f"interval for {name} must be greater than zero")
        return value

    def interval_for(self, name: str, default: float) -> float:
        return self.intervals.get(name, default)


class HttpConfig(BaseModel):
    max_retries: int = 2
    base_delay: float = 1.0
    max_delay: float = 10.0
    user_agent: str = "sports-data-pipeline/1.0"


class DatabaseConfig(BaseModel):
    path: str = "pipeline.db"


class CollectorConfig(BaseModel):
    """Per-collector switch plus free-form keyword arguments."""
    model_config = {"extra": "allow"}

    enabled: bool = True

    def kwargs(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})


class AlertsConfig(BaseModel):
    database: bool = True
    discord_webhook_url: Optional[str] = None
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None


class ApiConfig(BaseModel):
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8080


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


class PipelineSettings(BaseModel):
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    fetch_timeout_seconds: float = 15.0
    http: HttpConfig = Field(default_factory=HttpConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    collectors: Dict[str, CollectorConfig] = Field(default_factory=dict)
    alerts: AlertsConfig = Field(default_factory=AlertsConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def collector(self, name: str) -> CollectorConfig:
        return self.collectors.get(name) or CollectorConfig()


def expand_env(value: Any, environ: Optional[Dict[str, str]] = None) -> Any:
    """Recursively expand ``${VAR}`` and ``${VAR:-default}`` in strings."""
    env = os.environ if environ is None else environ

    if isinstance(value, str):
        def _sub(match: re.Match) -> str:
            name, default = match.group(1), match.group(2)
            return env.get(name, default if default is not None else "")

        expanded = _ENV_REF.sub(_sub, value)
        return expanded if expanded != "" or value == "" else None
    if isinstance(value, dict):
        return {k: expand_env(v, env) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v, env) for v in value]
    return value


def load_settings(path: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> PipelineSettings:
    """Load settings from YAML; a missing file yields the defaults."""
    config_path = Path(path or os.getenv("PIPELINE_CONFIG", DEFAULT_CONFIG_PATH))

    if not config_path.exists():
        if path:
            raise ConfigError(f"Config file not found: {config_path}")
        logger.warning(f"Config file not found: {config_path}, using defaults")
        return PipelineSettings()

    try:
        with config_path.open() as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Top level of {config_path} must be a mapping")

    try:
        return PipelineSettings.model_validate(expand_env(data, environ))
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {config_path}: {e}") from e

# =============================================================================
# DISCLAIMER: This software is NOT a safety device and is NOT intended for
# emergency response or child supervision. This is a proof of concept for
# educational purposes only. Do not rely on this system for safety decisions.
# =============================================================================
"""Configuration loader for Smartwatch Monitor.

Loads configuration from YAML file with environment variable substitution.
"""

import os
import re
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from smartwatch_monitor.exceptions import ConfigError

logger = logging.getLogger(__name__)

# Default config file locations (in order of priority)
CONFIG_PATHS = [
    "config.local.yaml",  # Local overrides (not in git)
    "config.yaml",        # Default config
]

# Environment variable that forces mock mode
MOCK_ENV_VAR = "MOCK_SOURCE"


@dataclass
class SourceConfig:
    """Remote event source configuration."""
    base_url: str = ""
    timeout_seconds: float = 5.0


@dataclass
class MonitorConfig:
    """Detection loop timing."""
    poll_interval_seconds: float = 30.0


@dataclass
class PagerDutyConfig:
    """PagerDuty alerting configuration."""
    enabled: bool = True
    routing_key: str = ""
    service_name: str = "Smartwatch Monitor"


@dataclass
class LocalAudioConfig:
    """Local audio alerting configuration."""
    enabled: bool = False
    alert_sound: str = "sounds/alert.wav"
    volume: int = 80


@dataclass
class HealthchecksConfig:
    """Healthchecks.io configuration."""
    enabled: bool = True
    ping_url: str = ""


@dataclass
class AlertingConfig:
    """Alerting configuration container."""
    title: str = "Abnormal Result Detected"
    pagerduty: PagerDutyConfig = field(default_factory=PagerDutyConfig)
    local_audio: LocalAudioConfig = field(default_factory=LocalAudioConfig)
    healthchecks: HealthchecksConfig = field(default_factory=HealthchecksConfig)


@dataclass
class DatabaseConfig:
    """Watermark database configuration."""
    path: str = "data/monitor.db"


@dataclass
class WebConfig:
    """Web API configuration."""
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 5000
    request_timeout_seconds: float = 15.0


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: str = "logs/smartwatch_monitor.log"
    max_size_mb: int = 10
    backup_count: int = 5


@dataclass
class Config:
    """Main configuration container.

    This is the root configuration object containing all settings.
    """
    mock_mode: bool = False
    source: SourceConfig = field(default_factory=SourceConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    alerting: AlertingConfig = field(default_factory=AlertingConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    web: WebConfig = field(default_factory=WebConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Internal: base path for resolving relative paths
    _base_path: Path = field(default_factory=Path.cwd)

    def resolve_path(self, path: str) -> Path:
        """Resolve a path relative to the config file location."""
        p = Path(path)
        if p.is_absolute():
            return p
        return self._base_path / p


def _substitute_env_vars(value: Any) -> Any:
    """Recursively substitute ${VAR} patterns with environment variables.

    Args:
        value: Value to process (can be str, dict, list, or other)

    Returns:
        Value with environment variables substituted
    """
    if isinstance(value, str):
        pattern = r'\$\{([^}]+)\}'

        def replace_env(match):
            var_name = match.group(1)
            env_value = os.environ.get(var_name, "")
            if not env_value:
                logger.warning(f"Environment variable {var_name} not set")
            return env_value

        return re.sub(pattern, replace_env, value)

    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}

    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]

    return value


def _dict_to_dataclass(cls, data: Optional[Dict[str, Any]]):
    """Convert a dictionary to a dataclass, handling nested structures.

    Unknown keys are ignored with a warning so a typo does not take the
    monitor down.
    """
    if data is None:
        return cls()

    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping for {cls.__name__}, got {type(data).__name__}")

    fields = {name: f for name, f in cls.__dataclass_fields__.items() if not name.startswith('_')}

    for key in data:
        if key not in fields:
            logger.warning(f"Unknown config key '{key}' in {cls.__name__}, ignoring")

    kwargs = {}
    for field_name, f in fields.items():
        if field_name not in data:
            continue
        value = data[field_name]
        if hasattr(f.type, '__dataclass_fields__'):
            kwargs[field_name] = _dict_to_dataclass(f.type, value)
        else:
            kwargs[field_name] = value

    return cls(**kwargs)


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").lower() in ("true", "1", "yes")


def load_config(config_path: Optional[str] = None, base_path: Optional[Path] = None) -> Config:
    """Load configuration from YAML file.

    Args:
        config_path: Path to config file. If None, searches default locations.
        base_path: Base path for resolving relative paths. Defaults to cwd.

    Returns:
        Config object with all settings loaded

    Raises:
        FileNotFoundError: If no config file is found
        yaml.YAMLError: If config file is invalid YAML
        ConfigError: If required settings are missing
    """
    # Load .env file if present
    env_path = Path(base_path or Path.cwd()) / ".env"
    if env_path.exists():
        load_dotenv(env_path)
        logger.debug(f"Loaded environment from {env_path}")

    # Find config file
    if config_path:
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        base = base_path or Path.cwd()
        config_file = None
        for path in CONFIG_PATHS:
            candidate = base / path
            if candidate.exists():
                config_file = candidate
                break

        if config_file is None:
            raise FileNotFoundError(
                f"No config file found. Searched: {', '.join(CONFIG_PATHS)}"
            )

    logger.info(f"Loading config from {config_file}")

    with open(config_file, 'r') as f:
        raw_config = yaml.safe_load(f)

    if raw_config is None:
        raw_config = {}

    config_data = _substitute_env_vars(raw_config)

    if _env_flag(MOCK_ENV_VAR):
        logger.info(f"{MOCK_ENV_VAR} environment variable set - enabling mock mode")
        config_data["mock_mode"] = True

    config = _dict_to_dataclass(Config, config_data)
    config._base_path = config_file.parent

    _validate_config(config)

    return config


def _validate_config(config: Config) -> None:
    """Validate configuration settings.

    Out-of-range values are clamped with a warning. Only a missing event
    source outside mock mode is fatal.

    Raises:
        ConfigError: If required settings are missing
    """
    errors = []

    if not config.mock_mode and not config.source.base_url:
        errors.append("source.base_url is required (or enable mock_mode)")

    config.source.base_url = config.source.base_url.rstrip("/")

    if config.source.timeout_seconds <= 0:
        logger.warning("source.timeout_seconds must be positive, using 5")
        config.source.timeout_seconds = 5.0

    if config.monitor.poll_interval_seconds < 1:
        logger.warning("monitor.poll_interval_seconds must be at least 1, using 1")
        config.monitor.poll_interval_seconds = 1.0

    if config.alerting.local_audio.volume < 0 or config.alerting.local_audio.volume > 100:
        logger.warning("alerting.local_audio.volume must be 0-100, clamping to valid range")
        config.alerting.local_audio.volume = max(0, min(100, config.alerting.local_audio.volume))

    if errors:
        raise ConfigError("Configuration errors:\n  " + "\n  ".join(errors))


def get_default_config() -> Config:
    """Get a Config object with all default values.

    Useful for testing or when no config file exists.
    """
    return Config()

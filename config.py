"""Configuration management with Pydantic models and validation."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from resiliency_metrics.errors import ConfigError, ValidationError

CONFIG_FILE_NAME = "resiliency_metrics.toml"

# Environment variable mapping
ENV_VAR_MAPPING = {
    # Metrics config
    "enable_metrics": ["RESILIENCY_METRICS_ENABLED"],
    "exporter": ["RESILIENCY_METRICS_EXPORTER"],
    "metrics_endpoint": ["RESILIENCY_METRICS_ENDPOINT", "OTEL_EXPORTER_OTLP_METRICS_ENDPOINT"],
    "api_key": ["RESILIENCY_METRICS_API_KEY"],
    "export_interval_millis": ["RESILIENCY_METRICS_EXPORT_INTERVAL_MILLIS"],
    "file_exporter_path": ["RESILIENCY_METRICS_FILE_PATH"],
    "reset_metrics_file": ["RESILIENCY_METRICS_RESET_FILE"],
    "enable_in_memory_reader": ["RESILIENCY_METRICS_IN_MEMORY_READER"],

    # Runtime identity
    "app_id": ["RESILIENCY_METRICS_APP_ID", "APP_ID"],
    "namespace": ["RESILIENCY_METRICS_NAMESPACE", "NAMESPACE"],

    # Logging
    "debug": ["RESILIENCY_METRICS_DEBUG"],
}

_TRUE_VALUES = ("true", "1", "yes")


class MetricsConfig(BaseModel):
    """Metrics configuration section."""

    enable_metrics: bool = Field(
        default=True,
        description="Enable resiliency metrics emission"
    )
    exporter: Literal["otlp", "console", "file", "none"] = Field(
        default="otlp",
        description="Periodic exporter used to push aggregated counts"
    )
    metrics_endpoint: Optional[str] = Field(
        default=None,
        description="OTLP/HTTP metrics endpoint (defaults to http://localhost:4318/v1/metrics)"
    )
    api_key: Optional[str] = Field(
        default=None,
        description="Bearer token sent to the OTLP endpoint"
    )
    export_interval_millis: int = Field(
        default=5000,
        gt=0,
        description="Delay in milliseconds between periodic exports"
    )
    file_exporter_path: str = Field(
        default="metrics.jsonl",
        description="File path for file exporter"
    )
    reset_metrics_file: bool = Field(
        default=False,
        description="Reset/clear metrics file on first export"
    )
    enable_in_memory_reader: bool = Field(
        default=True,
        description="Keep an in-memory reader so registered views can be queried"
    )

    @model_validator(mode='after')
    def check_reader_configured(self) -> 'MetricsConfig':
        """Ensure at least one reader collects the counts."""
        if self.exporter == "none" and not self.enable_in_memory_reader:
            raise ValidationError(
                "No metrics reader configured. Choose an exporter or enable the in-memory reader.",
                details={
                    "exporter": self.exporter,
                    "enable_in_memory_reader": self.enable_in_memory_reader,
                }
            )
        if self.exporter == "file" and not self.file_exporter_path:
            raise ValidationError(
                "The file exporter requires file_exporter_path.",
                details={"exporter": self.exporter},
            )
        return self


class RuntimeConfig(BaseModel):
    """Runtime identity configuration section."""

    app_id: Optional[str] = Field(
        default=None,
        description="Application identifier attached to every measurement"
    )
    namespace: str = Field(
        default="",
        description="Namespace the application runs in"
    )


class LoggingConfig(BaseModel):
    """Logging configuration section."""

    debug: bool = Field(
        default=False,
        description="Enable debug logging"
    )


class ResiliencyMetricsConfig(BaseModel):
    """
    Complete resiliency metrics configuration.

    This model validates and merges configuration from multiple sources:
    1. Config file (resiliency_metrics.toml)
    2. Environment variables
    3. Explicit parameters
    """

    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def to_flat_dict(self) -> Dict[str, Any]:
        """Convert to flat dictionary."""
        return {
            **self.metrics.model_dump(),
            **self.runtime.model_dump(),
            **self.logging.model_dump(),
        }


def find_config_file() -> Optional[str]:
    """
    Find resiliency_metrics.toml config file in standard locations.

    Lookup order:
    1. ./resiliency_metrics.toml (current directory)
    2. ~/.resiliency_metrics/config.toml (user home)

    Returns:
        Path to config file if found, None otherwise
    """
    cwd_config = Path.cwd() / CONFIG_FILE_NAME
    if cwd_config.exists():
        return str(cwd_config)

    home_config = Path.home() / ".resiliency_metrics" / "config.toml"
    if home_config.exists():
        return str(home_config)

    return None


def load_toml_config(path: str) -> Dict[str, Any]:
    """
    Load configuration from a TOML file.

    Args:
        path: Path to the TOML config file

    Returns:
        Dictionary with nested config structure
    """
    if not os.path.exists(path):
        return {}

    import tomli

    try:
        with open(path, "rb") as f:
            return tomli.load(f)
    except (OSError, tomli.TOMLDecodeError) as e:
        raise ConfigError(f"Failed to load config file: {e}", details={"path": path}) from e


def get_env_value(config_key: str) -> Optional[str]:
    """
    Get environment variable value for a config key.

    Tries multiple environment variable names in order of preference.
    """
    for env_var in ENV_VAR_MAPPING.get(config_key, []):
        value = os.getenv(env_var)
        if value is not None:
            return value
    return None


def load_config_from_env() -> Dict[str, Any]:
    """
    Load configuration from environment variables.

    Returns:
        Dictionary of config values from environment (nested structure)
    """
    env_config: Dict[str, Dict[str, Any]] = {
        "metrics": {},
        "runtime": {},
        "logging": {},
    }

    # Metrics section
    for key in ["enable_metrics", "reset_metrics_file", "enable_in_memory_reader"]:
        value = get_env_value(key)
        if value is not None:
            env_config["metrics"][key] = value.lower() in _TRUE_VALUES

    for key in ["exporter", "metrics_endpoint", "api_key", "file_exporter_path"]:
        value = get_env_value(key)
        if value is not None:
            env_config["metrics"][key] = value

    value = get_env_value("export_interval_millis")
    if value is not None:
        try:
            env_config["metrics"]["export_interval_millis"] = int(value)
        except ValueError:
            raise ConfigError(f"Invalid export_interval_millis value: {value}. Must be an integer.")

    # Runtime section
    for key in ["app_id", "namespace"]:
        value = get_env_value(key)
        if value is not None:
            env_config["runtime"][key] = value

    # Logging section
    value = get_env_value("debug")
    if value is not None:
        env_config["logging"]["debug"] = value.lower() in _TRUE_VALUES

    return {k: v for k, v in env_config.items() if v}


def merge_configs(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge two config dictionaries.

    Args:
        base: Base configuration
        override: Override configuration (takes precedence)

    Returns:
        Merged configuration
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = merge_configs(result[key], value)
        else:
            result[key] = value
    return result


def load_config(
    config_file: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None
) -> ResiliencyMetricsConfig:
    """
    Load and validate configuration from multiple sources.

    Priority (highest to lowest):
    1. Explicit overrides (passed as parameters)
    2. Environment variables
    3. Config file (./resiliency_metrics.toml or ~/.resiliency_metrics/config.toml)
    4. Defaults

    Raises:
        ConfigError: If configuration is invalid or conflicting
    """
    merged_config: Dict[str, Any] = {}

    path = config_file or find_config_file()
    if path:
        merged_config = merge_configs(merged_config, load_toml_config(path))

    merged_config = merge_configs(merged_config, load_config_from_env())

    if overrides:
        merged_config = merge_configs(merged_config, overrides)

    try:
        return ResiliencyMetricsConfig(**merged_config)
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed: {e}", details=e.details) from e
    except ValueError as e:
        # pydantic.ValidationError subclasses ValueError
        raise ConfigError(f"Configuration validation failed: {e}") from e


def validate_config(
    config_file: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None
) -> tuple[bool, str, Optional[ResiliencyMetricsConfig]]:
    """
    Validate configuration without applying it.

    Returns:
        Tuple of (is_valid, message, config_or_none)
    """
    try:
        config = load_config(config_file=config_file, overrides=overrides)
        return True, "Configuration is valid", config
    except ConfigError as e:
        return False, f"Configuration error: {e}", None

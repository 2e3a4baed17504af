"""
Configuration management for the metrics service.

Configuration is loaded from multiple sources with layered precedence:
1. Built-in defaults (Pydantic model defaults)
2. YAML config file (/etc/oc-metrics/config.yml or --config path)
3. Environment variables (OC_METRICS_* prefix, __ for nesting)
4. Command-line arguments (highest precedence)
"""

from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_CONFIG_PATH = Path("/etc/oc-metrics/config.yml")
DEFAULT_ENV_PREFIX = "OC_METRICS_"

_VALID_LOG_LEVELS = {"debug", "info", "warn", "warning", "error", "critical"}


def _normalize_log_level(v: str) -> str:
    v_lower = v.lower()
    if v_lower not in _VALID_LOG_LEVELS:
        raise ValueError(
            f"Invalid log level: {v}. Must be one of: {', '.join(sorted(_VALID_LOG_LEVELS))}"
        )
    if v_lower == "warn":
        return "warning"
    return v_lower


class _ConfigModel(BaseModel):
    # unknown keys are rejected
    model_config = ConfigDict(extra="forbid")


# =============================================================================
# Server Configuration
# =============================================================================


class ServerConfig(_ConfigModel):
    """Server settings configuration.

    Attributes:
        listen: Listen address and port for the TCP transport.
        transport: "tcp" to listen on ``listen``, "stdio" to serve stdin/stdout.
    """

    listen: str = Field(
        default="127.0.0.1:50051",
        description="Listen address and port (e.g., '127.0.0.1:50051' or '[::1]:50051')",
    )
    transport: str = Field(
        default="tcp",
        description="Transport: 'tcp' or 'stdio'",
    )

    @field_validator("transport")
    @classmethod
    def validate_transport(cls, v: str) -> str:
        """Validate transport name."""
        valid = {"tcp", "stdio"}
        v_lower = v.lower()
        if v_lower not in valid:
            raise ValueError(
                f"Invalid transport: {v}. Must be one of: {', '.join(sorted(valid))}"
            )
        return v_lower

    @field_validator("listen")
    @classmethod
    def validate_listen(cls, v: str) -> str:
        """Validate that the listen address carries a numeric port."""
        host, sep, port = v.rpartition(":")
        if not sep or not host or not port.isdigit():
            raise ValueError(f"Invalid listen address: {v}. Expected 'host:port'")
        return v

    def listen_address(self) -> tuple[str, int]:
        """
        Split ``listen`` into a host and port.

        Brackets around IPv6 hosts are stripped.

        Returns:
            Tuple of (host, port).
        """
        host, _, port = self.listen.rpartition(":")
        return host.strip("[]"), int(port)


# =============================================================================
# Storage Configuration
# =============================================================================


class StorageConfig(_ConfigModel):
    """Metrics storage configuration.

    Attributes:
        database_path: Path to the SQLite database file, or ":memory:".
    """

    database_path: str = Field(
        default="metrics.db",
        description="Path to the SQLite database (':memory:' for an in-memory store)",
    )

    @field_validator("database_path")
    @classmethod
    def validate_database_path(cls, v: str) -> str:
        """Reject empty database paths."""
        if not v.strip():
            raise ValueError("database_path must not be empty")
        return v


# =============================================================================
# Service Configuration
# =============================================================================


class ServiceConfig(_ConfigModel):
    """Service layer configuration.

    Attributes:
        default_max_results: Result cap for load requests that omit max_results.
    """

    default_max_results: int = Field(
        default=1000,
        description="Default cap on points returned by a load request",
        ge=1,
    )


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(_ConfigModel):
    """Logging configuration.

    Attributes:
        level: Log level.
        json_format: Emit JSON log records.
        log_to_stdout: Log to stdout; stderr is used otherwise.
        debug_mode: Force debug level logging.
    """

    level: str = Field(
        default="info",
        description="Log level",
    )
    json_format: bool = Field(
        default=True,
        description="Whether to emit JSON-formatted log records",
    )
    log_to_stdout: bool = Field(
        default=True,
        description="Whether to log to stdout (stderr otherwise)",
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable extra diagnostic logging",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        return _normalize_log_level(v)


# =============================================================================
# Main Application Configuration
# =============================================================================


class AppConfig(_ConfigModel):
    """
    Main application configuration model.

    Attributes:
        server: Server settings.
        storage: Storage settings.
        service: Service layer settings.
        logging: Logging configuration.
    """

    server: ServerConfig = Field(
        default_factory=ServerConfig,
        description="Server settings",
    )
    storage: StorageConfig = Field(
        default_factory=StorageConfig,
        description="Storage settings",
    )
    service: ServiceConfig = Field(
        default_factory=ServiceConfig,
        description="Service layer settings",
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration",
    )


# =============================================================================
# Configuration Loading Functions
# =============================================================================


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Args:
        base: The base dictionary.
        override: The dictionary with values to override.

    Returns:
        A new dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Load configuration from a YAML file.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the YAML is invalid.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def _parse_env_value(value: str) -> Any:
    """
    Parse an environment variable value to an appropriate Python type.

    Args:
        value: String value from environment variable.

    Returns:
        Parsed value (bool, int, float, or string).
    """
    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    return value


def _load_env_config(prefix: str = DEFAULT_ENV_PREFIX) -> dict[str, Any]:
    """
    Load configuration from environment variables.

    Nested keys use a double underscore separator, for example
    ``OC_METRICS_STORAGE__DATABASE_PATH=/var/lib/oc-metrics/metrics.db``.

    Args:
        prefix: Environment variable prefix.

    Returns:
        Dictionary with configuration values.
    """
    result: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        parts = key[len(prefix) :].lower().split("__")

        current = result
        for part in parts[:-1]:
            current = current.setdefault(part, {})

        # Paths and addresses stay strings
        if parts[-1] in ("database_path", "listen"):
            current[parts[-1]] = value
        else:
            current[parts[-1]] = _parse_env_value(value)

    return result


def _parse_cli_args(args: list[str] | None = None) -> dict[str, Any]:
    """
    Parse command-line arguments.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Dictionary with parsed arguments.
    """
    parser = argparse.ArgumentParser(
        prog="oc-metrics",
        description="Metrics telemetry service",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--config",
        "-c",
        type=str,
        help="Path to configuration file",
    )
    parser.add_argument(
        "--listen",
        type=str,
        help="Listen address (host:port)",
    )
    parser.add_argument(
        "--database",
        type=str,
        help="Path to the SQLite database",
    )
    parser.add_argument(
        "--stdio",
        action="store_true",
        help="Serve JSON-RPC over stdin/stdout instead of TCP",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        help="Override log level",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode",
    )

    parsed = parser.parse_args(args)

    result: dict[str, Any] = {}

    if parsed.config:
        result["_config_path"] = parsed.config

    if parsed.listen:
        result.setdefault("server", {})["listen"] = parsed.listen

    if parsed.stdio:
        result.setdefault("server", {})["transport"] = "stdio"

    if parsed.database:
        result["storage"] = {"database_path": parsed.database}

    if parsed.log_level:
        result.setdefault("logging", {})["level"] = parsed.log_level

    if parsed.debug:
        result.setdefault("logging", {})["debug_mode"] = True

    return result


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    cli_args: list[str] | None = None,
) -> AppConfig:
    """
    Load configuration from all sources with layered precedence.

    Args:
        config_path: Path to YAML configuration file. If None, uses the CLI
            --config argument or the default path when it exists.
        env_prefix: Prefix for environment variables.
        cli_args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Fully configured AppConfig instance.

    Raises:
        FileNotFoundError: If specified config file doesn't exist.
        yaml.YAMLError: If the config file is not valid YAML.
        pydantic.ValidationError: If configuration is invalid.

    Example:
        >>> config = load_config(cli_args=["--database", ":memory:"])
        >>> config.storage.database_path
        ':memory:'
    """
    config_dict: dict[str, Any] = {}

    # CLI args are parsed first to find the config path
    cli_config = _parse_cli_args(cli_args)

    if config_path is None:
        if "_config_path" in cli_config:
            config_path = Path(cli_config.pop("_config_path"))
        elif DEFAULT_CONFIG_PATH.exists():
            config_path = DEFAULT_CONFIG_PATH
    else:
        cli_config.pop("_config_path", None)
        config_path = Path(config_path)

    if config_path is not None:
        config_dict = _deep_merge(config_dict, _load_yaml_config(config_path))

    config_dict = _deep_merge(config_dict, _load_env_config(env_prefix))
    config_dict = _deep_merge(config_dict, cli_config)

    return AppConfig(**config_dict)

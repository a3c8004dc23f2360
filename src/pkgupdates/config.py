"""
Configuration management for pkg-updates.

This module implements the AppConfig Pydantic model and configuration loading.

Configuration is loaded from multiple sources with layered precedence:
1. Built-in defaults (Pydantic model defaults)
2. YAML config file (/etc/pkg-updates/config.yml or --config path)
3. Environment variables (PKG_UPDATES_* prefix, __ for nesting), plus the
   legacy PORT and UPDATE_SERVER_URL variables
4. Command-line arguments (highest precedence)
"""

from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_CONFIG_PATH = Path("/etc/pkg-updates/config.yml")
DEFAULT_ENV_PREFIX = "PKG_UPDATES_"

# Unprefixed variables understood by earlier deployments
LEGACY_ENV_KEYS: dict[str, tuple[str, str]] = {
    "PORT": ("host", "port"),
    "UPDATE_SERVER_URL": ("client", "server_url"),
}

# =============================================================================
# Host Configuration
# =============================================================================


class HostConfig(BaseModel):
    """Update host settings.

    Attributes:
        listen_host: Interface to bind.
        port: TCP port to listen on.
        packages_dir: Directory containing one sub-directory per version.
        cors_enabled: Whether to add permissive CORS headers.
        chunk_size: Size of archive chunks handed to the transport.
        max_pending_chunks: Chunks buffered per download before the
            packaging worker blocks.
    """

    listen_host: str = Field(
        default="0.0.0.0",
        description="Interface to bind (e.g., '0.0.0.0' or '127.0.0.1')",
    )
    port: int = Field(
        default=3000,
        ge=1,
        le=65535,
        description="TCP port to listen on",
    )
    packages_dir: str = Field(
        default="./app",
        description="Directory containing version-named package directories",
    )
    cors_enabled: bool = Field(
        default=True,
        description="Add Access-Control-Allow-* headers to every response",
    )
    chunk_size: int = Field(
        default=64 * 1024,
        ge=1024,
        description="Archive chunk size in bytes",
    )
    max_pending_chunks: int = Field(
        default=16,
        ge=1,
        description="Maximum archive chunks buffered per download",
    )


# =============================================================================
# Client Configuration
# =============================================================================


class ClientConfig(BaseModel):
    """Update client settings.

    Attributes:
        server_url: Base URL of the update host.
        app_path: Managed application directory (fully replaced on update).
        version_file: Installed-version record. Defaults to version.txt next
            to the application directory.
        downloads_dir: Scratch directory for downloaded archives. Defaults to
            downloads/ next to the application directory.
        request_timeout_seconds: Optional HTTP timeout. None means no timeout.
    """

    server_url: str = Field(
        default="http://localhost:3000",
        description="Base URL of the update host",
    )
    app_path: str = Field(
        default="../app",
        description="Managed application directory",
    )
    version_file: str | None = Field(
        default=None,
        description="Path of the installed-version record",
    )
    downloads_dir: str | None = Field(
        default=None,
        description="Scratch directory for downloaded archives",
    )
    request_timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="HTTP timeout in seconds (None disables the timeout)",
    )

    @field_validator("server_url")
    @classmethod
    def validate_server_url(cls, v: str) -> str:
        """Require an http(s) URL and drop any trailing slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Invalid server URL: {v}. Must start with http:// or https://")
        return v.rstrip("/")

    @property
    def app_dir(self) -> Path:
        """Absolute path of the managed application directory."""
        return Path(self.app_path).resolve()

    @property
    def version_file_path(self) -> Path:
        """Path of the installed-version record."""
        if self.version_file:
            return Path(self.version_file).resolve()
        return self.app_dir.parent / "version.txt"

    @property
    def downloads_path(self) -> Path:
        """Path of the scratch download directory."""
        if self.downloads_dir:
            return Path(self.downloads_dir).resolve()
        return self.app_dir.parent / "downloads"


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level.
        json_format: Emit JSON records instead of plain text.
        log_to_stdout: Whether to log to stdout.
    """

    level: str = Field(
        default="info",
        description="Log level: debug, info, warn, error",
    )
    json_format: bool = Field(
        default=True,
        description="Emit JSON-formatted log records",
    )
    log_to_stdout: bool = Field(
        default=True,
        description="Whether to log to stdout",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"debug", "info", "warn", "warning", "error", "critical"}
        v_lower = v.lower()
        if v_lower not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        if v_lower == "warn":
            return "warning"
        return v_lower


# =============================================================================
# Main Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """
    Main application configuration model.

    One file configures both roles; the host reads ``host`` and the client
    reads ``client``.

    Attributes:
        host: Update host settings.
        client: Update client settings.
        logging: Logging configuration.
    """

    host: HostConfig = Field(
        default_factory=HostConfig,
        description="Update host settings",
    )
    client: ClientConfig = Field(
        default_factory=ClientConfig,
        description="Update client settings",
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

    Returns:
        Parsed value (bool, int, float, list, or string).
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

    if "," in value:
        return [_parse_env_value(item.strip()) for item in value.split(",")]

    return value


def _load_env_config(prefix: str = DEFAULT_ENV_PREFIX) -> dict[str, Any]:
    """
    Load configuration from environment variables.

    Rules:
    - Prefix: PKG_UPDATES_ (configurable)
    - Nested keys: Double underscore (__) separator
    - Example: PKG_UPDATES_HOST__PORT=8080
    - Legacy PORT / UPDATE_SERVER_URL apply unless the prefixed
      equivalent is also set

    Returns:
        Dictionary with configuration values.
    """
    result: dict[str, Any] = {}

    for env_key, (section, field) in LEGACY_ENV_KEYS.items():
        value = os.environ.get(env_key)
        if value:
            result.setdefault(section, {})[field] = _parse_env_value(value)

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        parts = key[len(prefix) :].lower().split("__")

        current = result
        for part in parts[:-1]:
            current = current.setdefault(part, {})

        current[parts[-1]] = _parse_env_value(value)

    return result


def build_arg_parser(description: str) -> argparse.ArgumentParser:
    """
    Create an argument parser with the options shared by both entry points.

    Args:
        description: Program description shown in --help.

    Returns:
        Parser with --config, --log-level and --debug registered.
    """
    parser = argparse.ArgumentParser(
        description=description,
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--config",
        "-c",
        type=str,
        help="Path to configuration file",
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
        help="Enable debug logging with plain-text output",
    )

    return parser


def cli_overrides(parsed: argparse.Namespace) -> dict[str, Any]:
    """
    Convert the shared CLI options into a configuration override dictionary.

    Args:
        parsed: Namespace produced by a parser from build_arg_parser().

    Returns:
        Nested dictionary suitable for load_config(cli_config=...).
    """
    result: dict[str, Any] = {}

    if getattr(parsed, "log_level", None):
        result["logging"] = {"level": parsed.log_level}

    if getattr(parsed, "debug", False):
        result["logging"] = {"level": "debug", "json_format": False}

    return result


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    cli_config: dict[str, Any] | None = None,
) -> AppConfig:
    """
    Load configuration from all sources with layered precedence.

    Args:
        config_path: Path to YAML configuration file. If None, uses the
            default path when it exists.
        env_prefix: Prefix for environment variables.
        cli_config: Overrides derived from command-line arguments.

    Returns:
        Fully configured AppConfig instance.

    Raises:
        FileNotFoundError: If a specified config file doesn't exist.
        ValidationError: If configuration is invalid.

    Example:
        >>> config = load_config()
        >>> config.host.port
        3000
    """
    config_dict: dict[str, Any] = {}

    if config_path is None:
        if DEFAULT_CONFIG_PATH.exists():
            config_path = DEFAULT_CONFIG_PATH
    elif isinstance(config_path, str):
        config_path = Path(config_path)

    if config_path is not None:
        config_dict = _deep_merge(config_dict, _load_yaml_config(config_path))

    config_dict = _deep_merge(config_dict, _load_env_config(env_prefix))

    if cli_config:
        config_dict = _deep_merge(config_dict, cli_config)

    return AppConfig(**config_dict)

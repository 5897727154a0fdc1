"""
Configuration management for the BusinessMap MCP Server.

Configuration is loaded from multiple sources with layered precedence:
1. Built-in defaults (Pydantic model defaults)
2. YAML config file (--config path or MCP_BUSINESSMAP_CONFIG)
3. Environment variables (MCP_BUSINESSMAP_* prefix, __ for nesting)
4. Well-known flat environment variables (BUSINESSMAP_API_URL, PORT, ...)
5. Command-line arguments (highest precedence)

The resulting AppConfig is validated once at startup. Any problem is reported
as a ConfigurationError and the process exits before accepting connections.
"""

from __future__ import annotations

import argparse
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from mcp_businessmap import __version__
from mcp_businessmap.errors import ConfigurationError
from mcp_businessmap.logging import get_logger

logger = get_logger(__name__)

ENV_PREFIX = "MCP_BUSINESSMAP_"
CONFIG_PATH_ENV = "MCP_BUSINESSMAP_CONFIG"

# Flat variables kept for compatibility with existing deployments
LEGACY_ENV_VARS: dict[str, tuple[str, str]] = {
    "BUSINESSMAP_API_URL": ("upstream", "api_url"),
    "BUSINESSMAP_API_TOKEN": ("upstream", "api_token"),
    "BUSINESSMAP_DEFAULT_WORKSPACE_ID": ("upstream", "default_workspace_id"),
    "BUSINESSMAP_READ_ONLY_MODE": ("upstream", "read_only_mode"),
    "MCP_SERVER_NAME": ("server", "name"),
    "MCP_SERVER_VERSION": ("server", "version"),
    "PORT": ("server", "port"),
    "ALLOWED_ORIGINS": ("security", "allowed_origins"),
    "ALLOWED_HOSTS": ("security", "allowed_hosts"),
    "TRANSPORT": ("transport", "type"),
    "LOG_LEVEL": ("logging", "level"),
    "SESSION_IDLE_TIMEOUT_SECONDS": ("sessions", "idle_timeout_seconds"),
    "SESSION_SWEEP_INTERVAL_SECONDS": ("sessions", "sweep_interval_seconds"),
}


def _split_csv(value: Any) -> Any:
    """Split a comma-separated string into a list of non-empty items."""
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


# =============================================================================
# Upstream Configuration
# =============================================================================


class UpstreamConfig(BaseModel):
    """BusinessMap API connection settings.

    Attributes:
        api_url: Base URL of the BusinessMap API (e.g. https://acme.kanbanize.com/api/v2).
        api_token: API key sent in the ``apikey`` header.
        default_workspace_id: Workspace used when a tool does not name one.
        read_only_mode: When True, mutating tools are never registered.
        timeout_seconds: Per-request timeout for upstream calls.
        connect_retries: Attempts made by the startup connection check.
        connect_retry_delay_seconds: Pause between startup attempts.
    """

    api_url: str = Field(description="BusinessMap API base URL")
    api_token: str = Field(description="BusinessMap API token", repr=False)
    default_workspace_id: int | None = Field(
        default=None,
        description="Default workspace ID",
    )
    read_only_mode: bool = Field(
        default=False,
        description="Suppress registration of all mutating operations",
    )
    timeout_seconds: float = Field(default=30.0, gt=0)
    connect_retries: int = Field(default=3, ge=1, le=10)
    connect_retry_delay_seconds: float = Field(default=2.0, ge=0)

    @field_validator("api_url")
    @classmethod
    def validate_api_url(cls, v: str) -> str:
        """Require an absolute http(s) URL."""
        parsed = urlparse(v.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("BUSINESSMAP_API_URL must be a valid URL")
        return v.strip().rstrip("/")

    @field_validator("api_token")
    @classmethod
    def validate_api_token(cls, v: str) -> str:
        """Reject empty or whitespace-only tokens."""
        if not v.strip():
            raise ValueError("BUSINESSMAP_API_TOKEN cannot be empty")
        return v.strip()

    @field_validator("default_workspace_id", mode="before")
    @classmethod
    def empty_workspace_is_none(cls, v: Any) -> Any:
        """Treat an empty value as unset."""
        if v == "":
            return None
        return v


# =============================================================================
# Server Configuration
# =============================================================================


class ServerConfig(BaseModel):
    """Server identity and listen settings.

    Attributes:
        name: Server name reported in ``initialize``.
        version: Server version reported in ``initialize`` and ``/health``.
        host: Bind address for the HTTP transport.
        port: Listen port for the HTTP transport.
        mcp_path: Path of the MCP endpoint.
    """

    name: str = Field(default="businessmap-mcp")
    version: str = Field(default=__version__)
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=3000, ge=1, le=65535)
    mcp_path: str = Field(default="/mcp")

    @field_validator("mcp_path")
    @classmethod
    def validate_mcp_path(cls, v: str) -> str:
        """Require an absolute path."""
        if not v.startswith("/"):
            raise ValueError(f"mcp_path must start with '/', got {v!r}")
        return v.rstrip("/") or "/"


# =============================================================================
# Security Configuration
# =============================================================================


class SecurityConfig(BaseModel):
    """Connection-level allow-lists for the HTTP transport.

    Attributes:
        allowed_origins: Accepted ``Origin`` header values.
        allowed_hosts: Accepted ``Host`` header values. Derived from the port
            when not configured.
        dns_rebinding_protection: Enable the Origin/Host gatekeeper.
    """

    allowed_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost"],
    )
    allowed_hosts: list[str] | None = Field(default=None)
    dns_rebinding_protection: bool = Field(default=True)

    @field_validator("allowed_origins", "allowed_hosts", mode="before")
    @classmethod
    def split_lists(cls, v: Any) -> Any:
        """Accept comma-separated strings."""
        return _split_csv(v)


# =============================================================================
# Session Configuration
# =============================================================================


class SessionsConfig(BaseModel):
    """HTTP session lifecycle settings.

    Attributes:
        idle_timeout_seconds: Sessions idle longer than this are evicted.
        sweep_interval_seconds: How often the idle reaper runs.
    """

    idle_timeout_seconds: float = Field(default=1800.0, gt=0)
    sweep_interval_seconds: float = Field(default=60.0, gt=0)

    @model_validator(mode="after")
    def check_timeout_exceeds_interval(self) -> SessionsConfig:
        """The reaper tick must be shorter than the idle timeout."""
        if self.idle_timeout_seconds <= self.sweep_interval_seconds:
            raise ValueError(
                "idle_timeout_seconds must be greater than sweep_interval_seconds "
                f"({self.idle_timeout_seconds} <= {self.sweep_interval_seconds})"
            )
        return self


# =============================================================================
# Transport Configuration
# =============================================================================


class TransportConfig(BaseModel):
    """Transport selection.

    Attributes:
        type: ``stdio`` or ``http``. ``sse`` is a deprecated alias of ``http``.
    """

    type: str = Field(default="stdio")

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        """Validate and normalize the transport kind."""
        v_lower = v.strip().lower()
        if v_lower == "sse":
            logger.warning("TRANSPORT=sse is deprecated. Falling back to TRANSPORT=http")
            return "http"
        if v_lower not in ("stdio", "http"):
            raise ValueError(
                f'TRANSPORT must be either "stdio" or "http" (received: "{v}")'
            )
        return v_lower


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level.
        json_format: Emit JSON lines instead of plain text.
    """

    level: str = Field(default="info")
    json_format: bool = Field(default=True)

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

    Attributes:
        upstream: BusinessMap API settings.
        server: Server identity and listen settings.
        security: Origin/Host allow-lists.
        sessions: HTTP session lifecycle settings.
        transport: Transport selection.
        logging: Logging configuration.
    """

    upstream: UpstreamConfig
    server: ServerConfig = Field(default_factory=ServerConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    sessions: SessionsConfig = Field(default_factory=SessionsConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def derive_allowed_hosts(self) -> AppConfig:
        """Default the host allow-list to loopback names on the configured port."""
        if self.security.allowed_hosts is None:
            port = self.server.port
            self.security.allowed_hosts = [
                "localhost",
                "127.0.0.1",
                "[::1]",
                f"localhost:{port}",
                f"127.0.0.1:{port}",
                f"[::1]:{port}",
            ]
        return self


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
        ConfigurationError: If the file is missing or not valid YAML.
    """
    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file must contain a mapping: {config_path}")
    return data


def _load_env_config(
    environ: Mapping[str, str], prefix: str = ENV_PREFIX
) -> dict[str, Any]:
    """
    Load configuration from prefixed environment variables.

    Nested keys use a double underscore separator, e.g.
    ``MCP_BUSINESSMAP_SERVER__PORT=8080``. Values are passed through as
    strings; the Pydantic models coerce them.
    """
    result: dict[str, Any] = {}

    for key, value in environ.items():
        if not key.startswith(prefix) or key == CONFIG_PATH_ENV:
            continue

        parts = key[len(prefix) :].lower().split("__")

        current = result
        for part in parts[:-1]:
            current = current.setdefault(part, {})
        current[parts[-1]] = value.strip()

    return result


def _load_legacy_env_config(environ: Mapping[str, str]) -> dict[str, Any]:
    """Load the flat, unprefixed environment variables."""
    result: dict[str, Any] = {}
    for env_name, (section, key) in LEGACY_ENV_VARS.items():
        value = environ.get(env_name)
        if value is None or value == "":
            continue
        result.setdefault(section, {})[key] = value.strip()
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
        prog="mcp-businessmap",
        description="BusinessMap MCP Server",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--config", "-c", type=str, help="Path to configuration file")
    parser.add_argument(
        "--transport",
        type=str,
        choices=["stdio", "http", "sse"],
        help="Override transport kind",
    )
    parser.add_argument("--port", type=int, help="Override HTTP listen port")
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        help="Override log level",
    )
    parser.add_argument(
        "--read-only",
        action="store_true",
        help="Do not register mutating operations",
    )

    parsed = parser.parse_args(args)

    result: dict[str, Any] = {}

    if parsed.config:
        result["_config_path"] = parsed.config
    if parsed.transport:
        result["transport"] = {"type": parsed.transport}
    if parsed.port is not None:
        result["server"] = {"port": parsed.port}
    if parsed.log_level:
        result["logging"] = {"level": parsed.log_level}
    if parsed.read_only:
        result["upstream"] = {"read_only_mode": True}

    return result


def _format_validation_error(error: ValidationError) -> str:
    """Render a Pydantic ValidationError as a short single-line message."""
    parts = []
    for item in error.errors():
        location = ".".join(str(loc) for loc in item["loc"])
        message = item["msg"].removeprefix("Value error, ")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts)


def load_config(
    config_path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
    cli_args: list[str] | None = None,
) -> AppConfig:
    """
    Load configuration from all sources with layered precedence.

    Args:
        config_path: Path to YAML configuration file. If None, uses the CLI
            --config argument or MCP_BUSINESSMAP_CONFIG.
        environ: Environment mapping. Defaults to os.environ.
        cli_args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Fully validated AppConfig instance.

    Raises:
        ConfigurationError: If any source is unreadable or the merged
            configuration is invalid.

    Example:
        >>> config = load_config(environ={
        ...     "BUSINESSMAP_API_URL": "https://acme.kanbanize.com/api/v2",
        ...     "BUSINESSMAP_API_TOKEN": "secret",
        ... }, cli_args=[])
        >>> config.server.port
        3000
    """
    env = os.environ if environ is None else environ
    config_dict: dict[str, Any] = {}

    cli_config = _parse_cli_args(cli_args)

    if config_path is None:
        if "_config_path" in cli_config:
            config_path = Path(cli_config.pop("_config_path"))
        elif env.get(CONFIG_PATH_ENV):
            config_path = Path(env[CONFIG_PATH_ENV])
    elif isinstance(config_path, str):
        config_path = Path(config_path)
    cli_config.pop("_config_path", None)

    if config_path is not None:
        config_dict = _deep_merge(config_dict, _load_yaml_config(config_path))

    config_dict = _deep_merge(config_dict, _load_env_config(env))
    config_dict = _deep_merge(config_dict, _load_legacy_env_config(env))
    config_dict = _deep_merge(config_dict, cli_config)

    upstream = config_dict.get("upstream", {})
    for field_name, env_name in (
        ("api_url", "BUSINESSMAP_API_URL"),
        ("api_token", "BUSINESSMAP_API_TOKEN"),
    ):
        if field_name not in upstream:
            raise ConfigurationError(
                f"Required environment variable {env_name} is not set"
            )

    try:
        return AppConfig(**config_dict)
    except ValidationError as e:
        raise ConfigurationError(_format_validation_error(e)) from e

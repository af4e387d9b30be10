# Copyright (c) 2025 Stephen Clau

# This file is part of Player Count Bots.

# Player Count Bots is dual-licensed:

# 1. GNU Affero General Public License v3.0 (AGPL-3.0)
#    See LICENSE file for full terms

# 2. Commercial License
#    For proprietary use without AGPL requirements
#    Contact: licensing@laudiversified.com

# SPDX-License-Identifier: AGPL-3.0-only OR Commercial

"""
Configuration module for Player Count Bots.

- config.yml holds the poll interval and one table per watched server
- An absent or empty config.yml is scaffolded with a disabled example server
- Process settings (logging, health endpoint) come from env vars / Docker secrets
- Per-server bot tokens may be overridden via env vars or Docker secrets
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any, Tuple
import math
import os
import re
import yaml
import structlog

try:
    from .errors import ConfigError
except ImportError:
    from errors import ConfigError

logger = structlog.get_logger()

POLL_INTERVAL_KEY = "poll_interval"
DEFAULT_POLL_INTERVAL = 30.0
DEFAULT_CONFIG_PATH = "./config.yml"
EXAMPLE_SERVER_NAME = "example-server"
EXAMPLE_SERVER_ADDRESS = "localhost:27015"

_SERVER_KEYS = {"enabled", "address", "credential"}

_DURATION_SPELLINGS = {
    0.001: ("ms", "msec", "millis", "millisecond", "milliseconds"),
    1.0: ("s", "sec", "secs", "second", "seconds"),
    60.0: ("m", "min", "mins", "minute", "minutes"),
    3600.0: ("h", "hr", "hrs", "hour", "hours"),
    86400.0: ("d", "day", "days"),
    604800.0: ("w", "week", "weeks"),
}
_DURATION_UNITS: Dict[str, float] = {
    spelling: size for size, spellings in _DURATION_SPELLINGS.items() for spelling in spellings
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)\s*([a-z]+)")


def _read_docker_secret(secret_name: str) -> Optional[str]:
    """
    Read a secret from Docker secrets location.

    Args:
        secret_name: Name of the secret (e.g., 'discord_token_prod')

    Returns:
        Secret value or None if not found
    """
    secret_path = Path(f"/run/secrets/{secret_name}")

    if secret_path.exists():
        try:
            return secret_path.read_text().strip()
        except (IOError, OSError) as e:
            logger.warning("docker_secret_read_error", secret=secret_name, error=str(e))
            return None

    return None


def get_config_value(
    env_var: str,
    secret_name: Optional[str] = None,
    required: bool = False,
    default: Optional[str] = None,
) -> Optional[str]:
    """
    Get configuration value from Docker secrets or environment variables.

    Tries in order:
    1. Docker secret file at /run/secrets/{secret_name}
    2. Environment variable {env_var}
    3. Default value if provided
    4. Raise error if required and not found

    Args:
        env_var: Environment variable name (e.g., 'LOG_LEVEL')
        secret_name: Docker secret name. If not provided, uses env_var lowercased
        required: If True, raises ConfigError when value not found
        default: Default value if not found in env or secrets

    Returns:
        Configuration value from secret, env var, or default

    Raises:
        ConfigError: If required=True and value not found
    """
    if secret_name is None:
        secret_name = env_var.lower()

    secret_value = _read_docker_secret(secret_name)
    if secret_value is not None:
        logger.debug("config_value_loaded_from_secret", source="docker_secret", var=env_var)
        return secret_value

    env_value = os.getenv(env_var)
    if env_value is not None:
        logger.debug("config_value_loaded_from_env", source="environment", var=env_var)
        return env_value

    if default is not None:
        return default

    if required:
        raise ConfigError(
            f"Required configuration value not found for '{env_var}'. "
            f"Checked: Docker secret '{secret_name}', environment variable '{env_var}'"
        )

    return None


def parse_duration(value: Any) -> float:
    """
    Parse a human-readable duration into seconds.

    Accepts compound strings such as "30s", "1m30s", "500ms" or "1h 5m",
    including long unit spellings like "1min", "30sec" or "2hours".
    Bare numbers (int/float or numeric strings) are taken as seconds.

    Raises:
        ConfigError: If the value cannot be parsed or is not positive
    """
    if isinstance(value, bool):
        raise ConfigError(f"Invalid duration: {value!r}")

    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        text = value.strip().lower()
        try:
            seconds = float(text)
        except ValueError:
            position = 0
            seconds = 0.0
            for match in _DURATION_PART.finditer(text):
                gap = text[position:match.start()]
                if gap.strip():
                    raise ConfigError(f"Invalid duration: {value!r}")
                amount, unit = match.groups()
                if unit not in _DURATION_UNITS:
                    raise ConfigError(f"Unknown duration unit '{unit}' in {value!r}")
                seconds += float(amount) * _DURATION_UNITS[unit]
                position = match.end()
            if position == 0 or text[position:].strip():
                raise ConfigError(f"Invalid duration: {value!r}")
    else:
        raise ConfigError(f"Invalid duration: {value!r}")

    if not math.isfinite(seconds) or seconds <= 0:
        raise ConfigError(f"Duration must be greater than zero: {value!r}")

    return seconds


def format_duration(seconds: float) -> str:
    """Render seconds back into the compact form accepted by parse_duration."""
    if seconds != int(seconds):
        return f"{int(round(seconds * 1000))}ms"

    remaining = int(seconds)
    parts = []
    for unit, size in (("d", 86400), ("h", 3600), ("m", 60)):
        if remaining >= size:
            parts.append(f"{remaining // size}{unit}")
            remaining %= size
    if remaining or not parts:
        parts.append(f"{remaining}s")
    return "".join(parts)


def parse_address(address: str) -> Tuple[str, int]:
    """
    Split a host:port address.

    Raises:
        ConfigError: If the address has no port or the port is out of range
    """
    host, sep, port_text = address.strip().rpartition(":")
    host = host.strip("[]")
    if not sep or not host:
        raise ConfigError(f"Address must be host:port, got '{address}'")

    try:
        port = int(port_text)
    except ValueError:
        raise ConfigError(f"Invalid port in address '{address}'")

    if not 1 <= port <= 65535:
        raise ConfigError(f"Port out of range in address '{address}'")

    return host, port


@dataclass(frozen=True)
class ServerConfig:
    """Per-server configuration."""

    name: str
    """Server name (config table key). Unique across config.yml."""

    address: str
    """Game server query address, host:port."""

    enabled: bool = True
    """Disabled servers are never started."""

    credential: str = ""
    """Discord bot token driving this server's presence."""

    def __post_init__(self) -> None:
        """Validate server config after initialization."""
        if not self.name:
            raise ConfigError("Server name cannot be empty")
        parse_address(self.address)

    @property
    def query_address(self) -> Tuple[str, int]:
        """(host, port) tuple for the query client."""
        return parse_address(self.address)


@dataclass(frozen=True)
class GlobalConfig:
    """Parsed config.yml."""

    poll_interval: float = DEFAULT_POLL_INTERVAL
    """Seconds between presence updates. Must be > 0."""

    servers: Dict[str, ServerConfig] = field(default_factory=dict)
    """Server name -> ServerConfig."""

    def __post_init__(self) -> None:
        if self.poll_interval <= 0:
            raise ConfigError(f"poll_interval must be > 0, got {self.poll_interval}")

    @property
    def enabled_servers(self) -> Dict[str, ServerConfig]:
        return {name: server for name, server in self.servers.items() if server.enabled}


@dataclass
class Settings:
    """Process-level settings read from the environment."""

    config_path: Path = field(default_factory=lambda: Path(DEFAULT_CONFIG_PATH))
    log_level: str = "info"
    log_format: str = "console"
    health_check_enabled: bool = False
    health_check_host: str = "0.0.0.0"
    health_check_port: int = 8080

    def __post_init__(self) -> None:
        valid_levels = {"debug", "info", "warning", "error", "critical"}
        if self.log_level.lower() not in valid_levels:
            raise ConfigError(
                f"Invalid log_level '{self.log_level}'. Must be one of: {', '.join(sorted(valid_levels))}"
            )

        valid_formats = {"console", "json"}
        if self.log_format.lower() not in valid_formats:
            raise ConfigError(
                f"Invalid log_format '{self.log_format}'. Must be one of: {', '.join(sorted(valid_formats))}"
            )

        if not 1 <= self.health_check_port <= 65535:
            raise ConfigError(
                f"Invalid health_check_port: {self.health_check_port}. Must be 1-65535"
            )


def _expand_env_vars(value: str) -> str:
    """
    Expand ${VAR_NAME} references in a string.

    Falls back to the original text if a variable is not set.
    """

    def replace_var(match: Any) -> str:
        var_name = match.group(1)
        return os.getenv(var_name, match.group(0))

    return re.sub(r"\$\{([^}]+)\}", replace_var, value)


def _resolve_credential(name: str, credential: str) -> str:
    """Apply env expansion and secret/env overrides to a server's bot token."""
    credential = _expand_env_vars(credential)

    env_name = "DISCORD_TOKEN_" + re.sub(r"[^A-Za-z0-9]", "_", name).upper()
    override = get_config_value(
        env_var=env_name,
        secret_name=f"discord_token_{name}",
        required=False,
    )
    if override:
        return override.strip()

    return credential


def _parse_server(name: str, data: Dict[str, Any]) -> ServerConfig:
    unknown = set(data) - _SERVER_KEYS
    if unknown:
        raise ConfigError(
            f"Server '{name}': unknown keys {', '.join(sorted(unknown))}"
        )

    enabled = data.get("enabled", True)
    if not isinstance(enabled, bool):
        raise ConfigError(f"Server '{name}': enabled must be true or false")

    address = data.get("address")
    if not isinstance(address, str) or not address:
        raise ConfigError(f"Server '{name}': address (host:port) is required")

    credential = data.get("credential", "")
    if credential is None:
        credential = ""
    if not isinstance(credential, str):
        raise ConfigError(f"Server '{name}': credential must be a string")

    return ServerConfig(
        name=name,
        address=address,
        enabled=enabled,
        credential=_resolve_credential(name, credential),
    )


def default_config() -> GlobalConfig:
    """Layout written on first run: one disabled example server."""
    example = ServerConfig(
        name=EXAMPLE_SERVER_NAME,
        address=EXAMPLE_SERVER_ADDRESS,
        enabled=False,
        credential="",
    )
    return GlobalConfig(
        poll_interval=DEFAULT_POLL_INTERVAL,
        servers={EXAMPLE_SERVER_NAME: example},
    )


def parse_config(document: Any) -> GlobalConfig:
    """
    Build a GlobalConfig from a parsed YAML document.

    Raises:
        ConfigError: On any structural problem (no partial config is returned)
    """
    if not isinstance(document, dict):
        raise ConfigError(
            f"config must be a mapping of server tables, got {type(document).__name__}"
        )

    poll_interval = DEFAULT_POLL_INTERVAL
    servers: Dict[str, ServerConfig] = {}

    for key, value in document.items():
        name = str(key)
        if name == POLL_INTERVAL_KEY:
            poll_interval = parse_duration(value)
        elif isinstance(value, dict):
            servers[name] = _parse_server(name, value)
        else:
            raise ConfigError(
                f"Top-level key '{name}' must be a server table (got {type(value).__name__})"
            )

    return GlobalConfig(poll_interval=poll_interval, servers=servers)


def dump_config(config: GlobalConfig) -> Dict[str, Any]:
    """Serializable mapping matching the config.yml layout."""
    document: Dict[str, Any] = {POLL_INTERVAL_KEY: format_duration(config.poll_interval)}
    for name, server in config.servers.items():
        document[name] = {
            "enabled": server.enabled,
            "address": server.address,
            "credential": server.credential,
        }
    return document


def save_config(config: GlobalConfig, path: Path) -> None:
    """Write config to disk as YAML."""
    path = Path(path)
    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(dump_config(config), f, sort_keys=False, default_flow_style=False)


def load_config(path: Optional[Path] = None) -> GlobalConfig:
    """
    Load config.yml, scaffolding a default one on first run.

    Args:
        path: Config file location (defaults to ./config.yml)

    Returns:
        Fully validated GlobalConfig

    Raises:
        ConfigError: If the file exists but contains invalid data
    """
    path = Path(path) if path is not None else Path(DEFAULT_CONFIG_PATH)

    text = ""
    if path.exists():
        try:
            text = path.read_text(encoding="utf-8")
        except (IOError, OSError) as e:
            raise ConfigError(f"Cannot read {path}: {e}")

    if text.strip():
        try:
            document = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigError(f"{path} does not contain valid YAML: {e}")
    else:
        document = None

    if document is None or document == {}:
        config = default_config()
        save_config(config, path)
        logger.warning(
            "config_scaffolded",
            path=str(path),
            server=EXAMPLE_SERVER_NAME,
            message="Wrote example config; edit it and enable a server",
        )
        return config

    config = parse_config(document)

    logger.info(
        "config_loaded",
        path=str(path),
        poll_interval=config.poll_interval,
        servers=len(config.servers),
        enabled=len(config.enabled_servers),
    )
    return config


def load_settings() -> Settings:
    """Collect process settings from Docker secrets / environment."""
    port_text = get_config_value(env_var="HEALTH_CHECK_PORT", default="8080") or "8080"
    try:
        health_port = int(port_text)
    except ValueError:
        raise ConfigError(f"Invalid integer for health_check_port: {port_text}")

    enabled_text = get_config_value(env_var="HEALTH_CHECK_ENABLED", default="false") or "false"

    return Settings(
        config_path=Path(get_config_value(env_var="CONFIG_PATH", default=DEFAULT_CONFIG_PATH) or DEFAULT_CONFIG_PATH),
        log_level=(get_config_value(env_var="LOG_LEVEL", default="info") or "info").lower(),
        log_format=(get_config_value(env_var="LOG_FORMAT", default="console") or "console").lower(),
        health_check_enabled=enabled_text.strip().lower() in ("1", "true", "yes", "on"),
        health_check_host=get_config_value(env_var="HEALTH_CHECK_HOST", default="0.0.0.0") or "0.0.0.0",
        health_check_port=health_port,
    )

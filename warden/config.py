"""Runner configuration loader with type-safe dataclasses."""

import os
from dataclasses import dataclass, replace
from pathlib import Path

import yaml

from . import __version__

# Configuration file looked up in the working directory when none is given.
DEFAULT_CONFIG_FILE = "warden.yaml"

DEFAULT_USER_AGENT = f"warden/{__version__}"


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


@dataclass(frozen=True)
class RunnerConfig:
    """Configuration for a probe run.

    Attributes:
        directory: Directory holding the request files.
        debug: Enable debug logging of requests and responses.
        max_in_flight: Maximum concurrent HTTP calls, or None to start all at once.
        user_agent: User-Agent header sent when a request file does not set one.
    """

    directory: str = "."
    debug: bool = False
    max_in_flight: int | None = None
    user_agent: str = DEFAULT_USER_AGENT

    def __post_init__(self) -> None:
        if not self.directory:
            raise ConfigError("Request directory cannot be empty")
        if self.max_in_flight is not None and self.max_in_flight < 1:
            raise ConfigError(f"max_in_flight must be at least 1 (got {self.max_in_flight})")
        if not self.user_agent:
            raise ConfigError("User-Agent cannot be empty")


def _parse_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config_data: dict) -> dict:
    """Apply environment variable overrides to configuration.

    Supported overrides:
    - WARDEN_DIR: Override directory
    - WARDEN_DEBUG: Override debug (true/false)
    - WARDEN_MAX_IN_FLIGHT: Override max_in_flight
    - WARDEN_USER_AGENT: Override user_agent
    """
    directory = os.environ.get("WARDEN_DIR")
    if directory is not None:
        config_data["directory"] = directory

    debug = os.environ.get("WARDEN_DEBUG")
    if debug is not None:
        config_data["debug"] = _parse_bool(debug)

    max_in_flight = os.environ.get("WARDEN_MAX_IN_FLIGHT")
    if max_in_flight is not None:
        try:
            config_data["max_in_flight"] = int(max_in_flight)
        except ValueError:
            raise ConfigError(f"WARDEN_MAX_IN_FLIGHT must be an integer, got '{max_in_flight}'")

    user_agent = os.environ.get("WARDEN_USER_AGENT")
    if user_agent is not None:
        config_data["user_agent"] = user_agent

    return config_data


def _read_config_file(path: Path) -> dict:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML configuration: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read configuration file: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a YAML dictionary")
    return data


def load_config(config_path: str | None = None) -> RunnerConfig:
    """Load and validate runner configuration.

    Values come from the YAML file, then environment overrides. An explicit
    path must exist; the default ``warden.yaml`` is optional.

    Args:
        config_path: Path to the YAML configuration file, or None for the default.

    Returns:
        Validated RunnerConfig object.

    Raises:
        ConfigError: If the file cannot be read or configuration is invalid.
    """
    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {config_path}")
        data = _read_config_file(path)
    elif Path(DEFAULT_CONFIG_FILE).exists():
        data = _read_config_file(Path(DEFAULT_CONFIG_FILE))
    else:
        data = {}

    data = _apply_env_overrides(data)

    max_in_flight = data.get("max_in_flight")
    try:
        return RunnerConfig(
            directory=str(data.get("directory", ".")),
            debug=bool(data.get("debug", False)),
            max_in_flight=int(max_in_flight) if max_in_flight is not None else None,
            user_agent=str(data.get("user_agent", DEFAULT_USER_AGENT)),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration value: {e}")


def with_overrides(config: RunnerConfig, **overrides) -> RunnerConfig:
    """Return a copy of config with the non-None overrides applied.

    Raises:
        ConfigError: If an override makes the configuration invalid.
    """
    changes = {key: value for key, value in overrides.items() if value is not None}
    return replace(config, **changes)

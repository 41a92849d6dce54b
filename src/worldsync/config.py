"""Configuration management for the worldsync client.

Settings are layered: the bundled default.toml, then an optional user TOML
file (--config), then explicit command-line flags.
"""

from __future__ import annotations

import argparse
import importlib.resources
import sys
import tomllib
from dataclasses import dataclass, fields
from dataclasses import replace as dataclass_replace
from pathlib import Path
from typing import Any, NamedTuple


class ConfigurationError(Exception):
    """Aggregates every problem found by :func:`validate_config`."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__(f"Configuration validation failed: {'; '.join(errors)}")


class DefaultConfigError(Exception):
    """The packaged default.toml is missing, unreadable or incomplete."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Failed to load default configuration: {message}")


class ConfigOverride(NamedTuple):
    """A setting whose user-file value differs from the bundled default."""

    key: str
    default_value: Any
    new_value: Any


@dataclass(frozen=True)
class ClientConfig:
    """Immutable client settings. Durations are in seconds.

    Every field is required; :func:`load_default_config` fills them from the
    bundled default.toml.
    """

    # [network]
    endpoint: str
    connect_timeout: float
    call_timeout: float
    heartbeat_interval: float
    heartbeat_timeout: float
    outbound_queue_max: int

    # [sync]
    reporting_interval: float
    reconciliation_duration: float
    reconcile_step_interval: float
    room_status_interval: float

    # [chat]
    chat_capacity: int

    # [logging]
    log_dir: str | None
    log_level_console: str
    log_json_console: bool
    log_rotation: str | None
    log_retention: str | None


# TOML section -> keys allowed in it
_SECTIONS: dict[str, set[str]] = {
    "network": {
        "endpoint",
        "connect_timeout",
        "call_timeout",
        "heartbeat_interval",
        "heartbeat_timeout",
        "outbound_queue_max",
    },
    "sync": {
        "reporting_interval",
        "reconciliation_duration",
        "reconcile_step_interval",
        "room_status_interval",
    },
    "chat": {"chat_capacity"},
    "logging": {
        "log_dir",
        "log_level_console",
        "log_json_console",
        "log_rotation",
        "log_retention",
    },
}

_VALID_KEYS: set[str] = set().union(*_SECTIONS.values())

_OPTIONAL_STRING_KEYS = ("log_dir", "log_rotation", "log_retention")


def load_default_toml_data() -> dict[str, Any]:
    """Parse the default.toml shipped inside the worldsync package."""
    try:
        files = importlib.resources.files("worldsync")
        content = files.joinpath("default.toml").read_bytes()
        return tomllib.loads(content.decode("utf-8"))
    except FileNotFoundError as e:
        raise DefaultConfigError(f"default.toml not found in package: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise DefaultConfigError(f"Invalid TOML syntax in default.toml: {e}") from e
    except Exception as e:
        raise DefaultConfigError(f"Failed to read default.toml: {e}") from e


def load_config_from_toml(path: Path) -> dict[str, Any]:
    """Parse a user TOML file. Missing files and bad syntax propagate to the caller."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def flatten_toml_config(toml_data: dict[str, Any]) -> dict[str, Any]:
    """Flatten known sections into ClientConfig-compatible keys.

    Empty strings become ``None`` for the optional string settings. Unknown
    sections and keys are skipped (see :func:`get_unknown_keys`).
    """
    result: dict[str, Any] = {}

    for section, allowed in _SECTIONS.items():
        values = toml_data.get(section)
        if not isinstance(values, dict):
            continue
        for key, value in values.items():
            if key not in allowed:
                continue
            if key in _OPTIONAL_STRING_KEYS and value == "":
                value = None
            result[key] = value

    return result


def get_unknown_keys(toml_data: dict[str, Any]) -> list[str]:
    """Detect unknown sections and keys, reported as ``section.key``."""
    unknown: list[str] = []

    for section, values in toml_data.items():
        if section not in _SECTIONS or not isinstance(values, dict):
            unknown.append(section)
            continue
        for key in values:
            if key not in _SECTIONS[section]:
                unknown.append(f"{section}.{key}")

    return unknown


def validate_config(config: ClientConfig) -> list[str]:
    """Return a human-readable message per invalid setting (empty when valid)."""
    errors: list[str] = []

    if "://" not in config.endpoint:
        errors.append(
            f"endpoint must include a transport, e.g. tcp://host:port, got {config.endpoint!r}"
        )

    timing_fields = [
        "connect_timeout",
        "call_timeout",
        "heartbeat_interval",
        "heartbeat_timeout",
        "reporting_interval",
        "reconciliation_duration",
        "reconcile_step_interval",
        "room_status_interval",
    ]
    for field_name in timing_fields:
        value = getattr(config, field_name)
        if value <= 0:
            errors.append(f"{field_name} must be positive, got {value}")

    if 0 < config.heartbeat_timeout <= config.heartbeat_interval:
        errors.append(
            f"heartbeat_timeout ({config.heartbeat_timeout}s) must be longer than "
            f"heartbeat_interval ({config.heartbeat_interval}s)"
        )

    if 0 < config.reporting_interval and not 0.01 <= config.reporting_interval <= 1.0:
        errors.append(
            f"reporting_interval must be between 0.01 and 1.0 seconds, "
            f"got {config.reporting_interval}"
        )

    for field_name in ("outbound_queue_max", "chat_capacity"):
        value = getattr(config, field_name)
        if value <= 0:
            errors.append(f"{field_name} must be positive, got {value}")

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if config.log_level_console.upper() not in valid_log_levels:
        errors.append(
            f"log_level_console must be one of {valid_log_levels}, "
            f"got {config.log_level_console}"
        )

    return errors


def load_default_config() -> ClientConfig:
    """Build a :class:`ClientConfig` from default.toml alone."""
    try:
        config_data = flatten_toml_config(load_default_toml_data())

        config_fields = {f.name for f in fields(ClientConfig)}
        missing = config_fields - set(config_data.keys())
        if missing:
            raise DefaultConfigError(
                f"Missing required fields in default.toml: {', '.join(sorted(missing))}"
            )

        return ClientConfig(**config_data)
    except DefaultConfigError:
        raise
    except TypeError as e:
        raise DefaultConfigError(f"Invalid field types in default.toml: {e}") from e


def merge_cli_args(config: ClientConfig, args: argparse.Namespace) -> ClientConfig:
    """Apply the flags the user actually passed; unset flags keep the config value."""
    updates: dict[str, Any] = {}

    if getattr(args, "endpoint", None) is not None:
        updates["endpoint"] = args.endpoint
    if getattr(args, "reporting_interval", None) is not None:
        updates["reporting_interval"] = args.reporting_interval
        # Smoothing window follows the reporting cadence unless configured apart
        if config.reconciliation_duration == config.reporting_interval:
            updates["reconciliation_duration"] = args.reporting_interval

    if getattr(args, "log_dir", None) is not None:
        updates["log_dir"] = str(args.log_dir)
    if getattr(args, "log_level_console", None) is not None:
        updates["log_level_console"] = args.log_level_console
    if getattr(args, "log_json_console", False):
        updates["log_json_console"] = True
    if getattr(args, "log_rotation", None) is not None:
        updates["log_rotation"] = args.log_rotation
    if getattr(args, "log_retention", None) is not None:
        updates["log_retention"] = args.log_retention

    if not updates:
        return config

    return dataclass_replace(config, **updates)


def create_config_from_args(
    args: argparse.Namespace,
) -> tuple[ClientConfig, list[ConfigOverride]]:
    """Create ClientConfig from CLI arguments with layered config loading.

    Returns:
        Tuple of (ClientConfig instance, list of ConfigOverride from the user file).

    Raises:
        DefaultConfigError: If default.toml cannot be loaded (fatal).
        FileNotFoundError: If specified user config file does not exist.
        tomllib.TOMLDecodeError: If config file has invalid TOML syntax.
        ConfigurationError: If configuration validation fails.
    """
    config = load_default_config()
    overrides: list[ConfigOverride] = []

    if getattr(args, "config", None) is not None:
        user_config_path = Path(args.config)
        toml_data = load_config_from_toml(user_config_path)

        # Logging is not configured yet at this point
        unknown = get_unknown_keys(toml_data)
        if unknown:
            print(f"WARNING: Unknown keys in {user_config_path}:", file=sys.stderr)
            for key in unknown:
                print(f"  - {key}", file=sys.stderr)

        config_data = flatten_toml_config(toml_data)
        if config_data:
            for key, new_value in config_data.items():
                default_value = getattr(config, key)
                if default_value != new_value:
                    overrides.append(ConfigOverride(key, default_value, new_value))

            config = dataclass_replace(config, **config_data)

    config = merge_cli_args(config, args)

    errors = validate_config(config)
    if errors:
        raise ConfigurationError(errors)

    return config, overrides

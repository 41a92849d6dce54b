"""Tests for configuration module."""

import argparse
from dataclasses import replace
from pathlib import Path

import pytest

from worldsync.config import (
    ClientConfig,
    ConfigurationError,
    create_config_from_args,
    flatten_toml_config,
    get_unknown_keys,
    load_config_from_toml,
    load_default_config,
    merge_cli_args,
    validate_config,
)


class TestDefaultConfig:
    """Tests for the bundled default.toml."""

    def test_default_values(self):
        """Test that default values are loaded correctly."""
        config = load_default_config()
        assert config.endpoint == "tcp://localhost:5555"
        assert config.reporting_interval == 0.1
        assert config.reconciliation_duration == 0.1
        assert config.room_status_interval == 3.0
        assert config.chat_capacity == 7
        assert config.log_dir is None
        assert config.log_level_console == "INFO"
        assert config.log_json_console is False

    def test_defaults_are_valid(self):
        assert validate_config(load_default_config()) == []

    def test_config_is_frozen(self):
        config = load_default_config()
        with pytest.raises(AttributeError):
            config.endpoint = "tcp://other:1"  # type: ignore[misc]


class TestLoadConfigFromToml:
    """Tests for load_config_from_toml function."""

    def test_load_valid_toml(self, tmp_path: Path):
        """Test loading a valid TOML file."""
        toml_content = """
[network]
endpoint = "tcp://10.0.0.5:6000"

[sync]
reporting_interval = 0.2
"""
        config_file = tmp_path / "config.toml"
        config_file.write_text(toml_content)

        data = load_config_from_toml(config_file)
        assert data["network"]["endpoint"] == "tcp://10.0.0.5:6000"
        assert data["sync"]["reporting_interval"] == 0.2

    def test_load_nonexistent_file(self, tmp_path: Path):
        """Test that FileNotFoundError is raised for missing file."""
        with pytest.raises(FileNotFoundError):
            load_config_from_toml(tmp_path / "nonexistent.toml")

    def test_load_invalid_toml(self, tmp_path: Path):
        """Test that TOMLDecodeError is raised for invalid TOML."""
        import tomllib

        config_file = tmp_path / "invalid.toml"
        config_file.write_text("invalid = [unclosed")

        with pytest.raises(tomllib.TOMLDecodeError):
            load_config_from_toml(config_file)


class TestFlattenTomlConfig:
    """Tests for flatten_toml_config function."""

    def test_flatten_sections(self):
        toml_data = {
            "network": {"endpoint": "tcp://a:1", "call_timeout": 2.0},
            "chat": {"chat_capacity": 10},
        }
        assert flatten_toml_config(toml_data) == {
            "endpoint": "tcp://a:1",
            "call_timeout": 2.0,
            "chat_capacity": 10,
        }

    def test_empty_optional_strings_become_none(self):
        flat = flatten_toml_config({"logging": {"log_dir": "", "log_rotation": ""}})
        assert flat == {"log_dir": None, "log_rotation": None}

    def test_flatten_ignores_unknown_sections_and_keys(self):
        toml_data = {
            "network": {"endpoint": "tcp://a:1", "unknown_key": 1},
            "unknown_section": {"some_key": "some_value"},
        }
        assert flatten_toml_config(toml_data) == {"endpoint": "tcp://a:1"}


class TestGetUnknownKeys:
    def test_reports_sections_and_keys(self):
        toml_data = {
            "network": {"endpoint": "tcp://a:1", "dealer_port": 5555},
            "rendering": {"fps": 60},
        }
        assert get_unknown_keys(toml_data) == ["network.dealer_port", "rendering"]

    def test_known_keys_only(self):
        assert get_unknown_keys({"chat": {"chat_capacity": 3}}) == []


class TestValidateConfig:
    """Tests for validate_config function."""

    @pytest.fixture
    def base(self) -> ClientConfig:
        return load_default_config()

    def test_endpoint_needs_transport(self, base):
        errors = validate_config(replace(base, endpoint="localhost:5555"))
        assert any("endpoint" in e for e in errors)

    @pytest.mark.parametrize(
        "field_name",
        ["connect_timeout", "call_timeout", "reconciliation_duration", "room_status_interval"],
    )
    def test_non_positive_durations(self, base, field_name):
        errors = validate_config(replace(base, **{field_name: 0}))
        assert any(field_name in e for e in errors)

    def test_heartbeat_timeout_longer_than_interval(self, base):
        errors = validate_config(replace(base, heartbeat_interval=5.0, heartbeat_timeout=5.0))
        assert any("heartbeat_timeout" in e for e in errors)

    def test_reporting_interval_range(self, base):
        assert validate_config(replace(base, reporting_interval=2.0))
        assert validate_config(replace(base, reporting_interval=0.05)) == []

    def test_chat_capacity_positive(self, base):
        errors = validate_config(replace(base, chat_capacity=0))
        assert any("chat_capacity" in e for e in errors)

    def test_log_level(self, base):
        errors = validate_config(replace(base, log_level_console="LOUD"))
        assert any("log_level_console" in e for e in errors)


class TestMergeCliArgs:
    """Tests for merge_cli_args function."""

    def test_cli_overrides_endpoint(self):
        config = load_default_config()
        args = argparse.Namespace(endpoint="tcp://192.168.1.2:5555")

        merged = merge_cli_args(config, args)
        assert merged.endpoint == "tcp://192.168.1.2:5555"
        # Original config unchanged
        assert config.endpoint == "tcp://localhost:5555"

    def test_reporting_interval_carries_reconciliation_window(self):
        config = load_default_config()
        merged = merge_cli_args(config, argparse.Namespace(reporting_interval=0.25))
        assert merged.reporting_interval == 0.25
        assert merged.reconciliation_duration == 0.25

    def test_log_args(self, tmp_path: Path):
        config = load_default_config()
        args = argparse.Namespace(
            log_dir=tmp_path,
            log_level_console="DEBUG",
            log_json_console=True,
            log_rotation="1 MB",
            log_retention="3 days",
        )
        merged = merge_cli_args(config, args)
        assert merged.log_dir == str(tmp_path)
        assert merged.log_level_console == "DEBUG"
        assert merged.log_json_console is True
        assert merged.log_rotation == "1 MB"
        assert merged.log_retention == "3 days"

    def test_missing_attributes_handled(self):
        """Test that missing CLI attributes are handled gracefully."""
        config = load_default_config()
        assert merge_cli_args(config, argparse.Namespace()) == config


class TestCreateConfigFromArgs:
    def test_layering_and_overrides(self, tmp_path: Path):
        config_file = tmp_path / "client.toml"
        config_file.write_text('[network]\nendpoint = "tcp://file:1"\n\n[chat]\nchat_capacity = 3\n')
        args = argparse.Namespace(config=config_file, endpoint="tcp://cli:2")

        config, overrides = create_config_from_args(args)

        assert config.endpoint == "tcp://cli:2"
        assert config.chat_capacity == 3
        assert {o.key for o in overrides} == {"endpoint", "chat_capacity"}

    def test_invalid_values_raise(self, tmp_path: Path):
        config_file = tmp_path / "client.toml"
        config_file.write_text("[chat]\nchat_capacity = 0\n")

        with pytest.raises(ConfigurationError) as exc_info:
            create_config_from_args(argparse.Namespace(config=config_file))
        assert any("chat_capacity" in e for e in exc_info.value.errors)

    def test_unknown_keys_warn(self, tmp_path: Path, capsys):
        config_file = tmp_path / "client.toml"
        config_file.write_text("[network]\ndealer_port = 5555\n")

        create_config_from_args(argparse.Namespace(config=config_file))

        assert "network.dealer_port" in capsys.readouterr().err

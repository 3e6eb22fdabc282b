"""Tests for the configuration module."""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from pinmirror.config import (
    Config,
    DetectionConfig,
    DiscordConfig,
    MirrorConfig,
    OperatorsConfig,
)


@pytest.fixture
def sample_config_yaml(tmp_path: Path) -> Path:
    """Create a sample config file for testing."""
    config = {
        "data_dir": str(tmp_path / "data"),
        "log_level": "debug",
        "log_json": False,
        "discord": {
            "command_prefix": "!",
            "operators": {"user_ids": ["221017760111656961"]},
        },
        "database": {"path": "test.db"},
        "mirror": {"proxy_name": "Archivist"},
        "detection": {"mode": "TIMING", "timing_window_seconds": 5},
    }
    config_path = tmp_path / "config.yaml"
    with open(config_path, "w") as f:
        yaml.dump(config, f)
    return config_path


def test_config_defaults() -> None:
    """Defaults match the bot's historical behavior."""
    config = Config()

    assert config.discord.command_prefix == "+"
    assert config.mirror.proxy_name == "PinBot"
    assert config.mirror.pin_emoji == "\N{PUSHPIN}"
    assert config.detection.mode == "snapshot"
    assert config.detection.timing_window_seconds == 2.0
    assert config.detection.seed_on_startup is True


def test_config_load(sample_config_yaml: Path) -> None:
    """Test loading a valid configuration file."""
    config = Config.load(sample_config_yaml)

    assert config.log_level == "DEBUG"
    assert config.log_json is False
    assert config.discord.command_prefix == "!"
    assert config.database.path == "test.db"
    assert config.mirror.proxy_name == "Archivist"
    assert config.detection.mode == "timing"
    assert config.detection.timing_window_seconds == 5


def test_config_load_not_found() -> None:
    """Missing config file raises FileNotFoundError."""
    with pytest.raises(FileNotFoundError):
        Config.load(Path("/nonexistent/config.yaml"))


def test_config_load_or_default_missing() -> None:
    """load_or_default falls back to defaults for a missing file."""
    config = Config.load_or_default("/nonexistent/config.yaml")
    assert config.log_level == "INFO"


def test_config_empty_file(tmp_path: Path) -> None:
    """An empty YAML file yields defaults."""
    path = tmp_path / "empty.yaml"
    path.write_text("")
    config = Config.load(path)
    assert config.database.path == "pinmirror.db"


def test_env_overrides(
    sample_config_yaml: Path, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """PINMIRROR_* variables override file values."""
    monkeypatch.setenv("PINMIRROR_DATA_DIR", str(tmp_path / "other"))
    monkeypatch.setenv("PINMIRROR_LOG_LEVEL", "warning")
    monkeypatch.setenv("PINMIRROR_LOG_JSON", "true")

    config = Config.load(sample_config_yaml)

    assert config.data_dir == tmp_path / "other"
    assert config.log_level == "WARNING"
    assert config.log_json is True


def test_database_path(tmp_path: Path) -> None:
    """database_path joins data_dir and database.path."""
    config = Config(data_dir=tmp_path)
    assert config.database_path == tmp_path / "pinmirror.db"


def test_discord_token_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """The token is only ever read from the environment."""
    monkeypatch.setenv("DISCORD_TOKEN", "abc")
    assert Config().discord_token == "abc"
    monkeypatch.delenv("DISCORD_TOKEN")
    assert Config().discord_token is None


def test_is_operator() -> None:
    """Operators are matched by string id."""
    config = Config(discord=DiscordConfig(operators=OperatorsConfig(user_ids=["42"])))
    assert config.is_operator(42) is True
    assert config.is_operator("42") is True
    assert config.is_operator(43) is False


class TestValidation:
    """Invalid values are rejected at load time."""

    def test_invalid_log_level(self) -> None:
        with pytest.raises(ValidationError):
            Config(log_level="LOUD")

    def test_invalid_detection_mode(self) -> None:
        with pytest.raises(ValidationError):
            DetectionConfig(mode="guess")

    def test_non_positive_window(self) -> None:
        with pytest.raises(ValidationError):
            DetectionConfig(timing_window_seconds=0)

    def test_blank_prefix(self) -> None:
        with pytest.raises(ValidationError):
            DiscordConfig(command_prefix=" ")

    def test_proxy_name_too_long(self) -> None:
        with pytest.raises(ValidationError):
            MirrorConfig(proxy_name="x" * 81)

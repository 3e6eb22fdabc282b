"""Configuration loading and validation for pinmirror."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator


class OperatorsConfig(BaseModel):
    """Operators who may run diagnostics and bypass the manage-server check."""

    user_ids: list[str] = Field(default_factory=list)


class DiscordConfig(BaseModel):
    """Gateway-facing settings: command prefix, presence and operators."""

    command_prefix: str = "+"
    activity: str = "+help"
    operators: OperatorsConfig = Field(default_factory=OperatorsConfig)
    report_faults: bool = True  # DM operators on unexpected handler errors

    @field_validator("command_prefix")
    @classmethod
    def validate_command_prefix(cls, v: str) -> str:
        """Reject empty or whitespace prefixes."""
        if not v or v != v.strip():
            raise ValueError("command_prefix must be non-empty without surrounding whitespace")
        return v


class DatabaseConfig(BaseModel):
    """Location of the SQLite settings store, relative to ``data_dir``."""

    path: str = "pinmirror.db"


class MirrorConfig(BaseModel):
    """Impersonation and reaction settings shared by all guilds."""

    proxy_name: str = "PinBot"
    pin_emoji: str = "\N{PUSHPIN}"

    @field_validator("proxy_name")
    @classmethod
    def validate_proxy_name(cls, v: str) -> str:
        """Webhook names must be 1-80 characters."""
        if not 1 <= len(v) <= 80:
            raise ValueError("proxy_name must be between 1 and 80 characters")
        return v


class DetectionConfig(BaseModel):
    """Pin change detection configuration.

    ``snapshot`` diffs the fetched pin list against the cached one and can see
    both pins and unpins. ``timing`` is the legacy heuristic that treats any
    pins update stamped within ``timing_window_seconds`` of now as a new pin;
    it cannot detect unpins.
    """

    mode: str = "snapshot"
    timing_window_seconds: float = 2.0
    seed_on_startup: bool = True

    @field_validator("mode")
    @classmethod
    def validate_mode(cls, v: str) -> str:
        """Validate mode is one of allowed values."""
        allowed = {"snapshot", "timing"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"mode must be one of: {allowed}")
        return v_lower

    @field_validator("timing_window_seconds")
    @classmethod
    def validate_window(cls, v: float) -> float:
        """Window must be positive."""
        if v <= 0:
            raise ValueError("timing_window_seconds must be positive")
        return v


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

# Environment variable -> (config key, converter)
ENV_OVERRIDES = {
    "PINMIRROR_DATA_DIR": ("data_dir", str),
    "PINMIRROR_LOG_LEVEL": ("log_level", str),
    "PINMIRROR_LOG_JSON": ("log_json", lambda raw: raw.strip().lower() in {"1", "true", "yes"}),
}

DEFAULT_CONFIG_FILES = (Path("config.yaml"), Path("config.yml"))


class Config(BaseModel):
    """Root configuration for pinmirror.

    The bot token is never read from the file, only from ``DISCORD_TOKEN``.
    """

    data_dir: Path = Path("./data")
    log_level: str = "INFO"
    log_json: bool = True

    discord: DiscordConfig = Field(default_factory=DiscordConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    mirror: MirrorConfig = Field(default_factory=MirrorConfig)
    detection: DetectionConfig = Field(default_factory=DetectionConfig)

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return level

    @property
    def database_path(self) -> Path:
        """SQLite file for guild settings, inside ``data_dir``."""
        return self.data_dir / self.database.path

    @property
    def discord_token(self) -> str | None:
        return os.environ.get("DISCORD_TOKEN")

    def is_operator(self, user_id: int | str) -> bool:
        """Check whether a user id is a configured operator."""
        return str(user_id) in self.discord.operators.user_ids

    @classmethod
    def load(cls, config_path: Path | str = Path("config.yaml")) -> "Config":
        """Read a YAML file, apply ``PINMIRROR_*`` overrides and validate.

        Args:
            config_path: YAML file to read. An empty file means all defaults.

        Raises:
            FileNotFoundError: The file does not exist.
            pydantic.ValidationError: A value is invalid.
        """
        path = Path(config_path)
        if not path.is_file():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        raw = yaml.safe_load(path.read_text()) or {}
        for env_var, (key, convert) in ENV_OVERRIDES.items():
            value = os.environ.get(env_var)
            if value is not None:
                raw[key] = convert(value)

        return cls.model_validate(raw)

    @classmethod
    def load_or_default(cls, config_path: Path | str | None = None) -> "Config":
        """Like ``load``, but a missing file yields the defaults.

        Without a path, ``config.yaml`` then ``config.yml`` in the working
        directory are tried.
        """
        candidates = DEFAULT_CONFIG_FILES if config_path is None else (Path(config_path),)
        for path in candidates:
            if path.is_file():
                return cls.load(path)
        return cls()

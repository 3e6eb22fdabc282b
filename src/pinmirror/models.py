"""Pydantic models and value types for pinmirror.

These models bridge between the database (SQLAlchemy Core) and the engine,
providing validation and the persisted record shape.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

if TYPE_CHECKING:
    import discord


SCHEMA_VERSION = 1


# =============================================================================
# Enums
# =============================================================================


class PinChange(str, Enum):
    """Classification of a pin snapshot transition."""

    ADDED = "added"
    REMOVED = "removed"
    NONE = "none"


# =============================================================================
# Helper Functions
# =============================================================================


def utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


# =============================================================================
# Settings
# =============================================================================


class GuildSettings(BaseModel):
    """Per-guild settings record.

    ``pins`` is the append-only list of message ids already mirrored into the
    archive channel. It is the only deduplication guard: an id in ``pins`` is
    never mirrored again.
    """

    model_config = ConfigDict(from_attributes=True, validate_assignment=True)

    RECORD_KEYS: ClassVar[tuple[str, ...]] = (
        "archiveChannel",
        "logChannel",
        "reactionThreshold",
        "pins",
    )

    schema_version: int = SCHEMA_VERSION
    guild_id: str
    archive_channel_id: str | None = None
    log_channel_id: str | None = None
    reaction_threshold: int = Field(0, ge=0)
    pins: list[str] = Field(default_factory=list)

    @field_validator("schema_version")
    @classmethod
    def validate_schema_version(cls, v: int) -> int:
        """Refuse records written by a newer schema."""
        if v < 1 or v > SCHEMA_VERSION:
            raise ValueError(f"Unsupported settings schema version: {v}")
        return v

    @field_validator("guild_id", "archive_channel_id", "log_channel_id", mode="before")
    @classmethod
    def coerce_snowflake(cls, v: Any) -> Any:
        """Accept integer snowflakes and store them as strings."""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("pins", mode="before")
    @classmethod
    def coerce_pins(cls, v: Any) -> Any:
        """Store message ids as strings, keeping first occurrence order."""
        if v is None:
            return []
        seen: set[str] = set()
        result = []
        for item in v:
            key = str(item)
            if key not in seen:
                seen.add(key)
                result.append(key)
        return result

    @property
    def is_configured(self) -> bool:
        """True when mirroring or logging is enabled for the guild."""
        return bool(self.archive_channel_id or self.log_channel_id)

    @property
    def reactions_enabled(self) -> bool:
        """True when reaction auto-pin can fire."""
        return bool(self.archive_channel_id) and self.reaction_threshold > 0

    def is_mirrored(self, message_id: int | str) -> bool:
        """Check whether a message was already mirrored."""
        return str(message_id) in self.pins

    def to_record(self) -> dict[str, Any]:
        """Return the persisted record shape.

        Returns:
            ``{archiveChannel, logChannel, reactionThreshold, pins}``.
        """
        return {
            "archiveChannel": self.archive_channel_id,
            "logChannel": self.log_channel_id,
            "reactionThreshold": self.reaction_threshold,
            "pins": list(self.pins),
        }

    @classmethod
    def from_record(cls, guild_id: int | str, record: dict[str, Any]) -> "GuildSettings":
        """Build settings from the persisted record shape.

        Unknown keys are rejected so that a malformed record fails loudly.
        """
        unknown = set(record) - set(cls.RECORD_KEYS)
        if unknown:
            raise ValueError(f"Unknown settings keys: {sorted(unknown)}")
        return cls(
            guild_id=guild_id,
            archive_channel_id=record.get("archiveChannel"),
            log_channel_id=record.get("logChannel"),
            reaction_threshold=record.get("reactionThreshold", 0),
            pins=record.get("pins", []),
        )


class MirroredPin(BaseModel):
    """A message that has been mirrored into a guild's archive channel."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    guild_id: str
    message_id: str
    channel_id: str | None = None
    mirrored_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# Detection and publishing values
# =============================================================================


@dataclass
class PinDelta:
    """Result of comparing two pin snapshots of one channel."""

    change: PinChange
    added: "discord.Message | None" = None
    removed: list["discord.Message"] = field(default_factory=list)


@dataclass
class ProxyPayload:
    """Webhook send arguments for an impersonated message."""

    content: str
    username: str
    avatar_url: str | None = None
    attachment_urls: list[str] = field(default_factory=list)
    embeds: list["discord.Embed"] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        """True when there is nothing to send."""
        return not (self.content or self.attachment_urls or self.embeds)

"""Settings store for per-guild pin mirroring configuration.

The store is the only persistence the engine touches. It reads and writes
``GuildSettings`` records keyed by guild id; the mirrored message ids are kept
in an append-only table and folded into ``GuildSettings.pins`` on load.

Methods are coroutines so that every persistence call is a suspension point
for the event loop, matching how the bot awaits all of its I/O.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import delete, select, text
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine

from pinmirror.database import generate_id, guild_settings, mirrored_pins
from pinmirror.logging import get_logger
from pinmirror.models import GuildSettings, MirroredPin

log = get_logger("settings")


class SettingsStore:
    """SQLite-backed store of ``GuildSettings`` records.

    Attributes:
        engine: SQLAlchemy engine for the settings database.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    async def get(self, guild_id: int | str) -> GuildSettings:
        """Load settings for a guild.

        Args:
            guild_id: Discord guild ID.

        Returns:
            The stored settings, or defaults when the guild has no record.
            Defaults are not persisted.
        """
        guild_key = str(guild_id)

        with self.engine.connect() as conn:
            row = conn.execute(
                select(guild_settings).where(guild_settings.c.guild_id == guild_key)
            ).fetchone()
            pin_rows = conn.execute(
                select(mirrored_pins.c.message_id)
                .where(mirrored_pins.c.guild_id == guild_key)
                .order_by(text("rowid"))  # insertion order
            ).fetchall()

        pins = [r.message_id for r in pin_rows]
        if row is None:
            return GuildSettings(guild_id=guild_key, pins=pins)

        return GuildSettings(
            schema_version=row.schema_version,
            guild_id=guild_key,
            archive_channel_id=row.archive_channel_id,
            log_channel_id=row.log_channel_id,
            reaction_threshold=row.reaction_threshold,
            pins=pins,
        )

    async def exists(self, guild_id: int | str) -> bool:
        """Check whether a guild has a settings record."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(guild_settings.c.guild_id).where(
                    guild_settings.c.guild_id == str(guild_id)
                )
            ).fetchone()
        return row is not None

    async def create(self, guild_id: int | str) -> GuildSettings:
        """Create a default record for a guild if none exists.

        Args:
            guild_id: Discord guild ID.

        Returns:
            The guild's settings after creation.
        """
        now = datetime.now(timezone.utc)

        with self.engine.connect() as conn:
            stmt = sqlite_insert(guild_settings).values(
                guild_id=str(guild_id),
                schema_version=GuildSettings.model_fields["schema_version"].default,
                reaction_threshold=0,
                created_at=now,
            )
            conn.execute(stmt.on_conflict_do_nothing(index_elements=["guild_id"]))
            conn.commit()

        log.info("guild_settings_created", guild_id=str(guild_id))
        return await self.get(guild_id)

    async def save(self, settings: GuildSettings) -> None:
        """Persist the scalar fields of a settings record.

        ``pins`` is not written here; it only grows through ``add_mirrored``.

        Args:
            settings: Settings to persist. Re-validated before writing.
        """
        settings = GuildSettings.model_validate(settings.model_dump())
        now = datetime.now(timezone.utc)

        with self.engine.connect() as conn:
            stmt = sqlite_insert(guild_settings).values(
                guild_id=settings.guild_id,
                schema_version=settings.schema_version,
                archive_channel_id=settings.archive_channel_id,
                log_channel_id=settings.log_channel_id,
                reaction_threshold=settings.reaction_threshold,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["guild_id"],
                set_={
                    "schema_version": settings.schema_version,
                    "archive_channel_id": settings.archive_channel_id,
                    "log_channel_id": settings.log_channel_id,
                    "reaction_threshold": settings.reaction_threshold,
                    "updated_at": now,
                },
            )
            conn.execute(stmt)
            conn.commit()

        log.debug(
            "guild_settings_saved",
            guild_id=settings.guild_id,
            archive_channel_id=settings.archive_channel_id,
            log_channel_id=settings.log_channel_id,
            reaction_threshold=settings.reaction_threshold,
        )

    async def delete(self, guild_id: int | str) -> None:
        """Delete a guild's record and its mirrored ids.

        Called when the bot leaves the guild.
        """
        guild_key = str(guild_id)
        with self.engine.connect() as conn:
            conn.execute(delete(mirrored_pins).where(mirrored_pins.c.guild_id == guild_key))
            conn.execute(delete(guild_settings).where(guild_settings.c.guild_id == guild_key))
            conn.commit()

        log.info("guild_settings_deleted", guild_id=guild_key)

    async def add_mirrored(
        self,
        guild_id: int | str,
        message_id: int | str,
        channel_id: int | str | None = None,
    ) -> bool:
        """Append a message id to the guild's mirrored list.

        Args:
            guild_id: Discord guild ID.
            message_id: ID of the mirrored source message.
            channel_id: Source channel ID, kept for diagnostics.

        Returns:
            True if the id was new, False if it was already recorded.
        """
        record = MirroredPin(
            id=generate_id(),
            guild_id=str(guild_id),
            message_id=str(message_id),
            channel_id=str(channel_id) if channel_id is not None else None,
        )

        with self.engine.connect() as conn:
            stmt = sqlite_insert(mirrored_pins).values(**record.model_dump())
            result = conn.execute(
                stmt.on_conflict_do_nothing(index_elements=["guild_id", "message_id"])
            )
            conn.commit()

        return result.rowcount > 0

    async def is_mirrored(self, guild_id: int | str, message_id: int | str) -> bool:
        """Check whether a message id is already in the guild's mirrored list."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(mirrored_pins.c.id).where(
                    (mirrored_pins.c.guild_id == str(guild_id))
                    & (mirrored_pins.c.message_id == str(message_id))
                )
            ).fetchone()
        return row is not None

    async def configured_guild_ids(self) -> list[str]:
        """List guilds with an archive or log channel configured."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(guild_settings.c.guild_id).where(
                    guild_settings.c.archive_channel_id.is_not(None)
                    | guild_settings.c.log_channel_id.is_not(None)
                )
            ).fetchall()
        return [r.guild_id for r in rows]

"""Initial schema - guild settings and mirrored pins.

The first store iteration only knew about the archive channel and the
reaction threshold; the log channel column arrives in migration 002.
"""

from sqlalchemy import inspect, text

VERSION = 1
DESCRIPTION = "Create guild_settings and mirrored_pins tables"


def upgrade(engine):
    """Create the version 1 tables if they are missing."""
    inspector = inspect(engine)
    existing = set(inspector.get_table_names())

    with engine.connect() as conn:
        if "guild_settings" not in existing:
            conn.execute(
                text(
                    "CREATE TABLE guild_settings ("
                    "guild_id VARCHAR PRIMARY KEY, "
                    "schema_version INTEGER NOT NULL DEFAULT 1, "
                    "archive_channel_id VARCHAR, "
                    "reaction_threshold INTEGER NOT NULL DEFAULT 0, "
                    "created_at DATETIME NOT NULL, "
                    "updated_at DATETIME)"
                )
            )
        if "mirrored_pins" not in existing:
            conn.execute(
                text(
                    "CREATE TABLE mirrored_pins ("
                    "id VARCHAR PRIMARY KEY, "
                    "guild_id VARCHAR NOT NULL, "
                    "message_id VARCHAR NOT NULL, "
                    "channel_id VARCHAR, "
                    "mirrored_at DATETIME NOT NULL)"
                )
            )
            conn.execute(
                text(
                    "CREATE UNIQUE INDEX ix_mirrored_pins_guild_message "
                    "ON mirrored_pins (guild_id, message_id)"
                )
            )
        if "_schema_version" not in existing:
            conn.execute(
                text(
                    "CREATE TABLE _schema_version ("
                    "version INTEGER PRIMARY KEY, "
                    "applied_at DATETIME NOT NULL, "
                    "description VARCHAR)"
                )
            )
        conn.commit()


def check(engine) -> bool:
    """Check if this migration has been applied.

    Returns True if both core tables exist.
    """
    inspector = inspect(engine)
    table_names = set(inspector.get_table_names())
    return {"guild_settings", "mirrored_pins"}.issubset(table_names)

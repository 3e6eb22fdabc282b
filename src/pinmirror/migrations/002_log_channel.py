"""Add log_channel_id column to guild_settings.

Guilds can route pin and unpin notices to a log channel in addition to (or
instead of) mirroring into an archive channel.
"""

from sqlalchemy import inspect, text

VERSION = 2
DESCRIPTION = "Add log_channel_id column to guild_settings"


def upgrade(engine):
    """Add the nullable log_channel_id column.

    Stores created from the current metadata already have it and are left
    alone.
    """
    inspector = inspect(engine)
    columns = {c["name"] for c in inspector.get_columns("guild_settings")}

    if "log_channel_id" not in columns:
        with engine.connect() as conn:
            conn.execute(text("ALTER TABLE guild_settings ADD COLUMN log_channel_id VARCHAR"))
            conn.commit()


def check(engine) -> bool:
    """Check if this migration has been applied.

    Returns True if the log_channel_id column exists in guild_settings.
    """
    inspector = inspect(engine)
    if "guild_settings" not in inspector.get_table_names():
        return False
    columns = {c["name"] for c in inspector.get_columns("guild_settings")}
    return "log_channel_id" in columns

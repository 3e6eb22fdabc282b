"""Database schema and connection management for pinmirror.

Uses SQLAlchemy Core (not ORM) for explicit SQL control. Settings live in one
row per guild; mirrored message ids live in their own append-only table so
that the dedup list never needs a read-modify-write of a JSON blob.
"""

from datetime import datetime

from sqlalchemy import (
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    text,
)
from sqlalchemy.engine import Engine
from ulid import ULID

from pinmirror.config import Config

# Shared metadata for all tables
metadata = MetaData()


guild_settings = Table(
    "guild_settings",
    metadata,
    Column("guild_id", String, primary_key=True),  # Discord snowflake
    Column("schema_version", Integer, nullable=False, default=1),
    Column("archive_channel_id", String, nullable=True),
    Column("log_channel_id", String, nullable=True),
    Column("reaction_threshold", Integer, nullable=False, default=0),
    Column("created_at", DateTime, nullable=False, default=datetime.utcnow),
    Column("updated_at", DateTime, nullable=True),
)

mirrored_pins = Table(
    "mirrored_pins",
    metadata,
    Column("id", String, primary_key=True),  # ULID, sorts by insertion time
    Column("guild_id", String, nullable=False),
    Column("message_id", String, nullable=False),
    Column("channel_id", String, nullable=True),  # Source channel
    Column("mirrored_at", DateTime, nullable=False, default=datetime.utcnow),
    Index("ix_mirrored_pins_guild_message", "guild_id", "message_id", unique=True),
)

schema_version = Table(
    "_schema_version",
    metadata,
    Column("version", Integer, primary_key=True),
    Column("applied_at", DateTime, nullable=False),
    Column("description", String, nullable=True),
)


def generate_id() -> str:
    """New primary key for ``mirrored_pins``; ULIDs sort by creation time."""
    return str(ULID())


def get_engine(config: Config) -> Engine:
    """Open the settings database, creating its directory if needed.

    The database runs in WAL mode so CLI reads do not block the bot.
    SQL echo follows ``log_level == "DEBUG"``.
    """
    path = config.database_path
    path.parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(f"sqlite:///{path}", echo=config.log_level == "DEBUG")
    with engine.connect() as conn:
        conn.execute(text("PRAGMA journal_mode=WAL"))
        conn.commit()
    return engine


def create_tables(engine: Engine) -> None:
    """Create any table from the current schema that is missing."""
    metadata.create_all(engine)

"""Command-line interface for pinmirror."""

import asyncio
import json
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import click
from sqlalchemy.engine import Engine

from pinmirror import __version__
from pinmirror.config import Config
from pinmirror.logging import get_logger, setup_logging

log = get_logger("cli")

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


@contextmanager
def open_store(config: Config, tables: bool = False) -> Iterator[Engine]:
    """Yield an engine for the configured database and dispose it after.

    Args:
        config: Application configuration.
        tables: Create any missing tables first.
    """
    from pinmirror.database import create_tables, get_engine

    engine = get_engine(config)
    try:
        if tables:
            create_tables(engine)
        yield engine
    finally:
        engine.dispose()


@click.group()
@click.option(
    "-c",
    "--config-file",
    type=click.Path(path_type=Path),
    help="YAML configuration file (default: ./config.yaml if present).",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    help="Minimum log level; overrides log_level in the config.",
)
@click.option(
    "--log-json/--no-log-json",
    default=None,
    help="JSON or console log lines; overrides log_json in the config.",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_file: Path | None,
    log_level: str | None,
    log_json: bool | None,
) -> None:
    """pinmirror - mirror pinned Discord messages into an archive channel."""
    config = Config.load_or_default(config_file)
    ctx.obj = {"config": config, "config_file": config_file}

    setup_logging(
        json_output=config.log_json if log_json is None else log_json,
        level=(log_level or config.log_level).upper(),
    )


@cli.command()
def version() -> None:
    """Print the installed version."""
    click.echo(f"pinmirror {__version__}")


@cli.command()
@click.pass_obj
def run(obj: dict) -> None:
    """Connect to Discord and start mirroring.

    Migrates the settings database first. The bot token is read from the
    DISCORD_TOKEN environment variable. SIGINT or SIGTERM shut it down.
    """
    from pinmirror.bot import run_bot
    from pinmirror.migrations import migrate

    config: Config = obj["config"]
    if not config.discord_token:
        click.echo("Error: DISCORD_TOKEN environment variable not set", err=True)
        raise SystemExit(1)

    with open_store(config) as engine:
        migrate(engine)
        log.info("run_command_invoked", detection_mode=config.detection.mode)
        try:
            asyncio.run(run_bot(config, engine))
        except KeyboardInterrupt:
            log.info("shutdown_requested_keyboard")
        except Exception as e:
            log.error("run_failed", error=str(e))
            click.echo(f"Error: {e}", err=True)
            raise SystemExit(1) from e


# =============================================================================
# db
# =============================================================================


@cli.group()
def db() -> None:
    """Database management commands."""


@db.command(name="status")
@click.pass_obj
def db_status(obj: dict) -> None:
    """Report the schema version and any pending migrations."""
    from pinmirror.migrations import get_current_version
    from pinmirror.migrations.runner import get_pending_migrations

    config: Config = obj["config"]
    with open_store(config) as engine:
        current = get_current_version(engine)
        pending = get_pending_migrations(engine)

    click.echo(f"Database: {config.database_path}")
    click.echo(f"Current version: {current}")
    if not pending:
        click.echo("No pending migrations")
        return

    click.echo(f"Pending migrations: {len(pending)}")
    for number, module in pending:
        click.echo(f"  {number:03d} {getattr(module, 'DESCRIPTION', '')}")


@db.command(name="migrate")
@click.option("--target", type=int, help="Stop at this version instead of the latest.")
@click.pass_obj
def db_migrate(obj: dict, target: int | None) -> None:
    """Apply pending migrations."""
    from pinmirror.migrations import get_current_version, migrate

    with open_store(obj["config"]) as engine:
        start = get_current_version(engine)
        end = migrate(engine, target_version=target)

    if start == end:
        click.echo(f"Database already at version {end}")
    else:
        click.echo(f"Migrated from version {start} to {end}")


# =============================================================================
# config
# =============================================================================


@cli.group()
def config() -> None:
    """Configuration management commands."""


@config.command(name="check")
@click.option(
    "-c",
    "--config-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default="config.yaml",
    help="File to validate.",
)
def config_check(config_file: Path) -> None:
    """Load a configuration file and summarize it."""
    try:
        cfg = Config.load(config_file)
    except Exception as e:
        click.echo(f"Configuration error: {e}", err=True)
        raise SystemExit(1) from e

    operators = cfg.discord.operators.user_ids
    summary = {
        "Database": cfg.database_path,
        "Log level": cfg.log_level,
        "Command prefix": cfg.discord.command_prefix,
        "Proxy name": cfg.mirror.proxy_name,
        "Detection mode": cfg.detection.mode,
        "Operators": len(operators),
    }

    click.echo(f"Configuration valid: {config_file}")
    for label, value in summary.items():
        click.echo(f"  {label}: {value}")
    if cfg.detection.mode == "timing":
        click.echo("  Warning: timing detection is legacy and cannot see unpins")
    if cfg.discord.report_faults and not operators:
        click.echo("  Note: report_faults is on but no operators are configured")


# =============================================================================
# settings
# =============================================================================


@cli.group()
def settings() -> None:
    """Inspect stored guild settings."""


@settings.command(name="show")
@click.argument("guild_id")
@click.pass_obj
def settings_show(obj: dict, guild_id: str) -> None:
    """Print a guild's persisted settings record as JSON."""
    from pinmirror.settings import SettingsStore

    with open_store(obj["config"], tables=True) as engine:
        store = SettingsStore(engine)
        found = asyncio.run(store.exists(guild_id))
        record = asyncio.run(store.get(guild_id)).to_record() if found else None

    if record is None:
        click.echo(f"No settings stored for guild {guild_id}", err=True)
        raise SystemExit(1)
    click.echo(json.dumps(record, indent=2))

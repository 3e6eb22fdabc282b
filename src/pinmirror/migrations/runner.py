"""Migration runner for the pinmirror settings store.

Discovers numbered migration modules, tracks the applied version in the
``_schema_version`` table and applies whatever is pending. A migration whose
``check()`` already reports it as applied (for example on a store built with
``create_tables``) is recorded without running ``upgrade()``.
"""

from __future__ import annotations

import importlib
from datetime import datetime, timezone
from pathlib import Path
from types import ModuleType

from sqlalchemy import func, inspect, select
from sqlalchemy.engine import Engine

from pinmirror.database import schema_version
from pinmirror.logging import get_logger

log = get_logger("migrations")


def get_migrations() -> list[tuple[int, ModuleType]]:
    """Discover all migration modules in this package.

    Returns:
        List of (version, module) tuples, sorted by version.
    """
    found: list[tuple[int, ModuleType]] = []

    for path in sorted(Path(__file__).parent.glob("[0-9][0-9][0-9]_*.py")):
        module = importlib.import_module(f"pinmirror.migrations.{path.stem}")
        version = getattr(module, "VERSION", None)
        if version is None:
            log.warning("migration_missing_version", file=path.stem)
            continue
        found.append((version, module))

    return sorted(found, key=lambda pair: pair[0])


def get_current_version(engine: Engine) -> int:
    """Get current schema version from database.

    Args:
        engine: SQLAlchemy engine.

    Returns:
        Current version number, or 0 if no migrations applied.
    """
    if "_schema_version" not in inspect(engine).get_table_names():
        return 0

    with engine.connect() as conn:
        return conn.execute(select(func.max(schema_version.c.version))).scalar() or 0


def _record_version(engine: Engine, version: int, description: str) -> None:
    schema_version.create(engine, checkfirst=True)
    with engine.connect() as conn:
        conn.execute(
            schema_version.insert().values(
                version=version,
                applied_at=datetime.now(timezone.utc),
                description=description,
            )
        )
        conn.commit()


def get_pending_migrations(engine: Engine) -> list[tuple[int, ModuleType]]:
    """Get list of migrations that haven't been applied yet.

    Args:
        engine: SQLAlchemy engine.

    Returns:
        List of (version, module) tuples for pending migrations.
    """
    current = get_current_version(engine)
    return [(v, m) for v, m in get_migrations() if v > current]


def migrate(engine: Engine, target_version: int | None = None) -> int:
    """Apply pending migrations up to target_version.

    Args:
        engine: SQLAlchemy engine.
        target_version: Maximum version to apply. If None, apply all.

    Returns:
        New current version after migrations.

    Raises:
        Exception: Whatever the failing migration raised; later migrations
            are not attempted.
    """
    pending = get_pending_migrations(engine)
    if target_version is not None:
        pending = [(v, m) for v, m in pending if v <= target_version]

    if not pending:
        log.info("no_pending_migrations")
        return get_current_version(engine)

    for version, module in pending:
        description = getattr(module, "DESCRIPTION", "No description")

        check = getattr(module, "check", None)
        if check is not None and check(engine):
            log.info("migration_already_present", version=version)
        else:
            log.info("applying_migration", version=version, description=description)
            try:
                module.upgrade(engine)
            except Exception as e:
                log.error("migration_failed", version=version, error=str(e))
                raise

        _record_version(engine, version, description)
        log.info("migration_applied", version=version)

    log.info("migrations_complete", count=len(pending))
    return get_current_version(engine)

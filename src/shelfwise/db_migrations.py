"""
Ordered SQLite schema migrations, tracked per component.
"""
from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Sequence

from .observability import get_logger

logger = get_logger(__name__)

MigrationRunner = Callable[[sqlite3.Connection], None]

_LEDGER_DDL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    component TEXT NOT NULL,
    version INTEGER NOT NULL,
    name TEXT NOT NULL,
    applied_at TEXT NOT NULL,
    PRIMARY KEY(component, version)
)
"""


@dataclass(frozen=True)
class SqliteMigration:
    version: int
    name: str
    statements: tuple[str, ...] = ()
    runner: MigrationRunner | None = None


def applied_versions(conn: sqlite3.Connection, component: str) -> set[int]:
    conn.execute(_LEDGER_DDL)
    rows = conn.execute(
        "SELECT version FROM schema_migrations WHERE component = ?",
        (component,),
    ).fetchall()
    return {int(row[0]) for row in rows}


def apply_sqlite_migrations(
    conn: sqlite3.Connection,
    *,
    component: str,
    migrations: Sequence[SqliteMigration],
) -> list[int]:
    """Runs pending migrations in version order and returns the versions applied."""
    done = applied_versions(conn, component)
    newly_applied: list[int] = []
    for migration in sorted(migrations, key=lambda m: m.version):
        if migration.version in done:
            continue
        for statement in migration.statements:
            if statement.strip():
                conn.execute(statement)
        if migration.runner is not None:
            migration.runner(conn)
        conn.execute(
            "INSERT INTO schema_migrations (component, version, name, applied_at) VALUES (?, ?, ?, ?)",
            (component, migration.version, migration.name, datetime.now(timezone.utc).isoformat(timespec="seconds")),
        )
        newly_applied.append(migration.version)
        logger.info("db_migration_applied", component=component, version=migration.version, name=migration.name)
    return newly_applied

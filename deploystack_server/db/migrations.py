"""Ordered SQL migrations.

Migration files are plain ``.sql`` files named with a sortable prefix
(``0000_initial.sql``, ``0001_default_roles.sql``). Statements inside a file are
separated by ``--> statement-breakpoint``. Each file runs in one transaction
together with its bookkeeping insert, so a file is applied completely or not
at all. Safe to run on every start: applied files are skipped.

On SQLite the engine must have transactional DDL enabled (see
``db.manager.enable_sqlite_transactional_ddl``); otherwise pysqlite commits
DDL statements implicitly and a failing file can leave partial state.
"""
from __future__ import annotations
import asyncio
import logging
from pathlib import Path
from typing import List

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from deploystack_server.db.errors import MigrationError

_log = logging.getLogger(__name__)

MIGRATIONS_TABLE_NAME = '__migrations'
STATEMENT_BREAKPOINT = '--> statement-breakpoint'
MIGRATION_SUFFIX = '.sql'

_BOOKKEEPING_DDL = {
    'sqlite': f"""
        CREATE TABLE IF NOT EXISTS {MIGRATIONS_TABLE_NAME} (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            migration_name TEXT UNIQUE NOT NULL,
            applied_at INTEGER NOT NULL DEFAULT (strftime('%s', 'now'))
        )
    """,
    'postgres': f"""
        CREATE TABLE IF NOT EXISTS {MIGRATIONS_TABLE_NAME} (
            id SERIAL PRIMARY KEY,
            migration_name TEXT UNIQUE NOT NULL,
            applied_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
    """,
}


# SQLAlchemy dialect names that differ from the backend kind
_DIALECT_BACKENDS = {'postgresql': 'postgres'}


def backend_kind_for(engine: AsyncEngine) -> str:
    name = engine.dialect.name
    return _DIALECT_BACKENDS.get(name, name)


def split_statements(sql: str) -> List[str]:
    return [chunk.strip() for chunk in sql.split(STATEMENT_BREAKPOINT) if chunk.strip()]


def _list_migration_files(migrations_dir: Path) -> List[Path]:
    files = [p for p in migrations_dir.iterdir() if p.is_file() and p.name.endswith(MIGRATION_SUFFIX)]
    return sorted(files, key=lambda p: p.name)


async def list_migration_files(migrations_dir: Path) -> List[Path]:
    return await asyncio.to_thread(_list_migration_files, migrations_dir)


async def ensure_migrations_table(engine: AsyncEngine) -> None:
    backend_kind = backend_kind_for(engine)
    ddl = _BOOKKEEPING_DDL.get(backend_kind)
    if ddl is None:
        raise MigrationError(MIGRATIONS_TABLE_NAME, RuntimeError(f"no bookkeeping DDL for {backend_kind}"))
    async with engine.begin() as conn:
        await conn.exec_driver_sql(ddl)


async def applied_migration_names(engine: AsyncEngine) -> List[str]:
    async with engine.connect() as conn:
        result = await conn.execute(
            text(f"SELECT migration_name FROM {MIGRATIONS_TABLE_NAME} ORDER BY id")
        )
        return [row[0] for row in result]


async def _apply_file(engine: AsyncEngine, path: Path) -> None:
    sql = await asyncio.to_thread(path.read_text, encoding='utf-8')
    statements = split_statements(sql)
    async with engine.begin() as conn:
        for statement in statements:
            await conn.exec_driver_sql(statement)
        await conn.execute(
            text(f"INSERT INTO {MIGRATIONS_TABLE_NAME} (migration_name) VALUES (:name)"),
            {'name': path.name},
        )


async def apply_migrations(engine: AsyncEngine, migrations_dir: Path) -> List[str]:
    """Apply every not-yet-applied migration in ``migrations_dir``.

    Returns the names applied by this call. A missing directory is a no-op. The
    first failing file raises :class:`MigrationError`; nothing from that file
    is committed and later files are not attempted.
    """
    migrations_dir = Path(migrations_dir)
    exists = await asyncio.to_thread(migrations_dir.is_dir)
    if not exists:
        _log.info("migrations directory not found at %s, skipping migrations", migrations_dir)
        return []

    _log.info("checking for new migrations in %s", migrations_dir)
    await ensure_migrations_table(engine)
    applied = set(await applied_migration_names(engine))

    newly_applied: List[str] = []
    for path in await list_migration_files(migrations_dir):
        if path.name in applied:
            _log.info("migration already applied: %s", path.name)
            continue
        _log.info("applying migration: %s", path.name)
        try:
            await _apply_file(engine, path)
        except Exception as exc:
            _log.error("failed to apply migration %s: %s", path.name, exc)
            raise MigrationError(path.name, exc) from exc
        newly_applied.append(path.name)
        _log.info("applied migration: %s", path.name)
    return newly_applied

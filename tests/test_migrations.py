"""Ordered, idempotent, atomic SQL migrations on SQLite."""

from types import SimpleNamespace

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine

from conftest import MIGRATIONS_ROOT
from deploystack_server.db.columns import COLUMN_TYPE_MAPPERS
from deploystack_server.db.errors import MigrationError
from deploystack_server.db.manager import enable_sqlite_transactional_ddl
from deploystack_server.db.migrations import (
    _BOOKKEEPING_DDL,
    MIGRATIONS_TABLE_NAME,
    STATEMENT_BREAKPOINT,
    applied_migration_names,
    apply_migrations,
    backend_kind_for,
    split_statements,
)

SHIPPED = MIGRATIONS_ROOT / 'sqlite'


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'migrations.db'}")
    enable_sqlite_transactional_ddl(eng)
    yield eng
    await eng.dispose()


async def _schema_objects(engine):
    async with engine.connect() as conn:
        result = await conn.execute(text("SELECT type, name, sql FROM sqlite_master ORDER BY type, name"))
        return [tuple(r) for r in result]


async def _table_names(engine):
    async with engine.connect() as conn:
        result = await conn.execute(text("SELECT name FROM sqlite_master WHERE type = 'table'"))
        return {r[0] for r in result}


def _write(directory, name, *statements):
    directory.mkdir(parents=True, exist_ok=True)
    (directory / name).write_text(f"\n{STATEMENT_BREAKPOINT}\n".join(statements), encoding='utf-8')


class TestSplitStatements:

    def test_splits_on_breakpoint_and_drops_blanks(self):
        sql = f"CREATE TABLE a (x INT);\n{STATEMENT_BREAKPOINT}\n\n{STATEMENT_BREAKPOINT}\nCREATE TABLE b (y INT);"
        assert split_statements(sql) == ['CREATE TABLE a (x INT);', 'CREATE TABLE b (y INT);']


class TestShippedMigrations:

    @pytest.mark.asyncio
    async def test_creates_core_tables_and_roles(self, engine):
        applied = await apply_migrations(engine, SHIPPED)
        assert applied == sorted(applied)
        assert {'users', 'roles', 'authUser', 'globalSettings', 'globalSettingGroups'} <= await _table_names(engine)
        async with engine.connect() as conn:
            roles = {r[0] for r in await conn.execute(text("SELECT id FROM roles WHERE is_system_role = 1"))}
        assert {'global_admin', 'global_user', 'team_admin', 'team_user'} <= roles

    @pytest.mark.asyncio
    async def test_second_run_is_noop(self, engine):
        """Applying the same directory twice leaves the same schema and one row per file."""
        first = await apply_migrations(engine, SHIPPED)
        before = await _schema_objects(engine)
        second = await apply_migrations(engine, SHIPPED)
        assert first
        assert second == []
        assert await _schema_objects(engine) == before
        names = await applied_migration_names(engine)
        assert sorted(names) == sorted(set(names)) == sorted(first)

    @pytest.mark.asyncio
    async def test_missing_directory_is_noop(self, engine, tmp_path):
        assert await apply_migrations(engine, tmp_path / 'nope') == []


class TestOrdering:

    @pytest.mark.asyncio
    async def test_files_run_in_filename_order(self, engine, tmp_path):
        """0001, 0002, 0010 run in that order whatever order they were written in."""
        mig = tmp_path / 'ordered'
        _write(mig, '0010_c.sql', "INSERT INTO log (step) VALUES ('c')")
        _write(mig, '0001_a.sql', "CREATE TABLE log (n INTEGER PRIMARY KEY AUTOINCREMENT, step TEXT)")
        _write(mig, '0002_b.sql', "INSERT INTO log (step) VALUES ('b')")
        (mig / 'README.md').write_text('not a migration', encoding='utf-8')

        applied = await apply_migrations(engine, mig)

        assert applied == ['0001_a.sql', '0002_b.sql', '0010_c.sql']
        assert await applied_migration_names(engine) == applied
        async with engine.connect() as conn:
            steps = [r[0] for r in await conn.execute(text("SELECT step FROM log ORDER BY n"))]
        assert steps == ['b', 'c']

    @pytest.mark.asyncio
    async def test_new_file_applied_on_later_run(self, engine, tmp_path):
        mig = tmp_path / 'incremental'
        _write(mig, '0001_a.sql', "CREATE TABLE a (x INTEGER)")
        assert await apply_migrations(engine, mig) == ['0001_a.sql']
        _write(mig, '0002_b.sql', "CREATE TABLE b (y INTEGER)")
        assert await apply_migrations(engine, mig) == ['0002_b.sql']


class TestAtomicity:

    @pytest.mark.asyncio
    async def test_failing_statement_rolls_back_whole_file(self, engine, tmp_path):
        """First statement's table is gone and the file is not recorded."""
        mig = tmp_path / 'broken'
        _write(mig, '0001_ok.sql', "CREATE TABLE ok_table (x INTEGER)")
        _write(mig, '0002_broken.sql', "CREATE TABLE half_done (x INTEGER)", "CREATE TABLOID nonsense")
        _write(mig, '0003_later.sql', "CREATE TABLE later (x INTEGER)")

        with pytest.raises(MigrationError) as info:
            await apply_migrations(engine, mig)

        assert info.value.migration_name == '0002_broken.sql'
        tables = await _table_names(engine)
        assert 'ok_table' in tables
        assert 'half_done' not in tables
        assert 'later' not in tables
        assert await applied_migration_names(engine) == ['0001_ok.sql']

    @pytest.mark.asyncio
    async def test_fixed_file_applies_on_retry(self, engine, tmp_path):
        mig = tmp_path / 'retry'
        _write(mig, '0001_broken.sql', "CREATE TABLE t1 (x INTEGER)", "SELEC 1")
        with pytest.raises(MigrationError):
            await apply_migrations(engine, mig)
        _write(mig, '0001_broken.sql', "CREATE TABLE t1 (x INTEGER)", "SELECT 1")
        assert await apply_migrations(engine, mig) == ['0001_broken.sql']
        assert MIGRATIONS_TABLE_NAME in await _table_names(engine)


class TestBackendKeys:

    def test_bookkeeping_covers_every_composable_backend(self):
        assert set(_BOOKKEEPING_DDL) == set(COLUMN_TYPE_MAPPERS)

    @pytest.mark.parametrize('dialect, kind', [('sqlite', 'sqlite'), ('postgresql', 'postgres')])
    def test_dialect_name_maps_to_backend_kind(self, dialect, kind):
        engine = SimpleNamespace(dialect=SimpleNamespace(name=dialect))
        assert backend_kind_for(engine) == kind

    @pytest.mark.asyncio
    async def test_sqlite_engine(self, engine):
        assert backend_kind_for(engine) == 'sqlite'

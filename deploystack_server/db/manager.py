"""Database lifecycle.

``DatabaseManager`` owns the process-wide database state: whether a backend
selection exists, the composed schema, the engine and the queryable
:class:`Database` handle built from both. One instance is created per
application (see ``main.create_app``) and handed to consumers explicitly.

States::

    UNCONFIGURED -> CONFIGURED_NOT_INITIALIZED -> INITIALIZED
                 \\-> RECONFIGURING (transient, during setup) -/

``initialized`` implies ``configured`` and that both schema and engine are
set. Accessors raise a distinct error per missing precondition; ``get_status``
never raises.
"""
from __future__ import annotations
import asyncio
import inspect
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from deploystack_server.core.config import settings
from deploystack_server.db.config_store import DbConfig, DbConfigStore
from deploystack_server.db.errors import (
    ConnectionNotEstablishedError,
    DatabaseError,
    DatabaseNotInitializedError,
    SchemaNotGeneratedError,
    UnsupportedBackendError,
)
from deploystack_server.db.migrations import apply_migrations
from deploystack_server.db.schema import ComposedSchema, SchemaComposer

_log = logging.getLogger(__name__)


class LifecycleState(str, Enum):
    UNCONFIGURED = 'unconfigured'
    CONFIGURED_NOT_INITIALIZED = 'configured_not_initialized'
    INITIALIZED = 'initialized'
    RECONFIGURING = 'reconfiguring'


def enable_sqlite_transactional_ddl(engine: AsyncEngine) -> None:
    """Let SQLAlchemy own BEGIN so DDL participates in transactions.

    pysqlite (and aiosqlite on top of it) otherwise commits implicitly before
    DDL, which would make a multi-statement migration non-atomic.
    """

    @event.listens_for(engine.sync_engine, 'connect')
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute('PRAGMA foreign_keys=ON')
        finally:
            cursor.close()

    @event.listens_for(engine.sync_engine, 'begin')
    def _on_begin(conn):
        conn.exec_driver_sql('BEGIN')


class Database:
    """Queryable handle: one engine bound to one composed schema.

    ``tables`` is the composed schema (``db.tables['users']`` or
    ``db.tables.users``). Use ``begin()`` for a transaction, ``connect()``
    for reads, or ``session()`` for an ORM-style ``AsyncSession``.
    """

    def __init__(self, engine: AsyncEngine, schema: ComposedSchema):
        self.engine = engine
        self.schema = schema
        self._sessions = async_sessionmaker(engine, expire_on_commit=False)

    @property
    def tables(self) -> ComposedSchema:
        return self.schema

    @property
    def dialect(self) -> str:
        return self.schema.dialect

    def connect(self):
        return self.engine.connect()

    def begin(self):
        return self.engine.begin()

    def session(self) -> AsyncSession:
        return self._sessions()

    async def execute(self, statement, params: Optional[Dict[str, Any]] = None):
        """Run one statement in its own transaction and return the buffered result."""
        async with self.engine.begin() as conn:
            return await conn.execute(statement, params)

    async def fetch_all(self, statement, params: Optional[Dict[str, Any]] = None) -> list:
        async with self.engine.connect() as conn:
            result = await conn.execute(statement, params)
            return list(result.mappings())

    async def fetch_one(self, statement, params: Optional[Dict[str, Any]] = None):
        async with self.engine.connect() as conn:
            result = await conn.execute(statement, params)
            return result.mappings().first()

    def __repr__(self) -> str:
        return f"<Database dialect={self.dialect} tables={len(self.schema)}>"


def _prepare_location(path: Path) -> bool:
    path.parent.mkdir(parents=True, exist_ok=True)
    return path.exists()


class DatabaseManager:
    def __init__(
        self,
        *,
        config_store: DbConfigStore | None = None,
        composer: SchemaComposer | None = None,
        data_dir: Path | None = None,
        migrations_root: Path | None = None,
        init_timeout: float | None = None,
        echo: bool | None = None,
    ) -> None:
        self.data_dir = Path(data_dir) if data_dir is not None else settings.data_dir
        self.config_store = config_store or DbConfigStore(self.data_dir, test_mode=settings.test_mode)
        self.composer = composer or SchemaComposer()
        self.migrations_root = Path(migrations_root) if migrations_root is not None else settings.migrations_root
        self.init_timeout = settings.db_init_timeout if init_timeout is None else init_timeout
        self.echo = settings.sql_echo if echo is None else echo

        self._lock = asyncio.Lock()
        # held by callers around setup plus their post-setup work
        self.setup_lock = asyncio.Lock()
        self._configured = False
        self._initialized = False
        self._reconfiguring = False
        self._config: DbConfig | None = None
        self._schema: ComposedSchema | None = None
        self._engine: AsyncEngine | None = None
        self._db: Database | None = None
        self._seeded_plugins: set[str] = set()

    # ------------------------------------------------------------------ state
    @property
    def configured(self) -> bool:
        return self._configured

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def config(self) -> DbConfig | None:
        return self._config

    @property
    def state(self) -> LifecycleState:
        if self._reconfiguring:
            return LifecycleState.RECONFIGURING
        if self._initialized:
            return LifecycleState.INITIALIZED
        if self._configured:
            return LifecycleState.CONFIGURED_NOT_INITIALIZED
        return LifecycleState.UNCONFIGURED

    def get_status(self) -> Dict[str, Any]:
        config = self._config
        return {
            'configured': self._configured,
            'initialized': self._initialized,
            'dialect': config.backend_kind if (config is not None and self._configured) else None,
        }

    # -------------------------------------------------------------- accessors
    def get_db(self) -> Database:
        if not self._initialized or self._db is None:
            raise DatabaseNotInitializedError()
        return self._db

    def get_schema(self) -> ComposedSchema:
        if not self._initialized or self._schema is None:
            raise SchemaNotGeneratedError()
        return self._schema

    def get_connection(self) -> AsyncEngine:
        if not self._initialized or self._engine is None:
            raise ConnectionNotEstablishedError()
        return self._engine

    # ------------------------------------------------------------ lifecycle
    def resolve_path(self, connection_path: str) -> Path:
        path = Path(connection_path)
        if not path.is_absolute():
            path = self.data_dir / path
        return path

    def migrations_dir_for(self, backend_kind: str) -> Path:
        return self.migrations_root / backend_kind

    def _create_engine(self, backend_kind: str, path: Path) -> AsyncEngine:
        if backend_kind != 'sqlite':
            raise UnsupportedBackendError(backend_kind)
        engine = create_async_engine(f"sqlite+aiosqlite:///{path}", echo=self.echo)
        enable_sqlite_transactional_ddl(engine)
        return engine

    async def _open_and_migrate(self, engine: AsyncEngine, backend_kind: str) -> List[str]:
        async with engine.connect() as conn:
            await conn.exec_driver_sql('SELECT 1')
        return await apply_migrations(engine, self.migrations_dir_for(backend_kind))

    async def initialize(self) -> bool:
        """Bring the database up from the persisted selection.

        Returns False when no selection exists yet (not an error). Any other
        failure propagates and leaves the manager uninitialized.
        """
        if self._initialized:
            return True
        async with self._lock:
            return await self._initialize_locked()

    async def _initialize_locked(self) -> bool:
        if self._initialized:
            return True

        config = await self.config_store.load()
        if config is None:
            self._configured = False
            self._config = None
            _log.info("database not configured; waiting for setup")
            return False
        self._configured = True
        self._config = config
        backend_kind = config.backend_kind

        schema = self.composer.compose(backend_kind)
        path = self.resolve_path(config.connection_path)
        existed = await asyncio.to_thread(_prepare_location, path)
        if existed:
            _log.info("opening existing %s database at %s", backend_kind, path)
        else:
            _log.info("creating new %s database at %s", backend_kind, path)

        engine = self._create_engine(backend_kind, path)
        try:
            applied = await asyncio.wait_for(self._open_and_migrate(engine, backend_kind), timeout=self.init_timeout)
        except asyncio.TimeoutError as exc:
            await engine.dispose()
            _log.error("database initialization timed out after %ss", self.init_timeout)
            raise DatabaseError(f"database initialization timed out after {self.init_timeout}s") from exc
        except BaseException:
            await engine.dispose()
            raise

        self._engine = engine
        self._schema = schema
        self._db = Database(engine, schema)
        self._initialized = True
        _log.info(
            "database initialized dialect=%s tables=%d migrations_applied=%d",
            backend_kind, len(schema), len(applied),
        )
        return True

    async def setup_new_database(self, config: DbConfig) -> bool:
        """Persist ``config`` and initialize against it.

        A second call once configured and initialized changes nothing and
        returns True. When a selection exists but initialization has not
        succeeded, this retries initialization with the stored selection.
        """
        async with self._lock:
            if self._configured and self._initialized:
                _log.warning("database already configured and initialized; setup request ignored")
                return True
            if self._configured:
                _log.info("database configured but not initialized; retrying initialization")
                return await self._initialize_locked()

            self._reconfiguring = True
            try:
                await self.config_store.save(config)
                await self._reset_state()
                return await self._initialize_locked()
            finally:
                self._reconfiguring = False

    async def _reset_state(self) -> None:
        engine = self._engine
        self._initialized = False
        self._configured = False
        self._config = None
        self._schema = None
        self._engine = None
        self._db = None
        self._seeded_plugins.clear()
        if engine is not None:
            await engine.dispose()

    def regenerate_schema(self) -> ComposedSchema | None:
        """Recompose the schema and rebind the open engine to it.

        Neither reopens the connection nor reruns migrations.
        """
        if not self._configured or self._config is None:
            _log.warning("cannot regenerate schema: database not configured")
            return None
        schema = self.composer.compose(self._config.backend_kind)
        self._schema = schema
        if self._engine is not None:
            self._db = Database(self._engine, schema)
        _log.info("schema regenerated tables=%d", len(schema))
        return schema

    async def reset(self) -> None:
        """Close the connection, forget the persisted selection and return to UNCONFIGURED."""
        async with self._lock:
            await self._reset_state()
            await self.config_store.delete()

    async def close(self) -> None:
        engine = self._engine
        self._initialized = False
        self._engine = None
        self._db = None
        if engine is not None:
            await engine.dispose()
            _log.info("database connection closed")

    # ---------------------------------------------------------- plugin hooks
    def register_plugin_tables(self, plugins: Iterable[Any]) -> List[str]:
        registered: List[str] = []
        for plugin in plugins:
            ext = getattr(plugin, 'database_extension', None)
            definitions = getattr(ext, 'table_definitions', None) if ext is not None else None
            if not definitions:
                continue
            registered.extend(self.composer.register_plugin_tables(plugin.meta.id, definitions))
        if registered and self._initialized:
            _log.warning(
                "plugin tables registered after database initialization; live schema is stale "
                "until restart or regenerate_schema() tables=%s",
                registered,
            )
        return registered

    async def create_plugin_tables(self) -> List[str]:
        """Create plugin tables from the live schema that do not exist yet."""
        schema = self.get_schema()
        engine = self.get_connection()
        for name in self.composer.plugin_definitions:
            if name not in schema:
                _log.warning("plugin table %s is not in the live schema; skipping creation", name)
        tables = [schema[name] for name in schema.plugin_table_names]
        if not tables:
            return []
        async with engine.begin() as conn:
            await conn.run_sync(schema.metadata.create_all, tables=tables, checkfirst=True)
        names = [t.name for t in tables]
        _log.info("plugin tables ensured: %s", ', '.join(names))
        return names

    async def initialize_plugin_databases(self, db: Database, plugins: Iterable[Any]) -> List[str]:
        """Run each plugin's ``on_database_init`` once per initialized database."""
        ran: List[str] = []
        for plugin in plugins:
            ext = getattr(plugin, 'database_extension', None)
            hook = getattr(ext, 'on_database_init', None) if ext is not None else None
            if hook is None:
                continue
            plugin_id = plugin.meta.id
            if plugin_id in self._seeded_plugins:
                continue
            _log.info("initializing database for plugin %s", plugin_id)
            try:
                result = hook(db)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                _log.exception("database initialization failed for plugin %s", plugin_id)
                continue
            self._seeded_plugins.add(plugin_id)
            ran.append(plugin_id)
        return ran

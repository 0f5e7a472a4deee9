"""Runtime schema composition.

Nothing here touches a database. ``SchemaComposer.compose`` turns the core
table definitions plus every plugin-registered definition into SQLAlchemy
``Table`` objects for one backend. It can be called again after more plugin
tables are registered; each call returns a fresh :class:`ComposedSchema`.
"""
from __future__ import annotations
import logging
from itertools import chain
from typing import Dict, Iterator, List, Mapping

import sqlalchemy as sa

from deploystack_server.db.columns import (
    COLUMN_TYPE_MAPPERS,
    ColumnBuilder,
    ColumnSpec,
    TableDefinition,
    build_column,
    infer_column_kind,
)
from deploystack_server.db.errors import SchemaCompositionError, UnsupportedBackendError
from deploystack_server.db.tables import CORE_TABLE_DEFINITIONS

_log = logging.getLogger(__name__)


def plugin_table_name(plugin_id: str, table_name: str) -> str:
    return f"{plugin_id}_{table_name}"


class ComposedSchema(Mapping[str, sa.Table]):
    """Read-only mapping of table name to queryable table for one dialect."""

    def __init__(self, dialect: str, metadata: sa.MetaData, tables: Dict[str, sa.Table], plugin_tables: List[str]):
        self.dialect = dialect
        self.metadata = metadata
        self._tables = tables
        self.plugin_table_names = tuple(plugin_tables)

    def __getitem__(self, name: str) -> sa.Table:
        return self._tables[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._tables)

    def __len__(self) -> int:
        return len(self._tables)

    def __getattr__(self, name: str) -> sa.Table:
        # schema.users style access; only reached for unknown attributes
        tables = self.__dict__.get('_tables') or {}
        try:
            return tables[name]
        except KeyError:
            raise AttributeError(name) from None

    def __repr__(self) -> str:
        return f"<ComposedSchema dialect={self.dialect} tables={len(self._tables)}>"


class SchemaComposer:
    def __init__(self, core_definitions: Mapping[str, TableDefinition] | None = None):
        self._core: Dict[str, TableDefinition] = dict(
            CORE_TABLE_DEFINITIONS if core_definitions is None else core_definitions
        )
        self._plugin_definitions: Dict[str, TableDefinition] = {}
        self._owners: Dict[str, str] = {}

    @property
    def core_definitions(self) -> Mapping[str, TableDefinition]:
        return dict(self._core)

    @property
    def plugin_definitions(self) -> Mapping[str, TableDefinition]:
        return dict(self._plugin_definitions)

    def register_plugin_tables(self, plugin_id: str, table_definitions: Mapping[str, TableDefinition]) -> List[str]:
        """Merge a plugin's tables under ``<plugin_id>_<table>`` keys.

        Re-registering from the same plugin replaces the earlier definition.
        A key already owned by another plugin (or a core table) is refused and
        logged; the first owner keeps it.
        """
        registered: List[str] = []
        for table_name, definition in table_definitions.items():
            key = plugin_table_name(plugin_id, table_name)
            if key in self._core:
                _log.error("plugin table collides with core table plugin=%s table=%s", plugin_id, key)
                continue
            owner = self._owners.get(key)
            if owner is not None and owner != plugin_id:
                _log.error(
                    "plugin table collision table=%s owner=%s rejected_plugin=%s", key, owner, plugin_id
                )
                continue
            if owner == plugin_id:
                _log.debug("plugin table redefined plugin=%s table=%s", plugin_id, key)
            self._plugin_definitions[key] = dict(definition)
            self._owners[key] = plugin_id
            registered.append(key)
        return registered

    def owner_of(self, table_name: str) -> str | None:
        return self._owners.get(table_name)

    def compose(self, backend_kind: str) -> ComposedSchema:
        if backend_kind not in COLUMN_TYPE_MAPPERS:
            raise UnsupportedBackendError(backend_kind)
        metadata = sa.MetaData()
        tables: Dict[str, sa.Table] = {}
        for table_name, definition in chain(self._core.items(), self._plugin_definitions.items()):
            tables[table_name] = self._compose_table(metadata, backend_kind, table_name, definition)
        self._check_foreign_keys(tables)
        return ComposedSchema(backend_kind, metadata, tables, list(self._plugin_definitions))

    def _compose_table(self, metadata: sa.MetaData, dialect: str, table_name: str, definition: TableDefinition) -> sa.Table:
        if not definition:
            raise SchemaCompositionError(table_name, 'table has no columns')
        columns = []
        for column_name, column_def in definition.items():
            builder = ColumnBuilder(column_name, infer_column_kind(table_name, column_name))
            try:
                spec = column_def(builder)
            except Exception as exc:
                raise SchemaCompositionError(table_name, f"definition raised {exc!r}", column_name) from exc
            if not isinstance(spec, ColumnSpec):
                raise SchemaCompositionError(
                    table_name, f"definition returned {type(spec).__name__}, expected ColumnSpec", column_name
                )
            try:
                columns.append(build_column(spec, dialect))
            except KeyError as exc:
                raise SchemaCompositionError(
                    table_name, f"kind {spec.kind.value!r} unsupported by {dialect}", column_name
                ) from exc
        return sa.Table(table_name, metadata, *columns)

    @staticmethod
    def _check_foreign_keys(tables: Mapping[str, sa.Table]) -> None:
        for table in tables.values():
            for fk in table.foreign_keys:
                target_table, _, target_column = fk.target_fullname.partition('.')
                target = tables.get(target_table)
                if target is None or target_column not in target.c:
                    raise SchemaCompositionError(
                        table.name,
                        f"foreign key references unknown column {fk.target_fullname}",
                        fk.parent.name,
                    )

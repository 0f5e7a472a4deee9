"""Dialect-neutral column definitions.

A table definition maps column names to *column definitions*: callables that
receive a :class:`ColumnBuilder` and return a :class:`ColumnSpec`::

    {
        'id': lambda c: c.text().primary_key(),
        'title': lambda c: c().not_null(),       # kind inferred from the name
        'created_at': lambda c: c.timestamp().not_null().default_now(),
    }

The same definition compiles to a concrete SQLAlchemy column for every backend
listed in ``COLUMN_TYPE_MAPPERS``; supporting another backend means adding one
entry there.
"""
from __future__ import annotations
import dataclasses
import enum
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

import sqlalchemy as sa
from sqlalchemy.types import TypeDecorator, TypeEngine


class ColumnKind(str, enum.Enum):
    TEXT = 'text'
    INTEGER = 'integer'
    TIMESTAMP = 'timestamp'
    BOOLEAN = 'boolean'


NUMERIC_HINTS: tuple[str, ...] = ('count', 'age', 'quantity', 'order', 'status', 'number', 'id')
TIMESTAMP_HINTS: tuple[str, ...] = ('at', 'date')


def infer_column_kind(table_name: str, column_name: str) -> ColumnKind:
    """Guess a column kind from its name.

    Only used for columns whose definition does not pick a kind explicitly.
    Order matters: timestamp hints win over numeric hints.
    """
    if column_name == 'id' and table_name == 'users':
        return ColumnKind.TEXT
    lowered = column_name.lower()
    if any(h in lowered for h in TIMESTAMP_HINTS):
        return ColumnKind.TIMESTAMP
    if any(h in lowered for h in NUMERIC_HINTS):
        return ColumnKind.INTEGER
    return ColumnKind.TEXT


class EpochTimestamp(TypeDecorator):
    """Timestamp stored as integer unix seconds (SQLite has no native type)."""

    impl = sa.Integer
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None or isinstance(value, int):
            return value
        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            return int(value.timestamp())
        raise TypeError(f"expected datetime or int, got {type(value).__name__}")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclasses.dataclass(frozen=True)
class ForeignKeyRef:
    table: str
    column: str = 'id'
    on_delete: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class ColumnSpec:
    name: str
    kind: ColumnKind
    is_primary_key: bool = False
    nullable: bool = True
    is_unique: bool = False
    default_value: Any = None
    defaults_to_now: bool = False
    foreign_key: Optional[ForeignKeyRef] = None

    def primary_key(self) -> 'ColumnSpec':
        return dataclasses.replace(self, is_primary_key=True, nullable=False)

    def not_null(self) -> 'ColumnSpec':
        return dataclasses.replace(self, nullable=False)

    def unique(self) -> 'ColumnSpec':
        return dataclasses.replace(self, is_unique=True)

    def default(self, value: Any) -> 'ColumnSpec':
        return dataclasses.replace(self, default_value=value)

    def default_now(self) -> 'ColumnSpec':
        return dataclasses.replace(self, defaults_to_now=True)

    def references(self, table: str, column: str = 'id', *, on_delete: str | None = None) -> 'ColumnSpec':
        return dataclasses.replace(self, foreign_key=ForeignKeyRef(table, column, on_delete))


class ColumnBuilder:
    """Handed to a column definition; calling it yields a spec of the inferred kind."""

    def __init__(self, name: str, inferred: ColumnKind):
        self.name = name
        self.inferred = inferred

    def __call__(self) -> ColumnSpec:
        return ColumnSpec(self.name, self.inferred)

    def text(self) -> ColumnSpec:
        return ColumnSpec(self.name, ColumnKind.TEXT)

    def integer(self) -> ColumnSpec:
        return ColumnSpec(self.name, ColumnKind.INTEGER)

    def timestamp(self) -> ColumnSpec:
        return ColumnSpec(self.name, ColumnKind.TIMESTAMP)

    def boolean(self) -> ColumnSpec:
        return ColumnSpec(self.name, ColumnKind.BOOLEAN)


ColumnDefinition = Callable[[ColumnBuilder], ColumnSpec]
TableDefinition = Mapping[str, ColumnDefinition]


def _sqlite_type(kind: ColumnKind) -> TypeEngine:
    if kind is ColumnKind.TEXT:
        return sa.Text()
    if kind is ColumnKind.INTEGER:
        return sa.Integer()
    if kind is ColumnKind.TIMESTAMP:
        return EpochTimestamp()
    if kind is ColumnKind.BOOLEAN:
        return sa.Boolean()
    raise KeyError(kind)


def _postgres_type(kind: ColumnKind) -> TypeEngine:
    if kind is ColumnKind.TEXT:
        return sa.Text()
    if kind is ColumnKind.INTEGER:
        return sa.Integer()
    if kind is ColumnKind.TIMESTAMP:
        return sa.DateTime(timezone=True)
    if kind is ColumnKind.BOOLEAN:
        return sa.Boolean()
    raise KeyError(kind)


COLUMN_TYPE_MAPPERS: Dict[str, Callable[[ColumnKind], TypeEngine]] = {
    'sqlite': _sqlite_type,
    'postgres': _postgres_type,
}

_NOW_SERVER_DEFAULTS: Dict[str, Callable[[], Any]] = {
    'sqlite': lambda: sa.text("(strftime('%s', 'now'))"),
    'postgres': lambda: sa.func.now(),
}


def build_column(spec: ColumnSpec, dialect: str) -> sa.Column:
    """Project a spec onto ``dialect``'s physical column types."""
    mapper = COLUMN_TYPE_MAPPERS[dialect]
    col_type = mapper(spec.kind)
    args: list[Any] = [spec.name, col_type]
    if spec.foreign_key is not None:
        fk = spec.foreign_key
        args.append(sa.ForeignKey(f"{fk.table}.{fk.column}", ondelete=fk.on_delete))
    kwargs: Dict[str, Any] = {
        'primary_key': spec.is_primary_key,
        'nullable': spec.nullable,
        'unique': spec.is_unique or None,
    }
    if spec.defaults_to_now:
        kwargs['default'] = _utcnow
        kwargs['server_default'] = _NOW_SERVER_DEFAULTS[dialect]()
    elif spec.default_value is not None:
        kwargs['default'] = spec.default_value
    return sa.Column(*args, **kwargs)

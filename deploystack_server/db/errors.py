from __future__ import annotations


class DatabaseError(Exception):
    """Base class for database lifecycle failures."""


class DatabaseNotInitializedError(DatabaseError):
    def __init__(self) -> None:
        super().__init__(
            'Database not initialized. Call initialize() first or ensure setup is complete.'
        )


class SchemaNotGeneratedError(DatabaseError):
    def __init__(self) -> None:
        super().__init__('Database schema not generated. Call initialize() first.')


class ConnectionNotEstablishedError(DatabaseError):
    def __init__(self) -> None:
        super().__init__('Database connection not established. Call initialize() first.')


class UnsupportedBackendError(DatabaseError):
    def __init__(self, backend_kind: str) -> None:
        super().__init__(f"Unsupported database backend: {backend_kind!r}")
        self.backend_kind = backend_kind


class SchemaCompositionError(DatabaseError):
    def __init__(self, table: str, message: str, column: str | None = None) -> None:
        where = f"{table}.{column}" if column else table
        super().__init__(f"Cannot compose table {where}: {message}")
        self.table = table
        self.column = column


class MigrationError(DatabaseError):
    def __init__(self, migration_name: str, cause: BaseException) -> None:
        super().__init__(f"Failed to apply migration {migration_name}: {cause}")
        self.migration_name = migration_name
        self.__cause__ = cause


class ConfigStoreError(DatabaseError):
    """Persisting the database selection failed."""

"""Persisted database selection.

A fresh install has no selection at all; that is the "unconfigured" state the
setup route resolves. The selection is a tiny JSON document::

    {"backendKind": "sqlite", "connectionPath": "database/deploystack.db"}

``connectionPath`` is resolved relative to the data directory.
"""
from __future__ import annotations
import asyncio
import json
import logging
import os
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from deploystack_server.db.errors import ConfigStoreError

_log = logging.getLogger(__name__)

CONFIG_FILE_NAME = 'db.selection.json'
TEST_CONFIG_FILE_NAME = 'db.selection.test.json'


class BackendKind(str, Enum):
    SQLITE = 'sqlite'


class DbConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    backend_kind: BackendKind = Field(alias='backendKind')
    connection_path: str = Field(alias='connectionPath', min_length=1)

    def to_json(self) -> str:
        return json.dumps(self.model_dump(by_alias=True), indent=2)


class DbConfigStore:
    """Read/write the database selection file inside ``directory``.

    In test mode the file name is distinct so a test run never clobbers a
    developer's real selection, and informational messages drop to DEBUG.
    """

    def __init__(self, directory: Path, *, test_mode: bool = False) -> None:
        self.directory = Path(directory)
        self.test_mode = test_mode
        name = TEST_CONFIG_FILE_NAME if test_mode else CONFIG_FILE_NAME
        self.path = self.directory / name

    def _info(self, msg: str, *args) -> None:
        _log.log(logging.DEBUG if self.test_mode else logging.INFO, msg, *args)

    def _read(self) -> DbConfig | None:
        self.directory.mkdir(parents=True, exist_ok=True)
        try:
            raw = self.path.read_text(encoding='utf-8')
        except FileNotFoundError:
            return None
        try:
            return DbConfig.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as exc:
            _log.error("database configuration at %s is unreadable: %s", self.path, exc)
            return None

    async def load(self) -> DbConfig | None:
        """Return the saved selection, or None when absent or unreadable. Never raises."""
        try:
            return await asyncio.to_thread(self._read)
        except Exception:
            _log.exception("failed to read database configuration path=%s", self.path)
            return None

    def _write(self, config: DbConfig) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + '.tmp')
        tmp.write_text(config.to_json(), encoding='utf-8')
        os.replace(tmp, self.path)

    async def save(self, config: DbConfig) -> None:
        try:
            await asyncio.to_thread(self._write, config)
        except OSError as exc:
            _log.error("failed to save database configuration path=%s err=%s", self.path, exc)
            raise ConfigStoreError(f"could not save database configuration: {exc}") from exc
        self._info("database configuration saved to %s", self.path)

    def _unlink(self) -> bool:
        try:
            self.path.unlink()
            return True
        except FileNotFoundError:
            return False

    async def delete(self) -> None:
        try:
            removed = await asyncio.to_thread(self._unlink)
        except OSError as exc:
            _log.error("failed to delete database configuration path=%s err=%s", self.path, exc)
            raise ConfigStoreError(f"could not delete database configuration: {exc}") from exc
        if removed:
            self._info("database configuration deleted from %s", self.path)
        else:
            self._info("database configuration file not found, nothing to delete")

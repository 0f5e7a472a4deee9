"""Global settings: application-wide key/value configuration.

Rows live in the ``globalSettings`` table, optionally grouped through
``globalSettingGroups``. Values flagged ``is_encrypted`` are stored as Fernet
tokens and decrypted transparently on read. In list reads a value that cannot
be decrypted is replaced with ``[DECRYPTION_FAILED]``; single-key reads raise
:class:`SettingDecryptionError` instead.
"""
from __future__ import annotations
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from cryptography.fernet import InvalidToken
from sqlalchemy import delete, insert, select, update

from deploystack_server.db.manager import Database
from deploystack_server.services.encryption import EncryptionService

_log = logging.getLogger(__name__)

DECRYPTION_FAILED = '[DECRYPTION_FAILED]'
MAX_KEY_LENGTH = 255
_KEY_PATTERN = re.compile(r'^[a-zA-Z0-9._-]+$')


class SettingValidationError(ValueError):
    pass


class SettingDecryptionError(Exception):
    def __init__(self, key: str, cause: BaseException | None = None) -> None:
        super().__init__(f"Failed to decrypt setting '{key}'")
        self.key = key
        self.__cause__ = cause


def validate_key(key: Any) -> None:
    if not key or not isinstance(key, str):
        raise SettingValidationError('Setting key is required and must be a string')
    if len(key) > MAX_KEY_LENGTH:
        raise SettingValidationError(f'Setting key must be {MAX_KEY_LENGTH} characters or less')
    if not _KEY_PATTERN.match(key):
        raise SettingValidationError(
            'Setting key can only contain letters, numbers, dots, underscores, and hyphens'
        )


def validate_value(value: Any) -> None:
    if value is None:
        raise SettingValidationError('Setting value is required')
    if not isinstance(value, str):
        raise SettingValidationError('Setting value must be a string')


def _validate_group_id(group_id: Any) -> None:
    if not group_id or not isinstance(group_id, str):
        raise SettingValidationError('Group ID is required and must be a string')


def _now() -> datetime:
    return datetime.now(timezone.utc)


class GlobalSettingsService:
    def __init__(self, db: Database, encryption: EncryptionService):
        self.db = db
        self.encryption = encryption

    @property
    def _settings(self):
        return self.db.tables['globalSettings']

    @property
    def _groups(self):
        return self.db.tables['globalSettingGroups']

    # --------------------------------------------------------------- helpers
    def _decoded(self, row, *, strict: bool) -> Dict[str, Any]:
        setting = dict(row)
        setting['is_encrypted'] = bool(setting.get('is_encrypted'))
        if setting['is_encrypted'] and setting.get('value'):
            try:
                setting['value'] = self.encryption.decrypt(setting['value'])
            except InvalidToken as exc:
                if strict:
                    raise SettingDecryptionError(setting['key'], exc) from exc
                _log.error("failed to decrypt setting %s", setting['key'])
                setting['value'] = DECRYPTION_FAILED
        return setting

    async def _list(self, stmt) -> List[Dict[str, Any]]:
        rows = await self.db.fetch_all(stmt)
        return [self._decoded(r, strict=False) for r in rows]

    # -------------------------------------------------------------- settings
    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        validate_key(key)
        t = self._settings
        row = await self.db.fetch_one(select(t).where(t.c.key == key).limit(1))
        if row is None:
            return None
        return self._decoded(row, strict=True)

    async def get_value(self, key: str, default: Optional[str] = None) -> Optional[str]:
        setting = await self.get(key)
        return default if setting is None else setting['value']

    async def get_all(self) -> List[Dict[str, Any]]:
        t = self._settings
        return await self._list(select(t).order_by(t.c.key))

    async def get_by_group(self, group_id: str) -> List[Dict[str, Any]]:
        _validate_group_id(group_id)
        t = self._settings
        return await self._list(select(t).where(t.c.group_id == group_id).order_by(t.c.key))

    async def search(self, pattern: str) -> List[Dict[str, Any]]:
        if not pattern or not isinstance(pattern, str):
            raise SettingValidationError('Search pattern is required and must be a string')
        t = self._settings
        return await self._list(select(t).where(t.c.key.like(f"%{pattern}%")).order_by(t.c.key))

    async def exists(self, key: str) -> bool:
        validate_key(key)
        t = self._settings
        row = await self.db.fetch_one(select(t.c.key).where(t.c.key == key).limit(1))
        return row is not None

    async def set(
        self,
        key: str,
        value: str,
        *,
        description: Optional[str] = None,
        encrypted: bool = False,
        group_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create or replace a setting and return it decrypted."""
        validate_key(key)
        validate_value(value)
        t = self._settings
        now = _now()
        data = {
            'value': self.encryption.encrypt(value) if encrypted else value,
            'description': description or None,
            'is_encrypted': bool(encrypted),
            'group_id': group_id or None,
            'updated_at': now,
        }
        async with self.db.begin() as conn:
            found = (await conn.execute(select(t.c.key).where(t.c.key == key))).first()
            if found is not None:
                await conn.execute(update(t).where(t.c.key == key).values(**data))
            else:
                await conn.execute(insert(t).values(key=key, created_at=now, **data))
        result = await self.get(key)
        if result is None:  # pragma: no cover
            raise RuntimeError(f"setting {key} vanished after write")
        return result

    async def update(
        self,
        key: str,
        *,
        value: Optional[str] = None,
        description: Optional[str] = None,
        encrypted: Optional[bool] = None,
        group_id: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Patch an existing setting; returns None when the key does not exist.

        Passing ``value`` re-evaluates encryption: the value is stored
        encrypted only when ``encrypted`` is true.
        """
        validate_key(key)
        if not await self.exists(key):
            return None
        data: Dict[str, Any] = {'updated_at': _now()}
        if value is not None:
            validate_value(value)
            data['value'] = self.encryption.encrypt(value) if encrypted else value
            data['is_encrypted'] = bool(encrypted)
        if description is not None:
            data['description'] = description
        if group_id is not None:
            data['group_id'] = group_id
        t = self._settings
        await self.db.execute(update(t).where(t.c.key == key).values(**data))
        return await self.get(key)

    async def delete(self, key: str) -> bool:
        validate_key(key)
        t = self._settings
        async with self.db.begin() as conn:
            result = await conn.execute(delete(t).where(t.c.key == key))
            return (result.rowcount or 0) > 0

    async def get_categories(self) -> List[str]:
        t = self._settings
        rows = await self.db.fetch_all(
            select(t.c.group_id).where(t.c.group_id.is_not(None)).distinct().order_by(t.c.group_id)
        )
        return [r['group_id'] for r in rows]

    # ---------------------------------------------------------------- groups
    async def get_group(self, group_id: str) -> Optional[Dict[str, Any]]:
        _validate_group_id(group_id)
        g = self._groups
        row = await self.db.fetch_one(select(g).where(g.c.id == group_id).limit(1))
        return dict(row) if row is not None else None

    async def get_all_group_metadata(self) -> List[Dict[str, Any]]:
        g = self._groups
        rows = await self.db.fetch_all(select(g).order_by(g.c.sort_order, g.c.name))
        return [dict(r) for r in rows]

    async def get_all_groups_with_settings(self) -> List[Dict[str, Any]]:
        groups = await self.get_all_group_metadata()
        for group in groups:
            group['settings'] = await self.get_by_group(group['id'])
        return groups

    async def create_group(
        self,
        group_id: str,
        name: str,
        *,
        description: Optional[str] = None,
        icon: Optional[str] = None,
        sort_order: int = 0,
    ) -> Dict[str, Any]:
        _validate_group_id(group_id)
        if not name or not isinstance(name, str):
            raise SettingValidationError('Group name is required and must be a string')
        now = _now()
        g = self._groups
        await self.db.execute(
            insert(g).values(
                id=group_id,
                name=name,
                description=description or None,
                icon=icon or None,
                sort_order=sort_order or 0,
                created_at=now,
                updated_at=now,
            )
        )
        created = await self.get_group(group_id)
        if created is None:  # pragma: no cover
            raise RuntimeError(f"group {group_id} vanished after creation")
        return created

    async def update_group(
        self,
        group_id: str,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        icon: Optional[str] = None,
        sort_order: Optional[int] = None,
    ) -> Optional[Dict[str, Any]]:
        _validate_group_id(group_id)
        if await self.get_group(group_id) is None:
            return None
        data: Dict[str, Any] = {'updated_at': _now()}
        for column, value in (('name', name), ('description', description), ('icon', icon), ('sort_order', sort_order)):
            if value is not None:
                data[column] = value
        g = self._groups
        await self.db.execute(update(g).where(g.c.id == group_id).values(**data))
        return await self.get_group(group_id)

    async def delete_group(self, group_id: str) -> bool:
        """Delete a group. Its settings are kept and become ungrouped."""
        _validate_group_id(group_id)
        t, g = self._settings, self._groups
        async with self.db.begin() as conn:
            await conn.execute(update(t).where(t.c.group_id == group_id).values(group_id=None))
            result = await conn.execute(delete(g).where(g.c.id == group_id))
            return (result.rowcount or 0) > 0

